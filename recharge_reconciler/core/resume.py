"""
Resume signal sources.

A resume signal means "the payer may be back from the payment page". Hosts
deliver it differently:
- a browser tab regains visibility or focus (often several times in a row)
- a mini-program shell reports once that the app was shown again

The controller only sees ResumeSignalSource; which variant it gets is
decided once, at construction.
"""
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Protocol

import structlog

from recharge_reconciler.config.settings import Runtime

logger = structlog.get_logger(__name__)

ResumeHandler = Callable[[], None]

VISIBILITY_CHANGE = "visibilitychange"
FOCUS = "focus"


class HostSurface(Protocol):
    """Event surface of the host page or window."""

    @property
    def is_visible(self) -> bool:
        ...

    def add_listener(self, event: str, listener: Callable[[], None]) -> None:
        ...

    def remove_listener(self, event: str, listener: Callable[[], None]) -> None:
        ...


class InProcessSurface:
    """
    Minimal HostSurface driven from Python.

    Host adapters (and tests) call set_visible() and focus() as the real
    window reports them.
    """

    def __init__(self, visible: bool = True):
        self._visible = visible
        self._listeners: Dict[str, List[Callable[[], None]]] = {}

    @property
    def is_visible(self) -> bool:
        return self._visible

    def add_listener(self, event: str, listener: Callable[[], None]) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def remove_listener(self, event: str, listener: Callable[[], None]) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, []))
        return sum(len(v) for v in self._listeners.values())

    def emit(self, event: str) -> None:
        for listener in list(self._listeners.get(event, [])):
            listener()

    def set_visible(self, visible: bool) -> None:
        changed = visible != self._visible
        self._visible = visible
        if changed:
            self.emit(VISIBILITY_CHANGE)

    def focus(self) -> None:
        self.emit(FOCUS)


class ResumeSignalSource(ABC):
    """Capability to deliver "foreground regained" notifications."""

    @abstractmethod
    def subscribe(self, handler: ResumeHandler) -> None:
        """Start delivering resume signals to handler, replacing any previous one."""
        pass

    @abstractmethod
    def unsubscribe(self) -> None:
        """Stop delivering resume signals. Safe to call repeatedly."""
        pass

    @property
    @abstractmethod
    def is_subscribed(self) -> bool:
        pass


class ForegroundVisibilitySource(ResumeSignalSource):
    """Fires when the host surface becomes visible again or regains focus."""

    def __init__(self, surface: HostSurface):
        self.surface = surface
        self._handler: Optional[ResumeHandler] = None

    def subscribe(self, handler: ResumeHandler) -> None:
        self.unsubscribe()
        self._handler = handler
        self.surface.add_listener(VISIBILITY_CHANGE, self._on_visibility_change)
        self.surface.add_listener(FOCUS, self._on_focus)
        logger.debug("visibility_source_subscribed")

    def unsubscribe(self) -> None:
        if self._handler is None:
            return
        self.surface.remove_listener(VISIBILITY_CHANGE, self._on_visibility_change)
        self.surface.remove_listener(FOCUS, self._on_focus)
        self._handler = None
        logger.debug("visibility_source_unsubscribed")

    @property
    def is_subscribed(self) -> bool:
        return self._handler is not None

    def _on_visibility_change(self) -> None:
        if self._handler is not None and self.surface.is_visible:
            logger.debug("surface_visible_again")
            self._handler()

    def _on_focus(self) -> None:
        # Fallback for hosts that skip visibilitychange on return
        if self._handler is not None:
            logger.debug("surface_focused")
            self._handler()


class HostResumeSource(ResumeSignalSource):
    """
    Fires once when the surrounding shell reports the app resumed.

    The shell calls notify_resumed() from its "app shown" hook. Signals
    after the first one are ignored until the next subscribe().
    """

    def __init__(self) -> None:
        self._handler: Optional[ResumeHandler] = None
        self._fired = False

    def subscribe(self, handler: ResumeHandler) -> None:
        self._handler = handler
        self._fired = False
        logger.debug("host_resume_source_subscribed")

    def unsubscribe(self) -> None:
        if self._handler is not None:
            logger.debug("host_resume_source_unsubscribed")
        self._handler = None

    @property
    def is_subscribed(self) -> bool:
        return self._handler is not None

    def notify_resumed(self) -> bool:
        """
        Report that the host resumed after an external hand-off.

        Returns:
            bool: True if a subscribed handler was invoked

        Raises:
            Exception: Whatever the handler raised; the signal stays armed
        """
        if self._handler is None or self._fired:
            return False
        self._fired = True
        logger.debug("host_resumed")
        try:
            self._handler()
        except Exception:
            # Not delivered; keep the signal armed
            self._fired = False
            raise
        return True


def resume_source_for_runtime(
    runtime: Runtime, surface: Optional[HostSurface] = None
) -> ResumeSignalSource:
    """
    Pick the resume source for a runtime.

    Args:
        runtime: Host runtime
        surface: Host surface for the web runtime (an InProcessSurface if omitted)

    Returns:
        ResumeSignalSource: Source suited to the runtime
    """
    runtime = Runtime(runtime)
    if runtime is Runtime.MINIAPP:
        return HostResumeSource()
    return ForegroundVisibilitySource(surface if surface is not None else InProcessSurface())
