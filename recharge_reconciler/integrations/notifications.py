"""
User-facing notification sinks.

The controller reports outcomes through a NotificationSink and never waits
on it. Rendering the message (toast, modal, chat line) is up to the host.
"""
from enum import Enum
from typing import Any, List, Protocol, Tuple

import structlog

logger = structlog.get_logger(__name__)


class NotificationKind(str, Enum):
    """Kind of feedback shown to the payer."""

    SUCCESS = "success"
    INFO = "info"
    ERROR = "error"
    TIMEOUT = "timeout"


class NotificationSink(Protocol):
    """Best-effort feedback channel. May return an awaitable."""

    def notify(self, kind: NotificationKind, message: str) -> Any:
        ...


class LoggingNotificationSink:
    """Writes notifications to the structured log."""

    def notify(self, kind: NotificationKind, message: str) -> None:
        log = logger.warning if kind in (NotificationKind.ERROR, NotificationKind.TIMEOUT) else logger.info
        log("user_notification", kind=kind.value, message=message)


class RecordingNotificationSink:
    """Keeps notifications in memory, newest last."""

    def __init__(self) -> None:
        self.notifications: List[Tuple[NotificationKind, str]] = []

    def notify(self, kind: NotificationKind, message: str) -> None:
        self.notifications.append((kind, message))

    def kinds(self) -> List[NotificationKind]:
        return [kind for kind, _ in self.notifications]
