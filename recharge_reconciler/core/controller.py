"""
Payment reconciliation controller.

Owns at most one payment session and drives it from "payer left for the
payment page" to a single, final outcome:

1. start_session() subscribes to the resume source
2. a resume signal runs one status check
3. an inconclusive check hands off to the polling engine
4. the first conclusive answer (or an exhausted budget) fires exactly one
   callback, after the session has been torn down

All state changes happen on the event loop that runs the controller. Every
scheduled continuation carries the session generation it was created for
and does nothing if that session is gone.
"""
import asyncio
import functools
import inspect
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Set

import structlog

from recharge_reconciler.config import Settings, get_settings
from recharge_reconciler.core.errors import (
    AttachMismatchError,
    PollingError,
    ReconciliationError,
    SessionError,
)
from recharge_reconciler.core.polling import PollingEngine, PollOutcome, PollOutcomeKind
from recharge_reconciler.core.resume import (
    HostSurface,
    ResumeSignalSource,
    resume_source_for_runtime,
)
from recharge_reconciler.core.session import (
    PaymentSession,
    SessionCallbacks,
    SessionStatus,
)
from recharge_reconciler.core.verifier import StatusCheck, StatusVerdict, verify
from recharge_reconciler.integrations.gateway_client import PaymentGateway
from recharge_reconciler.integrations.notifications import (
    LoggingNotificationSink,
    NotificationKind,
    NotificationSink,
)
from recharge_reconciler.integrations.schemas import PaymentStatus
from recharge_reconciler.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


MISMATCH_MESSAGE = "Order verification failed"
TIMEOUT_MESSAGE = (
    "Unable to confirm the payment status. Please check your balance later."
)
PENDING_MESSAGE = "Payment not yet completed"
QUERY_FAILED_MESSAGE = "Query failed, please try again later"


@dataclass(frozen=True)
class SessionResult:
    """Payload handed to on_success / on_failed."""

    order_id: str
    outcome: SessionStatus
    payment: Optional[PaymentStatus] = None
    error: Optional[ReconciliationError] = None

    @property
    def is_mismatch(self) -> bool:
        return isinstance(self.error, AttachMismatchError)


class ReconciliationController:
    """
    Reconciles one payment session at a time.

    Hold one instance per application context and inject it where needed.
    """

    def __init__(
        self,
        gateway: PaymentGateway,
        resume_source: ResumeSignalSource,
        notifier: Optional[NotificationSink] = None,
        poll_interval: float = 3.0,
        max_attempts: int = 30,
        engine_factory: Callable[[], PollingEngine] = PollingEngine,
    ):
        """
        Initialize reconciliation controller.

        Args:
            gateway: Payment gateway used for status queries
            resume_source: Source of "foreground regained" signals
            notifier: Best-effort user feedback sink
            poll_interval: Seconds between polling attempts
            max_attempts: Polling attempt budget (>= 1). The resume check
                runs before polling starts, so a pending order sees up to
                1 + max_attempts status queries before on_timeout fires
            engine_factory: Builds one polling engine per session

        Raises:
            PollingError: If max_attempts or poll_interval is out of range
        """
        if max_attempts < 1:
            raise PollingError("max_attempts must be at least 1")
        if poll_interval < 0:
            raise PollingError("poll_interval must not be negative")

        self.gateway = gateway
        self.resume_source = resume_source
        self.notifier = notifier or LoggingNotificationSink()
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.engine_factory = engine_factory

        self._session: Optional[PaymentSession] = None
        self._generation = 0
        self._engine: Optional[PollingEngine] = None
        self._check_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Future] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._log = logger

    @classmethod
    def from_settings(
        cls,
        gateway: PaymentGateway,
        settings: Optional[Settings] = None,
        surface: Optional[HostSurface] = None,
        notifier: Optional[NotificationSink] = None,
    ) -> "ReconciliationController":
        """
        Build a controller wired for the configured runtime.

        Args:
            gateway: Payment gateway
            settings: Settings (loaded from the environment if omitted)
            surface: Host surface for the web runtime
            notifier: Notification sink

        Returns:
            ReconciliationController: Configured controller
        """
        settings = settings or get_settings()

        return cls(
            gateway=gateway,
            resume_source=resume_source_for_runtime(settings.runtime, surface),
            notifier=notifier,
            poll_interval=settings.poll_interval_seconds,
            max_attempts=settings.poll_max_attempts,
        )

    @property
    def current_session(self) -> Optional[PaymentSession]:
        return self._session

    @property
    def status(self) -> SessionStatus:
        if self._session is None:
            return SessionStatus.IDLE
        return self._session.status

    @property
    def polling_engine(self) -> Optional[PollingEngine]:
        return self._engine

    @property
    def is_checking(self) -> bool:
        return self._check_task is not None and not self._check_task.done()

    def start_session(
        self,
        order_id: str,
        attach_token: str,
        amount: int,
        callbacks: Optional[SessionCallbacks] = None,
    ) -> None:
        """
        Begin reconciling a freshly created order.

        Any previous session is torn down first.

        Args:
            order_id: Gateway order id
            attach_token: Token sent with the order
            amount: Amount in minor currency units
            callbacks: Outcome callbacks

        Raises:
            SessionError: If the session parameters are invalid
        """
        session = PaymentSession(order_id, attach_token, amount, callbacks)

        self.cleanup()

        session.advance(SessionStatus.AWAITING_RESUME)
        self._generation += 1
        self._session = session
        self._loop = _running_loop()
        self._log = logger.bind(order_id=order_id)
        self.resume_source.subscribe(self.on_resume_signal)

        metrics.record_session_started()
        self._log.info("session_started", amount=amount)

    def on_resume_signal(self) -> None:
        """
        Handle a resume signal. Redundant signals are ignored.

        Safe to call from any thread. A signal raised off the session's event
        loop is handed over to that loop and handled there.

        Raises:
            SessionError: If the session has no event loop to run the check on
        """
        loop = self._loop
        if loop is not None and _running_loop() is not loop:
            loop.call_soon_threadsafe(self.on_resume_signal)
            return

        session = self._session
        if session is None or not session.is_active:
            return

        if session.status is SessionStatus.POLLING or self.is_checking:
            self._log.debug("resume_signal_ignored", status=session.status.value)
            return

        if loop is None:
            loop = _running_loop()
            if loop is None:
                raise SessionError("Resume signal received without a running event loop")
            self._loop = loop

        self._log.info("resume_signal_received")
        self._check_task = loop.create_task(self._check_then_poll(self._generation))

    async def manual_check(self) -> Optional[StatusCheck]:
        """
        Run one status query on the payer's request.

        Never starts the polling engine. A conclusive answer ends the session
        the same way an automatic check would.

        Returns:
            Optional[StatusCheck]: Check result, or None without an active session
        """
        session = self._session
        if session is None or not session.is_active:
            return None

        generation = self._generation
        check = await self._query_once(session, source="manual")

        if not self._is_current(generation):
            self._log.debug("manual_check_result_discarded")
            return check

        if check.verdict.is_conclusive:
            self._conclude(check)
        elif check.verdict is StatusVerdict.INCOMPLETE:
            self._notify(NotificationKind.INFO, PENDING_MESSAGE)
        else:
            self._notify(NotificationKind.ERROR, QUERY_FAILED_MESSAGE)

        return check

    def cleanup(self) -> None:
        """
        Release everything the current session holds and return to IDLE.

        Idempotent; safe in any state.
        """
        if self._engine is not None:
            self._engine.cancel()
            self._engine = None

        task, self._check_task = self._check_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        self.resume_source.unsubscribe()

        self._loop = None
        session, self._session = self._session, None
        if session is None:
            return

        self._generation += 1
        if session.status is not SessionStatus.IDLE:
            session.advance(SessionStatus.IDLE)

        metrics.record_session_cleared()
        outcome = session.outcome.value if session.outcome is not None else None
        self._log.info("session_cleaned_up", outcome=outcome)
        self._log = logger

    def _is_current(self, generation: int) -> bool:
        return self._session is not None and generation == self._generation

    async def _query_once(self, session: PaymentSession, source: str) -> StatusCheck:
        started = time.perf_counter()
        try:
            status = await self.gateway.query_status(session.order_id)
            check = StatusCheck(verdict=verify(status, session.attach_token), status=status)
        except Exception as e:
            self._log.warning("status_query_failed", source=source, error=str(e))
            check = StatusCheck(verdict=StatusVerdict.TRANSIENT_ERROR, error=e)

        metrics.record_status_query(
            source, check.verdict.value, time.perf_counter() - started
        )
        self._log.info("status_checked", source=source, verdict=check.verdict.value)
        return check

    async def _check_then_poll(self, generation: int) -> None:
        session = self._session
        if session is None:
            return

        check = await self._query_once(session, source="resume")
        if not self._is_current(generation):
            return
        self._check_task = None

        if check.verdict.is_conclusive:
            self._conclude(check)
        else:
            self._start_polling(generation)

    def _start_polling(self, generation: int) -> None:
        session = self._session
        if session is None or session.status is not SessionStatus.AWAITING_RESUME:
            return

        engine = self.engine_factory()
        try:
            engine.start(
                functools.partial(self.gateway.query_status, session.order_id),
                self.poll_interval,
                self.max_attempts,
                functools.partial(self._on_poll_result, generation),
                attach_token=session.attach_token,
                on_attempt=self._record_poll_attempt,
            )
        except PollingError:
            # Session stays AWAITING_RESUME; the next resume retries
            self._log.exception("polling_start_failed")
            return

        self._engine = engine
        session.advance(SessionStatus.POLLING)

    def _record_poll_attempt(self, attempt: int, check: StatusCheck, duration: float) -> None:
        metrics.record_status_query("poll", check.verdict.value, duration)

    def _on_poll_result(self, generation: int, outcome: PollOutcome) -> None:
        if not self._is_current(generation):
            return

        if outcome.kind is PollOutcomeKind.SUCCESS:
            self._finish(SessionStatus.SUCCEEDED, outcome.status, None)
        elif outcome.kind is PollOutcomeKind.FAILURE:
            self._finish(SessionStatus.FAILED, outcome.status, outcome.error)
        else:
            self._finish(SessionStatus.TIMED_OUT, outcome.status, outcome.error)

    def _conclude(self, check: StatusCheck) -> None:
        """Finish the session from a one-shot check with a conclusive verdict."""
        session = self._session
        if session is None:
            return

        if check.verdict is StatusVerdict.VERIFIED:
            self._finish(SessionStatus.SUCCEEDED, check.status, None)
        else:
            received = check.status.attach if check.status is not None else None
            self._finish(
                SessionStatus.FAILED,
                check.status,
                AttachMismatchError(session.attach_token, received),
            )

    def _finish(
        self,
        outcome: SessionStatus,
        payment: Optional[PaymentStatus],
        error: Optional[ReconciliationError],
    ) -> None:
        session = self._session
        if session is None:
            return

        session.advance(outcome)
        callbacks = session.callbacks
        result = SessionResult(
            order_id=session.order_id,
            outcome=outcome,
            payment=payment,
            error=error,
        )
        log = self._log

        if outcome is SessionStatus.SUCCEEDED:
            log.info("payment_succeeded")
        elif outcome is SessionStatus.FAILED:
            log.error("payment_verification_failed", error=str(error))
        else:
            log.warning("payment_status_timed_out", error=str(error))
        metrics.record_session_finished(outcome.value)

        # Tear down first so a callback may start the next session
        self.cleanup()

        if outcome is SessionStatus.SUCCEEDED:
            self._invoke(log, callbacks.on_success, result)
        elif outcome is SessionStatus.FAILED:
            self._notify(NotificationKind.ERROR, MISMATCH_MESSAGE, log)
            self._invoke(log, callbacks.on_failed, result)
        else:
            self._notify(NotificationKind.TIMEOUT, TIMEOUT_MESSAGE, log)
            self._invoke(log, callbacks.on_timeout)

    def _invoke(
        self, log: Any, callback: Optional[Callable[..., Any]], *args: Any
    ) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
        except Exception:
            log.exception("session_callback_failed")
            return
        if inspect.isawaitable(result):
            self._spawn(result, log)

    def _notify(self, kind: NotificationKind, message: str, log: Any = None) -> None:
        if log is None:
            log = self._log
        try:
            result = self.notifier.notify(kind, message)
        except Exception as e:
            log.warning("notification_failed", kind=kind.value, error=str(e))
            return
        if inspect.isawaitable(result):
            self._spawn(result, log)

    def _spawn(self, awaitable: Any, log: Any) -> None:
        """Run an awaitable in the background without waiting for it."""
        future = asyncio.ensure_future(awaitable)
        self._background.add(future)
        future.add_done_callback(functools.partial(self._background_done, log))

    def _background_done(self, log: Any, future: asyncio.Future) -> None:
        self._background.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            log.warning("background_task_failed", error=str(error))
