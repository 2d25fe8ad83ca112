"""
Bounded, serial, cancellable status polling.

One engine runs at most one loop at a time. Each attempt awaits the query
before the next one is scheduled, so requests never overlap. Cancellation
bumps a generation counter; every continuation checks it before acting,
which keeps a late response from reaching the result callback.
"""
import asyncio
import contextlib
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog

from recharge_reconciler.core.errors import (
    AttachMismatchError,
    ExhaustedRetries,
    PollingError,
    ReconciliationError,
)
from recharge_reconciler.core.verifier import StatusCheck, StatusVerdict, verify
from recharge_reconciler.integrations.schemas import PaymentStatus

logger = structlog.get_logger(__name__)

QueryFn = Callable[[], Awaitable[Any]]
AttemptHook = Callable[[int, StatusCheck, float], None]


class PollOutcomeKind(str, Enum):
    """Terminal signal emitted by the engine."""

    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class PollOutcome:
    """What the engine concluded and after how many attempts."""

    kind: PollOutcomeKind
    attempts: int
    status: Optional[PaymentStatus] = None
    error: Optional[ReconciliationError] = None


class PollingEngine:
    """
    Timer-driven retry loop over an async status query.

    Attempts are numbered from 1. INCOMPLETE and TRANSIENT_ERROR retry after
    `interval` until `max_attempts` is reached; VERIFIED and MISMATCHED end
    the loop at once.
    """

    def __init__(self) -> None:
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._attempts = 0
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def attempts(self) -> int:
        return self._attempts

    def start(
        self,
        query_fn: QueryFn,
        interval: float,
        max_attempts: int,
        on_result: Callable[[PollOutcome], None],
        *,
        attach_token: str,
        initial_delay: Optional[float] = None,
        on_attempt: Optional[AttemptHook] = None,
    ) -> None:
        """
        Launch the polling loop on the running event loop.

        Args:
            query_fn: Zero-argument coroutine function returning a status record
            interval: Seconds between attempts
            max_attempts: Attempt budget (>= 1)
            on_result: Called exactly once with the outcome, unless cancelled
            attach_token: Token the status record must echo back
            initial_delay: Seconds before attempt 1 (defaults to interval)
            on_attempt: Called after every attempt with its number, check and
                duration in seconds

        Raises:
            PollingError: If already running, misconfigured or no loop is running
        """
        if self._running:
            raise PollingError("Polling engine is already running")
        if max_attempts < 1:
            raise PollingError("max_attempts must be at least 1")
        if interval < 0:
            raise PollingError("interval must not be negative")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise PollingError("Polling requires a running event loop") from e

        self._generation += 1
        self._attempts = 0
        self._running = True
        delay = interval if initial_delay is None else initial_delay

        self._task = loop.create_task(
            self._run(
                self._generation,
                query_fn,
                interval,
                max_attempts,
                on_result,
                attach_token,
                delay,
                on_attempt,
            )
        )
        logger.info(
            "polling_started",
            interval=interval,
            max_attempts=max_attempts,
        )

    def cancel(self) -> None:
        """Stop polling. No callback fires afterwards. Safe to call repeatedly."""
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if self._running:
            logger.info("polling_cancelled", attempts=self._attempts)
        self._running = False

    async def wait(self) -> None:
        """Wait for the current loop to end, however it ends."""
        task = self._task
        if task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _is_live(self, generation: int) -> bool:
        return self._running and generation == self._generation

    async def _attempt(self, query_fn: QueryFn, attach_token: str) -> StatusCheck:
        try:
            status = await query_fn()
            if not isinstance(status, PaymentStatus):
                status = PaymentStatus.model_validate(status)
            return StatusCheck(verdict=verify(status, attach_token), status=status)
        except Exception as e:
            # Network, server and decoding failures all count as transient
            return StatusCheck(verdict=StatusVerdict.TRANSIENT_ERROR, error=e)

    async def _run(
        self,
        generation: int,
        query_fn: QueryFn,
        interval: float,
        max_attempts: int,
        on_result: Callable[[PollOutcome], None],
        attach_token: str,
        delay: float,
        on_attempt: Optional[AttemptHook],
    ) -> None:
        last_error: Optional[BaseException] = None

        while True:
            if delay > 0:
                await asyncio.sleep(delay)
            if not self._is_live(generation):
                return

            self._attempts += 1
            attempt = self._attempts
            started = time.perf_counter()
            check = await self._attempt(query_fn, attach_token)
            duration = time.perf_counter() - started

            if not self._is_live(generation):
                logger.debug("poll_result_discarded", attempt=attempt)
                return

            if on_attempt is not None:
                on_attempt(attempt, check, duration)

            if check.verdict is StatusVerdict.TRANSIENT_ERROR:
                last_error = check.error
                logger.warning(
                    "poll_attempt_failed",
                    attempt=attempt,
                    error=str(check.error),
                )
            else:
                logger.debug("poll_attempt", attempt=attempt, verdict=check.verdict.value)

            if check.verdict is StatusVerdict.VERIFIED:
                self._finish(
                    generation,
                    on_result,
                    PollOutcome(PollOutcomeKind.SUCCESS, attempt, status=check.status),
                )
                return

            if check.verdict is StatusVerdict.MISMATCHED:
                received = check.status.attach if check.status is not None else None
                self._finish(
                    generation,
                    on_result,
                    PollOutcome(
                        PollOutcomeKind.FAILURE,
                        attempt,
                        status=check.status,
                        error=AttachMismatchError(attach_token, received),
                    ),
                )
                return

            if attempt >= max_attempts:
                self._finish(
                    generation,
                    on_result,
                    PollOutcome(
                        PollOutcomeKind.TIMEOUT,
                        attempt,
                        status=check.status,
                        error=ExhaustedRetries(attempt, last_error),
                    ),
                )
                return

            delay = interval

    def _finish(
        self,
        generation: int,
        on_result: Callable[[PollOutcome], None],
        outcome: PollOutcome,
    ) -> None:
        if not self._is_live(generation):
            return
        self._running = False
        self._task = None
        logger.info(
            "polling_finished",
            outcome=outcome.kind.value,
            attempts=outcome.attempts,
        )
        on_result(outcome)
