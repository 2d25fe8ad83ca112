"""
Payment session record and its status state machine.

A session's identity (order id, attach token, amount) is fixed at creation.
Only the owning controller moves the status, and only along the edges in
ALLOWED_TRANSITIONS.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from recharge_reconciler.core.errors import InvalidTransitionError, SessionError


class SessionStatus(str, Enum):
    """Lifecycle status of a payment session."""

    IDLE = "idle"
    AWAITING_RESUME = "awaiting_resume"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[SessionStatus] = frozenset(
    {SessionStatus.SUCCEEDED, SessionStatus.FAILED, SessionStatus.TIMED_OUT}
)

# Every live status may drop straight back to IDLE through an external cleanup.
ALLOWED_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.IDLE: frozenset({SessionStatus.AWAITING_RESUME}),
    SessionStatus.AWAITING_RESUME: frozenset(
        {
            SessionStatus.POLLING,
            SessionStatus.SUCCEEDED,
            SessionStatus.FAILED,
            SessionStatus.IDLE,
        }
    ),
    SessionStatus.POLLING: frozenset(
        {
            SessionStatus.SUCCEEDED,
            SessionStatus.FAILED,
            SessionStatus.TIMED_OUT,
            SessionStatus.IDLE,
        }
    ),
    SessionStatus.SUCCEEDED: frozenset({SessionStatus.IDLE}),
    SessionStatus.FAILED: frozenset({SessionStatus.IDLE}),
    SessionStatus.TIMED_OUT: frozenset({SessionStatus.IDLE}),
}


def validate_transition(current: SessionStatus, new: SessionStatus) -> None:
    """Raise when a transition is not allowed by the state machine."""
    if new not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(
            f"Invalid transition: {current.value} -> {new.value}"
        )


@dataclass(frozen=True)
class SessionCallbacks:
    """Outcome callbacks for one session. Each fires at most once."""

    on_success: Optional[Callable[[Any], None]] = None
    on_failed: Optional[Callable[[Any], None]] = None
    on_timeout: Optional[Callable[[], None]] = None


class PaymentSession:
    """
    One reconciliation attempt for a single gateway order.

    Identity attributes are read-only; assigning them raises AttributeError.
    """

    __slots__ = (
        "_order_id",
        "_attach_token",
        "_amount",
        "_callbacks",
        "_status",
        "_outcome",
        "_history",
    )

    def __init__(
        self,
        order_id: str,
        attach_token: str,
        amount: int,
        callbacks: Optional[SessionCallbacks] = None,
    ):
        """
        Create a session in IDLE.

        Args:
            order_id: Gateway order identifier
            attach_token: Locally generated nonce echoed back by the gateway
            amount: Amount in minor currency units (must be positive)
            callbacks: Outcome callbacks

        Raises:
            SessionError: If any identity field is invalid
        """
        self._validate(order_id, attach_token, amount)
        self._order_id = order_id
        self._attach_token = attach_token
        self._amount = amount
        self._callbacks = callbacks or SessionCallbacks()
        self._status = SessionStatus.IDLE
        self._outcome: Optional[SessionStatus] = None
        self._history: List[SessionStatus] = [SessionStatus.IDLE]

    @staticmethod
    def _validate(order_id: str, attach_token: str, amount: int) -> None:
        if not isinstance(order_id, str) or not order_id:
            raise SessionError("order_id must be a non-empty string")
        if not isinstance(attach_token, str) or not attach_token:
            raise SessionError("attach_token must be a non-empty string")
        # bool is an int subclass
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise SessionError("amount must be an integer in minor currency units")
        if amount <= 0:
            raise SessionError("amount must be positive")

    @property
    def order_id(self) -> str:
        return self._order_id

    @property
    def attach_token(self) -> str:
        return self._attach_token

    @property
    def amount(self) -> int:
        return self._amount

    @property
    def callbacks(self) -> SessionCallbacks:
        return self._callbacks

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def outcome(self) -> Optional[SessionStatus]:
        """Terminal status this session reached, if any."""
        return self._outcome

    @property
    def history(self) -> List[SessionStatus]:
        return list(self._history)

    @property
    def is_active(self) -> bool:
        return self._status in (SessionStatus.AWAITING_RESUME, SessionStatus.POLLING)

    def advance(self, new_status: SessionStatus) -> None:
        """
        Move to a new status.

        Args:
            new_status: Target status

        Raises:
            InvalidTransitionError: If the edge is not in ALLOWED_TRANSITIONS
        """
        validate_transition(self._status, new_status)
        self._status = new_status
        self._history.append(new_status)
        if new_status.is_terminal:
            self._outcome = new_status

    def __repr__(self) -> str:
        return (
            f"PaymentSession(order_id={self._order_id!r}, amount={self._amount}, "
            f"status={self._status.value})"
        )
