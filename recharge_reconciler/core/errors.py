"""
Exception hierarchy for payment reconciliation.

Gateway failures are split by when they happen:
- CreateOrderError before a session exists (propagated to the caller)
- TransientQueryError while checking status (retried within the budget)

Terminal outcomes carry their own error type so a mismatch is never
confused with a slow gateway.
"""
from typing import Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    pass


class GatewayError(ReconciliationError):
    """Base exception for payment gateway errors."""

    pass


class CreateOrderError(GatewayError):
    """Raised when the gateway could not create an order."""

    pass


class TransientQueryError(GatewayError):
    """Raised when a status query fails at the network or server level."""

    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id


class AttachMismatchError(ReconciliationError):
    """
    The gateway echoed an attach token that does not belong to this session.

    Indicates cross-order mixing or a spoofed response. Never retried.
    """

    def __init__(self, expected: str, received: Optional[str]):
        super().__init__(
            f"Attach token mismatch: expected {expected!r}, received {received!r}"
        )
        self.expected = expected
        self.received = received


class ExhaustedRetries(ReconciliationError):
    """Raised when the attempt budget ran out without a conclusive answer."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(f"No conclusive payment status after {attempts} attempts")
        self.attempts = attempts
        self.last_error = last_error


class SessionError(ReconciliationError):
    """Raised when a session cannot be started with the given parameters."""

    pass


class InvalidTransitionError(SessionError):
    """Raised when a session status change is not allowed."""

    pass


class PollingError(ReconciliationError):
    """Raised when the polling engine is misused."""

    pass
