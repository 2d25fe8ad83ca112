"""Payment reconciliation for redirect-based recharge flows."""
from .core.checkout import RechargeHandle, begin_recharge
from .core.controller import ReconciliationController, SessionResult
from .core.errors import (
    AttachMismatchError,
    CreateOrderError,
    ExhaustedRetries,
    ReconciliationError,
    SessionError,
    TransientQueryError,
)
from .core.polling import PollingEngine, PollOutcome, PollOutcomeKind
from .core.resume import (
    ForegroundVisibilitySource,
    HostResumeSource,
    InProcessSurface,
    ResumeSignalSource,
    resume_source_for_runtime,
)
from .core.session import PaymentSession, SessionCallbacks, SessionStatus
from .core.verifier import StatusCheck, StatusVerdict, verify
from .integrations.gateway_client import GatewayClient, PaymentGateway
from .integrations.notifications import NotificationKind, NotificationSink

__version__ = "0.1.0"

__all__ = [
    "AttachMismatchError",
    "CreateOrderError",
    "ExhaustedRetries",
    "ForegroundVisibilitySource",
    "GatewayClient",
    "HostResumeSource",
    "InProcessSurface",
    "NotificationKind",
    "NotificationSink",
    "PaymentGateway",
    "PaymentSession",
    "PollOutcome",
    "PollOutcomeKind",
    "PollingEngine",
    "RechargeHandle",
    "ReconciliationController",
    "ReconciliationError",
    "ResumeSignalSource",
    "SessionCallbacks",
    "SessionError",
    "SessionResult",
    "SessionStatus",
    "StatusCheck",
    "StatusVerdict",
    "TransientQueryError",
    "begin_recharge",
    "resume_source_for_runtime",
    "verify",
]
