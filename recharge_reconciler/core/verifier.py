"""
Classification of gateway status responses.

Completeness is checked first, identity second. A record with every
required field filled in but someone else's attach token is a mismatch,
never a success.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Tuple, Union

from recharge_reconciler.integrations.schemas import PaymentStatus

REQUIRED_FIELDS: Tuple[str, ...] = (
    "amount",
    "description",
    "create_time",
    "pay_time",
    "attach",
)


class StatusVerdict(str, Enum):
    """Outcome of checking one status query."""

    INCOMPLETE = "incomplete"  # payment still pending
    VERIFIED = "verified"
    MISMATCHED = "mismatched"
    TRANSIENT_ERROR = "transient_error"  # no usable response

    @property
    def is_conclusive(self) -> bool:
        return self in (StatusVerdict.VERIFIED, StatusVerdict.MISMATCHED)


@dataclass(frozen=True)
class StatusCheck:
    """Result of one status query: the verdict plus what it was based on."""

    verdict: StatusVerdict
    status: Optional[PaymentStatus] = None
    error: Optional[BaseException] = None


def _as_status(response: Union[PaymentStatus, Mapping[str, Any]]) -> PaymentStatus:
    if isinstance(response, PaymentStatus):
        return response
    return PaymentStatus.model_validate(dict(response))


def missing_fields(response: Union[PaymentStatus, Mapping[str, Any]]) -> Tuple[str, ...]:
    """Return the required fields that are absent or empty."""
    status = _as_status(response)
    return tuple(name for name in REQUIRED_FIELDS if not getattr(status, name))


def verify(
    response: Union[PaymentStatus, Mapping[str, Any]], expected_attach_token: str
) -> StatusVerdict:
    """
    Classify a gateway status response.

    Args:
        response: Status record from the gateway (model or raw mapping)
        expected_attach_token: Token bound to the session being checked

    Returns:
        StatusVerdict: INCOMPLETE, VERIFIED or MISMATCHED
    """
    status = _as_status(response)
    if missing_fields(status):
        return StatusVerdict.INCOMPLETE
    if status.attach == expected_attach_token:
        return StatusVerdict.VERIFIED
    return StatusVerdict.MISMATCHED
