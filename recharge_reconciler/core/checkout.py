"""
Recharge flow entry point.

Glues order creation to session start. The caller performs the redirect
itself with the returned target.
"""
from dataclasses import dataclass
from typing import Optional

import structlog

from recharge_reconciler.core.controller import ReconciliationController
from recharge_reconciler.core.session import SessionCallbacks
from recharge_reconciler.integrations.gateway_client import (
    PaymentGateway,
    generate_attach_token,
)
from recharge_reconciler.integrations.schemas import (
    CreateOrderRequest,
    PayEntrypoint,
    PayPlatform,
    RedirectTarget,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RechargeHandle:
    """Everything the caller needs to send the payer off and track the order."""

    order_id: str
    attach_token: str
    amount: int
    redirect: RedirectTarget


async def begin_recharge(
    gateway: PaymentGateway,
    controller: ReconciliationController,
    amount: int,
    callbacks: Optional[SessionCallbacks] = None,
    pay_entrypoint: PayEntrypoint = "H5Pay",
    pay_platform: PayPlatform = "wechat",
) -> RechargeHandle:
    """
    Create a recharge order and start reconciling it.

    Args:
        gateway: Payment gateway
        controller: Controller that will own the session
        amount: Amount in minor currency units
        callbacks: Outcome callbacks
        pay_entrypoint: MiniAppPay or H5Pay
        pay_platform: wechat or alipay

    Returns:
        RechargeHandle: Order id, attach token and redirect target

    Raises:
        CreateOrderError: If the gateway could not create the order (no session is started)
    """
    attach_token = generate_attach_token()
    request = CreateOrderRequest(
        pay_entrypoint=pay_entrypoint,
        pay_platform=pay_platform,
        attach=attach_token,
        amount=amount,
    )

    order = await gateway.create_order(request)
    controller.start_session(order.order_id, attach_token, amount, callbacks)

    logger.info(
        "recharge_started",
        order_id=order.order_id,
        amount=amount,
        pay_entrypoint=pay_entrypoint,
    )
    return RechargeHandle(
        order_id=order.order_id,
        attach_token=attach_token,
        amount=amount,
        redirect=order.redirect,
    )
