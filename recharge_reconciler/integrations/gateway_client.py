"""
Recharge API client.

Implements:
- Order creation with retry on connection failures
- Payment status queries (one request, no retry; callers own the retry budget)
- Attach token generation

Every failure is mapped onto the reconciliation error taxonomy:
CreateOrderError for order creation, TransientQueryError for status queries.
"""
import secrets
import string
import time
from typing import Any, Dict, Optional, Protocol

import httpx
import structlog
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from recharge_reconciler.config import Settings, get_settings
from recharge_reconciler.core.errors import CreateOrderError, TransientQueryError
from recharge_reconciler.integrations.schemas import (
    CreatedOrder,
    CreateOrderRequest,
    H5Redirect,
    MiniAppRedirect,
    PaymentStatus,
)
from recharge_reconciler.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

CREATE_ORDER_PATH = "/users/recharge"
QUERY_STATUS_PATH = "/users/recharge/status"

_TOKEN_ALPHABET = string.digits + string.ascii_lowercase


class PaymentGateway(Protocol):
    """What the reconciliation flow needs from a payment gateway."""

    async def create_order(self, request: CreateOrderRequest) -> CreatedOrder:
        ...

    async def query_status(self, order_id: str) -> PaymentStatus:
        ...


def generate_attach_token() -> str:
    """
    Generate a fresh attach token.

    Returns:
        str: "<epoch millis>_<8 base36 chars>"
    """
    suffix = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(8))
    return f"{int(time.time() * 1000)}_{suffix}"


def _unwrap(payload: Any) -> Any:
    """Strip a {"code": ..., "data": {...}} envelope if the API sent one."""
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload


class GatewayClient:
    """
    Async client for the recharge API.

    Use as an async context manager, or call aclose() when done.
    """

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        timeout: float = 10.0,
        create_order_max_attempts: int = 3,
        create_order_wait: Optional[wait_base] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize gateway client.

        Args:
            base_url: API base URL
            api_token: Optional bearer token
            timeout: Per-request timeout in seconds
            create_order_max_attempts: Attempts for order creation on connection errors
            create_order_wait: Wait strategy between order creation attempts
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        headers = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"

        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self.create_order_max_attempts = create_order_max_attempts
        self.create_order_wait = create_order_wait or wait_exponential(
            multiplier=0.5, min=0.5, max=4
        )

        logger.info("gateway_client_initialized", base_url=base_url)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "GatewayClient":
        """Build a client from application settings."""
        settings = settings or get_settings()
        return cls(
            base_url=settings.gateway_base_url,
            api_token=settings.gateway_api_token,
            timeout=settings.gateway_timeout_seconds,
            create_order_max_attempts=settings.gateway_create_order_max_attempts,
            transport=transport,
        )

    async def __aenter__(self) -> "GatewayClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    generate_attach_token = staticmethod(generate_attach_token)

    async def create_order(self, request: CreateOrderRequest) -> CreatedOrder:
        """
        Create a recharge order.

        Only connection failures are retried: the request never reached the
        server, so no duplicate order can result.

        Args:
            request: Order parameters

        Returns:
            CreatedOrder: Order id and redirect target

        Raises:
            CreateOrderError: If the order could not be created
        """
        logger.info(
            "creating_order",
            amount=request.amount,
            pay_entrypoint=request.pay_entrypoint,
            pay_platform=request.pay_platform,
        )

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(httpx.ConnectError),
                stop=stop_after_attempt(self.create_order_max_attempts),
                wait=self.create_order_wait,
                reraise=True,
            ):
                with attempt:
                    response = await self._client.post(
                        CREATE_ORDER_PATH,
                        json=request.model_dump(by_alias=True),
                    )
            response.raise_for_status()
            payload = _unwrap(response.json())
        except httpx.HTTPStatusError as e:
            metrics.record_gateway_request("create_order", str(e.response.status_code))
            logger.error(
                "create_order_rejected",
                status_code=e.response.status_code,
                error=str(e),
            )
            raise CreateOrderError(
                f"Order creation rejected with status {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            metrics.record_gateway_request("create_order", "error")
            logger.error("create_order_failed", error=str(e))
            raise CreateOrderError(f"Order creation failed: {e}") from e

        order = self._parse_created_order(payload, request)
        metrics.record_gateway_request("create_order", "ok")
        logger.info("order_created", order_id=order.order_id)
        return order

    @staticmethod
    def _parse_created_order(payload: Any, request: CreateOrderRequest) -> CreatedOrder:
        if not isinstance(payload, dict) or not payload.get("orderId"):
            raise CreateOrderError("Order creation response has no orderId")

        try:
            if request.pay_entrypoint == "H5Pay":
                h5: Dict[str, Any] = payload.get("h5") or {}
                redirect: Any = H5Redirect(url=h5.get("url") or "")
            else:
                miniapp: Dict[str, Any] = payload.get("miniapp") or {}
                redirect = MiniAppRedirect(
                    appid=miniapp.get("appid") or "",
                    path=miniapp.get("path") or "",
                )
        except ValidationError as e:
            raise CreateOrderError(
                f"Order creation response has no usable {request.pay_entrypoint} redirect"
            ) from e

        return CreatedOrder(order_id=payload["orderId"], redirect=redirect)

    async def query_status(self, order_id: str) -> PaymentStatus:
        """
        Query the payment status of an order.

        Args:
            order_id: Gateway order id

        Returns:
            PaymentStatus: Status record (fields may be missing while unpaid)

        Raises:
            TransientQueryError: On any transport, HTTP or decoding failure
        """
        try:
            response = await self._client.get(
                QUERY_STATUS_PATH, params={"orderId": order_id}
            )
            response.raise_for_status()
            status = PaymentStatus.model_validate(_unwrap(response.json()))
        except (httpx.HTTPError, ValueError) as e:
            # pydantic's ValidationError is a ValueError
            metrics.record_gateway_request("query_status", "error")
            logger.warning("query_status_failed", order_id=order_id, error=str(e))
            raise TransientQueryError(
                f"Status query failed for order {order_id}: {e}", order_id=order_id
            ) from e

        metrics.record_gateway_request("query_status", "ok")
        return status
