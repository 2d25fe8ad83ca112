"""
Tests for the recharge API client using httpx.MockTransport.
"""
import json
import re
from typing import List

import httpx
import pytest
from tenacity import wait_none

from recharge_reconciler.core.errors import CreateOrderError, TransientQueryError
from recharge_reconciler.integrations.gateway_client import (
    CREATE_ORDER_PATH,
    QUERY_STATUS_PATH,
    GatewayClient,
    generate_attach_token,
)
from recharge_reconciler.integrations.schemas import (
    CreateOrderRequest,
    H5Redirect,
    MiniAppRedirect,
)

from conftest import paid_status

BASE_URL = "https://api.example.com"


def make_client(handler, **kwargs) -> GatewayClient:
    return GatewayClient(
        BASE_URL,
        api_token="secret",
        create_order_wait=wait_none(),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def h5_request(amount: int = 1000) -> CreateOrderRequest:
    return CreateOrderRequest(
        pay_entrypoint="H5Pay", pay_platform="wechat", attach="TOK1", amount=amount
    )


class TestCreateOrder:
    """Test suite for GatewayClient.create_order()."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_h5_order(self) -> None:
        """Posts camelCase params and returns the H5 redirect."""
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, json={"orderId": "ORD1", "h5": {"url": "https://pay.example.com/x"}}
            )

        async with make_client(handler) as client:
            order = await client.create_order(h5_request())

        assert order.order_id == "ORD1"
        assert order.redirect == H5Redirect(url="https://pay.example.com/x")
        assert seen[0].method == "POST"
        assert seen[0].url.path == CREATE_ORDER_PATH
        assert seen[0].headers["Authorization"] == "Bearer secret"
        assert json.loads(seen[0].content) == {
            "payEntrypoint": "H5Pay",
            "payPlatform": "wechat",
            "attach": "TOK1",
            "amount": 1000,
        }

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_miniapp_order_in_envelope(self) -> None:
        """A {code, data} envelope is unwrapped."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "code": 0,
                    "data": {
                        "orderId": "ORD2",
                        "miniapp": {"appid": "wx123", "path": "pages/pay?o=ORD2"},
                    },
                },
            )

        request = CreateOrderRequest(
            pay_entrypoint="MiniAppPay", pay_platform="wechat", attach="TOK1", amount=1000
        )
        async with make_client(handler) as client:
            order = await client.create_order(request)

        assert order.redirect == MiniAppRedirect(appid="wx123", path="pages/pay?o=ORD2")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_redirect_is_error(self) -> None:
        """An order without a usable redirect cannot be paid."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"orderId": "ORD1", "h5": {}})

        async with make_client(handler) as client:
            with pytest.raises(CreateOrderError, match="H5Pay redirect"):
                await client.create_order(h5_request())

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        """A rejected request surfaces as CreateOrderError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"message": "bad amount"})

        async with make_client(handler) as client:
            with pytest.raises(CreateOrderError, match="400"):
                await client.create_order(h5_request())

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_connect_errors_retried(self) -> None:
        """Connection failures are retried up to the attempt limit."""
        attempts: List[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            if len(attempts) < 3:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(
                200, json={"orderId": "ORD1", "h5": {"url": "https://pay.example.com/x"}}
            )

        async with make_client(handler, create_order_max_attempts=3) as client:
            order = await client.create_order(h5_request())

        assert order.order_id == "ORD1"
        assert len(attempts) == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_connect_errors_exhausted(self) -> None:
        """After the last attempt the failure propagates as CreateOrderError."""
        attempts: List[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler, create_order_max_attempts=2) as client:
            with pytest.raises(CreateOrderError):
                await client.create_order(h5_request())

        assert len(attempts) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_read_timeout_not_retried(self) -> None:
        """A request that may have reached the server is not repeated."""
        attempts: List[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            raise httpx.ReadTimeout("slow", request=request)

        async with make_client(handler) as client:
            with pytest.raises(CreateOrderError):
                await client.create_order(h5_request())

        assert len(attempts) == 1


class TestQueryStatus:
    """Test suite for GatewayClient.query_status()."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_paid_status(self) -> None:
        """Parses the camelCase status record."""
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=paid_status())

        async with make_client(handler) as client:
            status = await client.query_status("ORD1")

        assert status.attach == "TOK1"
        assert status.pay_time == "t1"
        assert seen[0].url.path == QUERY_STATUS_PATH
        assert seen[0].url.params["orderId"] == "ORD1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unpaid_status_has_gaps(self) -> None:
        """Missing fields come back as None."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"orderId": "ORD1", "amount": 1000})

        async with make_client(handler) as client:
            status = await client.query_status("ORD1")

        assert status.pay_time is None
        assert status.attach is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(503, text="unavailable"),
            httpx.Response(200, text="<html>"),
            httpx.Response(200, json={"amount": "lots"}),
        ],
    )
    async def test_failures_are_transient(self, response: httpx.Response) -> None:
        """Server errors and undecodable bodies raise TransientQueryError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return response

        async with make_client(handler) as client:
            with pytest.raises(TransientQueryError) as exc_info:
                await client.query_status("ORD1")

        assert exc_info.value.order_id == "ORD1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_network_error_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(TransientQueryError):
                await client.query_status("ORD1")


class TestAttachToken:
    """Test suite for generate_attach_token()."""

    @pytest.mark.unit
    def test_format(self) -> None:
        assert re.fullmatch(r"\d{13}_[0-9a-z]{8}", generate_attach_token())

    @pytest.mark.unit
    def test_tokens_are_unique(self) -> None:
        tokens = {generate_attach_token() for _ in range(200)}

        assert len(tokens) == 200

    @pytest.mark.unit
    def test_available_on_client(self) -> None:
        assert GatewayClient.generate_attach_token is generate_attach_token


class TestFromSettings:
    """Test suite for GatewayClient.from_settings()."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_uses_settings(self, test_settings) -> None:
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=paid_status())

        client = GatewayClient.from_settings(test_settings, transport=httpx.MockTransport(handler))
        try:
            await client.query_status("ORD1")
        finally:
            await client.aclose()

        assert str(seen[0].url).startswith("https://api.example.com/users/recharge/status")
        assert seen[0].headers["Authorization"] == "Bearer test-token"
        assert client.create_order_max_attempts == test_settings.gateway_create_order_max_attempts
