"""
Pytest configuration and fixtures.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import pytest

from recharge_reconciler.config import Runtime, Settings
from recharge_reconciler.core.controller import ReconciliationController
from recharge_reconciler.core.polling import PollingEngine
from recharge_reconciler.core.resume import ForegroundVisibilitySource, InProcessSurface
from recharge_reconciler.core.session import SessionCallbacks
from recharge_reconciler.integrations.notifications import RecordingNotificationSink
from recharge_reconciler.integrations.schemas import (
    CreatedOrder,
    CreateOrderRequest,
    H5Redirect,
    PaymentStatus,
)

ORDER_ID = "ORD1"
ATTACH_TOKEN = "TOK1"
AMOUNT = 1000


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "race: concurrency and re-entrancy tests")
    config.addinivalue_line("markers", "integration: tests spanning several components")


def paid_status(attach: str = ATTACH_TOKEN, **overrides: Any) -> Dict[str, Any]:
    """Gateway payload for a paid order."""
    payload = {
        "orderId": ORDER_ID,
        "attach": attach,
        "amount": AMOUNT,
        "description": "x",
        "createTime": "t0",
        "payTime": "t1",
    }
    payload.update(overrides)
    return payload


def pending_status() -> Dict[str, Any]:
    """Gateway payload for an order that is not paid yet."""
    return paid_status(payTime=None)


class FakeGateway:
    """
    Scripted payment gateway.

    Each query consumes the next scripted item; the last one repeats. An
    exception instance is raised instead of returned. While `hold` is
    cleared, queries block until it is set.
    """

    def __init__(self, *responses: Union[Dict[str, Any], BaseException]):
        self.responses: List[Union[Dict[str, Any], BaseException]] = list(responses) or [
            pending_status()
        ]
        self.calls: List[str] = []
        self.call_times: List[float] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.hold = asyncio.Event()
        self.hold.set()
        self.created: List[CreateOrderRequest] = []
        self.create_error: Optional[BaseException] = None

    async def query_status(self, order_id: str) -> PaymentStatus:
        self.calls.append(order_id)
        self.call_times.append(asyncio.get_running_loop().time())
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self.hold.wait()
            item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
            if isinstance(item, BaseException):
                raise item
            return PaymentStatus.model_validate(item)
        finally:
            self.in_flight -= 1

    async def create_order(self, request: CreateOrderRequest) -> CreatedOrder:
        self.created.append(request)
        if self.create_error is not None:
            raise self.create_error
        return CreatedOrder(
            order_id=ORDER_ID, redirect=H5Redirect(url="https://pay.example.com/h5/ORD1")
        )


class CallbackRecorder:
    """Collects session callback invocations."""

    def __init__(self) -> None:
        self.successes: List[Any] = []
        self.failures: List[Any] = []
        self.timeouts = 0

    def on_timeout(self) -> None:
        self.timeouts += 1

    @property
    def total(self) -> int:
        return len(self.successes) + len(self.failures) + self.timeouts

    def callbacks(self) -> SessionCallbacks:
        return SessionCallbacks(
            on_success=self.successes.append,
            on_failed=self.failures.append,
            on_timeout=self.on_timeout,
        )


class CountingEngineFactory:
    """Engine factory that remembers every engine it built."""

    def __init__(self) -> None:
        self.engines: List[PollingEngine] = []

    def __call__(self) -> PollingEngine:
        engine = PollingEngine()
        self.engines.append(engine)
        return engine

    @property
    def running(self) -> int:
        return sum(1 for engine in self.engines if engine.is_running)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until predicate holds or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def eventually() -> Callable[..., Awaitable[None]]:
    """Await a condition with a timeout."""
    return wait_until


@pytest.fixture
def gateway() -> FakeGateway:
    """Gateway answering 'pending' by default."""
    return FakeGateway()


@pytest.fixture
def recorder() -> CallbackRecorder:
    """Session callback recorder."""
    return CallbackRecorder()


@pytest.fixture
def surface() -> InProcessSurface:
    """Host surface of a browser tab that is currently hidden."""
    return InProcessSurface(visible=False)


@pytest.fixture
def notifier() -> RecordingNotificationSink:
    """In-memory notification sink."""
    return RecordingNotificationSink()


@pytest.fixture
def engine_factory() -> CountingEngineFactory:
    """Polling engine factory that tracks its engines."""
    return CountingEngineFactory()


@pytest.fixture
def controller(
    gateway: FakeGateway,
    surface: InProcessSurface,
    notifier: RecordingNotificationSink,
    engine_factory: CountingEngineFactory,
) -> ReconciliationController:
    """Controller wired to fakes with a short polling interval."""
    return ReconciliationController(
        gateway=gateway,
        resume_source=ForegroundVisibilitySource(surface),
        notifier=notifier,
        poll_interval=0.01,
        max_attempts=3,
        engine_factory=engine_factory,
    )


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        gateway_base_url="https://api.example.com/",
        gateway_api_token="test-token",
        runtime=Runtime.WEB,
        poll_interval_seconds=0.01,
        poll_max_attempts=3,
        app_name="recharge-reconciler-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
    )
