"""Shared fixtures: a throwaway SQLite database per test, the FastAPI app and an HTTP client."""

import hashlib
import hmac
import json
import os
import time
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import MagicMock

# Settings are cached on first use, so the environment must be ready before any import
os.environ["ENVIRONMENT"] = "test"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_billing"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_billing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SCHEDULER_DISTRIBUTED_LOCK"] = "false"

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from billing_engine.main import create_application  # noqa: E402
from billing_engine.modules.notifications.domain.services.notification_service import NotificationService  # noqa: E402
from billing_engine.modules.payments.presentation.dependencies import get_notification_service  # noqa: E402
from billing_engine.modules.subscriptions.domain.models.plan import BillingCycle, Plan  # noqa: E402
from billing_engine.modules.subscriptions.domain.models.user import User  # noqa: E402
from billing_engine.modules.subscriptions.infrastructure.database.plan_repository_impl import (  # noqa: E402
    PlanRepositoryImpl,
)
from billing_engine.modules.subscriptions.infrastructure.database.user_repository_impl import (  # noqa: E402
    UserRepositoryImpl,
)
from billing_engine.shared.core.circuit_breaker import (  # noqa: E402
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    ResilientGateway,
)
from billing_engine.shared.infrastructure.database.connection import db_manager  # noqa: E402
from billing_engine.shared.infrastructure.database.session import database_session, initialize_sessions  # noqa: E402

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def sign_webhook(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Stripe-Signature header value for ``payload``."""
    timestamp = timestamp if timestamp is not None else int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def webhook_payload(event_id: str, event_type: str, obj: dict) -> str:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    })


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def database(tmp_path) -> AsyncGenerator:
    """Fresh file-backed SQLite database; concurrent sessions need a real file."""
    db_manager.database_url = f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}"
    await db_manager.initialize()
    await db_manager.create_all()
    initialize_sessions()
    yield db_manager
    await db_manager.close()


@pytest.fixture
def breaker_registry() -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(CircuitBreakerConfig(
        timeout=2.0,
        error_threshold_percentage=50.0,
        reset_timeout=30.0,
        rolling_window=60.0,
        volume_threshold=2,
    ))


@pytest.fixture
def gateway(breaker_registry) -> ResilientGateway:
    return ResilientGateway(breaker_registry)


@pytest.fixture
def notification_task() -> MagicMock:
    return MagicMock()


@pytest.fixture
def notification_service(notification_task) -> NotificationService:
    return NotificationService(task=notification_task)


@pytest.fixture
def app(database, gateway, notification_service):
    application = create_application()
    # ASGITransport does not run the lifespan
    application.state.resilient_gateway = gateway
    application.dependency_overrides[get_notification_service] = lambda: notification_service
    return application


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
async def user(database) -> User:
    async with database_session() as db:
        return await UserRepositoryImpl(db).create(User(
            email="ada@example.com",
            name="Ada Lovelace",
            stripe_customer_id="cus_test_ada",
        ))


@pytest.fixture
async def other_user(database) -> User:
    async with database_session() as db:
        return await UserRepositoryImpl(db).create(User(email="grace@example.com", name="Grace Hopper"))


@pytest.fixture
async def monthly_plan(database) -> Plan:
    async with database_session() as db:
        return await PlanRepositoryImpl(db).create(Plan(
            name="Basic Monthly",
            price=Decimal("9.99"),
            billing_cycle=BillingCycle.MONTHLY.value,
        ))


@pytest.fixture
async def yearly_plan(database) -> Plan:
    async with database_session() as db:
        return await PlanRepositoryImpl(db).create(Plan(
            name="Pro Yearly",
            price=Decimal("99.00"),
            billing_cycle=BillingCycle.YEARLY.value,
        ))


@pytest.fixture
async def trial_plan(database) -> Plan:
    async with database_session() as db:
        return await PlanRepositoryImpl(db).create(Plan(
            name="Starter Trial",
            price=Decimal("4.99"),
            billing_cycle=BillingCycle.MONTHLY.value,
            trial_period_days=14,
        ))


@pytest.fixture
def signed_webhook():
    """Build (payload, Stripe-Signature) for an event."""
    def build(event_id: str, event_type: str, obj: dict, **sign_kwargs):
        payload = webhook_payload(event_id, event_type, obj)
        return payload, sign_webhook(payload, **sign_kwargs)
    return build
