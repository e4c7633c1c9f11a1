import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("CELERY_BROKER_URL", "redis://localhost:6379/1")
os.environ.setdefault("CELERY_RESULT_BACKEND", "redis://localhost:6379/2")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-0123456789")
os.environ.setdefault("MERCADOPAGO_ACCESS_TOKEN", "TEST-access-token")

from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from wardrobe_billing.db.base import Base  # noqa: E402
import wardrobe_billing.models  # noqa: E402,F401
from wardrobe_billing.services.billing.config import BillingConfig  # noqa: E402
from wardrobe_billing.services.billing.errors import ExternalServiceError  # noqa: E402

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeMercadoPago:
    """In-memory stand-in for MercadoPagoClient; records every call."""

    def __init__(self):
        self.preapprovals: dict[str, dict] = {}
        self.authorized_payments: dict[str, dict] = {}
        self.fail = False
        self.calls: list[tuple[str, str]] = []

    def add_preapproval(
        self,
        preapproval_id: str,
        external_reference: str,
        status: str = "authorized",
        amount=2999,
        currency: str | None = "ARS",
        next_payment_date: str | None = "auto",
    ) -> dict:
        if next_payment_date == "auto":
            next_payment_date = (datetime.now(timezone.utc) + timedelta(days=30)).isoformat()
        recurring = {"transaction_amount": amount}
        if currency is not None:
            recurring["currency_id"] = currency
        payload = {
            "id": preapproval_id,
            "external_reference": external_reference,
            "status": status,
            "auto_recurring": recurring,
            "next_payment_date": next_payment_date,
        }
        self.preapprovals[preapproval_id] = payload
        return payload

    def _check(self, name: str, key: str) -> None:
        self.calls.append((name, key))
        if self.fail:
            raise ExternalServiceError(detail={"reason": "timeout"})

    def get_preapproval(self, preapproval_id: str) -> dict:
        self._check("get_preapproval", preapproval_id)
        if preapproval_id not in self.preapprovals:
            raise ExternalServiceError(detail={"reason": "http_status", "http_status": 404})
        return self.preapprovals[preapproval_id]

    def search_preapproval_id(self, external_reference: str) -> str | None:
        self._check("search_preapproval_id", external_reference)
        for pid, payload in self.preapprovals.items():
            if payload["external_reference"] == external_reference:
                return pid
        return None

    def get_authorized_payment(self, payment_id: str) -> dict:
        self._check("get_authorized_payment", payment_id)
        if payment_id not in self.authorized_payments:
            raise ExternalServiceError(detail={"reason": "http_status", "http_status": 404})
        return self.authorized_payments[payment_id]

    def close(self) -> None:
        pass


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def config():
    return BillingConfig()


@pytest.fixture
def processor():
    return FakeMercadoPago()


@pytest.fixture
def price():
    return Decimal("2999")
