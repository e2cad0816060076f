"""Configuração do pytest para o pflix_billing.

O banco de testes é um arquivo SQLite temporário; a variável DATABASE_URL
precisa existir antes do primeiro import de pflix_billing.db.
"""

import os
import tempfile
import uuid
from datetime import datetime
from unittest.mock import AsyncMock

_DB_DIR = tempfile.mkdtemp(prefix="pflix-billing-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'billing.db')}"
os.environ["APP_ENV"] = "test"
for _name in (
    "ASAAS_WEBHOOK_TOKEN",
    "INTER_WEBHOOK_TOKEN",
    "INTER_PIX_WEBHOOK_TOKEN",
    "INTER_BOLETO_WEBHOOK_TOKEN",
    "BILLING_API_TOKEN",
    "SUBSCRIPTION_EXPIRY_ENABLED",
):
    os.environ.pop(_name, None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from pflix_billing import models  # noqa: E402
from pflix_billing.db import Base, SessionLocal, engine  # noqa: E402
from pflix_billing.domain.billing.enums import BillingType, PixPaymentStatus, SubscriptionStatus  # noqa: E402
from pflix_billing.services.gateways.base import PeriodCalculator  # noqa: E402


class FakeInterGateway(PeriodCalculator):
    def __init__(self) -> None:
        self.get_pix_cob = AsyncMock()
        self.get_cobranca_detalhe = AsyncMock()


class FakeAsaasGateway(PeriodCalculator):
    def __init__(self) -> None:
        self.get_payment = AsyncMock()
        self.get_pix_qr_code = AsyncMock()


class FakeNotifier:
    def __init__(self) -> None:
        self.deliver = AsyncMock()


@pytest.fixture(autouse=True)
def database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal(expire_on_commit=False)
    try:
        yield session
    finally:
        session.close()


def load(model, ident):
    """Lê o estado atual numa sessão curta, sem prender transação aberta."""
    with SessionLocal() as session:
        return session.get(model, ident)


def _persist(*rows):
    with SessionLocal(expire_on_commit=False) as session:
        session.add_all(rows)
        session.commit()
    return rows[0] if len(rows) == 1 else rows


def make_user(*, email: str | None = None, name: str | None = "Maria Silva") -> models.User:
    return _persist(
        models.User(
            id=str(uuid.uuid4()),
            email=email or f"{uuid.uuid4().hex[:8]}@example.com",
            name=name,
            cpf_cnpj="12345678909",
        )
    )


def make_subscription(
    user: models.User | None = None,
    *,
    status: SubscriptionStatus = SubscriptionStatus.pending,
    plan: models.Plan = models.Plan.duo,
    price_cents: int = 1499,
    current_period_start: datetime | None = None,
    current_period_end: datetime | None = None,
) -> models.Subscription:
    user = user or make_user()
    return _persist(
        models.Subscription(
            id=str(uuid.uuid4()),
            user_id=user.id,
            status=status,
            plan=plan,
            price_cents=price_cents,
            current_period_start=current_period_start,
            current_period_end=current_period_end,
        )
    )


def make_pix_payment(
    subscription: models.Subscription | None,
    *,
    txid: str | None = None,
    value_cents: int = 1499,
    status: PixPaymentStatus = PixPaymentStatus.pending,
    paid_at: datetime | None = None,
) -> models.PixPayment:
    return _persist(
        models.PixPayment(
            id=str(uuid.uuid4()),
            subscription_id=subscription.id if subscription else None,
            txid=txid or uuid.uuid4().hex,
            value_cents=value_cents,
            status=status,
            paid_at=paid_at,
        )
    )


def make_payment(
    subscription: models.Subscription,
    *,
    external_ref: str | None = None,
    billing_type: BillingType = BillingType.pix,
    status: str = "PENDING",
    value_cents: int = 1499,
    payment_date: datetime | None = None,
) -> models.Payment:
    return _persist(
        models.Payment(
            id=str(uuid.uuid4()),
            subscription_id=subscription.id,
            external_ref=external_ref or f"pay_{uuid.uuid4().hex[:12]}",
            billing_type=billing_type,
            status=status,
            value_cents=value_cents,
            payment_date=payment_date,
        )
    )


@pytest.fixture
def inter_gateway() -> FakeInterGateway:
    return FakeInterGateway()


@pytest.fixture
def asaas_gateway() -> FakeAsaasGateway:
    return FakeAsaasGateway()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def app(inter_gateway, asaas_gateway, notifier):
    from pflix_billing.main import app as fastapi_app
    from pflix_billing.services.gateways.asaas import get_asaas_client
    from pflix_billing.services.gateways.inter import get_inter_client
    from pflix_billing.services.notifier import get_notifier

    fastapi_app.dependency_overrides[get_inter_client] = lambda: inter_gateway
    fastapi_app.dependency_overrides[get_asaas_client] = lambda: asaas_gateway
    fastapi_app.dependency_overrides[get_notifier] = lambda: notifier
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
