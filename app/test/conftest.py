import hashlib
import hmac
import json
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, select
from app.main import app
from app.core.db import get_session, build_engine
from app.core.config import settings
from app.core.init_data import init_referral_settings, init_services
from app.models.referral_earning import ReferralEarning
from app.models.service import Service
from app.models.user import User, UserRole
from app.services.payment_gateway import (
    PaymentGateway, PaystackGateway, GatewayTransaction, GatewayVerification, get_payment_gateway
)

WEBHOOK_SECRET = "sk_test_webhook_secret"


class FakeGateway(PaymentGateway):
    """Pasarela en memoria que registra las llamadas."""

    def __init__(self):
        self.initialized = []
        self.verifications = {}
        self.fail_with = None
        self._signer = PaystackGateway(secret_key=WEBHOOK_SECRET)

    def initialize_transaction(self, reference, email, amount_minor, currency, metadata=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.initialized.append({
            "reference": reference,
            "email": email,
            "amount_minor": amount_minor,
            "currency": currency,
            "metadata": metadata,
        })
        return GatewayTransaction(
            reference=reference,
            authorization_url=f"https://checkout.paystack.test/{reference}"
        )

    def verify_transaction(self, reference):
        return self.verifications.get(
            reference, GatewayVerification(reference=reference, status="abandoned"))

    def verify_webhook_signature(self, raw_body, signature):
        return self._signer.verify_webhook_signature(raw_body, signature)


def sign(body: bytes) -> str:
    return hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha512).hexdigest()


def webhook_body(event: str, reference: str, amount_minor: int) -> bytes:
    return json.dumps({
        "event": event,
        "data": {"reference": reference, "amount": amount_minor, "status": "success"}
    }).encode()


@pytest.fixture(name="engine")
def engine_fixture():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        init_referral_settings(session)
        init_services(session)
        yield session


@pytest.fixture(name="gateway")
def gateway_fixture():
    return FakeGateway()


@pytest.fixture(name="client")
def client_fixture(session: Session, gateway: FakeGateway):
    def get_session_override():
        return session
    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="landing_page")
def landing_page_fixture(session: Session) -> Service:
    return session.exec(select(Service).where(Service.name == "Landing Page")).one()


def create_user(session: Session, email: str, role: UserRole = UserRole.CLIENT, referred_by: User = None) -> User:
    user = User(
        email=email,
        full_name=email.split("@")[0].title(),
        role=role,
        referred_by_id=referred_by.id if referred_by else None
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def create_access_token(user: User) -> str:
    # Mismo formato que emite el servicio de login
    payload = {
        "sub": str(user.id),
        "role": user.role.value,
        "exp": datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


def fund_earnings(session: Session, user: User, amount: Decimal) -> ReferralEarning:
    earning = ReferralEarning(
        user_id=user.id,
        total_earned=amount,
        available_balance=amount
    )
    session.add(earning)
    session.commit()
    session.refresh(earning)
    return earning


@pytest.fixture(name="client_user")
def client_user_fixture(session: Session) -> User:
    return create_user(session, "ada@example.com")


@pytest.fixture(name="admin_user")
def admin_user_fixture(session: Session) -> User:
    return create_user(session, "admin@example.com", role=UserRole.ADMIN)
