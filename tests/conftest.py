"""Pytest fixtures: test client, in-memory SQLite, kullanıcı/token ve imzalı VNPay parametreleri."""
import os

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

# Test ortamı (voltsub import edilmeden önce set edilmeli)
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("VNP_TMN_CODE", "VOLTTEST")
os.environ.setdefault("VNP_HASH_SECRET", "TESTHASHSECRET0123456789ABCDEFGH")
os.environ.setdefault("VNP_RETURN_URL", "http://localhost:5173/vnpay/return")
os.environ.setdefault("VNP_IPN_URL", "http://testserver/vnpay/ipn")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("FRONTEND_URL", "http://localhost:5173")
# Ödeme linki rate limit yüksek olsun ki tüm testler geçebilsin
os.environ.setdefault("RATE_LIMIT_CHECKOUT_PER_MINUTE", "1000")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "1000")

from voltsub.core.config import GatewayConfig  # noqa: E402
from voltsub.core.database import engine, reset_db  # noqa: E402
from voltsub.core.security import create_access_token  # noqa: E402
from voltsub.main import app  # noqa: E402
from voltsub.models import User  # noqa: E402
from voltsub.services.plans import find_plan  # noqa: E402
from voltsub.services.vnpay import VnpayCodec, canonicalize, sign  # noqa: E402

ADMIN_HEADERS = {"X-Admin-Secret": "test-admin-secret"}


@pytest.fixture(autouse=True)
def _fresh_db():
    """Her test temiz şema + varsayılan 9 plan ile başlar."""
    reset_db()
    yield


@pytest.fixture
def client():
    """TestClient; lifespan ile codec ve tablolar hazır olur."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture
def codec() -> VnpayCodec:
    return VnpayCodec(GatewayConfig.from_settings())


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(email: str | None = None) -> User:
        counter["n"] += 1
        user = User(email=email or f"user{counter['n']}@example.com", full_name=f"User {counter['n']}")
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def user(make_user) -> User:
    return make_user("driver@example.com")


def _bearer(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


@pytest.fixture
def headers_for():
    return _bearer


@pytest.fixture
def auth_headers(user) -> dict:
    return _bearer(user)


@pytest.fixture
def plan_id(db):
    """(type, duration) -> plan id."""

    def _plan_id(plan_type: str = "basic", duration: str = "1_month") -> int:
        return find_plan(db, plan_type, duration).id

    return _plan_id


@pytest.fixture
def gateway_fields(codec):
    """VNPay'in dönüş/IPN'de göndereceği gibi imzalı parametreler."""

    def _fields(txn_ref: str, amount_vnd: int, response_code: str = "00", transaction_status: str | None = None, **extra) -> dict:
        fields = {
            "vnp_Amount": str(amount_vnd * 100),
            "vnp_BankCode": "NCB",
            "vnp_BankTranNo": "VNP14000001",
            "vnp_CardType": "ATM",
            "vnp_OrderInfo": f"Payment for {txn_ref}",
            "vnp_PayDate": "20260115103000",
            "vnp_ResponseCode": response_code,
            "vnp_TmnCode": codec.config.tmn_code,
            "vnp_TransactionNo": "14000001",
            "vnp_TransactionStatus": transaction_status if transaction_status is not None else response_code,
            "vnp_TxnRef": txn_ref,
        }
        fields.update(extra)
        fields["vnp_SecureHash"] = sign(codec.config.hash_secret, canonicalize(fields))
        return fields

    return _fields
