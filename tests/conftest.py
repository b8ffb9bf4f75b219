import os

import pytest


def _set_test_env() -> None:
    defaults = {
        "APP_NAME": "Lifetime Tech Store Test",
        "ENVIRONMENT": "test",
        "SECRET_KEY": "test-secret",
        "ACCESS_TOKEN_EXPIRE_MINUTES": "30",
        "ADMIN_USERNAME": "admin",
        "ADMIN_PASSWORD": "admin-pass",
        "AUTO_CREATE_TABLES": "false",
        "DATABASE_URL": "sqlite://",
        "MPESA_ENVIRONMENT": "sandbox",
        "MPESA_CONSUMER_KEY": "consumer_key",
        "MPESA_CONSUMER_SECRET": "consumer_secret",
        "MPESA_BUSINESS_SHORTCODE": "174379",
        "MPESA_PASSKEY": "passkey",
        "MPESA_CALLBACK_URL": "https://shop.example.com/api/v1/mpesa/callback",
        "MPESA_TEST_MODE": "false",
        "EMAIL_PROVIDER": "console",
        "CORS_ORIGINS": "http://localhost:5173,http://localhost:3000",
    }
    for key, value in defaults.items():
        os.environ.setdefault(key, value)


_set_test_env()

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.core.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.middlewares.rate_limit import limiter  # noqa: E402
from app.utils.cache import clear_cache  # noqa: E402


class FakeDarajaClient:
    """Stands in for DarajaClient; records pushes and returns a canned response."""

    def __init__(self, response=None, error=None):
        self.calls = []
        self.response = response
        self.error = error
        self._counter = 0

    def stk_push(self, *, phone_number, amount, account_reference, transaction_desc):
        self.calls.append(
            {
                "phone_number": phone_number,
                "amount": amount,
                "account_reference": account_reference,
                "transaction_desc": transaction_desc,
            }
        )
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return self.response
        self._counter += 1
        return {
            "MerchantRequestID": f"MR-{self._counter}",
            "CheckoutRequestID": f"ws_CO_{self._counter:04d}",
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
        }


@pytest.fixture(autouse=True)
def _reset_process_state():
    limiter.reset()
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def fake_daraja():
    return FakeDarajaClient()


@pytest.fixture
def client(db_session, fake_daraja):
    from app.api.v1.endpoints.mpesa import get_daraja_client

    def _override_get_db():
        yield db_session

    app.dependency_overrides.clear()
    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_daraja_client] = lambda: fake_daraja
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
