"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
# Inject sys.path for reliable pytest imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # => .../apps/api

import hashlib
import hmac
import os
import time
import uuid
from typing import Callable, Optional

# Plain log output under pytest (caplog keeps working)
os.environ.setdefault("PROPEL_JSON_LOGS", "false")

import jwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from propel_api.db.engine import build_sessionmaker
from propel_api.db.models import Base, User
from propel_api.db.session import get_db
from propel_api.generation.provider import TextGenerator, get_text_generator
from propel_api.main import create_app
from propel_api.rate_limiter import NoOpRateLimiter
from propel_api.tenancy.identity import resolve_user
from propel_api.tenancy.provisioning import ProvisionResult, provision_tenant

TEST_AUTH_SECRET = "test-session-secret-0123456789abcdef"
TEST_WEBHOOK_SECRET = "whsec_test_propel_webhook"
TEST_APP_URL = "https://app.propel.test"


@pytest.fixture(autouse=True)
def propel_env(monkeypatch):
    """Deterministic environment for every test."""
    monkeypatch.setenv("AUTH_JWT_SECRET", TEST_AUTH_SECRET)
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
    monkeypatch.setenv("APP_URL", TEST_APP_URL)
    for name in (
        "AUTH_JWT_AUDIENCE",
        "AUTH_JWT_ISSUER",
        "PROPEL_QUOTA_MODE",
        "OPENAI_API_KEY",
        "REDIS_URL",
        "STRIPE_SECRET_KEY",
        "STRIPE_PRICE_PRO",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    """Create a fresh database session for each test."""
    session = session_factory()
    try:
        yield session
        session.rollback()
    finally:
        session.close()


@pytest.fixture
def app(db_session: Session) -> FastAPI:
    """Application with the test session and a stub-only text generator."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close - db_session fixture handles it

    new_app = create_app(rate_limiter=NoOpRateLimiter())
    new_app.dependency_overrides[get_db] = override_get_db
    new_app.dependency_overrides[get_text_generator] = lambda: TextGenerator(client=None)
    yield new_app
    new_app.dependency_overrides.clear()


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


def _make_token(
    sub: str,
    email: Optional[str] = None,
    given_name: Optional[str] = None,
    expires_in: int = 3600,
    secret: str = TEST_AUTH_SECRET,
    **claims,
) -> str:
    now = int(time.time())
    payload = {"sub": sub, "iat": now, "exp": now + expires_in, **claims}
    if email is not None:
        payload["email"] = email
    if given_name is not None:
        payload["given_name"] = given_name
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Factory for HS256 session tokens signed with the test secret."""
    return _make_token


@pytest.fixture
def auth_headers() -> Callable[..., dict]:
    """Factory for Authorization headers of a given external principal."""

    def _headers(sub: str = "user_ext_alice", email: Optional[str] = "alice@example.com", given_name: Optional[str] = "Alice"):
        return {"Authorization": f"Bearer {_make_token(sub, email=email, given_name=given_name)}"}

    return _headers


def _sign_stripe(payload: bytes, secret: str = TEST_WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


@pytest.fixture
def sign_stripe() -> Callable[..., str]:
    """Factory for Stripe-Signature headers (t=<ts>,v1=<hmac-sha256>)."""
    return _sign_stripe


@pytest.fixture
def checkout_event() -> Callable[..., dict]:
    """Factory for checkout.session.completed events."""

    def _event(
        org_id: Optional[str],
        event_id: Optional[str] = None,
        customer: Optional[str] = "cus_test_123",
        subscription: Optional[str] = "sub_test_123",
    ) -> dict:
        metadata = {"orgId": org_id} if org_id else {}
        return {
            "id": event_id or f"evt_{uuid.uuid4().hex[:24]}",
            "object": "event",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": f"cs_test_{uuid.uuid4().hex[:12]}",
                    "object": "checkout.session",
                    "mode": "subscription",
                    "customer": customer,
                    "subscription": subscription,
                    "metadata": metadata,
                }
            },
        }

    return _event


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    """Factory for resolved users."""

    def _user(external_id: Optional[str] = None, email: Optional[str] = None, first_name: Optional[str] = None) -> User:
        external_id = external_id or f"ext_{uuid.uuid4().hex[:10]}"
        return resolve_user(db_session, external_id, email or f"{external_id}@example.com", first_name)

    return _user


@pytest.fixture
def tenant(db_session: Session, make_user) -> ProvisionResult:
    """A provisioned FREE workspace owned by Olivia."""
    owner = make_user("ext_owner_olivia", "olivia@example.com", "Olivia")
    return provision_tenant(db_session, owner)
