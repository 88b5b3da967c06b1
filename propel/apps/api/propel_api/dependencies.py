"""FastAPI dependency providers shared by routers.

Each provider can be replaced through ``app.dependency_overrides`` in tests.
"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from propel_api.billing.stripe_client import StripeBillingClient, get_stripe_client
from propel_api.db.session import get_db
from propel_api.errors import ConfigurationError
from propel_api.pricing.enforcement import EnforcementEngine
from propel_api.rate_limiter import NoOpRateLimiter, RateLimiter


def get_enforcement_engine(db: Session = Depends(get_db)) -> EnforcementEngine:
    try:
        return EnforcementEngine(db)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc


def get_rate_limiter(request: Request) -> RateLimiter:
    """Limiter installed on app.state at startup; no-op if none was installed."""
    return getattr(request.app.state, "rate_limiter", None) or NoOpRateLimiter()


def get_billing_client() -> StripeBillingClient:
    try:
        return get_stripe_client()
    except ValueError as exc:
        raise ConfigurationError("Billing is not configured") from exc
