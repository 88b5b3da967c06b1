"""
AI generation API tests.

Tests:
1. Stub fallback output is returned and counted
2. The 11th FREE generation in a month is refused with 402 QUOTA_EXCEEDED
3. The abuse guard returns 429 with Retry-After before any quota is used
4. PRO organizations are not capped
5. Rate limiter and ledger calls run off the event loop
"""

import asyncio

from sqlalchemy import update

from propel_api.db.models import Subscription
from propel_api.pricing.metering import UsageLedger
from propel_api.rate_limiter import RateLimiter, RateLimitResult


class RefusingRateLimiter(RateLimiter):
    def check_rate_limit(self, key: str, scope: str) -> RateLimitResult:
        return RateLimitResult(allowed=False, policy_id="test", quota=1, window=1, remaining=0, reset=1)


def _on_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class RecordingRateLimiter(RateLimiter):
    def __init__(self):
        self.calls = []

    def check_rate_limit(self, key: str, scope: str) -> RateLimitResult:
        self.calls.append(_on_event_loop())
        return RateLimitResult(allowed=True, policy_id="test", quota=100, window=60, remaining=99, reset=60)


def test_stub_generation_counts(client, auth_headers):
    response = client.post("/v1/ai/generate", json={"prompt": "Say hi"}, headers=auth_headers())

    assert response.status_code == 200
    data = response.json()
    assert data["output"].endswith('"Say hi"')
    assert data["meta"]["degraded"] is True
    assert data["meta"]["plan"] == "FREE"
    assert data["meta"]["used"] == 1
    assert data["meta"]["remaining"] == 9


def test_empty_body_uses_default_prompt(client, auth_headers):
    response = client.post("/v1/ai/generate", headers=auth_headers())

    assert response.status_code == 200
    assert "onboarding message" in response.json()["output"]


def test_free_quota_exhaustion(client, auth_headers):
    headers = auth_headers()
    for _ in range(10):
        assert client.post("/v1/ai/generate", json={}, headers=headers).status_code == 200

    response = client.post("/v1/ai/generate", json={}, headers=headers)

    assert response.status_code == 402
    problem = response.json()
    assert problem["code"] == "QUOTA_EXCEEDED"
    assert problem["remaining"] == 0
    assert problem["limit"] == 10
    assert problem["upgrade"] == "PRO"

    usage = client.get("/v1/org", headers=headers).json()["usage"]
    assert usage["used"] == 10
    assert usage["remaining"] == 0


def test_rate_limited(client, app, auth_headers):
    app.state.rate_limiter = RefusingRateLimiter()

    response = client.post("/v1/ai/generate", json={}, headers=auth_headers())

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "1"
    assert client.get("/v1/org", headers=auth_headers()).json()["usage"]["used"] == 0


def test_pro_is_unlimited(client, auth_headers, db_session):
    headers = auth_headers()
    org_id = client.get("/v1/org", headers=headers).json()["org_id"]
    db_session.execute(update(Subscription).where(Subscription.org_id == org_id).values(plan="PRO"))
    db_session.commit()

    for _ in range(11):
        response = client.post("/v1/ai/generate", json={}, headers=headers)
        assert response.status_code == 200

    assert response.json()["meta"]["used"] == 11
    assert response.json()["meta"]["remaining"] is None


def test_blocking_calls_stay_off_the_event_loop(client, app, auth_headers, monkeypatch):
    limiter = RecordingRateLimiter()
    app.state.rate_limiter = limiter
    ledger_calls = []
    original = UsageLedger.increment_if_below

    def recording(self, *args, **kwargs):
        ledger_calls.append(_on_event_loop())
        return original(self, *args, **kwargs)

    monkeypatch.setattr(UsageLedger, "increment_if_below", recording)

    response = client.post("/v1/ai/generate", json={}, headers=auth_headers())

    assert response.status_code == 200
    assert limiter.calls == [False]
    assert ledger_calls == [False]
