"""
RFC 9457 problem details contract.

Every error response is application/problem+json with type, title, status,
detail and an instance URN carrying the request id echoed in X-Request-ID.
"""

from sqlalchemy.exc import OperationalError

from propel_api.tenancy import context as tenancy_context


def _assert_problem(response, status):
    assert response.status_code == status
    assert response.headers["content-type"].startswith("application/problem+json")
    body = response.json()
    for field in ("type", "title", "status", "detail", "instance"):
        assert field in body
    assert body["status"] == status
    return body


def test_request_id_is_echoed_in_instance(client):
    response = client.get("/v1/org", headers={"X-Request-ID": "req-abc-123"})

    body = _assert_problem(response, 401)
    assert response.headers["X-Request-ID"] == "req-abc-123"
    assert body["instance"] == "urn:propel:trace:req-abc-123"


def test_request_id_is_generated(client):
    response = client.get("/v1/org")

    generated = response.headers["X-Request-ID"]
    assert generated
    assert response.json()["instance"] == f"urn:propel:trace:{generated}"


def test_unknown_route(client):
    body = _assert_problem(client.get("/v1/nope"), 404)
    assert body["type"].endswith("/http-404")


def test_validation_error_names_field(client, auth_headers):
    response = client.post("/v1/projects", json={}, headers=auth_headers())

    body = _assert_problem(response, 422)
    assert "title" in body["detail"]


def test_quota_problem_carries_extensions(client, auth_headers):
    headers = auth_headers()
    for _ in range(10):
        client.post("/v1/ai/generate", json={}, headers=headers)

    body = _assert_problem(client.post("/v1/ai/generate", json={}, headers=headers), 402)
    assert body["type"].endswith("/quota-exceeded")
    assert body["code"] == "QUOTA_EXCEEDED"


def test_database_outage_is_retryable(client, auth_headers, monkeypatch):
    def unavailable(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(tenancy_context, "try_resolve", unavailable)

    response = client.get("/v1/org", headers=auth_headers())

    _assert_problem(response, 503)
    assert response.headers["Retry-After"] == "1"
