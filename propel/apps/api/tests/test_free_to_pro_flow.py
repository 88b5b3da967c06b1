"""
End-to-end: a new user exhausts the FREE allowance, pays, and keeps generating.

1. First request provisions a FREE workspace
2. Ten generations succeed, the eleventh is refused (402)
3. A signed checkout.session.completed webhook upgrades the org to PRO
4. Generation works again and remaining is unlimited
"""

import json


def test_free_to_pro(client, auth_headers, checkout_event, sign_stripe):
    headers = auth_headers(sub="ext_founder", email="founder@example.com", given_name="Fay")

    org = client.get("/v1/org", headers=headers).json()
    assert org["plan"] == "FREE"
    assert org["org_name"] == "Fay Workspace"

    for i in range(10):
        response = client.post("/v1/ai/generate", json={"prompt": f"idea {i}"}, headers=headers)
        assert response.status_code == 200
    assert response.json()["meta"]["remaining"] == 0

    refused = client.post("/v1/ai/generate", json={}, headers=headers)
    assert refused.status_code == 402

    payload = json.dumps(checkout_event(org["org_id"])).encode()
    webhook = client.post(
        "/webhooks/stripe",
        content=payload,
        headers={"Stripe-Signature": sign_stripe(payload), "Content-Type": "application/json"},
    )
    assert webhook.json()["status"] == "applied"

    upgraded = client.get("/v1/org", headers=headers).json()
    assert upgraded["plan"] == "PRO"
    assert upgraded["usage"]["limit"] is None

    response = client.post("/v1/ai/generate", json={}, headers=headers)
    assert response.status_code == 200
    assert response.json()["meta"]["plan"] == "PRO"
    assert response.json()["meta"]["used"] == 11
    assert response.json()["meta"]["remaining"] is None

    for i in range(4):
        assert client.post("/v1/projects", json={"title": f"P{i}"}, headers=headers).status_code == 201
