"""
Project API tests.

Tests:
1. CRUD within the active organization
2. FREE standing project cap (402 PROJECT_LIMIT_REACHED), freed by deletion
3. Tenant isolation: other organizations' projects read as 404
4. Role policy: members cannot delete
"""

import uuid

import pytest

from propel_api.db.models import ROLE_MEMBER, Membership


def _create(client, headers, title="Website redesign", **fields):
    return client.post("/v1/projects", json={"title": title, **fields}, headers=headers)


class TestCrud:
    def test_create_and_get(self, client, auth_headers):
        headers = auth_headers()

        response = _create(client, headers, title="  Website redesign ", client_name="Acme", estimated_value=4200)

        assert response.status_code == 201
        project = response.json()
        assert project["title"] == "Website redesign"
        assert project["status"] == "LEAD"
        assert project["client_name"] == "Acme"

        fetched = client.get(f"/v1/projects/{project['id']}", headers=headers)
        assert fetched.status_code == 200
        assert fetched.json()["id"] == project["id"]

    def test_list_orders_by_recent_activity(self, client, auth_headers):
        headers = auth_headers()
        first = _create(client, headers, title="First").json()
        _create(client, headers, title="Second")
        client.patch(f"/v1/projects/{first['id']}", json={"status": "WON"}, headers=headers)

        titles = [p["title"] for p in client.get("/v1/projects", headers=headers).json()["projects"]]

        assert titles == ["First", "Second"]

    def test_partial_update(self, client, auth_headers):
        headers = auth_headers()
        project = _create(client, headers, client_name="Acme").json()

        response = client.patch(f"/v1/projects/{project['id']}", json={"title": "Renamed"}, headers=headers)

        assert response.status_code == 200
        assert response.json()["title"] == "Renamed"
        assert response.json()["client_name"] == "Acme"

    def test_delete(self, client, auth_headers):
        headers = auth_headers()
        project = _create(client, headers).json()

        assert client.delete(f"/v1/projects/{project['id']}", headers=headers).status_code == 204
        assert client.get(f"/v1/projects/{project['id']}", headers=headers).status_code == 404

    def test_blank_title_rejected(self, client, auth_headers):
        assert _create(client, auth_headers(), title="").status_code == 422


class TestProjectCap:
    def test_fourth_project_is_refused(self, client, auth_headers):
        headers = auth_headers()
        for i in range(3):
            assert _create(client, headers, title=f"P{i}").status_code == 201

        response = _create(client, headers, title="P3")

        assert response.status_code == 402
        assert response.json()["code"] == "PROJECT_LIMIT_REACHED"
        assert response.json()["limit"] == 3
        assert len(client.get("/v1/projects", headers=headers).json()["projects"]) == 3

    def test_deleting_frees_a_slot(self, client, auth_headers):
        headers = auth_headers()
        ids = [_create(client, headers, title=f"P{i}").json()["id"] for i in range(3)]

        client.delete(f"/v1/projects/{ids[0]}", headers=headers)

        assert _create(client, headers, title="P3").status_code == 201


class TestIsolation:
    def test_other_tenant_sees_404(self, client, auth_headers):
        alice = auth_headers()
        bob = auth_headers(sub="ext_bob", email="bob@example.com", given_name="Bob")
        project = _create(client, alice).json()

        assert client.get(f"/v1/projects/{project['id']}", headers=bob).status_code == 404
        assert client.patch(f"/v1/projects/{project['id']}", json={"title": "x"}, headers=bob).status_code == 404
        assert client.delete(f"/v1/projects/{project['id']}", headers=bob).status_code == 404
        assert client.get("/v1/projects", headers=bob).json()["projects"] == []


class TestRoles:
    @pytest.fixture
    def member_headers(self, db_session, tenant, make_user, make_token):
        user = make_user("ext_member_max", "max@example.com", "Max")
        db_session.add(
            Membership(id=str(uuid.uuid4()), user_id=user.id, org_id=tenant.organization.id, role=ROLE_MEMBER)
        )
        db_session.commit()
        return {"Authorization": f"Bearer {make_token('ext_member_max', email='max@example.com')}"}

    def test_member_can_create_but_not_delete(self, client, member_headers):
        project = _create(client, member_headers)
        assert project.status_code == 201

        response = client.delete(f"/v1/projects/{project.json()['id']}", headers=member_headers)

        assert response.status_code == 403
        assert client.get(f"/v1/projects/{project.json()['id']}", headers=member_headers).status_code == 200
