"""
tests/test_api_admin_routes.py -- Integration tests for /api/v1/auth/users* admin routes.

Coverage:
  - 401 without a token, 403 for a customer token, 200 for admin / super_admin
  - List: pagination envelope, role / isActive / search filters, limit bounds
  - Get / update / activate / deactivate, 404 for unknown ids
  - DELETE is super_admin only; admins get 403
  - Deactivation ends the target's refresh session
  - An admin cannot deactivate or delete themselves
  - Only a super_admin can grant the super_admin role or change a super_admin
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from conftest import ApiContext

USERS_URL = "/api/v1/auth/users"


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _customer(ctx: ApiContext, email: str, first_name: str = "Carl") -> dict:
    """Register a customer through the API and return its data block."""
    resp = ctx.client.post(
        "/api/v1/auth/register",
        json={"email": email, "password": "Passw0rd!", "firstName": first_name, "lastName": "Customer"},
    )
    assert resp.status_code == 201
    return resp.json()["data"]


class TestAdminAuthorization:
    def test_list_without_token_is_401(self, api_client: ApiContext) -> None:
        assert api_client.client.get(USERS_URL).status_code == 401

    def test_list_as_customer_is_403(self, api_client: ApiContext) -> None:
        data = _customer(api_client, "plain@example.com")
        resp = api_client.client.get(USERS_URL, headers=bearer(data["accessToken"]))
        assert resp.status_code == 403
        assert resp.json()["error"] == "Insufficient permissions"

    @pytest.mark.parametrize("token_attr", ["admin_token", "super_admin_token"])
    def test_list_as_admin_roles(self, api_client: ApiContext, token_attr: str) -> None:
        resp = api_client.client.get(USERS_URL, headers=bearer(getattr(api_client, token_attr)))
        assert resp.status_code == 200

    def test_refresh_token_cannot_authorize(self, api_client: ApiContext) -> None:
        refresh = api_client.service.login("admin@example.com", "AdminPass1!").refresh_token
        assert api_client.client.get(USERS_URL, headers=bearer(refresh)).status_code == 401


class TestListUsers:
    def test_pagination_envelope(self, api_client: ApiContext) -> None:
        for i in range(3):
            _customer(api_client, f"page{i}@example.com")
        resp = api_client.client.get(f"{USERS_URL}?page=1&limit=2", headers=bearer(api_client.admin_token))

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert len(data["users"]) == 2
        pagination = data["pagination"]
        assert set(pagination) == {"page", "limit", "total", "totalPages", "hasNext", "hasPrev"}
        assert pagination["page"] == 1
        assert pagination["limit"] == 2
        assert pagination["hasNext"] is True
        assert pagination["hasPrev"] is False
        assert pagination["totalPages"] == -(-pagination["total"] // 2)

    def test_listed_users_have_no_password_fields(self, api_client: ApiContext) -> None:
        resp = api_client.client.get(USERS_URL, headers=bearer(api_client.admin_token))
        for user in resp.json()["data"]["users"]:
            assert not any("password" in k.lower() for k in user)

    def test_filter_by_role(self, api_client: ApiContext) -> None:
        resp = api_client.client.get(f"{USERS_URL}?role=super_admin", headers=bearer(api_client.admin_token))
        users = resp.json()["data"]["users"]
        assert [u["email"] for u in users] == ["root@example.com"]

    def test_search_is_case_insensitive(self, api_client: ApiContext) -> None:
        _customer(api_client, "zelda@example.com", first_name="Zelda")
        resp = api_client.client.get(f"{USERS_URL}?search=ZELD", headers=bearer(api_client.admin_token))
        assert [u["email"] for u in resp.json()["data"]["users"]] == ["zelda@example.com"]

    def test_filter_by_is_active(self, api_client: ApiContext) -> None:
        data = _customer(api_client, "dormant@example.com")
        api_client.user_store.update_user(data["user"]["id"], is_active=False)
        resp = api_client.client.get(f"{USERS_URL}?isActive=false", headers=bearer(api_client.admin_token))
        emails = [u["email"] for u in resp.json()["data"]["users"]]
        assert "dormant@example.com" in emails
        assert all(not u["isActive"] for u in resp.json()["data"]["users"])

    def test_limit_above_maximum_is_400(self, api_client: ApiContext) -> None:
        resp = api_client.client.get(f"{USERS_URL}?limit=1000", headers=bearer(api_client.admin_token))
        assert resp.status_code == 400

    def test_unknown_role_is_400(self, api_client: ApiContext) -> None:
        resp = api_client.client.get(f"{USERS_URL}?role=wizard", headers=bearer(api_client.admin_token))
        assert resp.status_code == 400


class TestSingleUser:
    def test_get_user(self, api_client: ApiContext) -> None:
        data = _customer(api_client, "single@example.com")
        resp = api_client.client.get(f"{USERS_URL}/{data['user']['id']}", headers=bearer(api_client.admin_token))
        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["email"] == "single@example.com"

    def test_get_unknown_user_is_404(self, api_client: ApiContext) -> None:
        resp = api_client.client.get(f"{USERS_URL}/does-not-exist", headers=bearer(api_client.admin_token))
        assert resp.status_code == 404
        assert resp.json()["error"] == "User not found"

    def test_update_role_and_flags(self, api_client: ApiContext) -> None:
        data = _customer(api_client, "promote@example.com")
        resp = api_client.client.put(
            f"{USERS_URL}/{data['user']['id']}",
            json={"role": "admin", "isEmailVerified": True},
            headers=bearer(api_client.admin_token),
        )
        assert resp.status_code == 200
        user = resp.json()["data"]["user"]
        assert user["role"] == "admin"
        assert user["isEmailVerified"] is True

    def test_update_with_empty_body_is_400(self, api_client: ApiContext) -> None:
        data = _customer(api_client, "empty@example.com")
        resp = api_client.client.put(
            f"{USERS_URL}/{data['user']['id']}", json={}, headers=bearer(api_client.admin_token)
        )
        assert resp.status_code == 400

    def test_update_unknown_user_is_404(self, api_client: ApiContext) -> None:
        resp = api_client.client.put(
            f"{USERS_URL}/does-not-exist", json={"firstName": "Nobody"}, headers=bearer(api_client.admin_token)
        )
        assert resp.status_code == 404

    def test_deactivate_ends_session_and_access(self, api_client: ApiContext) -> None:
        data = _customer(api_client, "kicked@example.com")
        uid = data["user"]["id"]

        resp = api_client.client.post(f"{USERS_URL}/{uid}/deactivate", headers=bearer(api_client.admin_token))
        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["isActive"] is False

        assert api_client.redis.get(f"refresh_token:{uid}") is None
        refresh = api_client.client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["refreshToken"]})
        assert refresh.status_code == 401
        assert api_client.client.get("/api/v1/auth/me", headers=bearer(data["accessToken"])).status_code == 401

        again = api_client.client.post(f"{USERS_URL}/{uid}/activate", headers=bearer(api_client.admin_token))
        assert again.status_code == 200
        assert again.json()["data"]["user"]["isActive"] is True

    def test_admin_cannot_deactivate_self(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(
            f"{USERS_URL}/{api_client.admin_id}/deactivate", headers=bearer(api_client.admin_token)
        )
        assert resp.status_code == 400

    def test_admin_cannot_grant_super_admin(self, api_client: ApiContext) -> None:
        data = _customer(api_client, "climber@example.com")
        resp = api_client.client.put(
            f"{USERS_URL}/{data['user']['id']}", json={"role": "super_admin"}, headers=bearer(api_client.admin_token)
        )
        assert resp.status_code == 403
        assert api_client.user_store.get_by_id(data["user"]["id"]).role == "customer"

    def test_admin_cannot_deactivate_super_admin(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(
            f"{USERS_URL}/{api_client.super_admin_id}/deactivate", headers=bearer(api_client.admin_token)
        )
        assert resp.status_code == 403
        assert api_client.user_store.get_by_id(api_client.super_admin_id).is_active is True

    def test_super_admin_can_grant_super_admin(self, api_client: ApiContext) -> None:
        data = _customer(api_client, "heir@example.com")
        resp = api_client.client.put(
            f"{USERS_URL}/{data['user']['id']}",
            json={"role": "super_admin"},
            headers=bearer(api_client.super_admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["role"] == "super_admin"


class TestDeleteUser:
    def test_admin_cannot_delete(self, api_client: ApiContext) -> None:
        data = _customer(api_client, "keep@example.com")
        resp = api_client.client.delete(f"{USERS_URL}/{data['user']['id']}", headers=bearer(api_client.admin_token))
        assert resp.status_code == 403

    def test_super_admin_deletes(self, api_client: ApiContext) -> None:
        data = _customer(api_client, "gone@example.com")
        uid = data["user"]["id"]
        resp = api_client.client.delete(f"{USERS_URL}/{uid}", headers=bearer(api_client.super_admin_token))
        assert resp.status_code == 200
        assert resp.json()["message"] == "User deleted successfully"
        assert api_client.user_store.get_by_id(uid) is None
        assert api_client.redis.get(f"refresh_token:{uid}") is None

    def test_delete_unknown_is_404(self, api_client: ApiContext) -> None:
        resp = api_client.client.delete(f"{USERS_URL}/does-not-exist", headers=bearer(api_client.super_admin_token))
        assert resp.status_code == 404

    def test_super_admin_cannot_delete_self(self, api_client: ApiContext) -> None:
        resp = api_client.client.delete(
            f"{USERS_URL}/{api_client.super_admin_id}", headers=bearer(api_client.super_admin_token)
        )
        assert resp.status_code == 400
