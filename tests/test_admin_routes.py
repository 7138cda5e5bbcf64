"""
tests/test_admin_routes.py -- Integration tests for /api/v1/admin/*.

Coverage:
  - 401 without a token, 403 for a regular account on every admin route
  - stats totals, paginated and filtered user list
  - block/unblock (self-block refused), reset-hwid
  - key generation, recent keys, assignment and deletion with 404/409 mapping
  - login attempt audit listing
"""

from __future__ import annotations

import re

import pytest
from fastapi.testclient import TestClient

ADMIN_ROUTES = [
    ("get", "/api/v1/admin/stats", None),
    ("get", "/api/v1/admin/users", None),
    ("post", "/api/v1/admin/users/1/block", {"blocked": True}),
    ("post", "/api/v1/admin/users/1/reset-hwid", None),
    ("post", "/api/v1/admin/generate-keys", {"quantity": 1, "expiration_days": 1}),
    ("get", "/api/v1/admin/recent-keys", None),
    ("post", "/api/v1/admin/keys/1/assign", {"user_id": 1}),
    ("delete", "/api/v1/admin/keys/1", None),
    ("get", "/api/v1/admin/login-attempts", None),
]


def _call(client: TestClient, method: str, path: str, body, headers=None):
    kwargs = {"headers": headers or {}}
    if body is not None:
        kwargs["json"] = body
    return client.request(method.upper(), path, **kwargs)


class TestAdminAccess:
    @pytest.mark.parametrize("method,path,body", ADMIN_ROUTES)
    def test_unauthenticated_is_401(self, api_client: TestClient, method, path, body) -> None:
        assert _call(api_client, method, path, body).status_code == 401

    @pytest.mark.parametrize("method,path,body", ADMIN_ROUTES)
    def test_regular_account_is_403(self, api_client, api_account, headers_for, method, path, body) -> None:
        headers = headers_for(api_account())
        resp = _call(api_client, method, path, body, headers)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_revoked_admin_loses_access(self, api_client, api_account, api_store, headers_for) -> None:
        demoted = api_account(is_admin=True)
        headers = headers_for(demoted)
        api_store.update_account(demoted.id, is_admin=False)
        assert api_client.get("/api/v1/admin/stats", headers=headers).status_code == 403


class TestAccounts:
    def test_stats_match_store(self, api_client, api_store, admin_headers) -> None:
        resp = api_client.get("/api/v1/admin/stats", headers=admin_headers)
        assert resp.status_code == 200
        expected = api_store.get_stats()
        assert resp.json() == {
            "total_users": expected.total_users,
            "active_users": expected.active_users,
            "blocked_users": expected.blocked_users,
            "total_keys": expected.total_keys,
        }

    def test_user_list_search_and_pagination(self, api_client, api_account, admin_headers) -> None:
        for i in range(3):
            api_account(f"pager{i}", email=f"pager{i}@paging.example")
        first = api_client.get(
            "/api/v1/admin/users", params={"search": "paging.example", "limit": 2, "page": 1}, headers=admin_headers
        ).json()
        second = api_client.get(
            "/api/v1/admin/users", params={"search": "paging.example", "limit": 2, "page": 2}, headers=admin_headers
        ).json()
        assert first["total"] == 3
        assert (first["page"], first["limit"]) == (1, 2)
        assert [u["username"] for u in first["users"]] == ["pager2", "pager1"]
        assert [u["username"] for u in second["users"]] == ["pager0"]

    def test_user_list_status_filter(self, api_client, api_account, admin_headers) -> None:
        api_account("filtered-blocked", email="fb@filter.example", is_blocked=True)
        api_account("filtered-active", email="fa@filter.example")
        resp = api_client.get(
            "/api/v1/admin/users", params={"search": "filter.example", "status": "blocked"}, headers=admin_headers
        )
        assert [u["username"] for u in resp.json()["users"]] == ["filtered-blocked"]

    def test_user_list_rejects_bad_status(self, api_client, admin_headers) -> None:
        resp = api_client.get("/api/v1/admin/users", params={"status": "deleted"}, headers=admin_headers)
        assert resp.status_code == 422

    def test_block_and_unblock(self, api_client, api_account, api_store, admin_headers) -> None:
        target = api_account()
        resp = api_client.post(f"/api/v1/admin/users/{target.id}/block", json={"blocked": True}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["is_blocked"] is True
        assert api_store.get_account_by_id(target.id).is_blocked is True

        resp = api_client.post(
            f"/api/v1/admin/users/{target.id}/block", json={"blocked": False}, headers=admin_headers
        )
        assert resp.json()["is_blocked"] is False

    def test_cannot_block_self(self, api_client, admin, admin_headers) -> None:
        resp = api_client.post(f"/api/v1/admin/users/{admin.id}/block", json={"blocked": True}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "self_block"

    def test_block_unknown_user(self, api_client, admin_headers) -> None:
        resp = api_client.post("/api/v1/admin/users/999999/block", json={"blocked": True}, headers=admin_headers)
        assert resp.status_code == 404

    def test_reset_hwid(self, api_client, api_account, api_store, admin_headers) -> None:
        target = api_account(hwid="HW-OLD")
        resp = api_client.post(f"/api/v1/admin/users/{target.id}/reset-hwid", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["hwid"] is None
        assert api_store.get_account_by_id(target.id).hwid is None

    def test_reset_hwid_unknown_user(self, api_client, admin_headers) -> None:
        assert api_client.post("/api/v1/admin/users/999999/reset-hwid", headers=admin_headers).status_code == 404


class TestKeys:
    def test_generate_keys(self, api_client, api_store, admin_headers) -> None:
        resp = api_client.post(
            "/api/v1/admin/generate-keys",
            json={"quantity": 3, "expiration_days": 30, "prefix": "BETA", "notes": "press"},
            headers=admin_headers,
        )
        assert resp.status_code == 201, resp.text
        keys = resp.json()
        assert len(keys) == 3
        for key in keys:
            assert re.match(r"^BETA-[0-9A-F]{16}-[0-9A-F]{16}$", key["key_value"])
            assert key["user_id"] is None
            assert key["expires_at"] is not None
            assert key["notes"] == "press"
            assert api_store.get_access_key_by_value(key["key_value"]) is not None

    @pytest.mark.parametrize(
        "body",
        [
            {"quantity": 0, "expiration_days": 1},
            {"quantity": 101, "expiration_days": 1},
            {"quantity": 1, "expiration_days": -1},
            {"quantity": 1, "expiration_days": 1, "prefix": "BAD-PREFIX"},
        ],
    )
    def test_generate_keys_validation(self, api_client, admin_headers, body) -> None:
        resp = api_client.post("/api/v1/admin/generate-keys", json=body, headers=admin_headers)
        assert resp.status_code == 422

    def test_recent_keys_newest_first(self, api_client, api_key, admin_headers) -> None:
        older = api_key()
        newer = api_key()
        resp = api_client.get("/api/v1/admin/recent-keys", params={"limit": 2}, headers=admin_headers)
        assert resp.status_code == 200
        assert [k["id"] for k in resp.json()] == [newer.id, older.id]

    def test_assign_key(self, api_client, api_account, api_key, admin_headers) -> None:
        target = api_account()
        key = api_key()
        resp = api_client.post(
            f"/api/v1/admin/keys/{key.id}/assign", json={"user_id": target.id}, headers=admin_headers
        )
        assert resp.status_code == 200
        assert resp.json()["user_id"] == target.id

    def test_assign_claimed_key_conflicts(self, api_client, api_account, api_key, admin_headers) -> None:
        key = api_key(api_account())
        resp = api_client.post(
            f"/api/v1/admin/keys/{key.id}/assign", json={"user_id": api_account().id}, headers=admin_headers
        )
        assert resp.status_code == 409

    def test_assign_unknown_key_or_account(self, api_client, api_account, api_key, admin_headers) -> None:
        missing_key = api_client.post(
            "/api/v1/admin/keys/999999/assign", json={"user_id": api_account().id}, headers=admin_headers
        )
        assert missing_key.status_code == 404
        assert missing_key.json()["error"]["message"] == "Key not found"

        missing_account = api_client.post(
            f"/api/v1/admin/keys/{api_key().id}/assign", json={"user_id": 999999}, headers=admin_headers
        )
        assert missing_account.status_code == 404
        assert missing_account.json()["error"]["message"] == "Account not found"

    def test_delete_any_key(self, api_client, api_account, api_key, api_store, admin_headers) -> None:
        key = api_key(api_account())
        resp = api_client.delete(f"/api/v1/admin/keys/{key.id}", headers=admin_headers)
        assert resp.status_code == 204
        assert api_store.get_access_key_by_id(key.id) is None

    def test_delete_missing_key(self, api_client, admin_headers) -> None:
        resp = api_client.delete("/api/v1/admin/keys/999999", headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"


class TestLoginAttempts:
    def test_lists_attempts_for_username(self, api_client, api_store, admin_headers) -> None:
        api_store.record_login_attempt("audited", "192.0.2.10", False)
        api_store.record_login_attempt("audited", "192.0.2.10", True)
        resp = api_client.get("/api/v1/admin/login-attempts", params={"username": "audited"}, headers=admin_headers)
        assert resp.status_code == 200
        rows = resp.json()
        assert [r["success"] for r in rows] == [True, False]
        assert all(r["ip_address"] == "192.0.2.10" for r in rows)
