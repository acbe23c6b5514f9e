"""
HTTP tests for authentication, spaces, members and groups.

Marker: integration (full HTTP round-trip through Flask test client).
"""

from datetime import datetime, timedelta, timezone

import pytest

from stageflow.models import db

BASE = "/api/v1"


# ═════════════════════════════════════════════════════════════════════════════
# Authentication
# ═════════════════════════════════════════════════════════════════════════════


class TestAuth:
    def test_health_is_public(self, client):
        res = client.get(f"{BASE}/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"
        assert res.get_json()["observers"] == 0
        assert "X-Request-ID" in res.headers

    def test_missing_token(self, client):
        res = client.get(f"{BASE}/spaces")
        assert res.status_code == 401
        body = res.get_json()
        assert body["code"] == "ERR_UNAUTHORIZED"
        assert body["details"] == {}

    def test_expired_token(self, client, admin, auth_headers):
        past = datetime.now(timezone.utc) - timedelta(minutes=5)
        res = client.get(f"{BASE}/spaces", headers=auth_headers(admin, exp=past))
        assert res.status_code == 401
        assert res.get_json()["error"] == "Token expired"

    def test_refresh_token_rejected(self, client, admin, auth_headers):
        res = client.get(f"{BASE}/spaces", headers=auth_headers(admin, type="refresh"))
        assert res.status_code == 401

    def test_bad_signature(self, client, admin):
        res = client.get(f"{BASE}/spaces", headers={"Authorization": "Bearer not.a.jwt"})
        assert res.status_code == 401

    def test_query_token_only_for_event_stream(self, client, space, admin, token_for):
        res = client.get(f"{BASE}/spaces/{space.id}?access_token={token_for(admin)}")
        assert res.status_code == 401

    def test_inactive_actor_forbidden(self, client, space, member, auth_headers):
        member.is_active = False
        db.session.commit()
        res = client.get(f"{BASE}/spaces/{space.id}", headers=auth_headers(member))
        assert res.status_code == 403


# ═════════════════════════════════════════════════════════════════════════════
# Spaces & members
# ═════════════════════════════════════════════════════════════════════════════


class TestSpaceAPI:
    def test_create_and_get(self, client, admin, auth_headers):
        res = client.post(f"{BASE}/spaces", json={
            "name": "Podcast", "working_days": [0, 1, 2, 3], "timezone": "UTC",
        }, headers=auth_headers(admin))
        assert res.status_code == 201
        data = res.get_json()
        assert data["working_days"] == [0, 1, 2, 3]
        assert data["members"][0]["role"] == "admin"

        res = client.get(f"{BASE}/spaces/{data['id']}", headers=auth_headers(admin))
        assert res.status_code == 200
        assert res.get_json()["name"] == "Podcast"

    def test_create_requires_name(self, client, admin, auth_headers):
        res = client.post(f"{BASE}/spaces", json={}, headers=auth_headers(admin))
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_empty_working_days_is_configuration_error(self, client, admin, auth_headers):
        res = client.post(f"{BASE}/spaces", json={"name": "X", "working_days": []},
                          headers=auth_headers(admin))
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_CONFIGURATION"

    def test_list(self, client, space, member, auth_headers):
        res = client.get(f"{BASE}/spaces", headers=auth_headers(member))
        assert res.status_code == 200
        assert res.get_json()["total"] == 1

    def test_other_tenant_cannot_read(self, client, space, outsider, auth_headers):
        res = client.get(f"{BASE}/spaces/{space.id}", headers=auth_headers(outsider))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_missing_space(self, client, admin, auth_headers):
        res = client.get(f"{BASE}/spaces/999", headers=auth_headers(admin))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_update_calendar(self, client, space, admin, auth_headers):
        res = client.put(f"{BASE}/spaces/{space.id}", json={
            "working_hours": {"start": "08:00", "end": "16:00"},
        }, headers=auth_headers(admin))
        assert res.status_code == 200
        assert res.get_json()["working_hours"] == {"start": "08:00", "end": "16:00"}

    def test_member_lifecycle(self, client, space, admin, member, auth_headers):
        res = client.post(f"{BASE}/spaces/{space.id}/members", json={"user_id": member.id},
                          headers=auth_headers(admin))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

        res = client.delete(f"{BASE}/spaces/{space.id}/members/{member.id}", headers=auth_headers(admin))
        assert res.status_code == 200

        res = client.post(f"{BASE}/spaces/{space.id}/members", json={"user_id": member.id, "role": "admin"},
                          headers=auth_headers(admin))
        assert res.status_code == 201
        assert res.get_json()["role"] == "admin"

    def test_member_requires_user_id(self, client, space, admin, auth_headers):
        res = client.post(f"{BASE}/spaces/{space.id}/members", json={}, headers=auth_headers(admin))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_delete_space_admin_only(self, client, space, admin, member, auth_headers):
        assert client.delete(f"{BASE}/spaces/{space.id}", headers=auth_headers(member)).status_code == 403
        assert client.delete(f"{BASE}/spaces/{space.id}", headers=auth_headers(admin)).status_code == 200
        assert client.get(f"{BASE}/spaces/{space.id}", headers=auth_headers(admin)).status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Groups & dependencies
# ═════════════════════════════════════════════════════════════════════════════


def _group(client, space_id, headers, **kw):
    payload = {"name": "Stage", "estimated_hours": 4}
    payload.update(kw)
    res = client.post(f"{BASE}/spaces/{space_id}/groups", json=payload, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


class TestGroupAPI:
    def test_create_list_and_get(self, client, space, admin, member, auth_headers):
        h = auth_headers(admin)
        start = _group(client, space.id, h, name="Script", is_start_stage=True)
        shoot = _group(client, space.id, h, name="Shoot", dependencies=[
            {"group_id": start["id"], "type": "sequential"},
        ])
        assert shoot["order"] == 2
        assert shoot["dependencies"][0]["depends_on_name"] == "Script"

        res = client.get(f"{BASE}/spaces/{space.id}/groups", headers=auth_headers(member))
        assert [g["name"] for g in res.get_json()["items"]] == ["Script", "Shoot"]

        res = client.get(f"{BASE}/groups/{shoot['id']}", headers=auth_headers(member))
        summary = res.get_json()["dependency_summary"]
        assert summary["sequential"] == [{"group_id": start["id"], "name": "Script"}]

    @pytest.mark.parametrize("hours", ["inf", "-Infinity", "nan"])
    def test_non_finite_estimate_rejected(self, client, space, admin, auth_headers, hours):
        res = client.post(f"{BASE}/spaces/{space.id}/groups",
                          json={"name": "Endless", "estimated_hours": hours, "is_start_stage": True},
                          headers=auth_headers(admin))
        assert res.status_code == 422
        assert res.get_json()["details"]["field"] == "estimated_hours"

    def test_duplicate_start_group(self, client, space, admin, auth_headers):
        h = auth_headers(admin)
        _group(client, space.id, h, name="Script", is_start_stage=True)
        res = client.post(f"{BASE}/spaces/{space.id}/groups",
                          json={"name": "Other", "is_start_stage": True}, headers=h)
        assert res.status_code == 422
        assert res.get_json()["details"]["code"] == "DUPLICATE_START_GROUP"

    def test_insert_and_reorder(self, client, space, admin, auth_headers):
        h = auth_headers(admin)
        a = _group(client, space.id, h, name="A")
        b = _group(client, space.id, h, name="B")
        res = client.post(f"{BASE}/spaces/{space.id}/groups/insert",
                          json={"name": "A2", "insert_after": a["id"]}, headers=h)
        assert res.status_code == 201
        a2 = res.get_json()
        assert a2["order"] == 2

        res = client.put(f"{BASE}/spaces/{space.id}/groups/reorder",
                         json={"group_ids": [b["id"], a2["id"], a["id"]]}, headers=h)
        assert res.status_code == 200
        assert [(g["name"], g["order"]) for g in res.get_json()["items"]] == [
            ("B", 1), ("A2", 2), ("A", 3),
        ]

        res = client.put(f"{BASE}/spaces/{space.id}/groups/reorder", json={}, headers=h)
        assert res.status_code == 400

    def test_dependency_endpoints(self, client, space, admin, auth_headers):
        h = auth_headers(admin)
        a = _group(client, space.id, h, name="A")
        b = _group(client, space.id, h, name="B")
        res = client.post(f"{BASE}/groups/{b['id']}/dependencies",
                          json={"depends_on_id": a["id"]}, headers=h)
        assert res.status_code == 201
        assert res.get_json()["dependency_type"] == "sequential"

        res = client.post(f"{BASE}/groups/{a['id']}/dependencies",
                          json={"depends_on_id": b["id"]}, headers=h)
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_CONFIGURATION"

        res = client.delete(f"{BASE}/groups/{b['id']}/dependencies/{a['id']}", headers=h)
        assert res.status_code == 200
        res = client.delete(f"{BASE}/groups/{b['id']}/dependencies/{a['id']}", headers=h)
        assert res.status_code == 404

    def test_update_and_delete(self, client, space, admin, member, auth_headers):
        h = auth_headers(admin)
        a = _group(client, space.id, h, name="A")
        res = client.put(f"{BASE}/groups/{a['id']}", json={"is_approval_gate": True}, headers=h)
        assert res.get_json()["is_approval_gate"] is True

        res = client.put(f"{BASE}/groups/{a['id']}", json={"name": "Hijack"}, headers=auth_headers(member))
        assert res.status_code == 403

        assert client.delete(f"{BASE}/groups/{a['id']}", headers=h).status_code == 200
        assert client.get(f"{BASE}/groups/{a['id']}", headers=h).status_code == 404

    def test_unknown_route_and_method(self, client, admin, auth_headers):
        h = auth_headers(admin)
        assert client.get(f"{BASE}/nowhere", headers=h).status_code == 404
        assert client.patch(f"{BASE}/spaces", headers=h).status_code == 405
