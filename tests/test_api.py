"""Tests for the FastAPI layer."""

import pytest
from fastapi.testclient import TestClient

from web.backend.app.main import app
from web.backend.app.middleware.auth import get_engine

from conftest import CENTER, north_of

CITIZEN = {"X-User-Id": "citizen-1", "X-User-Role": "citizen"}
AUTHORITY = {"X-User-Id": "officer-1", "X-User-Role": "authority"}
ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def _here(point=CENTER):
    return {"userLat": point.latitude, "userLng": point.longitude}


def _report(client, headers=CITIZEN, **overrides):
    body = {
        "title": "Broken street light",
        "description": "The light at the corner has been out for a week.",
        "category": "lighting",
        "latitude": CENTER.latitude,
        "longitude": CENTER.longitude,
        **_here(),
    }
    body.update(overrides)
    resp = client.post("/api/issues", json=body, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_report_and_list(client):
    created = _report(client)
    assert created["status"] == "reported"
    assert not created["is_anonymous"]

    resp = client.get("/api/issues", params={"lat": CENTER.latitude, "lng": CENTER.longitude, "radius": 1})
    assert resp.status_code == 200
    data = resp.json()
    assert [i["id"] for i in data["issues"]] == [created["id"]]
    assert data["issues"][0]["distance_meters"] == 0
    assert data["metadata"]["radius"] == 1.0
    assert data["metadata"]["total"] == 1


def test_list_invalid_radius(client):
    resp = client.get("/api/issues", params={"lat": 0, "lng": 0, "radius": 50})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_RADIUS"


@pytest.mark.parametrize("radius", ["nan", "inf", "-inf"])
def test_list_non_finite_radius(client, radius):
    resp = client.get("/api/issues", params={"lat": 0, "lng": 0, "radius": radius})
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "INVALID_RADIUS"
    assert error["details"]["provided"] == radius


def test_list_invalid_coordinates(client):
    resp = client.get("/api/issues", params={"lat": 95, "lng": 0})
    assert resp.status_code == 400
    err = resp.json()["error"]
    assert err["code"] == "INVALID_COORDINATES"
    assert "timestamp" in err


def test_report_too_far(client):
    far = north_of(CENTER, 15)
    resp = client.post(
        "/api/issues",
        json={
            "title": "Broken street light",
            "description": "The light at the corner has been out for a week.",
            "category": "lighting",
            "latitude": CENTER.latitude,
            "longitude": CENTER.longitude,
            **_here(far),
        },
        headers=CITIZEN,
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "ISSUE_TOO_FAR"


def test_detail_requires_location(client):
    issue = _report(client)
    resp = client.get(f"/api/issues/{issue['id']}")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "USER_LOCATION_REQUIRED"


def test_detail_access_denied(client):
    issue = _report(client)
    resp = client.get(f"/api/issues/{issue['id']}", params=_here(north_of(CENTER, 6)))
    assert resp.status_code == 403
    err = resp.json()["error"]
    assert err["code"] == "LOCATION_ACCESS_DENIED"
    assert err["details"]["distance_km"] == pytest.approx(6, abs=1e-3)


def test_detail_and_history(client):
    issue = _report(client)
    resp = client.get(f"/api/issues/{issue['id']}", params=_here(north_of(CENTER, 2)))
    assert resp.status_code == 200
    assert resp.json()["distance_km"] == pytest.approx(2, abs=1e-3)

    hist = client.get(f"/api/issues/{issue['id']}/history", params=_here()).json()
    assert hist["current_status"] == "reported"
    assert len(hist["history"]) == 1


def test_unknown_issue(client):
    resp = client.get("/api/issues/nope", params=_here())
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "ISSUE_NOT_FOUND"


def test_status_update_requires_authority(client):
    issue = _report(client)
    body = {"status": "in_progress", "comment": "Crew dispatched", **_here()}
    assert client.patch(f"/api/issues/{issue['id']}/status", json=body, headers=CITIZEN).status_code == 403
    assert client.patch(f"/api/issues/{issue['id']}/status", json=body).status_code == 401

    resp = client.patch(f"/api/issues/{issue['id']}/status", json=body, headers=AUTHORITY)
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["issue"]["status"] == "in_progress"
    assert data["entry"]["previous_status"] == "reported"
    assert data["entry"]["actor_id"] == "officer-1"


def test_status_update_errors(client):
    issue = _report(client)
    url = f"/api/issues/{issue['id']}/status"
    same = client.patch(url, json={"status": "reported", "comment": "No change", **_here()}, headers=ADMIN)
    assert same.json()["error"]["code"] == "STATUS_UNCHANGED"
    short = client.patch(url, json={"status": "resolved", "comment": "ok", **_here()}, headers=ADMIN)
    assert short.json()["error"]["code"] == "COMMENT_REQUIRED"


def test_flag_flow(client):
    issue = _report(client)
    url = f"/api/issues/{issue['id']}/flag"
    body = {"reason": "This is advertising", "flag_type": "spam", **_here()}

    assert client.post(url, json=body).status_code == 401
    assert client.post(url, json=body, headers=CITIZEN).json()["error"]["code"] == "SELF_FLAG"

    first = client.post(url, json=body, headers={"X-Session-Token": "sess-1"})
    assert first.status_code == 201
    assert first.json()["flag_count"] == 1

    dup = client.post(url, json=body, headers={"X-Session-Token": "sess-1"})
    assert dup.status_code == 409

    client.post(url, json=body, headers={"X-User-Id": "u2"})
    third = client.post(url, json=body, headers={"X-User-Id": "u3"}).json()
    assert third["auto_hidden"]
    assert not third["visible"]

    assert client.get(f"/api/issues/{issue['id']}", params=_here()).status_code == 404


def test_admin_review_flow(client):
    issue = _report(client)
    url = f"/api/issues/{issue['id']}/flag"
    for user in ("u1", "u2", "u3"):
        client.post(url, json={"reason": "Not real", **_here()}, headers={"X-User-Id": user})

    assert client.get("/api/admin/flagged", headers=AUTHORITY).status_code == 403
    queue = client.get("/api/admin/flagged", headers=ADMIN).json()
    assert queue["total"] == 1
    assert len(queue["issues"][0]["flags"]) == 3

    resp = client.post(
        f"/api/admin/issues/{issue['id']}/review",
        json={"action": "approve", "comment": "Legitimate"},
        headers=ADMIN,
    )
    assert resp.status_code == 200
    assert resp.json()["resolved_count"] == 3
    assert resp.json()["visible"]
    assert client.get(f"/api/issues/{issue['id']}", params=_here()).status_code == 200

    stats = client.get("/api/admin/users/u1/flagging-stats", headers=ADMIN).json()
    assert stats["signal"]["rejected_flag_count"] == 1
    assert stats["by_type"] == {"spam": 1}

    logs = client.get("/api/admin/logs", headers=ADMIN).json()
    assert logs[0]["action"] == "flag_review"
    assert logs[0]["target_id"] == issue["id"]


def test_unknown_role_rejected(client):
    resp = client.get("/api/admin/flagged", headers={"X-User-Id": "x", "X-User-Role": "mayor"})
    assert resp.status_code == 400


def test_distance_groups_closest_and_stats(client):
    near = _report(client, title="Broken bench", latitude=north_of(CENTER, 0.5).latitude)
    far = _report(client, title="Faded crossing", latitude=north_of(CENTER, 2.5).latitude)
    center = {"lat": CENTER.latitude, "lng": CENTER.longitude}

    groups = client.get("/api/issues/by-distance", params=center)
    assert groups.status_code == 200, groups.text
    body = groups.json()
    assert [g["label"] for g in body["groups"]] == ["Very Close", "Close", "Nearby"]
    assert [g["count"] for g in body["groups"]] == [1, 1, 0]
    assert body["groups"][0]["issues"][0]["id"] == near["id"]
    assert body["groups"][1]["issues"][0]["id"] == far["id"]
    assert body["total"] == 2

    closest = client.get("/api/issues/closest", params={**center, "count": 1}).json()
    assert closest["count"] == 1
    assert closest["issues"][0]["id"] == near["id"]
    assert client.get("/api/issues/closest", params={**center, "count": 0}).status_code == 400

    stats = client.get("/api/issues/stats", params=center).json()
    assert stats["total"] == 2
    assert stats["by_distance"]["within_1km"] == 1
    assert stats["by_distance"]["within_3km"] == 2
    assert stats["by_category"] == {"lighting": 2}
    assert stats["by_status"] == {"reported": 2}
    assert stats["generated_at"]


def test_stats_rejects_bad_center(client):
    resp = client.get("/api/issues/stats", params={"lat": 95, "lng": 0})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_COORDINATES"
