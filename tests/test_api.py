"""API tests for the scheduling routes."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from studybuddy.domain.models import Group, GroupMember, MemberRole
from studybuddy.main import app, db, group_repo, session_repo

GROUP_ID = "algorithms-101"
MONDAY_10 = "2024-01-01T10:00:00Z"


@pytest.fixture(autouse=True)
def _reset_store():
    db.clear()
    group_repo.add(
        Group(
            id=GROUP_ID,
            name="Algorithms 101",
            members=[
                GroupMember(user_id="alice", role=MemberRole.ADMIN),
                GroupMember(user_id="bob"),
                GroupMember(user_id="carol"),
            ],
        )
    )
    yield
    db.clear()


@pytest.fixture()
def client():
    return TestClient(app)


def _create(client, user="bob", **overrides):
    body = {"scheduled_date": MONDAY_10, "duration": 60, "title": "Graphs"}
    body.update(overrides)
    return client.post(
        f"/groups/{GROUP_ID}/sessions", json=body, headers={"X-User-Id": user}
    )


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


def test_create_session_returns_201(client):
    resp = _create(client)

    assert resp.status_code == 201
    data = resp.json()
    assert data["title"] == "Graphs"
    assert data["created_by"] == "bob"
    assert data["status"] == "scheduled"
    going = [a["user_id"] for a in data["attendees"] if a["rsvp_status"] == "going"]
    assert going == ["bob"]
    assert session_repo.get(data["id"]) is not None


def test_create_conflict_returns_409_with_analysis(client):
    _create(client)
    resp = _create(client, scheduled_date="2024-01-01T10:30:00Z")

    assert resp.status_code == 409
    data = resp.json()
    assert data["error"] == "SCHEDULING_CONFLICT"
    conflicts = data["details"]["conflicts"]
    assert len(conflicts) == 1
    assert conflicts[0]["overlap_minutes"] == 30.0
    assert data["details"]["has_conflict"] is True


def test_create_missing_fields_returns_400(client):
    resp = client.post(
        f"/groups/{GROUP_ID}/sessions", json={"title": "x"}, headers={"X-User-Id": "bob"}
    )

    assert resp.status_code == 400
    data = resp.json()
    assert data["error"] == "MISSING_FIELDS"
    assert sorted(data["details"]["fields"]) == ["duration", "scheduled_date"]


def test_create_outside_hours_returns_400(client):
    resp = _create(client, scheduled_date="2024-01-01T22:00:00Z")

    assert resp.status_code == 400
    assert resp.json()["error"] == "INVALID_SESSION_TIME"


def test_create_by_non_member_returns_403(client):
    resp = _create(client, user="mallory")

    assert resp.status_code == 403


def test_create_in_unknown_group_returns_404(client):
    resp = client.post(
        "/groups/nope/sessions",
        json={"scheduled_date": MONDAY_10, "duration": 60},
        headers={"X-User-Id": "bob"},
    )

    assert resp.status_code == 404
    assert resp.json()["error"] == "GROUP_NOT_FOUND"


def test_missing_user_header_returns_422(client):
    resp = client.post(
        f"/groups/{GROUP_ID}/sessions", json={"scheduled_date": MONDAY_10, "duration": 60}
    )

    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Conflict check
# ---------------------------------------------------------------------------


def test_conflict_check_reports_near_miss(client):
    _create(client)

    resp = client.post(
        "/conflicts/check",
        json={"user_id": "bob", "start": "2024-01-01T11:05:00Z", "duration": 30},
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["has_conflict"] is False
    assert len(data["near_misses"]) == 1
    assert data["near_misses"][0]["gap_minutes"] == 5.0


def test_conflict_check_invalid_start_returns_400(client):
    resp = client.post(
        "/conflicts/check", json={"user_id": "bob", "start": "not a date", "duration": 30}
    )

    assert resp.status_code == 400
    assert resp.json()["error"] == "INVALID_INPUT"


# ---------------------------------------------------------------------------
# Read, update, delete
# ---------------------------------------------------------------------------


def test_get_and_list_sessions(client):
    session_id = _create(client).json()["id"]

    assert client.get(f"/sessions/{session_id}").json()["id"] == session_id
    listed = client.get(f"/groups/{GROUP_ID}/sessions", headers={"X-User-Id": "carol"})
    assert [s["id"] for s in listed.json()] == [session_id]


def test_unknown_session_returns_404(client):
    resp = client.get("/sessions/does-not-exist")

    assert resp.status_code == 404
    assert resp.json()["error"] == "SESSION_NOT_FOUND"


def test_update_by_creator(client):
    session_id = _create(client).json()["id"]

    resp = client.put(
        f"/sessions/{session_id}",
        json={"title": "Dynamic programming", "duration": 90},
        headers={"X-User-Id": "bob"},
    )

    assert resp.status_code == 200
    assert resp.json()["title"] == "Dynamic programming"
    assert resp.json()["duration_minutes"] == 90


def test_update_by_other_member_returns_403(client):
    session_id = _create(client).json()["id"]

    resp = client.put(
        f"/sessions/{session_id}", json={"title": "Hijack"}, headers={"X-User-Id": "carol"}
    )

    assert resp.status_code == 403


def test_update_rejects_unknown_fields(client):
    session_id = _create(client).json()["id"]

    resp = client.put(
        f"/sessions/{session_id}", json={"status": "completed"}, headers={"X-User-Id": "bob"}
    )

    assert resp.status_code == 422


def test_delete_by_group_admin(client):
    session_id = _create(client).json()["id"]

    resp = client.delete(f"/sessions/{session_id}", headers={"X-User-Id": "alice"})

    assert resp.status_code == 204
    assert client.get(f"/sessions/{session_id}").status_code == 404
    assert group_repo.get(GROUP_ID).session_ids == []


# ---------------------------------------------------------------------------
# RSVP, attendees and status
# ---------------------------------------------------------------------------


def test_rsvp(client):
    session_id = _create(client).json()["id"]

    resp = client.put(
        f"/sessions/{session_id}/rsvp", json={"status": "maybe"}, headers={"X-User-Id": "carol"}
    )

    assert resp.status_code == 200
    statuses = {a["user_id"]: a["rsvp_status"] for a in resp.json()["attendees"]}
    assert statuses["carol"] == "maybe"


def test_rsvp_invited_is_rejected(client):
    session_id = _create(client).json()["id"]

    resp = client.put(
        f"/sessions/{session_id}/rsvp", json={"status": "invited"}, headers={"X-User-Id": "carol"}
    )

    assert resp.status_code == 400


def test_add_and_remove_attendee(client):
    session_id = _create(client).json()["id"]
    headers = {"X-User-Id": "bob"}

    added = client.post(
        f"/sessions/{session_id}/attendees", json={"user_id": "carol"}, headers=headers
    )
    assert added.status_code == 200
    statuses = {a["user_id"]: a["rsvp_status"] for a in added.json()["attendees"]}
    assert statuses["carol"] == "invited"

    removed = client.delete(f"/sessions/{session_id}/attendees/carol", headers=headers)
    assert removed.status_code == 200
    assert "carol" not in [a["user_id"] for a in removed.json()["attendees"]]


def test_status_transitions(client):
    session_id = _create(client).json()["id"]
    headers = {"X-User-Id": "bob"}

    started = client.post(
        f"/sessions/{session_id}/status", json={"status": "ongoing"}, headers=headers
    )
    assert started.status_code == 200
    assert started.json()["status"] == "ongoing"

    reopened = client.post(
        f"/sessions/{session_id}/status", json={"status": "scheduled"}, headers=headers
    )
    assert reopened.status_code == 409
    assert reopened.json()["error"] == "INVALID_STATUS_TRANSITION"


def test_completed_session_is_immutable(client):
    session_id = _create(client).json()["id"]
    headers = {"X-User-Id": "bob"}
    client.post(f"/sessions/{session_id}/status", json={"status": "ongoing"}, headers=headers)
    client.post(f"/sessions/{session_id}/status", json={"status": "completed"}, headers=headers)

    resp = client.put(f"/sessions/{session_id}", json={"title": "Late edit"}, headers=headers)

    assert resp.status_code == 409
    assert resp.json()["error"] == "SESSION_IMMUTABLE"


# ---------------------------------------------------------------------------
# Upcoming and date-range queries
# ---------------------------------------------------------------------------


def test_upcoming_lists_future_sessions(client):
    future = _create(client, scheduled_date="2099-01-05T10:00:00Z").json()["id"]
    _create(client)  # 2024, already past

    resp = client.get("/sessions/upcoming", headers={"X-User-Id": "carol"})

    assert resp.status_code == 200
    assert [s["id"] for s in resp.json()] == [future]


def test_upcoming_rejects_zero_limit(client):
    resp = client.get("/sessions/upcoming", params={"limit": 0}, headers={"X-User-Id": "bob"})

    assert resp.status_code == 400
    assert resp.json()["error"] == "INVALID_INPUT"


def test_range_defaults_to_a_week(client):
    first = _create(client).json()["id"]
    _create(client, scheduled_date="2024-01-09T10:00:00Z")

    resp = client.get(
        "/sessions/range", params={"start": "2024-01-01T00:00:00Z"}, headers={"X-User-Id": "bob"}
    )

    assert resp.status_code == 200
    assert [s["id"] for s in resp.json()] == [first]


def test_range_over_ninety_days_returns_400(client):
    resp = client.get(
        "/sessions/range",
        params={"start": "2024-01-01T00:00:00Z", "end": "2024-06-01T00:00:00Z"},
        headers={"X-User-Id": "bob"},
    )

    assert resp.status_code == 400
    assert "90 days" in resp.json()["message"]


def test_range_for_foreign_group_returns_403(client):
    resp = client.get(
        "/sessions/range",
        params={"start": "2024-01-01T00:00:00Z", "group_id": GROUP_ID},
        headers={"X-User-Id": "mallory"},
    )

    assert resp.status_code == 403


def test_range_status_filter(client):
    session_id = _create(client).json()["id"]
    client.post(
        f"/sessions/{session_id}/status", json={"status": "cancelled"}, headers={"X-User-Id": "bob"}
    )

    resp = client.get(
        "/sessions/range",
        params={"start": "2024-01-01T00:00:00Z", "status": "scheduled"},
        headers={"X-User-Id": "bob"},
    )

    assert resp.json() == []
