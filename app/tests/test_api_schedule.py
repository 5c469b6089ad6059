from datetime import datetime, timedelta, UTC

import pytest

OWNER = "owner-uid"


def _key(link: str) -> str:
    return link.split("key=", 1)[1]


@pytest.fixture
def schedule(client, auth_headers):
    def _schedule(start_in: timedelta = timedelta(minutes=1), **overrides):
        body = {
            "title": "Quarterly review",
            "start_at": (datetime.now(UTC) + start_in).isoformat(),
            "duration_min": 30,
        }
        body.update(overrides)
        response = client.post(
            "/api/schedule/create", json=body, headers=auth_headers(OWNER, name="Olive")
        )
        assert response.status_code == 200, response.text
        return response.json()

    return _schedule


def _token(client, meeting_id, key, display_name="Guest", passcode=None):
    body = {"meeting_id": meeting_id, "key": key, "display_name": display_name}
    if passcode is not None:
        body["passcode"] = passcode
    return client.post("/api/schedule/token", json=body)


def test_create_returns_links(schedule):
    created = schedule()

    assert created["meeting_id"].startswith("MTG")
    assert created["room_name"] == created["meeting_id"]
    assert created["status"] == "scheduled"
    assert f"/join/{created['meeting_id']}?key=" in created["host_link"]
    assert _key(created["host_link"]) != _key(created["participant_link"])


def test_create_requires_identity(client):
    response = client.post(
        "/api/schedule/create",
        json={"title": "x", "start_at": datetime.now(UTC).isoformat(), "duration_min": 5},
    )
    assert response.status_code == 401


def test_create_validation_errors(client, auth_headers):
    response = client.post(
        "/api/schedule/create",
        json={"title": "x", "start_at": datetime.now(UTC).isoformat(), "duration_min": 0},
        headers=auth_headers(OWNER),
    )
    assert response.status_code == 422
    assert isinstance(response.json()["detail"], list)


def test_bad_passcode_format_is_invalid_input(client, auth_headers):
    response = client.post(
        "/api/schedule/create",
        json={
            "title": "Locked",
            "start_at": datetime.now(UTC).isoformat(),
            "duration_min": 30,
            "require_passcode": True,
            "passcode": "12ab",
        },
        headers=auth_headers(OWNER),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_input"


def test_host_join_starts_meeting(client, auth_headers, schedule):
    created = schedule()

    response = _token(client, created["meeting_id"], _key(created["host_link"]), "Olive")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["role"] == "host"
    assert body["token"]
    assert body["room_name"] == created["meeting_id"]
    assert body["meeting"]["status"] == "live"

    logs = client.get(
        f"/api/schedule/{created['meeting_id']}/logs", headers=auth_headers(OWNER)
    ).json()
    assert [entry["type"] for entry in logs["entries"]] == [
        "created",
        "started",
        "tokenIssued",
    ]


def test_early_participant_waits(client, schedule):
    created = schedule(start_in=timedelta(hours=2))

    response = _token(client, created["meeting_id"], _key(created["participant_link"]))

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "waiting"
    assert body["token"] is None
    assert body["remaining_ms"] > 0
    assert body["message"].startswith("Meeting opens in")


def test_wrong_key_is_denied(client, schedule):
    created = schedule()

    response = _token(client, created["meeting_id"], "not-the-key")

    assert response.status_code == 403
    assert response.json()["status"] == "denied"
    assert response.json()["token"] is None


def test_unknown_meeting_is_not_found(client):
    response = _token(client, "MTG20310314-ZZZZ", "whatever")

    assert response.status_code == 404
    assert response.json()["status"] == "denied"


def test_closed_window_is_gone(client, schedule):
    created = schedule(start_in=timedelta(hours=-3))

    response = _token(client, created["meeting_id"], _key(created["host_link"]))

    assert response.status_code == 410
    assert response.json()["status"] == "expired"


def test_participant_passcode(client, schedule):
    created = schedule(require_passcode=True, passcode="424242")
    participant_key = _key(created["participant_link"])

    missing = _token(client, created["meeting_id"], participant_key)
    wrong = _token(client, created["meeting_id"], participant_key, passcode="000000")
    right = _token(client, created["meeting_id"], participant_key, passcode="424242")

    assert missing.status_code == 403
    assert missing.json()["message"] == "passcode required"
    assert wrong.status_code == 403
    assert right.status_code == 200
    assert right.json()["role"] == "participant"


def test_end_with_host_key_then_joins_are_denied(client, schedule):
    created = schedule()
    host_key = _key(created["host_link"])

    ended = client.post(
        "/api/schedule/end", json={"meeting_id": created["meeting_id"], "key": host_key}
    )
    assert ended.status_code == 200
    assert ended.json()["status"] == "ended"
    assert ended.json()["expires_at"] is not None

    response = _token(client, created["meeting_id"], host_key)
    assert response.status_code == 403
    assert response.json()["message"] == "ended"

    again = client.post(
        "/api/schedule/end", json={"meeting_id": created["meeting_id"], "key": host_key}
    )
    assert again.status_code == 409
    assert again.json()["error"] == "already_terminal"


def test_end_without_owner_or_key_is_refused(client, auth_headers, schedule):
    created = schedule()

    response = client.post(
        "/api/schedule/end",
        json={"meeting_id": created["meeting_id"], "key": _key(created["participant_link"])},
        headers=auth_headers("stranger"),
    )

    assert response.status_code == 403
    assert response.json()["error"] == "unauthorized"


def test_cancel_is_owner_only(client, auth_headers, schedule):
    created = schedule()

    refused = client.post(
        "/api/schedule/cancel",
        json={"meeting_id": created["meeting_id"]},
        headers=auth_headers("stranger"),
    )
    canceled = client.post(
        "/api/schedule/cancel",
        json={"meeting_id": created["meeting_id"]},
        headers=auth_headers(OWNER),
    )

    assert refused.status_code == 403
    assert canceled.status_code == 200
    assert canceled.json()["status"] == "canceled"


def test_cancel_unknown_meeting(client, auth_headers):
    response = client.post(
        "/api/schedule/cancel",
        json={"meeting_id": "MTG20310314-ZZZZ"},
        headers=auth_headers(OWNER),
    )
    assert response.status_code == 404
    assert response.json() == {
        "error": "not_found",
        "detail": "Meeting MTG20310314-ZZZZ not found",
    }


def test_meeting_details_hide_keys_and_are_owner_only(client, auth_headers, schedule):
    created = schedule()
    path = f"/api/schedule/{created['meeting_id']}"

    owner_view = client.get(path, headers=auth_headers(OWNER))
    stranger_view = client.get(path, headers=auth_headers("stranger"))
    stranger_logs = client.get(f"{path}/logs", headers=auth_headers("stranger"))

    assert owner_view.status_code == 200
    assert "host_join_key" not in owner_view.json()
    assert "passcode_hash" not in owner_view.json()
    assert stranger_view.status_code == 403
    assert stranger_logs.status_code == 403


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
