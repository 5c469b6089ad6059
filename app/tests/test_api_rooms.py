import pytest
from jose import jwt

HOST = "host-uid"


@pytest.fixture
def make_room(client, auth_headers):
    def _make(waiting_room=True):
        response = client.post(
            "/api/rooms",
            json={"name": "Design sync", "waiting_room": waiting_room},
            headers=auth_headers(HOST, name="Hana"),
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _make


def test_create_room(make_room):
    room = make_room()

    assert room["room_id"].startswith("RM-")
    assert room["owner_uid"] == HOST
    assert room["status"] == "open"
    assert room["waiting_room"] is True


def test_lobby_flow(client, auth_headers, make_room):
    room = make_room()
    room_id = room["room_id"]
    guest = auth_headers("guest-uid", name="Gus")

    joined = client.post(f"/api/rooms/{room_id}/join", json={}, headers=guest)
    assert joined.status_code == 200
    assert joined.json()["participant"]["lobby_status"] == "waiting"
    assert joined.json()["participant"]["display_name"] == "Gus"
    assert joined.json()["guard"]["needs_admission"] is True

    refused = client.post("/api/meet/token", json={"room_id": room_id}, headers=guest)
    assert refused.status_code == 403
    assert refused.json()["reason"] == "waiting"

    lobby = client.get(f"/api/rooms/{room_id}/lobby", headers=auth_headers(HOST))
    assert [entry["uid"] for entry in lobby.json()] == ["guest-uid"]

    admitted = client.post(
        f"/api/rooms/{room_id}/lobby/guest-uid/admit", headers=auth_headers(HOST)
    )
    assert admitted.status_code == 200
    assert admitted.json()["lobby_status"] == "admitted"

    guard = client.get(f"/api/meet/rooms/{room_id}/guard", headers=guest)
    assert guard.json()["can_join"] is True
    assert guard.json()["needs_admission"] is False

    token = client.post("/api/meet/token", json={"room_id": room_id}, headers=guest)
    assert token.status_code == 200
    body = token.json()
    assert body["role"] == "participant"
    assert body["room_name"] == room_id
    claims = jwt.get_unverified_claims(body["token"])
    assert claims["video"]["room"] == room_id
    assert "roomAdmin" not in claims["video"]


def test_host_token_has_admin_rights(client, auth_headers, make_room):
    room = make_room()

    response = client.post(
        "/api/meet/token", json={"room_id": room["room_id"]}, headers=auth_headers(HOST)
    )

    assert response.status_code == 200
    assert response.json()["role"] == "host"
    assert jwt.get_unverified_claims(response.json()["token"])["video"]["roomAdmin"]


def test_stranger_gets_no_token(client, auth_headers, make_room):
    room = make_room(waiting_room=False)

    response = client.post(
        "/api/meet/token", json={"room_id": room["room_id"]}, headers=auth_headers("nobody")
    )

    assert response.status_code == 403
    assert response.json()["reason"] == "not_a_participant"


def test_deny_and_conflicting_decision(client, auth_headers, make_room):
    room_id = make_room()["room_id"]
    client.post(f"/api/rooms/{room_id}/join", json={}, headers=auth_headers("guest-uid"))

    denied = client.post(
        f"/api/rooms/{room_id}/lobby/guest-uid/deny", headers=auth_headers(HOST)
    )
    again = client.post(
        f"/api/rooms/{room_id}/lobby/guest-uid/admit", headers=auth_headers(HOST)
    )

    assert denied.status_code == 200
    assert denied.json()["lobby_status"] == "denied"
    assert again.status_code == 409


def test_admit_all(client, auth_headers, make_room):
    room_id = make_room()["room_id"]
    for index in range(3):
        client.post(
            f"/api/rooms/{room_id}/join", json={}, headers=auth_headers(f"guest-{index}")
        )

    response = client.post(
        f"/api/rooms/{room_id}/lobby/admit-all", headers=auth_headers(HOST)
    )

    assert response.status_code == 200
    assert response.json() == {"room_id": room_id, "admitted": 3}
    assert client.get(f"/api/rooms/{room_id}/lobby", headers=auth_headers(HOST)).json() == []


def test_non_host_cannot_manage_lobby(client, auth_headers, make_room):
    room_id = make_room()["room_id"]
    guest = auth_headers("guest-uid")
    client.post(f"/api/rooms/{room_id}/join", json={}, headers=guest)

    assert client.get(f"/api/rooms/{room_id}/lobby", headers=guest).status_code == 403
    assert (
        client.post(f"/api/rooms/{room_id}/lobby/admit-all", headers=guest).status_code
        == 403
    )


def test_locked_and_ended_rooms(client, auth_headers, make_room):
    room_id = make_room(waiting_room=False)["room_id"]

    locked = client.post(
        f"/api/rooms/{room_id}/status", json={"status": "locked"}, headers=auth_headers(HOST)
    )
    assert locked.json()["status"] == "locked"
    newcomer = client.post(
        f"/api/rooms/{room_id}/join", json={}, headers=auth_headers("late-uid")
    )
    assert newcomer.status_code == 403
    assert newcomer.json()["error"] == "denied"

    client.post(
        f"/api/rooms/{room_id}/status", json={"status": "ended"}, headers=auth_headers(HOST)
    )
    reopen = client.post(
        f"/api/rooms/{room_id}/status", json={"status": "open"}, headers=auth_headers(HOST)
    )
    assert reopen.status_code == 409


def test_unknown_room(client, auth_headers):
    response = client.get("/api/meet/rooms/RM-missing/guard", headers=auth_headers(HOST))
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"
