from __future__ import annotations

import time

import pytest
from fastapi import status
from starlette.testclient import WebSocketTestSession
from starlette.websockets import WebSocketDisconnect

from app.core.security import create_access_token


def _register(client) -> tuple[str, str]:
    response = client.post("/api/auth/register", json={"email": "socket@masq.io", "password": "wonderland"})
    assert response.status_code == 201, response.text
    body = response.json()
    mask = client.post(
        "/api/masks",
        json={"displayName": "Socket"},
        headers={"Authorization": f"Bearer {body['accessToken']}"},
    ).json()["mask"]
    return body["accessToken"], mask["id"]


def test_socket_survives_keepalive_timeout(client) -> None:
    """Ensure that the server side keepalive pings keep the socket open."""

    token, _ = _register(client)
    settings = client.app.state.settings
    settings.websocket_keepalive_timeout_seconds = 0.1
    settings.websocket_keepalive_ping_interval_seconds = 0.05

    with client.websocket_connect(f"/ws?token={token}") as connection:
        _assert_keepalive_sequence(connection)


def _assert_keepalive_sequence(connection: WebSocketTestSession) -> None:
    """Observe two keepalive pings with client traffic in between to keep the connection active."""

    time.sleep(0.15)
    ping = connection.receive_json()
    assert ping == {"type": "PING"}

    connection.send_json({"type": "PING"})
    assert connection.receive_json() == {"type": "PONG", "data": {}}

    time.sleep(0.12)
    ping_again = connection.receive_json()
    assert ping_again == {"type": "PING"}


def test_socket_requires_token(client) -> None:
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws"):
            pass
    assert exc.value.code == status.WS_1008_POLICY_VIOLATION


def test_socket_rejects_invalid_token(client) -> None:
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws?token=garbage"):
            pass
    assert exc.value.code == status.WS_1008_POLICY_VIOLATION


def test_socket_rejects_token_of_unknown_user(client) -> None:
    token = create_access_token("ghost", settings=client.app.state.settings)

    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/ws?token={token}"):
            pass
    assert exc.value.code == status.WS_1008_POLICY_VIOLATION


def test_socket_protocol_round_trip(client) -> None:
    token, mask_id = _register(client)
    room = client.post(
        "/api/rooms",
        json={"maskId": mask_id, "title": "Wire", "kind": "RITUAL"},
        headers={"Authorization": f"Bearer {token}"},
    ).json()["room"]

    with client.websocket_connect("/ws", headers={"Authorization": f"Bearer {token}"}) as connection:
        connection.send_text("{not json")
        assert connection.receive_json() == {"type": "ERROR", "data": {"message": "Invalid JSON payload"}}

        connection.send_json({"type": "TELEPORT", "data": {}})
        assert connection.receive_json()["data"]["message"] == "Invalid socket event payload"

        connection.send_json({"type": "JOIN_ROOM", "data": {"roomId": room["id"], "maskId": mask_id}})
        state = connection.receive_json()
        assert state["type"] == "ROOM_STATE"
        assert state["data"]["room"]["id"] == room["id"]
        assert [member["maskId"] for member in state["data"]["members"]] == [mask_id]
        assert connection.receive_json()["type"] == "ROOM_STATE"

        connection.send_json(
            {"type": "SEND_MESSAGE", "data": {"roomId": room["id"], "maskId": mask_id, "body": "<b>a</b> < b & c"}}
        )
        message = connection.receive_json()
        assert message["type"] == "NEW_MESSAGE"
        assert message["data"]["message"]["body"] == "a &lt; b &amp; c"
