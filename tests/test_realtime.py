"""Tests for the live channel."""

import pytest
from starlette.websockets import WebSocketDisconnect

from conftest import cookie


@pytest.fixture
def users(make_user):
    return {name: make_user(name) for name in ("alice", "bob", "carol")}


@pytest.fixture
def conversation_id(client, users):
    response = client.get("/api/chat/conversation/bob", headers=cookie(users["alice"]))
    return response.json()["_id"]


def connect(client, token):
    return client.websocket_connect("/ws", headers={"Cookie": f"session_token={token}"})


def join(ws, username):
    ws.send_json({"event": "join", "data": username})


def drain_until(ws, event):
    """Read frames until ``event`` arrives; returns its data."""
    while True:
        message = ws.receive_json()
        if message["event"] == event:
            return message["data"]


def wait_online(ws, *names):
    """Read presence snapshots until all ``names`` are registered."""
    while True:
        online = drain_until(ws, "onlineUsers")
        if set(names) <= set(online):
            return online


def assert_quiet(ws):
    """Only presence snapshots are queued for ``ws`` before a ping is answered."""
    ws.send_json({"event": "ping"})
    while True:
        message = ws.receive_json()
        if message["event"] == "onlineUsers":
            continue
        assert message == {"event": "pong", "data": None}
        return


class TestConnection:
    """Test connecting and presence."""

    def test_unauthenticated_socket_closed(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws"):
                pass
        assert exc.value.code == 4401

    def test_join_broadcasts_online_users(self, client, users):
        with connect(client, users["alice"]) as ws_a:
            join(ws_a, "alice")
            assert ws_a.receive_json() == {"event": "onlineUsers", "data": ["alice"]}

            with connect(client, users["bob"]) as ws_b:
                join(ws_b, "bob")
                assert ws_b.receive_json() == {"event": "onlineUsers", "data": ["alice", "bob"]}
                assert ws_a.receive_json() == {"event": "onlineUsers", "data": ["alice", "bob"]}

            assert ws_a.receive_json() == {"event": "onlineUsers", "data": ["alice"]}

    def test_cannot_join_as_someone_else(self, client, users):
        with connect(client, users["alice"]) as ws:
            join(ws, "bob")
            reply = ws.receive_json()
            assert reply["event"] == "error"

    def test_join_accepts_object_payload(self, client, users):
        with connect(client, users["alice"]) as ws:
            ws.send_json({"event": "join", "data": {"username": "alice"}})
            assert ws.receive_json() == {"event": "onlineUsers", "data": ["alice"]}

    def test_malformed_frames(self, client, users):
        with connect(client, users["alice"]) as ws:
            ws.send_text("{not json")
            assert ws.receive_json()["event"] == "error"

            ws.send_json({"event": "dance"})
            assert ws.receive_json()["event"] == "error"

            ws.send_bytes(b"\x00\x01")
            assert ws.receive_json() == {"event": "error", "data": {"detail": "Binary frames are not supported"}}

            assert_quiet(ws)


class TestFanOut:
    """Test event delivery between participants."""

    def test_send_message_reaches_receiver_and_acks_sender(self, client, users, conversation_id):
        record = client.post(
            "/api/chat/messages",
            json={"receiver": "bob", "message": "hi bob", "conversationId": conversation_id},
            headers=cookie(users["alice"]),
        ).json()

        with connect(client, users["alice"]) as ws_a, connect(client, users["bob"]) as ws_b:
            join(ws_a, "alice")
            join(ws_b, "bob")
            wait_online(ws_b, "bob")

            ws_a.send_json({
                "event": "sendMessage",
                "data": {
                    "sender": "mallory",
                    "receiver": "bob",
                    "message": record["message"],
                    "conversationId": conversation_id,
                    "messageId": record["_id"],
                    "messageType": "text",
                },
            })

            pushed = drain_until(ws_b, "receiveMessage")
            assert pushed["_id"] == record["_id"]
            assert pushed["sender"] == "alice"
            assert pushed["message"] == "hi bob"
            assert "createdAt" in pushed

            assert drain_until(ws_a, "messageDelivered") == record["_id"]

    def test_offline_receiver_gets_nothing(self, client, users, conversation_id):
        with connect(client, users["alice"]) as ws_a:
            join(ws_a, "alice")
            wait_online(ws_a, "alice")

            ws_a.send_json({
                "event": "sendMessage",
                "data": {"receiver": "bob", "message": "anyone?", "conversationId": conversation_id, "messageId": 1},
            })

            assert_quiet(ws_a)

    def test_send_to_non_participant_rejected(self, client, users, conversation_id):
        with connect(client, users["alice"]) as ws_a:
            ws_a.send_json({
                "event": "sendMessage",
                "data": {"receiver": "carol", "message": "x", "conversationId": conversation_id, "messageId": 1},
            })
            assert ws_a.receive_json()["event"] == "error"

    def test_delete_is_participant_scoped(self, client, users, conversation_id):
        with connect(client, users["alice"]) as ws_a, \
                connect(client, users["bob"]) as ws_b, \
                connect(client, users["carol"]) as ws_c:
            join(ws_a, "alice")
            join(ws_b, "bob")
            join(ws_c, "carol")
            wait_online(ws_b, "bob")

            ws_a.send_json({
                "event": "deleteMessageForEveryone",
                "data": {"messageId": 42, "conversationId": conversation_id},
            })

            assert drain_until(ws_b, "messageDeleted") == {
                "messageId": 42,
                "conversationId": conversation_id,
                "deletedBy": "alice",
            }
            assert_quiet(ws_a)
            assert_quiet(ws_c)

    def test_outsider_cannot_push_delete(self, client, users, conversation_id):
        with connect(client, users["carol"]) as ws_c:
            ws_c.send_json({
                "event": "deleteMessageForEveryone",
                "data": {"messageId": 42, "conversationId": conversation_id},
            })
            assert ws_c.receive_json()["event"] == "error"

    def test_reaction_reaches_other_participant(self, client, users, conversation_id):
        with connect(client, users["alice"]) as ws_a, connect(client, users["bob"]) as ws_b:
            join(ws_a, "alice")
            join(ws_b, "bob")
            wait_online(ws_a, "alice")

            ws_b.send_json({
                "event": "messageReaction",
                "data": {"messageId": 5, "conversationId": conversation_id, "reaction": "laugh"},
            })

            assert drain_until(ws_a, "messageReaction") == {
                "messageId": 5,
                "conversationId": conversation_id,
                "reaction": "laugh",
                "username": "bob",
            }

    def test_forward_notice(self, client, users, conversation_id):
        with connect(client, users["alice"]) as ws_a, connect(client, users["carol"]) as ws_c:
            join(ws_a, "alice")
            join(ws_c, "carol")
            wait_online(ws_c, "carol")

            ws_a.send_json({
                "event": "messageForwarded",
                "data": {"conversationId": 9, "receiver": "carol", "sender": "bob"},
            })

            assert drain_until(ws_c, "messageForwarded") == {
                "conversationId": 9,
                "receiver": "carol",
                "sender": "alice",
            }
