"""Tests for the async chat client."""

import json

import httpx
import pytest

from websockets.exceptions import ConnectionClosed

from gitchat.client.chat_client import ChatClient
from gitchat.client.timeline import Confirmed, Failed, Pending


class FakeSocket:
    """Collects frames sent by the client."""

    def __init__(self):
        self.sent = []
        self.closed = False

    async def send(self, raw):
        self.sent.append(json.loads(raw))

    async def close(self):
        self.closed = True

    def events(self):
        return [frame["event"] for frame in self.sent]


class StreamSocket(FakeSocket):
    """Yields queued server frames, then either ends or drops the connection."""

    def __init__(self, incoming, drop=False):
        super().__init__()
        self.incoming = incoming
        self.drop = drop

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for raw in self.incoming:
            yield raw
        if self.drop:
            raise ConnectionClosed(None, None)


def server_record(message_id, body, **extra):
    return {
        "_id": message_id,
        "conversationId": 1,
        "sender": "alice",
        "receiver": "bob",
        "message": body,
        "messageType": "text",
        "imageUrl": None,
        "read": False,
        "reactions": [],
        "replyTo": None,
        "forwardedFrom": None,
        **extra,
    }


def make_client(handler, socket=None, **kwargs):
    async def connect(url, additional_headers=None):
        return socket

    return ChatClient(
        "http://chat.test",
        "alice",
        "token-123",
        transport=httpx.MockTransport(handler),
        connect=connect,
        **kwargs,
    )


class TestConnect:
    """Test the bounded reconnect policy."""

    async def test_connect_joins(self):
        socket = FakeSocket()
        client = make_client(lambda request: httpx.Response(404), socket)

        await client.connect()

        assert client.connected
        assert socket.sent == [{"event": "join", "data": "alice"}]
        await client.close()

    async def test_gives_up_after_attempts(self):
        attempts = []

        async def refuse(url, additional_headers=None):
            attempts.append(url)
            raise OSError("connection refused")

        client = ChatClient(
            "http://chat.test",
            "alice",
            "token-123",
            transport=httpx.MockTransport(lambda request: httpx.Response(404)),
            connect=refuse,
            reconnect_attempts=5,
            reconnect_delay=0,
        )

        with pytest.raises(ConnectionError):
            await client.connect()
        assert attempts == ["ws://chat.test/ws"] * 5
        await client.close()

    async def test_zero_attempts_is_respected(self):
        attempts = []

        async def never(url, additional_headers=None):
            attempts.append(url)

        client = ChatClient(
            "http://chat.test",
            "alice",
            "token-123",
            transport=httpx.MockTransport(lambda request: httpx.Response(404)),
            connect=never,
            reconnect_attempts=0,
        )

        assert client.reconnect_attempts == 0
        with pytest.raises(ConnectionError):
            await client.connect()
        assert attempts == []
        await client.close()

    async def test_emit_without_connection(self):
        client = make_client(lambda request: httpx.Response(404))
        assert await client.emit("ping", None) is False
        await client.close()


class TestSend:
    """Test REST-first sending."""

    async def test_send_text_confirms_then_notifies(self):
        socket = FakeSocket()
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            assert request.headers["cookie"] == "session_token=token-123"
            return httpx.Response(201, json=server_record(7, "hi bob"))

        client = make_client(handler, socket)
        await client.connect()

        temp_id = await client.send_text(1, "bob", "hi bob")

        [entry] = client.timeline(1).entries
        assert isinstance(entry, Confirmed)
        assert entry.server_id == 7
        assert temp_id.startswith("temp-")
        assert seen[0]["conversationId"] == 1
        assert socket.events() == ["join", "sendMessage"]
        assert socket.sent[1]["data"]["messageId"] == 7
        await client.close()

    async def test_failed_send_then_retry(self):
        socket = FakeSocket()
        responses = [httpx.Response(503), httpx.Response(201, json=server_record(8, "retry me"))]

        client = make_client(lambda request: responses.pop(0), socket)
        await client.connect()

        temp_id = await client.send_text(1, "bob", "retry me")
        [entry] = client.timeline(1).entries
        assert isinstance(entry, Failed)
        assert socket.events() == ["join"]

        await client.retry(1, temp_id)
        [entry] = client.timeline(1).entries
        assert isinstance(entry, Confirmed)
        assert socket.events() == ["join", "sendMessage"]
        await client.close()


class TestDispatch:
    """Test routing server events into local state."""

    async def test_dispatch_events(self):
        client = make_client(lambda request: httpx.Response(404))
        incoming = {**server_record(20, "yo", sender="bob", receiver="alice"), "messageId": 20}

        client.dispatch({"event": "receiveMessage", "data": incoming})
        client.dispatch({"event": "receiveMessage", "data": incoming})
        assert [e.server_id for e in client.timeline(1).entries] == [20]

        client.dispatch({"event": "messageReaction",
                         "data": {"messageId": 20, "conversationId": 1, "reaction": "love", "username": "bob"}})
        assert client.timeline(1).get(20).message["reactions"] == [{"username": "bob", "reaction": "love"}]

        client.dispatch({"event": "messageDelivered", "data": 20})
        assert client.timeline(1).get(20).delivered is True

        client.dispatch({"event": "onlineUsers", "data": ["alice", "bob"]})
        assert client.online_users == ["alice", "bob"]

        client.dispatch({"event": "messageDeleted", "data": {"messageId": 20, "conversationId": 1}})
        assert client.timeline(1).entries == []

        assert client.dispatch({"event": "somethingNew", "data": None}) is False
        await client.close()


class TestLifecycle:
    """Test delete and react round trips."""

    async def test_delete_for_everyone(self):
        socket = FakeSocket()
        requests = []

        def handler(request):
            requests.append((request.method, request.url.path))
            return httpx.Response(200, json={"success": True, "messageId": 20, "conversationId": 1})

        client = make_client(handler, socket)
        await client.connect()
        client.timeline(1).receive_live(server_record(20, "bye"))

        await client.delete_for_everyone(1, 20)

        assert requests == [("DELETE", "/api/chat/messages/20")]
        assert client.timeline(1).entries == []
        assert socket.sent[-1] == {
            "event": "deleteMessageForEveryone",
            "data": {"messageId": 20, "conversationId": 1},
        }
        await client.close()

    async def test_delete_for_me_has_no_live_event(self):
        socket = FakeSocket()
        client = make_client(lambda request: httpx.Response(200, json={"success": True}), socket)
        await client.connect()
        client.timeline(1).receive_live(server_record(20, "bye"))

        await client.delete_for_me(1, 20)

        assert client.timeline(1).visible() == []
        assert socket.events() == ["join"]
        await client.close()

    async def test_react_rest_failure_emits_nothing(self):
        socket = FakeSocket()
        client = make_client(lambda request: httpx.Response(403, json={"detail": "Access denied"}), socket)
        await client.connect()

        with pytest.raises(httpx.HTTPStatusError):
            await client.react(1, 20, "like")
        assert socket.events() == ["join"]
        await client.close()

    async def test_load_history(self):
        page = [server_record(1, "a"), server_record(2, "b")]
        client = make_client(lambda request: httpx.Response(200, json=page))

        timeline = await client.load_history(1)

        assert [e.server_id for e in timeline.entries] == [1, 2]
        await client.close()

    async def test_forward_kept_beside_pending_lookalike(self):
        socket = FakeSocket()
        forwarded = server_record(30, "same words", conversationId=2, receiver="carol", forwardedFrom="bob")
        client = make_client(lambda request: httpx.Response(201, json=forwarded), socket)
        await client.connect()
        client.timeline(2).append_pending({"sender": "alice", "receiver": "carol", "message": "same words",
                                           "messageType": "text", "conversationId": 2})

        await client.forward(20, 2, "carol")

        assert [type(e) for e in client.timeline(2).entries] == [Pending, Confirmed]
        assert client.timeline(2).get(30).message["forwardedFrom"] == "bob"
        assert socket.events() == ["join", "messageForwarded"]
        await client.close()


class TestListen:
    """Test the receive loop."""

    async def test_bad_frames_are_skipped(self):
        client = make_client(lambda request: httpx.Response(404))

        assert client.receive("{not json") is False
        assert client.receive(json.dumps(["not", "an", "object"])) is False
        assert client.receive(json.dumps({"event": "receiveMessage", "data": {"_id": 3}})) is False
        assert client.receive(json.dumps({"event": "onlineUsers", "data": ["bob"]})) is True
        assert client.online_users == ["bob"]
        await client.close()

    async def test_listen_survives_bad_frame(self):
        socket = StreamSocket([
            "garbage",
            json.dumps({"event": "receiveMessage", "data": {"message": "no conversation"}}),
            json.dumps({"event": "receiveMessage", "data": {**server_record(9, "hi", sender="bob"), "messageId": 9}}),
        ])
        client = make_client(lambda request: httpx.Response(404), socket)

        await client.listen()

        assert [e.server_id for e in client.timeline(1).entries] == [9]
        await client.close()

    async def test_reconnect_refetches_open_timelines(self):
        first = StreamSocket(
            [json.dumps({"event": "receiveMessage",
                         "data": {**server_record(20, "soon deleted", sender="bob"), "messageId": 20}})],
            drop=True,
        )
        second = StreamSocket([])
        sockets = [first, second]
        fetched = []

        async def connect(url, additional_headers=None):
            return sockets.pop(0)

        def handler(request):
            fetched.append(request.url.path)
            return httpx.Response(200, json=[server_record(21, "after the gap", sender="bob")])

        client = ChatClient(
            "http://chat.test",
            "alice",
            "token-123",
            transport=httpx.MockTransport(handler),
            connect=connect,
            reconnect_delay=0,
        )

        await client.listen()

        assert fetched == ["/api/chat/messages/1"]
        assert [e.server_id for e in client.timeline(1).entries] == [21]
        assert second.events() == ["join"]
        await client.close()
