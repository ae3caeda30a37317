"""Tests for the presence registry."""

from gitchat.services.presence import PresenceRegistry, frame


class FakeConnection:
    """Records pushed frames; identity-compared like a real socket."""

    def __init__(self, fail: bool = False):
        self.frames = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(data)


class TestPresenceRegistry:
    """Test join/lookup/leave and fan-out."""

    async def test_join_and_lookup(self):
        registry = PresenceRegistry()
        conn = FakeConnection()

        assert await registry.join("alice", conn) is None
        assert await registry.lookup("alice") is conn
        assert await registry.lookup("bob") is None

    async def test_last_connect_wins(self):
        registry = PresenceRegistry()
        first, second = FakeConnection(), FakeConnection()

        await registry.join("alice", first)
        assert await registry.join("alice", second) is first
        assert await registry.lookup("alice") is second

    async def test_stale_connection_leave_keeps_newer_entry(self):
        registry = PresenceRegistry()
        first, second = FakeConnection(), FakeConnection()
        await registry.join("alice", first)
        await registry.join("alice", second)

        assert await registry.leave(first) is None
        assert await registry.online_users() == ["alice"]

    async def test_leave_returns_username(self):
        registry = PresenceRegistry()
        conn = FakeConnection()
        await registry.join("alice", conn)

        assert await registry.leave(conn) == "alice"
        assert await registry.online_users() == []
        assert await registry.leave(conn) is None

    async def test_online_users_sorted(self):
        registry = PresenceRegistry()
        for name in ("carol", "alice", "bob"):
            await registry.join(name, FakeConnection())

        assert await registry.online_users() == ["alice", "bob", "carol"]

    async def test_send_to_offline_user(self):
        registry = PresenceRegistry()
        assert await registry.send("ghost", "receiveMessage", {}) is False

    async def test_send_pushes_frame(self):
        registry = PresenceRegistry()
        conn = FakeConnection()
        await registry.join("bob", conn)

        assert await registry.send("bob", "messageDelivered", 7) is True
        assert conn.frames == [frame("messageDelivered", 7)]

    async def test_failed_send_drops_connection(self):
        registry = PresenceRegistry()
        broken = FakeConnection(fail=True)
        await registry.join("bob", broken)

        assert await registry.send("bob", "ping", None) is False
        assert await registry.lookup("bob") is None

    async def test_broadcast_reaches_unjoined_sockets(self):
        registry = PresenceRegistry()
        joined, lurker = FakeConnection(), FakeConnection()
        await registry.join("alice", joined)
        await registry.attach(lurker)

        await registry.broadcast_online_users()

        expected = {"event": "onlineUsers", "data": ["alice"]}
        assert joined.frames == [expected]
        assert lurker.frames == [expected]

    async def test_broadcast_exclude(self):
        registry = PresenceRegistry()
        a, b = FakeConnection(), FakeConnection()
        await registry.join("alice", a)
        await registry.join("bob", b)

        await registry.broadcast("notice", "hi", exclude=a)

        assert a.frames == []
        assert b.frames == [frame("notice", "hi")]

    async def test_failed_send_announces_departure(self):
        registry = PresenceRegistry()
        alice, broken = FakeConnection(), FakeConnection(fail=True)
        await registry.join("alice", alice)
        await registry.join("bob", broken)

        assert await registry.send("bob", "receiveMessage", {"messageId": 1}) is False

        assert alice.frames == [frame("onlineUsers", ["alice"])]

    async def test_broadcast_drops_dead_socket_and_resends_snapshot(self):
        registry = PresenceRegistry()
        alice, broken, carol = FakeConnection(), FakeConnection(fail=True), FakeConnection()
        await registry.join("alice", alice)
        await registry.join("bob", broken)
        await registry.join("carol", carol)

        await registry.broadcast_online_users()

        assert alice.frames[-1] == frame("onlineUsers", ["alice", "carol"])
        assert carol.frames[-1] == frame("onlineUsers", ["alice", "carol"])
        assert await registry.online_users() == ["alice", "carol"]
