from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Dict, List

import pytest
from websockets.exceptions import ConnectionClosedError

from ddp_dump.collectors.ddp_client import DdpClient, decode_frame, encode_frame, sockjs_path
from ddp_dump.config import resolve_config
from ddp_dump.types import DdpConnectionError, DdpSubscriptionError


Responder = Callable[[Dict[str, Any]], List[Dict[str, Any]]]


class FakeSocket:
    """Scripted websocket: every sent message is answered by `responder`."""

    def __init__(self, responder: Responder, sockjs: bool = False):
        self.responder = responder
        self.sockjs = sockjs
        self.sent: List[Dict[str, Any]] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False
        if sockjs:
            self.incoming.put_nowait("o")

    def push(self, *msgs: Dict[str, Any]) -> None:
        if not msgs:
            return
        if self.sockjs:
            self.incoming.put_nowait("a" + json.dumps([json.dumps(m) for m in msgs]))
        else:
            for m in msgs:
                self.incoming.put_nowait(json.dumps(m))

    def hang_up(self) -> None:
        self.incoming.put_nowait(None)

    async def send(self, raw: str) -> None:
        if self.sockjs:
            (raw,) = json.loads(raw)
        msg = json.loads(raw)
        self.sent.append(msg)
        self.push(*self.responder(msg))

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        self.closed = True
        self.hang_up()


def meteor_server(msg: Dict[str, Any]) -> List[Dict[str, Any]]:
    kind = msg.get("msg")
    if kind == "connect":
        return [{"msg": "connected", "session": "s-1"}]
    if kind == "sub" and msg["name"] == "cats":
        return [
            {"msg": "added", "collection": "cats", "id": "c1", "fields": {"name": "Tom"}},
            {"msg": "added", "collection": "cats", "id": "c2", "fields": {"name": "Felix"}},
            {"msg": "added", "collection": "users", "id": "u1", "fields": {"name": "admin"}},
            {"msg": "ready", "subs": [msg["id"]]},
        ]
    if kind == "sub" and msg["name"] == "nope":
        err = {"error": 404, "reason": "Subscription 'nope' not found", "message": "Subscription 'nope' not found [404]"}
        return [{"msg": "nosub", "id": msg["id"], "error": err}]
    return []


def _client(responder: Responder = meteor_server, sockjs: bool = False, **kwargs):
    cfg = resolve_config(collections=["cats"], host="meteor.local", port=3000, sockjs=sockjs, **kwargs)
    holder: Dict[str, Any] = {}

    async def fake_connect(url: str, **options: Any) -> FakeSocket:
        holder["url"] = url
        holder["options"] = options
        holder["socket"] = FakeSocket(responder, sockjs=sockjs)
        return holder["socket"]

    return DdpClient(cfg, connect=fake_connect), holder


def test_connect_subscribe_and_collect() -> None:
    client, holder = _client()
    seen: List[Dict[str, Any]] = []
    client.add_listener(seen.append)

    async def scenario() -> None:
        await client.connect()
        await client.subscribe("cats")
        await client.close()

    asyncio.run(scenario())

    assert holder["url"] == "ws://meteor.local:3000/websocket"
    assert holder["options"]["max_size"] is None
    sock = holder["socket"]
    assert sock.sent[0] == {"msg": "connect", "version": "1", "support": ["1", "pre2", "pre1"]}
    assert sock.sent[1] == {"msg": "sub", "id": "1", "name": "cats", "params": []}
    assert sock.closed
    assert client.session_id == "s-1"
    assert client.collections["cats"] == {
        "c1": {"_id": "c1", "name": "Tom"},
        "c2": {"_id": "c2", "name": "Felix"},
    }
    assert "users" in client.collections
    assert [m["msg"] for m in seen] == ["connected", "added", "added", "added", "ready"]


def test_nosub_with_error_fails_subscription() -> None:
    client, _ = _client()

    async def scenario() -> None:
        await client.connect()
        try:
            with pytest.raises(DdpSubscriptionError) as exc:
                await client.subscribe("nope")
        finally:
            await client.close()
        assert exc.value.name == "nope"
        assert "not found" in exc.value.message

    asyncio.run(scenario())


def test_concurrent_subscriptions_resolve_independently() -> None:
    client, _ = _client()

    async def scenario() -> list:
        await client.connect()
        try:
            return await asyncio.gather(client.subscribe("cats"), client.subscribe("nope"), return_exceptions=True)
        finally:
            await client.close()

    results = asyncio.run(scenario())

    assert results[0] is None
    assert isinstance(results[1], DdpSubscriptionError)


def test_failed_handshake_raises() -> None:
    client, _ = _client(lambda msg: [{"msg": "failed", "version": "pre1"}] if msg["msg"] == "connect" else [])

    async def scenario() -> None:
        try:
            await client.connect()
        finally:
            await client.close()

    with pytest.raises(DdpConnectionError, match="pre1"):
        asyncio.run(scenario())


def test_unreachable_server_raises_connection_error() -> None:
    cfg = resolve_config(collections=["cats"], host="localhost")

    async def refuse(url: str, **options: Any):
        raise ConnectionRefusedError(111, "Connection refused")

    client = DdpClient(cfg, connect=refuse)

    with pytest.raises(DdpConnectionError, match="Could not connect"):
        asyncio.run(client.connect())


def test_hang_up_fails_pending_subscription() -> None:
    client, holder = _client()

    async def scenario() -> None:
        await client.connect()
        task = asyncio.create_task(client.subscribe("silent"))
        await asyncio.sleep(0)
        holder["socket"].hang_up()
        with pytest.raises(DdpConnectionError):
            await task
        await client.close()

    asyncio.run(scenario())


def test_sockjs_session() -> None:
    client, holder = _client(sockjs=True)

    async def scenario() -> None:
        await client.connect()
        await client.subscribe("cats")
        await client.close()

    asyncio.run(scenario())

    assert holder["url"].startswith("ws://meteor.local:3000/sockjs/")
    assert holder["url"].endswith("/websocket")
    assert holder["socket"].sent[0]["msg"] == "connect"
    assert set(client.collections["cats"]) == {"c1", "c2"}


def test_changed_and_removed_update_documents() -> None:
    client, _ = _client()

    async def scenario() -> None:
        await client.handle_message({"msg": "added", "collection": "dogs", "id": "d1", "fields": {"name": "Rex", "age": 3}})
        await client.handle_message({"msg": "added", "collection": "dogs", "id": "d2", "fields": {"name": "Fido"}})
        await client.handle_message(
            {"msg": "changed", "collection": "dogs", "id": "d1", "fields": {"age": 4, "good": True}, "cleared": ["name"]}
        )
        await client.handle_message({"msg": "removed", "collection": "dogs", "id": "d2"})
        await client.handle_message({"msg": "removed", "collection": "ghosts", "id": "x"})

    asyncio.run(scenario())

    assert client.collections == {"dogs": {"d1": {"_id": "d1", "age": 4, "good": True}}}


def test_ping_is_answered_with_pong() -> None:
    client, _ = _client()
    sock = FakeSocket(lambda msg: [])
    client._ws = sock

    asyncio.run(client.handle_message({"msg": "ping", "id": "p1"}))
    asyncio.run(client.handle_message({"msg": "ping"}))

    assert sock.sent == [{"msg": "pong", "id": "p1"}, {"msg": "pong"}]


def test_plain_frames() -> None:
    assert decode_frame('{"msg":"ready","subs":["1"]}') == [{"msg": "ready", "subs": ["1"]}]
    assert decode_frame(b'{"server_id":"0"}') == [{"server_id": "0"}]
    assert decode_frame("not json") == []
    assert encode_frame({"msg": "pong"}) == '{"msg":"pong"}'


def test_sockjs_frames() -> None:
    assert decode_frame("o", sockjs=True) == []
    assert decode_frame("h", sockjs=True) == []
    frame = "a" + json.dumps(['{"msg":"ping"}', '{"msg":"pong"}'])
    assert decode_frame(frame, sockjs=True) == [{"msg": "ping"}, {"msg": "pong"}]
    assert json.loads(encode_frame({"msg": "pong"}, sockjs=True)) == ['{"msg":"pong"}']

    with pytest.raises(DdpConnectionError, match="3000"):
        decode_frame('c[3000,"Go away!"]', sockjs=True)


def test_sockjs_path_keeps_prefix() -> None:
    parts = sockjs_path("/app/websocket").split("/")

    assert parts[:3] == ["", "app", "sockjs"]
    assert len(parts[3]) == 3 and parts[3].isdigit()
    assert len(parts[4]) == 8
    assert parts[5] == "websocket"


class DroppedSocket(FakeSocket):
    """Socket whose sends fail as if the peer went away."""

    def __init__(self, responder: Responder = meteor_server):
        super().__init__(responder)
        self.broken = False

    async def send(self, raw: str) -> None:
        if self.broken:
            raise ConnectionClosedError(None, None)
        await super().send(raw)


def test_send_failure_during_connect_is_a_connection_error() -> None:
    cfg = resolve_config(collections=["cats"], host="localhost")
    sock = DroppedSocket()
    sock.broken = True

    async def fake_connect(url: str, **options: Any) -> FakeSocket:
        return sock

    client = DdpClient(cfg, connect=fake_connect)

    async def scenario() -> None:
        try:
            with pytest.raises(DdpConnectionError, match="connect"):
                await client.connect()
        finally:
            await client.close()

    asyncio.run(scenario())


def test_send_failure_during_subscribe_fails_only_that_call() -> None:
    cfg = resolve_config(collections=["cats"], host="localhost")
    sock = DroppedSocket()

    async def fake_connect(url: str, **options: Any) -> FakeSocket:
        return sock

    client = DdpClient(cfg, connect=fake_connect)

    async def scenario() -> None:
        await client.connect()
        sock.broken = True
        try:
            with pytest.raises(DdpConnectionError):
                await client.subscribe("cats")
        finally:
            await client.close()

    asyncio.run(scenario())

    assert client._pending_subs == {}
