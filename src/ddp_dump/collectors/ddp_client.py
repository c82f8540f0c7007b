from __future__ import annotations

"""Minimal DDP (Meteor Distributed Data Protocol) client.

Only what a read-only dump needs:
- connect handshake (versions 1, pre2, pre1)
- sub / ready / nosub
- added / changed / removed maintained into `collections`
- ping -> pong

Wire format is one JSON object per websocket frame. With SockJS the frames are
wrapped: "o" open, "h" heartbeat, 'a["<json>", ...]' messages, 'c[code,"reason"]'
close; outbound frames are JSON arrays of strings.
"""

import asyncio
import contextlib
import json
import logging
import random
import string
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..config import DumpConfig
from ..types import SUPPORTED_DDP_VERSIONS, DdpConnectionError, DdpSubscriptionError, Records


LOGGER = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


def sockjs_path(path: str) -> str:
    """Raw websocket endpoint of the SockJS server living next to `path`."""
    base = path[: -len("websocket")] if path.endswith("websocket") else path
    if not base.endswith("/"):
        base += "/"
    server_id = f"{random.randint(0, 999):03d}"
    session_id = "".join(random.choices(string.ascii_lowercase + string.digits, k=8))
    return f"{base}sockjs/{server_id}/{session_id}/websocket"


def encode_frame(msg: Dict[str, Any], sockjs: bool = False) -> str:
    raw = json.dumps(msg, separators=(",", ":"))
    if sockjs:
        return json.dumps([raw])
    return raw


def decode_frame(raw: str | bytes, sockjs: bool = False) -> List[Dict[str, Any]]:
    """Decode one websocket frame into zero or more DDP messages.

    Raises DdpConnectionError on a SockJS close frame.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    if not sockjs:
        try:
            obj = json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.warning("Ignoring non-JSON frame: %.200s", raw)
            return []
        return [obj] if isinstance(obj, dict) else []

    if not raw or raw in ("o", "h"):
        return []
    kind, body = raw[0], raw[1:]
    if kind == "c":
        try:
            code, reason = json.loads(body)
        except (json.JSONDecodeError, ValueError):
            code, reason = None, body
        raise DdpConnectionError(f"SockJS session closed: {code} {reason}")
    if kind not in ("a", "m"):
        LOGGER.warning("Ignoring unknown SockJS frame: %.200s", raw)
        return []
    try:
        items = json.loads(body)
    except json.JSONDecodeError:
        LOGGER.warning("Ignoring malformed SockJS frame: %.200s", raw)
        return []
    if not isinstance(items, list):
        items = [items]

    out: List[Dict[str, Any]] = []
    for item in items:
        try:
            obj = json.loads(item) if isinstance(item, str) else item
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            out.append(obj)
    return out


def connect_frame(version: str) -> Dict[str, Any]:
    return {"msg": "connect", "version": version, "support": list(SUPPORTED_DDP_VERSIONS)}


def _error_message(err: Any) -> str:
    if isinstance(err, dict):
        return str(err.get("message") or err.get("reason") or err.get("error") or err)
    return str(err)


class DdpClient:
    def __init__(self, cfg: DumpConfig, connect: Callable[..., Any] = websockets.connect):
        self.cfg = cfg
        self.collections: Dict[str, Records] = {}
        self.session_id: Optional[str] = None
        self.url = cfg.base_url + sockjs_path(cfg.path) if cfg.sockjs else cfg.ws_url

        self._connect = connect
        self._ws: Any = None
        self._reader: Optional[asyncio.Task] = None
        self._listeners: List[Listener] = []
        self._next_id = 1
        self._handshake: Optional[asyncio.Future] = None
        self._pending_subs: Dict[str, Tuple[str, asyncio.Future]] = {}
        self._closed = False

    def add_listener(self, listener: Listener) -> None:
        """Call `listener(msg)` for every inbound DDP message."""
        self._listeners.append(listener)

    async def connect(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            self._ws = await self._connect(
                self.url,
                ping_interval=20,
                ping_timeout=20,
                close_timeout=5,
                max_size=None,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise DdpConnectionError(f"Could not connect to {self.url}: {e}") from e

        self._handshake = loop.create_future()
        self._reader = asyncio.create_task(self._read_loop())
        if not self.cfg.sockjs:
            try:
                await self._send(connect_frame(self.cfg.ddp_version))
            except DdpConnectionError:
                self._handshake.cancel()
                raise
        await self._handshake

    async def subscribe(self, name: str, params: Sequence[Any] = ()) -> None:
        """Subscribe and wait for the server to mark the subscription ready."""
        if self._ws is None or self._closed:
            raise DdpConnectionError("Not connected")
        if self._reader is not None and self._reader.done():
            raise DdpConnectionError("Connection closed")
        sub_id = str(self._next_id)
        self._next_id += 1
        fut = asyncio.get_running_loop().create_future()
        self._pending_subs[sub_id] = (name, fut)
        try:
            await self._send({"msg": "sub", "id": sub_id, "name": name, "params": list(params)})
        except DdpConnectionError:
            self._pending_subs.pop(sub_id, None)
            fut.cancel()
            raise
        await fut

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._ws is not None:
            await self._ws.close()
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader

    async def _send(self, msg: Dict[str, Any]) -> None:
        try:
            await self._ws.send(encode_frame(msg, self.cfg.sockjs))
        except WebSocketException as e:
            raise DdpConnectionError(f"Could not send {msg.get('msg')!r}: {e}") from e

    async def _read_loop(self) -> None:
        err = DdpConnectionError("Connection closed")
        try:
            async for raw in self._ws:
                if self.cfg.sockjs and raw == "o":
                    await self._send(connect_frame(self.cfg.ddp_version))
                    continue
                for msg in decode_frame(raw, self.cfg.sockjs):
                    await self.handle_message(msg)
            code = getattr(self._ws, "close_code", None)
            reason = getattr(self._ws, "close_reason", "")
            LOGGER.info("Connection closed: %s %s", code, reason)
        except ConnectionClosed as e:
            LOGGER.warning("Connection lost: %s", e)
            err = DdpConnectionError(f"Connection lost: {e}")
        except DdpConnectionError as e:
            LOGGER.warning("%s", e)
            err = e
        finally:
            self._fail_pending(err)

    def _fail_pending(self, err: Exception) -> None:
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_exception(err)
        for _, fut in self._pending_subs.values():
            if not fut.done():
                fut.set_exception(err)
        self._pending_subs.clear()

    async def handle_message(self, msg: Dict[str, Any]) -> None:
        LOGGER.debug("Received DDP message: %s", msg)
        for listener in self._listeners:
            listener(msg)

        kind = msg.get("msg")
        if kind == "ping":
            pong: Dict[str, Any] = {"msg": "pong"}
            if "id" in msg:
                pong["id"] = msg["id"]
            await self._send(pong)
        elif kind == "connected":
            self.session_id = msg.get("session")
            if self._handshake is not None and not self._handshake.done():
                self._handshake.set_result(None)
        elif kind == "failed":
            err = DdpConnectionError(
                f"Server does not support DDP version {self.cfg.ddp_version} "
                f"(server proposed {msg.get('version')})"
            )
            if self._handshake is not None and not self._handshake.done():
                self._handshake.set_exception(err)
        elif kind in ("added", "addedBefore"):
            self._on_added(msg)
        elif kind == "changed":
            self._on_changed(msg)
        elif kind == "removed":
            self._on_removed(msg)
        elif kind == "ready":
            for sub_id in msg.get("subs") or []:
                _, fut = self._pending_subs.pop(str(sub_id), (None, None))
                if fut is not None and not fut.done():
                    fut.set_result(None)
        elif kind == "nosub":
            name, fut = self._pending_subs.pop(str(msg.get("id")), (None, None))
            if fut is not None and not fut.done():
                err = msg.get("error")
                if err:
                    fut.set_exception(DdpSubscriptionError(name, _error_message(err), err))
                else:
                    fut.set_result(None)
        elif kind == "error":
            LOGGER.warning("DDP error from server: %s", msg.get("reason") or msg)

    def _on_added(self, msg: Dict[str, Any]) -> None:
        doc_id = msg.get("id")
        doc = {"_id": doc_id}
        doc.update(msg.get("fields") or {})
        self.collections.setdefault(msg.get("collection"), {})[doc_id] = doc

    def _on_changed(self, msg: Dict[str, Any]) -> None:
        doc_id = msg.get("id")
        docs = self.collections.setdefault(msg.get("collection"), {})
        doc = docs.setdefault(doc_id, {"_id": doc_id})
        doc.update(msg.get("fields") or {})
        for key in msg.get("cleared") or []:
            doc.pop(key, None)

    def _on_removed(self, msg: Dict[str, Any]) -> None:
        docs = self.collections.get(msg.get("collection"))
        if docs is not None:
            docs.pop(msg.get("id"), None)
