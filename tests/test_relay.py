"""Tests for the websocket relay connection, against a scripted socket."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import aiohttp
import pytest

from relaylists.errors import NetworkError
from relaylists.tiers.relay import RelayConnection

URL = "wss://scripted.relay.test"
SUB = "<sub>"
HANG = "<hang>"


class ScriptedSocket:
    """Replays relay frames; ``"<sub>"`` becomes the client's subscription id
    and ``"<hang>"`` stalls the receive until cancelled.
    """

    def __init__(self, script: list) -> None:
        self.script = list(script)
        self.sent: list[list] = []
        self.closed = False
        self.sub_id = None

    async def send_json(self, data) -> None:
        if self.closed:
            raise RuntimeError("socket closed")
        if data[0] == "REQ":
            self.sub_id = data[1]
        self.sent.append(data)

    async def receive(self, timeout=None):
        if not self.script:
            raise asyncio.TimeoutError()
        frame = self.script.pop(0)
        if frame == HANG:
            await asyncio.sleep(3600)
        if frame is aiohttp.WSMsgType.CLOSED:
            return SimpleNamespace(type=aiohttp.WSMsgType.CLOSED, data=None)
        if isinstance(frame, str):
            return SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=frame)
        frame = [self.sub_id if part == SUB else part for part in frame]
        return SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=json.dumps(frame))


class ScriptedSession:
    """Stands in for ``aiohttp.ClientSession.ws_connect``."""

    def __init__(self, socket: ScriptedSocket, connect_error: Exception | None = None) -> None:
        self.socket = socket
        self.connect_error = connect_error
        self.connected: list[str] = []

    def ws_connect(self, url, **kwargs):
        session = self

        class _Connect:
            async def __aenter__(self):
                if session.connect_error is not None:
                    raise session.connect_error
                session.connected.append(url)
                return session.socket

            async def __aexit__(self, *exc):
                session.socket.closed = True
                return False

        return _Connect()


def _connection(script, **kwargs):
    socket = ScriptedSocket(script)
    session = ScriptedSession(socket, **kwargs)
    return RelayConnection(URL, session, timeout=0.1), socket


class TestQuery:
    """REQ until EOSE, always followed by CLOSE."""

    @pytest.mark.asyncio
    async def test_collects_until_eose(self):
        conn, socket = _connection([
            ["EVENT", SUB, {"id": "1"}],
            ["EVENT", "someone-else", {"id": "x"}],
            ["NOTICE", "slow down"],
            ["EVENT", SUB, {"id": "2"}],
            ["EOSE", SUB],
            ["EVENT", SUB, {"id": "late"}],
        ])

        events = await conn.query({"kinds": [30000]})

        assert [e["id"] for e in events] == ["1", "2"]
        assert socket.sent[0] == ["REQ", socket.sub_id, {"kinds": [30000]}]
        assert socket.sent[-1] == ["CLOSE", socket.sub_id]

    @pytest.mark.asyncio
    async def test_ignores_garbage_frames(self):
        conn, _ = _connection(["not json", "{}", "[]", ["EVENT", SUB, "nope"], ["EOSE", SUB]])
        assert await conn.query({}) == []

    @pytest.mark.asyncio
    async def test_closed_by_relay(self):
        conn, socket = _connection([["CLOSED", SUB, "auth-required: sign in"]])
        with pytest.raises(NetworkError, match="auth-required"):
            await conn.query({})
        assert socket.sent[-1] == ["CLOSE", socket.sub_id]

    @pytest.mark.asyncio
    async def test_timeout_still_sends_close(self):
        conn, socket = _connection([["EVENT", SUB, {"id": "1"}]])
        with pytest.raises(asyncio.TimeoutError):
            await conn.query({})
        assert socket.sent[-1] == ["CLOSE", socket.sub_id]

    @pytest.mark.asyncio
    async def test_cancel_sends_close(self):
        conn, socket = _connection([["EVENT", SUB, {"id": "1"}], HANG])

        task = asyncio.create_task(conn.query({}))
        while socket.sub_id is None:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert socket.sent[-1] == ["CLOSE", socket.sub_id]
        assert socket.closed

    @pytest.mark.asyncio
    async def test_connection_dropped(self):
        conn, _ = _connection([aiohttp.WSMsgType.CLOSED])
        with pytest.raises(NetworkError, match="connection closed"):
            await conn.query({})

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        conn, _ = _connection([], connect_error=aiohttp.ClientConnectionError("refused"))
        with pytest.raises(NetworkError) as exc_info:
            await conn.query({})
        assert exc_info.value.relay == URL


class TestPublish:
    """EVENT then OK."""

    @pytest.mark.asyncio
    async def test_accepted(self):
        conn, socket = _connection([["OK", "other", True, ""], ["OK", "ev1", True, ""]])
        assert await conn.publish({"id": "ev1"})
        assert socket.sent == [["EVENT", {"id": "ev1"}]]

    @pytest.mark.asyncio
    async def test_rejected(self):
        conn, _ = _connection([["NOTICE", "hi"], ["OK", "ev1", False, "blocked: spam"]])
        assert not await conn.publish({"id": "ev1"})
