"""
Relay connection -- one websocket, one subscription at a time.

Frames (JSON arrays over text messages):

    client -> relay   ["REQ", <sub>, <filter>]   ["CLOSE", <sub>]   ["EVENT", <event>]
    relay -> client   ["EVENT", <sub>, <event>]  ["EOSE", <sub>]
                      ["OK", <id>, <bool>, <msg>]  ["CLOSED", <sub>, <msg>]  ["NOTICE", <msg>]

Every subscription is explicitly closed with a ``CLOSE`` frame before the
socket goes away, including on timeout and cancellation, so relays do not
keep dangling server-side subscriptions.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Optional

import aiohttp

from ..errors import NetworkError

logger = logging.getLogger("relaylists.tiers.relay")


class RelayConnection:
    """Query and publish against a single relay.

    Args:
        url: Relay websocket URL.
        session: Shared aiohttp session.
        timeout: Seconds to wait for any single frame.
    """

    def __init__(
        self,
        url: str,
        session: aiohttp.ClientSession,
        timeout: float = 8.0,
    ) -> None:
        self.url = url
        self._session = session
        self.timeout = timeout

    async def query(self, filter: dict[str, Any]) -> list[dict[str, Any]]:
        """Run one REQ until EOSE and return the stored events.

        Raises:
            NetworkError: If the relay closes the subscription or the
                connection before EOSE.
        """
        sub_id = uuid.uuid4().hex[:16]
        events: list[dict[str, Any]] = []
        try:
            async with self._session.ws_connect(self.url, heartbeat=30) as ws:
                await ws.send_json(["REQ", sub_id, filter])
                try:
                    while True:
                        frame = await self._receive_frame(ws)
                        if frame is None:
                            continue
                        kind = frame[0]
                        if kind == "EVENT" and len(frame) >= 3 and frame[1] == sub_id:
                            if isinstance(frame[2], dict):
                                events.append(frame[2])
                        elif kind == "EOSE" and len(frame) >= 2 and frame[1] == sub_id:
                            break
                        elif kind == "CLOSED" and len(frame) >= 2 and frame[1] == sub_id:
                            reason = frame[2] if len(frame) > 2 else ""
                            raise NetworkError(
                                f"{self.url} closed subscription: {reason}", self.url
                            )
                        elif kind == "NOTICE":
                            logger.info("NOTICE from %s: %s", self.url, frame[1:])
                finally:
                    await self._close_subscription(ws, sub_id)
        except aiohttp.ClientError as exc:
            raise NetworkError(f"{self.url}: {exc}", self.url) from exc

        logger.debug("%s returned %d events for %s", self.url, len(events), sub_id)
        return events

    async def publish(self, event: dict[str, Any]) -> bool:
        """Send an EVENT and wait for the relay's OK.

        Returns:
            bool: Whether the relay accepted the event.
        """
        event_id = event.get("id")
        try:
            async with self._session.ws_connect(self.url, heartbeat=30) as ws:
                await ws.send_json(["EVENT", event])
                while True:
                    frame = await self._receive_frame(ws)
                    if frame is None:
                        continue
                    if frame[0] == "OK" and len(frame) >= 3 and frame[1] == event_id:
                        accepted = bool(frame[2])
                        if not accepted:
                            message = frame[3] if len(frame) > 3 else ""
                            logger.warning("%s rejected %s: %s", self.url, event_id, message)
                        return accepted
                    if frame[0] == "NOTICE":
                        logger.info("NOTICE from %s: %s", self.url, frame[1:])
        except aiohttp.ClientError as exc:
            raise NetworkError(f"{self.url}: {exc}", self.url) from exc

    async def _receive_frame(self, ws: aiohttp.ClientWebSocketResponse) -> Optional[list]:
        msg = await ws.receive(timeout=self.timeout)
        if msg.type == aiohttp.WSMsgType.TEXT:
            try:
                frame = json.loads(msg.data)
            except json.JSONDecodeError:
                logger.debug("Ignoring non-JSON frame from %s", self.url)
                return None
            if isinstance(frame, list) and frame:
                return frame
            return None
        if msg.type in (
            aiohttp.WSMsgType.CLOSE,
            aiohttp.WSMsgType.CLOSING,
            aiohttp.WSMsgType.CLOSED,
            aiohttp.WSMsgType.ERROR,
        ):
            raise NetworkError(f"{self.url} connection closed", self.url)
        return None

    async def _close_subscription(
        self, ws: aiohttp.ClientWebSocketResponse, sub_id: str
    ) -> None:
        if ws.closed:
            return
        try:
            await ws.send_json(["CLOSE", sub_id])
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            logger.debug("Could not send CLOSE to %s: %s", self.url, exc)
