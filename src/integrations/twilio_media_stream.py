"""Telephony leg: Twilio Media Streams over the accepted FastAPI WebSocket."""

from __future__ import annotations

import logging

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from relay.legs import Leg, LegName, PeerClosed

LOGGER = logging.getLogger(__name__)


class TwilioMediaStreamLeg(Leg):
    name = LegName.TELEPHONY

    def __init__(self, websocket: WebSocket) -> None:
        super().__init__()
        self._websocket = websocket

    async def _receive(self) -> str:
        message = await self._websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise PeerClosed(message.get("code"), message.get("reason") or "")
        text = message.get("text")
        if text is None:
            # Twilio only sends text frames.
            text = (message.get("bytes") or b"").decode("utf-8", errors="replace")
        return text

    async def _send_text(self, text: str) -> None:
        await self._websocket.send_text(text)

    async def _close_transport(self, code: int, reason: str) -> None:
        if self._websocket.client_state == WebSocketState.DISCONNECTED:
            return
        if self._websocket.application_state == WebSocketState.DISCONNECTED:
            return
        await self._websocket.close(code=code, reason=reason)
