"""Provider leg: the outbound WebSocket to an ElevenLabs conversation."""

from __future__ import annotations

import asyncio
import logging

import websockets
from websockets.asyncio.client import ClientConnection, connect

from relay.errors import ProviderConnectError
from relay.legs import Leg, LegName, PeerClosed

LOGGER = logging.getLogger(__name__)


class ElevenLabsLeg(Leg):
    name = LegName.PROVIDER

    def __init__(self, ws: ClientConnection) -> None:
        super().__init__()
        self._ws = ws

    async def _receive(self) -> str:
        try:
            message = await self._ws.recv()
        except websockets.ConnectionClosed as exc:
            received = exc.rcvd
            raise PeerClosed(
                received.code if received is not None else None,
                received.reason if received is not None else "",
            ) from exc
        if isinstance(message, bytes):
            return message.decode("utf-8", errors="replace")
        return message

    async def _send_text(self, text: str) -> None:
        await self._ws.send(text)

    async def _close_transport(self, code: int, reason: str) -> None:
        await self._ws.close(code=code, reason=reason)


async def connect_provider(url: str, *, open_timeout: float | None = 10.0) -> ElevenLabsLeg:
    """Open the conversation socket; the signed URL carries the credentials."""

    try:
        ws = await connect(url, open_timeout=open_timeout, ping_interval=20, ping_timeout=20)
    except (OSError, asyncio.TimeoutError, websockets.InvalidHandshake, websockets.InvalidURI) as exc:
        LOGGER.error("[II] WebSocket connect failed: %s", exc)
        raise ProviderConnectError(f"Provider handshake failed: {exc}") from exc
    return ElevenLabsLeg(ws)
