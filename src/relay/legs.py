"""Leg plumbing shared by the Twilio and ElevenLabs adapters.

A leg is a JSON-text pipe with one reader task and one writer task. It never
calls into the session: everything it observes becomes an event on the
session's inbox queue.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from relay.errors import TransportError
from relay.protocol import TRANSPORT_ERROR, CloseCode

LOGGER = logging.getLogger(__name__)


class LegName(str, Enum):
    TELEPHONY = "telephony"
    PROVIDER = "provider"


# Inbox events


@dataclass(frozen=True, slots=True)
class LegMessage:
    leg: LegName
    text: str


@dataclass(frozen=True, slots=True)
class LegClosed:
    """Posted exactly once per started leg."""

    leg: LegName
    code: int | None
    reason: str = ""
    error: BaseException | None = None
    initiated_locally: bool = False


@dataclass(frozen=True, slots=True)
class ProviderConnected:
    leg: Leg


@dataclass(frozen=True, slots=True)
class ProviderConnectFailed:
    error: BaseException


@dataclass(frozen=True, slots=True)
class ConnectTimeout:
    pass


InboxEvent = LegMessage | LegClosed | ProviderConnected | ProviderConnectFailed | ConnectTimeout


class PeerClosed(Exception):
    """Raised by ``_receive`` implementations when the remote end closed."""

    def __init__(self, code: int | None, reason: str = "") -> None:
        super().__init__(f"peer closed ({code}) {reason}".strip())
        self.code = code
        self.reason = reason


@dataclass(frozen=True, slots=True)
class _CloseRequest:
    code: int
    reason: str


class Leg(ABC):
    """Base class for one WebSocket leg of a call."""

    name: LegName

    def __init__(self) -> None:
        self._outbox: asyncio.Queue[str | _CloseRequest] = asyncio.Queue()
        self._inbox: asyncio.Queue[InboxEvent] | None = None
        self._reader: asyncio.Task | None = None
        self._writer: asyncio.Task | None = None
        self._close_requested = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def close_requested(self) -> bool:
        return self._close_requested

    def start(self, inbox: asyncio.Queue[InboxEvent]) -> None:
        if self._inbox is not None:
            raise RuntimeError(f"{self.name.value} leg already started")
        self._inbox = inbox
        self._reader = asyncio.create_task(self._read_loop(), name=f"{self.name.value}-reader")
        self._writer = asyncio.create_task(self._write_loop(), name=f"{self.name.value}-writer")

    def send(self, message: dict[str, Any]) -> None:
        """Queue a frame. Frames queued after a close request are dropped."""

        if self._close_requested or self._closed:
            LOGGER.debug("Dropping frame for closed %s leg", self.name.value)
            return
        self._outbox.put_nowait(json.dumps(message))

    def close(self, code: int = CloseCode.NORMAL, reason: str = "") -> None:
        if self._close_requested or self._closed:
            return
        self._close_requested = True
        self._outbox.put_nowait(_CloseRequest(int(code), reason))

    async def wait_closed(self) -> None:
        tasks = [task for task in (self._reader, self._writer) if task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def discard(self) -> None:
        """Close a leg that was never started, e.g. a connection that lost a race."""

        self._close_requested = True
        self._closed = True
        try:
            await self._close_transport(CloseCode.NORMAL, "session-closing")
        except Exception:
            LOGGER.warning("Failed to discard %s leg", self.name.value, exc_info=True)

    @abstractmethod
    async def _receive(self) -> str:
        """Return the next text frame or raise PeerClosed."""

    @abstractmethod
    async def _send_text(self, text: str) -> None: ...

    @abstractmethod
    async def _close_transport(self, code: int, reason: str) -> None: ...

    async def _read_loop(self) -> None:
        try:
            while True:
                text = await self._receive()
                self._post(LegMessage(self.name, text))
        except PeerClosed as exc:
            if self._close_requested:
                # The writer reports our own close once the handshake completes.
                return
            self._finish(LegClosed(self.name, exc.code, exc.reason))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.error("%s leg receive failed: %s", self.name.value, exc)
            self._finish(
                LegClosed(self.name, CloseCode.SERVER_ERROR, TRANSPORT_ERROR, error=TransportError(str(exc)))
            )

    async def _write_loop(self) -> None:
        while True:
            item = await self._outbox.get()
            if isinstance(item, _CloseRequest):
                try:
                    await self._close_transport(item.code, item.reason)
                except Exception as exc:
                    LOGGER.warning("%s leg close failed: %s", self.name.value, exc)
                self._finish(LegClosed(self.name, item.code, item.reason, initiated_locally=True))
                return
            try:
                await self._send_text(item)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if self._close_requested:
                    LOGGER.debug("%s leg send failed while closing: %s", self.name.value, exc)
                    continue
                LOGGER.error("%s leg send failed: %s", self.name.value, exc)
                self._finish(
                    LegClosed(self.name, CloseCode.SERVER_ERROR, TRANSPORT_ERROR, error=TransportError(str(exc)))
                )
                return

    def _finish(self, event: LegClosed) -> None:
        if self._closed:
            return
        self._closed = True
        self._post(event)

        current = asyncio.current_task()
        for task in (self._reader, self._writer):
            if task is not None and task is not current and not task.done():
                task.cancel()

    def _post(self, event: InboxEvent) -> None:
        if self._inbox is None:
            raise RuntimeError(f"{self.name.value} leg not started")
        self._inbox.put_nowait(event)

