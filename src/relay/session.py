"""Per-call relay between one Twilio media stream and one ElevenLabs conversation.

Both legs and the connect machinery post events to a single inbox queue.
``CallSession.run`` drains it and feeds every event to ``dispatch``, the
only place the session's state changes. Tests drive ``dispatch`` directly.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Protocol

from relay.errors import ProtocolError, ValidationError
from relay.legs import (
    ConnectTimeout,
    InboxEvent,
    Leg,
    LegClosed,
    LegMessage,
    LegName,
    ProviderConnected,
    ProviderConnectFailed,
)
from relay.protocol import (
    INVALID_MESSAGE,
    PROVIDER_CLOSED,
    PROVIDER_CONNECT_FAILED,
    PROVIDER_CONNECT_TIMEOUT,
    STOP_RECEIVED,
    TELEPHONY_CLOSED,
    TRANSPORT_ERROR,
    AudioEvent,
    CloseCode,
    InitiationMetadataEvent,
    InterruptionEvent,
    MediaEvent,
    PingEvent,
    StartEvent,
    StopEvent,
    UnknownEvent,
    clear_frame,
    is_base64,
    media_frame,
    parse_control_event,
    parse_provider_event,
    pong,
    reencode_base64,
    sendable_close_code,
    user_audio_chunk,
)
from relay.shutdown import ShutdownCoordinator

LOGGER = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0
DEFAULT_CLOSE_GRACE_SECONDS = 5.0


class SessionState(str, Enum):
    AWAITING_START = "awaiting_start"
    CONNECTING_PROVIDER = "connecting_provider"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class SignedUrlSource(Protocol):
    async def fetch_signed_url(self) -> str: ...


ProviderConnector = Callable[[str], Awaitable[Leg]]


class _SessionLogger(logging.LoggerAdapter):
    def __init__(self, logger: logging.Logger, session: CallSession) -> None:
        super().__init__(logger, {})
        self._session = session

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        session = self._session
        return f"[session={session.session_id} stream={session.stream_sid or '-'}] {msg}", kwargs


class CallSession:
    """Relay state for one accepted Twilio media-stream connection."""

    def __init__(
        self,
        telephony: Leg,
        *,
        issuer: SignedUrlSource,
        connect_provider: ProviderConnector,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        close_grace: float = DEFAULT_CLOSE_GRACE_SECONDS,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.stream_sid: str | None = None
        self.state = SessionState.AWAITING_START
        self.telephony = telephony
        self.provider: Leg | None = None
        self.inbox: asyncio.Queue[InboxEvent] = asyncio.Queue()

        self._issuer = issuer
        self._connect_provider = connect_provider
        self._connect_timeout = connect_timeout
        self._close_grace = close_grace
        self._connect_task: asyncio.Task | None = None
        self._connect_timer: asyncio.TimerHandle | None = None
        self._closed_legs: set[LegName] = set()
        self._background: set[asyncio.Task] = set()

        self.log = _SessionLogger(LOGGER, self)
        self.shutdown = ShutdownCoordinator(telephony, provider=lambda: self.provider, logger=self.log)

    @property
    def closing(self) -> bool:
        return self.shutdown.closing

    async def run(self) -> None:
        """Relay until both legs are closed."""

        self.telephony.start(self.inbox)
        self.log.info("Twilio connected to media stream")
        loop = asyncio.get_running_loop()
        deadline: float | None = None
        try:
            while self.state is not SessionState.CLOSED:
                if self.closing:
                    if deadline is None:
                        deadline = loop.time() + self._close_grace
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        self.log.warning("Legs did not confirm close within %.1fs", self._close_grace)
                        break
                    try:
                        event = await asyncio.wait_for(self.inbox.get(), timeout=remaining)
                    except asyncio.TimeoutError:
                        continue
                else:
                    event = await self.inbox.get()
                self.dispatch(event)
        finally:
            await self._finalize()

    def dispatch(self, event: InboxEvent) -> None:
        """Apply one inbox event to the state machine."""

        if isinstance(event, LegClosed):
            self._on_leg_closed(event)
        elif self.closing:
            if isinstance(event, ProviderConnected):
                self.log.info("Provider connected after close began; discarding")
                self._discard(event.leg)
            else:
                self.log.debug("Dropping %s while closing", type(event).__name__)
        elif isinstance(event, LegMessage):
            if event.leg is LegName.TELEPHONY:
                self._on_telephony_text(event.text)
            else:
                self._on_provider_text(event.text)
        elif isinstance(event, ProviderConnected):
            self._on_provider_open(event.leg)
        elif isinstance(event, ProviderConnectFailed):
            self.log.error("Failed to initialize provider connection: %s", event.error)
            self._close(CloseCode.SERVER_ERROR, PROVIDER_CONNECT_FAILED)
        elif isinstance(event, ConnectTimeout):
            if self.state is SessionState.CONNECTING_PROVIDER:
                self.log.error("Provider connection not open after %.1fs", self._connect_timeout)
                self._close(CloseCode.SERVER_ERROR, PROVIDER_CONNECT_TIMEOUT)

    # Telephony leg

    def _on_telephony_text(self, text: str) -> None:
        try:
            event = parse_control_event(text)
        except ProtocolError as exc:
            if exc.event == "start" and self.state is SessionState.AWAITING_START:
                self.log.error("[Twilio] %s", exc.detail)
                self._close(CloseCode.INVALID_MESSAGE, INVALID_MESSAGE)
            else:
                self.log.error("[Twilio] Invalid message: %s", exc.detail)
            return

        if isinstance(event, StartEvent):
            self._on_start(event)
        elif isinstance(event, MediaEvent):
            self._on_media(event)
        elif isinstance(event, StopEvent):
            if self.state in (SessionState.CONNECTING_PROVIDER, SessionState.ACTIVE):
                self.log.info("[Twilio] Stream stopped")
                self._close(CloseCode.NORMAL, STOP_RECEIVED)
            else:
                self.log.info("[Twilio] Stop received before start; ignoring")
        elif isinstance(event, UnknownEvent):
            self.log.info("[Twilio] Received unhandled event: %s", event.event)

    def _on_start(self, event: StartEvent) -> None:
        if self.state is not SessionState.AWAITING_START:
            self.log.warning("[Twilio] Duplicate start (%s) ignored", event.stream_sid)
            return

        self.stream_sid = event.stream_sid
        self.state = SessionState.CONNECTING_PROVIDER
        self.log.info("[Twilio] Stream started")

        loop = asyncio.get_running_loop()
        self._connect_timer = loop.call_later(self._connect_timeout, self.inbox.put_nowait, ConnectTimeout())
        self._connect_task = asyncio.create_task(self._connect(), name=f"connect-{self.session_id}")
        self.shutdown.track(self._connect_timer)
        self.shutdown.track(self._connect_task)

    def _on_media(self, event: MediaEvent) -> None:
        if self.state is SessionState.AWAITING_START:
            self.log.warning("[Twilio] Media before start; dropping frame")
            return
        if self.state is not SessionState.ACTIVE or self.provider is None:
            self.log.debug("[Twilio] Provider not open; dropping frame")
            return
        if not event.payload:
            self.log.warning("[Twilio] Media event without payload")
            return
        try:
            payload = reencode_base64(event.payload)
        except ValidationError as exc:
            self.log.warning("[Twilio] %s", exc.detail)
            return
        self.provider.send(user_audio_chunk(payload))

    # Provider leg

    async def _connect(self) -> None:
        try:
            url = await self._issuer.fetch_signed_url()
            if self.closing:
                self.log.info("Signed URL arrived after close began; discarding")
                return
            leg = await self._connect_provider(url)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.inbox.put_nowait(ProviderConnectFailed(exc))
            return

        if self.closing:
            self.log.info("Provider connected after close began; discarding")
            await leg.discard()
            return
        self.inbox.put_nowait(ProviderConnected(leg))

    def _on_provider_open(self, leg: Leg) -> None:
        if self.state is not SessionState.CONNECTING_PROVIDER or self.provider is not None:
            self.log.warning("Unexpected provider connection in state %s; discarding", self.state.value)
            self._discard(leg)
            return
        if self._connect_timer is not None:
            self._connect_timer.cancel()
            self._connect_timer = None
        self.provider = leg
        leg.start(self.inbox)
        self.state = SessionState.ACTIVE
        self.log.info("[II] Connected to Conversational AI")

    def _on_provider_text(self, text: str) -> None:
        try:
            event = parse_provider_event(text)
        except ProtocolError as exc:
            self.log.error("[II] Error parsing message: %s", exc.detail)
            return

        if isinstance(event, AudioEvent):
            self._on_provider_audio(event)
        elif isinstance(event, InterruptionEvent):
            self.telephony.send(clear_frame(self.stream_sid))
        elif isinstance(event, PingEvent):
            if event.event_id is None:
                self.log.debug("[II] Ping without event_id")
            elif self.provider is not None:
                self.provider.send(pong(event.event_id))
        elif isinstance(event, InitiationMetadataEvent):
            metadata = event.raw.get("conversation_initiation_metadata_event") or {}
            conversation_id = metadata.get("conversation_id") if isinstance(metadata, dict) else None
            self.log.info("[II] Received conversation initiation metadata (conversation=%s)", conversation_id)
        else:
            self.log.debug("[II] Unhandled message type: %s", event.type)

    def _on_provider_audio(self, event: AudioEvent) -> None:
        if event.payload is None:
            self.log.error("[II] Audio event missing base64 payload")
            return
        if self.stream_sid is None:
            self.log.error("[II] Cannot send audio: streamSid is not set")
            return
        if not is_base64(event.payload):
            self.log.error("[II] Invalid base64 payload received")
            return
        self.telephony.send(media_frame(self.stream_sid, event.payload))

    # Teardown

    def _on_leg_closed(self, event: LegClosed) -> None:
        self._closed_legs.add(event.leg)

        if not event.initiated_locally:
            if event.error is not None:
                self.log.error("%s leg transport error: %s", event.leg.value, event.error)
                code, reason = CloseCode.SERVER_ERROR, TRANSPORT_ERROR
            else:
                self.log.info("%s leg closed by peer: code=%s reason=%s", event.leg.value, event.code, event.reason)
                code = sendable_close_code(event.code)
                reason = event.reason or (TELEPHONY_CLOSED if event.leg is LegName.TELEPHONY else PROVIDER_CLOSED)
            self._close(code, reason)

        owned = {LegName.TELEPHONY} if self.provider is None else {LegName.TELEPHONY, LegName.PROVIDER}
        if self.closing and owned <= self._closed_legs:
            self.state = SessionState.CLOSED

    def _close(self, code: int, reason: str) -> None:
        if self.shutdown.close_with_code(code, reason):
            self.state = SessionState.CLOSING

    def _discard(self, leg: Leg) -> None:
        task = asyncio.create_task(leg.discard())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _finalize(self) -> None:
        self._close(CloseCode.GOING_AWAY, "session-ended")
        legs = [leg for leg in (self.telephony, self.provider) if leg is not None]
        pending = [leg.wait_closed() for leg in legs] + list(self._background)
        try:
            await asyncio.wait_for(asyncio.gather(*pending, return_exceptions=True), timeout=self._close_grace)
        except asyncio.TimeoutError:
            self.log.warning("Leg tasks still running after %.1fs; abandoning", self._close_grace)
        self.state = SessionState.CLOSED
        self.log.info("Session closed (code=%s reason=%s)", self.shutdown.code, self.shutdown.reason)
