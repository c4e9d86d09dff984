"""Twilio Voice integration.

This module provides:
- Voice webhook (TwiML) that connects an inbound call to a bidirectional Media Stream.
- The Media Stream WebSocket, relayed to an ElevenLabs conversation for the call.
"""

from __future__ import annotations

import logging
from urllib.parse import urlsplit
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Request, Response, WebSocket

from api.dependencies import get_issuer, get_provider_connector
from config.settings import get_settings
from integrations.twilio_media_stream import TwilioMediaStreamLeg
from relay.session import CallSession, ProviderConnector, SignedUrlSource

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["twilio"])

MEDIA_STREAM_PATH = "/media-stream"
_ANY_METHOD = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _twiml_response(xml: str) -> Response:
    return Response(content=xml, media_type="text/xml")


def _stream_host(request: Request) -> str:
    settings = get_settings()
    if settings.public_base_url:
        host = urlsplit(settings.public_base_url).netloc
        if host:
            return host
    return request.headers.get("host") or request.url.netloc


def _twiml_connect_stream(*, stream_url: str) -> str:
    stream = escape(stream_url, {'"': "&quot;"})
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<Stream url=\"{stream}\" mode=\"bi-directional\" />"
        "</Connect>"
        "</Response>"
    )


@router.api_route("/incoming-call-eleven", methods=_ANY_METHOD)
async def incoming_call(request: Request) -> Response:
    LOGGER.info("[Twilio] Incoming call received")
    stream_url = f"wss://{_stream_host(request)}{MEDIA_STREAM_PATH}"
    return _twiml_response(_twiml_connect_stream(stream_url=stream_url))


@router.websocket(MEDIA_STREAM_PATH)
async def media_stream(
    websocket: WebSocket,
    issuer: SignedUrlSource = Depends(get_issuer),
    connect_provider: ProviderConnector = Depends(get_provider_connector),
) -> None:
    await websocket.accept()
    settings = get_settings()
    session = CallSession(
        TwilioMediaStreamLeg(websocket),
        issuer=issuer,
        connect_provider=connect_provider,
        connect_timeout=settings.provider_connect_timeout_seconds,
        close_grace=settings.close_grace_seconds,
    )
    await session.run()
