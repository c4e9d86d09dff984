"""ElevenLabs Conversational AI signed-URL issuance."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from config.settings import Settings, get_settings
from relay.errors import IssuerError

LOGGER = logging.getLogger(__name__)

SIGNED_URL_PATH = "/v1/convai/conversation/get_signed_url"


@dataclass(frozen=True)
class ElevenLabsConfig:
    api_key: str
    agent_id: str
    api_base_url: str = "https://api.elevenlabs.io"
    timeout_seconds: float = 10.0


def get_elevenlabs_config(settings: Settings | None = None) -> ElevenLabsConfig:
    settings = settings or get_settings()
    if not settings.elevenlabs_api_key or not settings.elevenlabs_agent_id:
        raise ValueError("Missing ELEVENLABS_API_KEY or ELEVENLABS_AGENT_ID")

    return ElevenLabsConfig(
        api_key=settings.elevenlabs_api_key,
        agent_id=settings.elevenlabs_agent_id,
        api_base_url=settings.elevenlabs_api_base_url.rstrip("/"),
        timeout_seconds=settings.signed_url_timeout_seconds,
    )


class SignedUrlIssuer:
    """Fetches short-lived, credential-bound conversation URLs.

    The raw API key never leaves this object; sessions only ever see the
    signed URL.
    """

    def __init__(self, config: ElevenLabsConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config
        self._transport = transport

    async def fetch_signed_url(self, agent_id: str | None = None) -> str:
        params = {"agent_id": agent_id or self._config.agent_id}
        headers = {"xi-api-key": self._config.api_key}

        try:
            async with httpx.AsyncClient(
                base_url=self._config.api_base_url,
                timeout=self._config.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get(SIGNED_URL_PATH, params=params, headers=headers)
        except httpx.HTTPError as exc:
            LOGGER.error("Error getting signed URL: %s", exc)
            raise IssuerError(f"Failed to get signed URL: {exc}") from exc

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            LOGGER.error("Error getting signed URL: %s", exc)
            raise IssuerError(f"Failed to get signed URL: {response.reason_phrase}") from exc

        try:
            signed_url = response.json().get("signed_url")
        except (ValueError, AttributeError) as exc:
            raise IssuerError("Signed URL response is not a JSON object") from exc
        if not isinstance(signed_url, str) or not signed_url:
            raise IssuerError("Signed URL response has no signed_url")
        return signed_url
