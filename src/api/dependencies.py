"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache, partial

from config.settings import get_settings
from integrations.elevenlabs_client import SignedUrlIssuer, get_elevenlabs_config
from integrations.elevenlabs_leg import connect_provider
from relay.session import ProviderConnector


@lru_cache(maxsize=1)
def _issuer_factory() -> SignedUrlIssuer:
    return SignedUrlIssuer(get_elevenlabs_config())


def get_issuer() -> SignedUrlIssuer:
    return _issuer_factory()


def get_provider_connector() -> ProviderConnector:
    settings = get_settings()
    return partial(connect_provider, open_timeout=settings.provider_connect_timeout_seconds)
