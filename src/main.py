"""Entry point for the Twilio to ElevenLabs Conversational AI relay."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.routes import router as api_router
from config.settings import get_settings
from integrations.elevenlabs_client import get_elevenlabs_config

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Fails startup when the ElevenLabs credentials are missing.
    get_elevenlabs_config()
    yield


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Twilio ElevenLabs Relay",
    description="Relays Twilio Media Streams to ElevenLabs Conversational AI agents.",
    lifespan=lifespan,
)
app.include_router(api_router)


def run() -> None:
    try:
        get_elevenlabs_config()
    except ValueError as exc:
        LOGGER.error("%s", exc)
        sys.exit(1)

    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
