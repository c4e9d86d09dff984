"""FastAPI routes exposing the relay service."""

from __future__ import annotations

from fastapi import APIRouter

from api.schemas import HealthResponse
from api.twilio_routes import router as twilio_router
from config.settings import get_settings

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(environment=get_settings().environment)


router.include_router(twilio_router)
