"""
Health check endpoint.
No user data in responses.
"""
from fastapi import APIRouter
from pydantic import BaseModel, Field

from app.core.config import get_settings

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    ok: bool
    service: str = Field(default="prompt-queue-service")
    backend: str


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(ok=True, backend=get_settings().completion_backend)
