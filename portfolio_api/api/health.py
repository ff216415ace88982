"""Health check endpoint.

Not authenticated and not rate limited, so monitoring can poll freely.
"""

import time
from datetime import UTC, datetime

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter(tags=["health"])

_STARTED = time.monotonic()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    environment: str
    timestamp: datetime
    uptime: float


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    settings = request.app.state.settings
    return HealthResponse(
        status="OK",
        version=settings.app_version,
        environment=settings.environment,
        timestamp=datetime.now(UTC),
        uptime=round(time.monotonic() - _STARTED, 3),
    )
