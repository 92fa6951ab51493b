"""Liveness, readiness and version endpoints."""

import asyncio
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from app.adapters import board_store

router = APIRouter()

HEALTH_VERSION = "1.0.0"
SERVICE_STARTED_AT = datetime.now(timezone.utc)

_UNITS = (("d", 86400), ("h", 3600), ("m", 60))


def _iso_utc(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _uptime_human(seconds: int) -> str:
    parts: list[str] = []
    remainder = seconds
    for suffix, size in _UNITS:
        amount, remainder = divmod(remainder, size)
        if amount or parts:
            parts.append(f"{amount}{suffix}")
    parts.append(f"{remainder}s")
    return " ".join(parts)


class HealthResponse(BaseModel):
    """GET /api/health response."""

    model_config = ConfigDict(extra="forbid")
    status: Annotated[str, Field(description="Always 'ok'")]
    version: Annotated[str, Field(description="Semver MAJOR.MINOR.PATCH")]
    timestamp: Annotated[str, Field(description="ISO8601 UTC")]
    started_at: Annotated[str, Field(description="ISO8601 UTC when service process started")]
    uptime_seconds: Annotated[int, Field(description="Seconds service has been up")]
    uptime_human: Annotated[str, Field(description="Human readable uptime")]


class ReadyResponse(HealthResponse):
    """GET /api/ready response: liveness fields plus what the reports can rely on."""

    database: Annotated[str, Field(description="SQLAlchemy dialect of the board database")]
    standup_quality: Annotated[bool, Field(description="Sprint health reads daily standup quality scores")]


def _liveness(status: str) -> dict:
    now = datetime.now(timezone.utc)
    up = max(0, int((now - SERVICE_STARTED_AT).total_seconds()))
    return {
        "status": status,
        "version": HEALTH_VERSION,
        "timestamp": _iso_utc(now),
        "started_at": _iso_utc(SERVICE_STARTED_AT),
        "uptime_seconds": up,
        "uptime_human": _uptime_human(up),
    }


@router.get("/version")
async def version():
    """Return API version (lightweight, for dashboards)."""
    return {"version": HEALTH_VERSION}


@router.get("/ready", response_model=ReadyResponse)
async def ready(request: Request):
    """Readiness probe. 503 until the board database answers."""
    if not await asyncio.to_thread(board_store.ping):
        raise HTTPException(status_code=503, detail="not ready")
    capabilities = getattr(request.app.state, "capabilities", None)
    return ReadyResponse(
        **_liveness("ready"),
        database=board_store.engine().dialect.name,
        standup_quality=bool(capabilities and capabilities.standup_quality),
    )


@router.get("/health", response_model=HealthResponse)
async def health():
    """Return API health status."""
    return HealthResponse(**_liveness("ok"))
