"""Status API endpoints."""

from datetime import UTC, datetime
from importlib.metadata import version

from fastapi import APIRouter, Request
from pydantic import BaseModel

from ..config import Config
from ..sync import SyncEngine

router = APIRouter(prefix="/api", tags=["status"])

# Service start time, used for uptime
_start_time = datetime.now(UTC)


class ServerStatus(BaseModel):
    """Status of a single configured media server."""

    name: str
    type: str
    url: str
    connected: bool
    healthy: bool


class SyncGroupStatus(BaseModel):
    """Status of one sync group."""

    name: str
    source: str
    targets: list[str]
    trakt: bool
    interval_seconds: float
    tracked_sessions: int
    running: bool


class OverallStatus(BaseModel):
    """Overall service status."""

    status: str  # healthy, degraded, disabled
    uptime_seconds: float
    version: str
    dry_run: bool
    trakt_authorized: bool
    sync: list[SyncGroupStatus]


async def _server_statuses(config: Config, engine: SyncEngine | None) -> list[ServerStatus]:
    health = await engine.health_check_all() if engine is not None else {}
    connected = engine.servers if engine is not None else {}
    return [
        ServerStatus(
            name=name,
            type=server.type,
            url=server.url,
            connected=name in connected,
            healthy=health.get(name, False),
        )
        for name, server in config.servers.items()
    ]


@router.get("/status", response_model=OverallStatus)
async def get_status(request: Request) -> OverallStatus:
    """Per-group sync status."""
    config: Config = request.app.state.config
    engine: SyncEngine | None = getattr(request.app.state, "engine", None)

    groups = [SyncGroupStatus(**s) for s in engine.status()] if engine is not None else []

    if engine is None:
        status = "disabled"
    elif groups and all(g.running for g in groups):
        status = "healthy"
    else:
        status = "degraded"

    return OverallStatus(
        status=status,
        uptime_seconds=(datetime.now(UTC) - _start_time).total_seconds(),
        version=version("scroblarr"),
        dry_run=config.dry_run,
        trakt_authorized=config.trakt_enabled,
        sync=groups,
    )


@router.get("/servers")
async def get_servers(request: Request) -> list[ServerStatus]:
    """Get status of all configured servers."""
    engine: SyncEngine | None = getattr(request.app.state, "engine", None)
    return await _server_statuses(request.app.state.config, engine)
