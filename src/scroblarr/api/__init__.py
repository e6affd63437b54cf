"""API module."""

from .health import router as health_router
from .status import router as status_router
from .trakt import router as trakt_router

__all__ = ["health_router", "status_router", "trakt_router"]
