"""Plex Media Server client."""

import asyncio
import logging
from typing import Any

import httpx

from ..config import ServerConfig
from ..errors import ItemNotFoundError, ProviderError, RetriesExhaustedError
from ..models import Library, MediaSession, MediaType, ScrobbleAction, User, calculate_progress
from ..request import ResilientClient

logger = logging.getLogger(__name__)

# Plex library search type codes
PLEX_MEDIA_TYPES = {
    "movie": "1",
    "show": "2",
    "episode": "3",
    "music": "4",
}


def _external_id(guid: str, provider: str) -> str | None:
    """Extract an external ID from a Plex guid like "com.plexapp.agents.imdb://tt123?lang=en"."""
    if provider not in guid:
        return None
    parts = guid.split("//", 1)
    if len(parts) < 2:
        return None
    return parts[1].split("?", 1)[0] or None


class PlexServer:
    """Async client for the Plex HTTP API."""

    server_type = "plex"

    def __init__(self, name: str, server: ServerConfig, http: ResilientClient | None = None):
        if not server.url or not server.token:
            raise ProviderError(f"[{name}] missing required Plex configuration")

        self._name = name
        self.server = server
        self.base_url = server.url.rstrip("/")
        self.http = http or ResilientClient()
        self.http.headers.update(
            {
                "Accept": "application/json",
                "X-Plex-Token": server.token,
            }
        )
        self.libraries: list[Library] = []

    @property
    def name(self) -> str:
        return self._name

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        """Make a request, raising ProviderError unless Plex answers 200."""
        url = f"{self.base_url}{endpoint}"
        try:
            response = await self.http.request(method, url, **kwargs)
        except (httpx.HTTPError, RetriesExhaustedError, TimeoutError) as e:
            raise ProviderError(f"[{self.name}] {method} {endpoint} failed: {e}") from e

        if response.status_code != 200:
            raise ProviderError(f"[{self.name}] plex API returned status code {response.status_code}")
        return response

    async def _container(self, endpoint: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._request("GET", endpoint, **kwargs)
        try:
            return response.json().get("MediaContainer") or {}
        except (ValueError, AttributeError) as e:
            raise ProviderError(f"[{self.name}] invalid response from {endpoint}: {e}") from e

    async def close(self) -> None:
        await self.http.close()

    # ========== Connection ==========

    async def connect(self) -> None:
        """Load library sections; fails when the server is unreachable."""
        self.libraries = await self.get_libraries()
        logger.info("[%s] Connected to Plex server with %d libraries", self.name, len(self.libraries))

    async def health_check(self) -> bool:
        try:
            await self._request("GET", "/identity")
            return True
        except ProviderError as e:
            logger.warning("[%s] Health check FAILED: %s", self.name, e)
            return False

    async def get_libraries(self) -> list[Library]:
        container = await self._container("/library/sections")
        return [
            Library(id=str(d.get("key", "")), name=d.get("title", ""), type=d.get("type", ""))
            for d in container.get("Directory", [])
        ]

    # ========== Sessions ==========

    def _to_media_sessions(self, items: list[dict[str, Any]]) -> list[MediaSession]:
        sessions: list[MediaSession] = []
        for item in items:
            user = item.get("User") or {}
            # When a username is configured only that user's sessions are tracked
            if self.server.username and user.get("title") and user.get("title") != self.server.username:
                continue

            duration = int(item.get("duration") or 0)
            view_offset = int(item.get("viewOffset") or 0)
            guid = item.get("guid", "")
            session = MediaSession(
                session_id=str(item.get("ratingKey", "")),
                title=item.get("title", ""),
                type=item.get("type", ""),
                year=item.get("year"),
                duration=duration,
                view_offset=view_offset,
                state=(item.get("Player") or {}).get("state", ""),
                progress=calculate_progress(view_offset, duration),
                imdb_id=_external_id(guid, "imdb"),
                tvdb_id=None if "imdb" in guid else _external_id(guid, "tvdb"),
                viewed_at=item.get("viewedAt"),
                user=User(id=str(user.get("id", "")), username=user.get("title", "")),
                source=self.name,
                library_id=item.get("librarySectionID"),
                library_name=item.get("librarySectionTitle"),
            )
            if session.type == MediaType.EPISODE.value:
                session.show_title = item.get("grandparentTitle", "")
                session.episode_title = item.get("title", "")
                session.season_num = item.get("parentIndex") or 0
                session.episode_num = item.get("index") or 0
            sessions.append(session)
        return sessions

    async def get_sessions(self) -> list[MediaSession]:
        """Return currently active sessions."""
        container = await self._container("/status/sessions")
        return self._to_media_sessions(container.get("Metadata", []))

    # ========== Scrobble ==========

    async def search(self, session: MediaSession) -> list[MediaSession]:
        """Find library items matching a session by type, title and year."""
        media_type = PLEX_MEDIA_TYPES.get(session.type)
        if media_type is None:
            raise ProviderError(f"[{self.name}] unsupported media type: {session.type}")

        params: dict[str, Any] = {"type": media_type, "title": session.title}
        if session.year:
            params["year"] = session.year
        container = await self._container("/library/all", params=params)
        return self._to_media_sessions(container.get("Metadata", []))

    async def scrobble(self, session: MediaSession, action: ScrobbleAction) -> None:
        """Report progress on every library item matching the session."""
        matches = await self.search(session)
        if not matches:
            raise ItemNotFoundError(f"[{self.name}] no matching media found for '{session.title}'")

        results = await asyncio.gather(
            *(self._report_progress(match.session_id, session) for match in matches),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        if errors:
            raise ProviderError(f"[{self.name}] scrobble errors occurred: {errors}")

        logger.debug("[%s] Scrobbled %s: %s (%d items)", self.name, action.value, session.title, len(matches))

    async def _report_progress(self, key: str, session: MediaSession) -> None:
        await self._request(
            "GET",
            "/:/progress",
            params={
                "key": key,
                "state": session.state,
                "time": session.view_offset,
                "identifier": "com.plexapp.plugins.library",
            },
        )
