"""Jellyfin and Emby clients."""

import logging
import uuid
from importlib.metadata import metadata
from typing import Any

import httpx

from ..config import ServerConfig
from ..errors import ItemNotFoundError, ProviderError, RetriesExhaustedError
from ..models import MediaSession, MediaType, PlaybackState, ScrobbleAction, User, calculate_progress
from ..request import ResilientClient

logger = logging.getLogger(__name__)

# Jellyfin/Emby use 10,000,000 ticks per second
TICKS_PER_MS = 10_000

# Get package metadata for client identification
_PKG_NAME = "scroblarr"
_pkg_meta = metadata(_PKG_NAME)
CLIENT_NAME = _pkg_meta["Name"]
CLIENT_VERSION = _pkg_meta["Version"]


def device_id(seed: str) -> str:
    """Stable device ID so the server does not register a new device per run."""
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, f"{_PKG_NAME}.{seed or 'local'}"))


class EmbyJellyfinServer:
    """Async client shared by Jellyfin and Emby (same REST API)."""

    server_type = "emby"
    auth_scheme = "Emby"

    def __init__(self, name: str, server: ServerConfig, http: ResilientClient | None = None):
        if not server.url:
            raise ProviderError(f"[{name}] missing required URL")
        if not server.token and not (server.username and server.password):
            raise ProviderError(f"[{name}] missing authentication information")

        self._name = name
        self.server = server
        self.base_url = server.url.rstrip("/")
        self.token = server.token
        self.http = http or ResilientClient()
        self._user_id: str | None = None  # Cached user for item lookups and scrobbles
        self._apply_token_headers()

    @property
    def name(self) -> str:
        return self._name

    def _authorization(self, token: str | None = None) -> str:
        header = (
            f'{self.auth_scheme} Client="{CLIENT_NAME}", '
            f'Device="{CLIENT_NAME}", '
            f'DeviceId="{device_id(self.server.username)}", '
            f'Version="{CLIENT_VERSION}"'
        )
        if token:
            header += f', Token="{token}"'
        return header

    def _apply_token_headers(self) -> None:
        self.http.headers.update({"Accept": "application/json", "Content-Type": "application/json"})
        if self.token:
            self.http.headers["X-Emby-Token"] = self.token

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        """Make an authenticated request, raising ProviderError on failure."""
        url = f"{self.base_url}{endpoint}"
        try:
            response = await self.http.request(method, url, **kwargs)
        except (httpx.HTTPError, RetriesExhaustedError, TimeoutError) as e:
            raise ProviderError(f"[{self.name}] {method} {endpoint} failed: {e}") from e

        if response.status_code >= 400:
            raise ProviderError(
                f"[{self.name}] {method} {endpoint} returned {response.status_code}: {response.text[:200]}"
            )
        return response

    async def _json(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        response = await self._request(method, endpoint, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"[{self.name}] invalid JSON from {endpoint}: {e}") from e

    async def close(self) -> None:
        await self.http.close()

    # ========== Connection ==========

    async def authenticate(self) -> None:
        """Exchange username/password for an access token."""
        logger.info("[%s] Authenticating as '%s'", self.name, self.server.username)
        data = await self._json(
            "POST",
            "/Users/AuthenticateByName",
            json={"Username": self.server.username, "Pw": self.server.password},
            headers={"Authorization": self._authorization()},
        )
        token = data.get("AccessToken") if isinstance(data, dict) else None
        if not token:
            raise ProviderError(f"[{self.name}] authentication response has no access token")
        self.token = token
        self._apply_token_headers()

    async def connect(self) -> None:
        """Authenticate if needed and check the server answers."""
        if not self.token:
            await self.authenticate()
        info = await self._json("GET", "/System/Info")
        logger.info(
            "[%s] Connected to %s server %s (version %s)",
            self.name,
            self.server_type,
            info.get("ServerName"),
            info.get("Version"),
        )

    async def health_check(self) -> bool:
        """Check if the server is reachable."""
        try:
            await self._request("GET", "/System/Info/Public")
            logger.debug("[%s] Health check OK", self.name)
            return True
        except ProviderError as e:
            logger.warning("[%s] Health check FAILED: %s", self.name, e)
            return False

    # ========== Sessions ==========

    async def get_sessions(self) -> list[MediaSession]:
        """Return currently active sessions."""
        raw_sessions = await self._json("GET", "/Sessions")
        if raw_sessions is None:
            return []
        if not isinstance(raw_sessions, list):
            raise ProviderError(f"[{self.name}] unexpected /Sessions response: {type(raw_sessions).__name__}")

        sessions: list[MediaSession] = []
        for raw in raw_sessions:
            if not isinstance(raw, dict):
                raise ProviderError(f"[{self.name}] unexpected session entry: {raw!r}")
            try:
                session = self._to_media_session(raw)
            except (TypeError, ValueError, AttributeError) as e:
                raise ProviderError(f"[{self.name}] malformed session {raw.get('Id')}: {e}") from e
            if session is not None:
                sessions.append(session)
        return sessions

    def _to_media_session(self, raw: dict[str, Any]) -> MediaSession | None:
        item = raw.get("NowPlayingItem") or {}
        if not item.get("Id"):
            return None

        # Skip sessions we created ourselves while scrobbling
        if (raw.get("Client") or "").lower() == CLIENT_NAME.lower():
            logger.debug("[%s] Skipping own session %s (%s)", self.name, raw.get("Id"), raw.get("UserName"))
            return None

        play_state = raw.get("PlayState") or {}
        media_type = MediaType.EPISODE if item.get("Type") == "Episode" else MediaType.MOVIE
        duration = int(item.get("RunTimeTicks") or 0) // TICKS_PER_MS
        position = int(play_state.get("PositionTicks") or 0) // TICKS_PER_MS
        state = PlaybackState.PAUSED if play_state.get("IsPaused") else PlaybackState.PLAYING
        provider_ids = item.get("ProviderIds") or {}

        session = MediaSession(
            session_id=raw.get("Id", ""),
            title=item.get("Name", ""),
            type=media_type.value,
            year=item.get("ProductionYear"),
            duration=duration,
            view_offset=position,
            state=state.value,
            progress=calculate_progress(position, duration),
            imdb_id=provider_ids.get("Imdb"),
            tvdb_id=provider_ids.get("Tvdb"),
            user=User(id=raw.get("UserId", ""), username=raw.get("UserName", "")),
            source=self.name,
        )
        if media_type == MediaType.EPISODE:
            session.show_title = item.get("SeriesName", "")
            session.episode_title = item.get("Name", "")
            session.season_num = item.get("ParentIndexNumber") or 0
            session.episode_num = item.get("IndexNumber") or 0
        return session

    # ========== Scrobble ==========

    async def scrobble(self, session: MediaSession, action: ScrobbleAction) -> None:
        """Report playback of a matching library item on this server."""
        item_id = await self.find_item(session)
        if not item_id:
            raise ItemNotFoundError(f"[{self.name}] no matching item found for '{session.title}'")

        user_id = await self.get_default_user_id()

        match action:
            case ScrobbleAction.START:
                endpoint = "/Sessions/Playing/Progress"
            case ScrobbleAction.PAUSE | ScrobbleAction.STOP:
                endpoint = "/Sessions/Playing/Stopped"
            case _:
                raise ProviderError(f"[{self.name}] unsupported action: {action}")

        await self._request(
            "POST",
            endpoint,
            json={
                "ItemId": item_id,
                "UserId": user_id,
                "PositionTicks": session.view_offset * TICKS_PER_MS,
                "IsPaused": action == ScrobbleAction.PAUSE,
                "PlaySessionId": session.session_id,
            },
        )
        logger.debug("[%s] Scrobbled %s: %s (item=%s)", self.name, action.value, session.title, item_id)

    # ========== Item Lookup ==========

    async def find_item(self, session: MediaSession) -> str | None:
        """Find the library item ID for a session.

        External IDs are tried first, then a title search.
        """
        for provider, value in (("Imdb", session.imdb_id), ("Tvdb", session.tvdb_id)):
            if not value:
                continue
            try:
                found = await self.find_by_external_id(provider, value)
            except ProviderError as e:
                logger.debug("[%s] Provider search failed for %s=%s: %s", self.name, provider, value, e)
                continue
            if found:
                return found

        params: dict[str, Any] = {"searchTerm": session.title, "recursive": "true"}
        if session.is_episode and session.show_title:
            params["includeItemTypes"] = "Episode"
        else:
            params["includeItemTypes"] = "Movie"
            if session.year:
                params["years"] = session.year

        data = await self._json("GET", "/Items", params=params)
        items = data.get("Items", []) if isinstance(data, dict) else []

        if session.is_episode and session.show_title:
            for item in items:
                if (
                    item.get("ParentIndexNumber") == session.season_num
                    and item.get("IndexNumber") == session.episode_num
                ):
                    return item.get("Id")
            return None

        return items[0].get("Id") if items else None

    async def find_by_external_id(self, provider: str, value: str) -> str | None:
        """Find an item by external provider ID (Imdb, Tvdb, ...)."""
        data = await self._json(
            "GET",
            "/Items",
            params={"AnyProviderIdEquals": f"{provider}.{value}", "recursive": "true"},
        )
        items = data.get("Items", []) if isinstance(data, dict) else []
        if items:
            logger.debug("[%s] Found item by %s=%s: %s", self.name, provider, value, items[0].get("Id"))
            return items[0].get("Id")
        return None

    # ========== Users ==========

    async def get_default_user_id(self) -> str:
        """User to scrobble as: the configured username, else the first enabled user (cached)."""
        if self._user_id:
            return self._user_id

        users = await self._json("GET", "/Users")
        enabled = [u for u in users or [] if not (u.get("Policy") or {}).get("IsDisabled")]

        chosen: dict[str, Any] | None = None
        if self.server.username:
            chosen = next((u for u in enabled if u.get("Name") == self.server.username), None)
        if chosen is None and enabled:
            chosen = enabled[0]
        if chosen is None:
            raise ProviderError(f"[{self.name}] no valid users found")

        self._user_id = chosen.get("Id")
        logger.info("[%s] Using user '%s' (%s) for scrobbles", self.name, chosen.get("Name"), self._user_id)
        return self._user_id or ""


class JellyfinServer(EmbyJellyfinServer):
    """Jellyfin server client."""

    server_type = "jellyfin"
    auth_scheme = "MediaBrowser"

    def _apply_token_headers(self) -> None:
        self.http.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Authorization": self._authorization(self.token),
            }
        )


class EmbyServer(EmbyJellyfinServer):
    """Emby server client."""

    server_type = "emby"
    auth_scheme = "Emby"

