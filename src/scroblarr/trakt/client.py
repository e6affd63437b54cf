"""Trakt API client: scrobbling, history sync and device authorization."""

import logging
from importlib.metadata import version
from typing import Any

import httpx

from ..config import TraktToken
from ..errors import RemoteError, RetriesExhaustedError
from ..models import MediaSession, MediaType, ScrobbleAction
from ..request import ResilientClient
from .models import DeviceCode, DevicePollResult, ScrobbleRequest, TraktEpisode, TraktMovie, TraktShow

logger = logging.getLogger(__name__)

TRAKT_API_URL = "https://api.trakt.tv"
APP_VERSION = f"scroblarr/{version('scroblarr')}"

# Device token poll responses other than 200
_POLL_ERRORS = {
    400: ("pending", "Authorization pending"),
    404: ("invalid_device_code", "Invalid device code"),
    409: ("already_used", "Device code already used"),
}


def build_scrobble_request(session: MediaSession) -> ScrobbleRequest:
    """Shape a session into a Trakt scrobble payload."""
    payload = ScrobbleRequest(progress=session.progress, app_version=APP_VERSION)
    if session.type == MediaType.MOVIE.value:
        payload.movie = TraktMovie(title=session.title, year=session.year or None)
        if session.imdb_id:
            payload.movie.ids["imdb"] = session.imdb_id
    elif session.type == MediaType.EPISODE.value:
        payload.episode = TraktEpisode(
            title=session.episode_title,
            season=session.season_num,
            number=session.episode_num,
        )
        payload.show = TraktShow(title=session.show_title)
        if session.tvdb_id:
            payload.show.ids["tvdb"] = session.tvdb_id
    return payload


class TraktClient:
    """Async client for the parts of the Trakt API scroblarr uses."""

    def __init__(
        self,
        token: TraktToken,
        client_id: str,
        http: ResilientClient | None = None,
        base_url: str = TRAKT_API_URL,
    ):
        self.base_url = base_url.rstrip("/")
        self.http = http or ResilientClient()
        self.http.headers.update(
            {
                "Content-Type": "application/json",
                "trakt-api-version": "2",
                "trakt-api-key": client_id,
                "Authorization": f"Bearer {token.access_token}",
            }
        )

    async def close(self) -> None:
        await self.http.close()

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> httpx.Response:
        try:
            response = await self.http.request("POST", f"{self.base_url}{endpoint}", json=payload)
        except (httpx.HTTPError, RetriesExhaustedError, TimeoutError) as e:
            raise RemoteError(f"trakt request {endpoint} failed: {e}") from e

        if not response.is_success:
            logger.debug("Trakt error body for %s: %s", endpoint, response.text[:500])
            raise RemoteError(f"trakt API error: {response.status_code}")
        return response

    async def scrobble(self, session: MediaSession, action: ScrobbleAction) -> None:
        """Send a start/pause/stop scrobble."""
        payload = build_scrobble_request(session)
        await self._post(f"/scrobble/{action.value}", payload.model_dump(exclude_none=True))
        logger.debug("Trakt scrobbled %s: %s at %.2f%%", action.value, session.title, session.progress)

    async def sync_history(self, session: MediaSession) -> None:
        """Add a single completed item to the Trakt watch history."""
        if session.type == MediaType.MOVIE.value:
            movie: dict[str, Any] = {"title": session.title, "year": session.year, "ids": {}}
            if session.imdb_id:
                movie["ids"]["imdb"] = session.imdb_id
            history = {"movies": [movie]}
        elif session.type == MediaType.EPISODE.value:
            history = {
                "episodes": [
                    {
                        "title": session.episode_title,
                        "season": session.season_num,
                        "number": session.episode_num,
                        "ids": {},
                    }
                ]
            }
        else:
            raise RemoteError(f"unsupported media type: {session.type}")

        await self._post("/sync/history", history)


# ========== Device authorization ==========


async def request_device_code(
    client_id: str,
    http: ResilientClient | None = None,
    base_url: str = TRAKT_API_URL,
) -> DeviceCode:
    """Start the device flow; the user enters ``user_code`` at ``verification_url``.

    A client created here is closed before returning; a passed-in ``http`` is left open.
    """
    owned = http is None
    if http is None:
        http = ResilientClient(headers={"Content-Type": "application/json"})
    try:
        response = await http.request("POST", f"{base_url}/oauth/device/code", json={"client_id": client_id})
        response.raise_for_status()
        return DeviceCode.model_validate(response.json())
    except (httpx.HTTPError, RetriesExhaustedError, TimeoutError, ValueError) as e:
        raise RemoteError(f"failed to get trakt device code: {e}") from e
    finally:
        if owned:
            await http.close()


async def poll_device_token(
    client_id: str,
    client_secret: str,
    device_code: str,
    http: ResilientClient | None = None,
    base_url: str = TRAKT_API_URL,
) -> tuple[DevicePollResult, TraktToken | None]:
    """Check whether the user authorized the device.

    Returns the poll result and, on success, the issued token.
    """
    owned = http is None
    if http is None:
        http = ResilientClient(headers={"Content-Type": "application/json"})
    payload = {"client_id": client_id, "client_secret": client_secret, "code": device_code}
    try:
        response = await http.request("POST", f"{base_url}/oauth/device/token", json=payload)
    except (httpx.HTTPError, RetriesExhaustedError, TimeoutError) as e:
        raise RemoteError(f"failed to contact trakt API: {e}") from e
    finally:
        if owned:
            await http.close()

    if response.status_code == 200:
        try:
            token = TraktToken.model_validate(response.json())
        except ValueError as e:
            raise RemoteError(f"failed to parse trakt token: {e}") from e
        return DevicePollResult(success=True), token

    error, description = _POLL_ERRORS.get(response.status_code, ("unknown", "Unknown error"))
    return DevicePollResult(error=error, error_description=description), None
