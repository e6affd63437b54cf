"""Trakt device authorization endpoints."""

import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from ..config import Config
from ..errors import ConfigError, RemoteError
from ..trakt import poll_device_token, request_device_code
from ..trakt.models import DeviceCode, DevicePollResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth/trakt", tags=["trakt"])


class PollRequest(BaseModel):
    device_code: str


def _require_credentials(config: Config) -> None:
    if not config.trakt.client_id or not config.trakt.client_secret:
        raise HTTPException(status_code=400, detail="trakt client_id and client_secret are not configured")


@router.post("", response_model=DeviceCode)
async def start_device_auth(request: Request) -> DeviceCode:
    """Start the device flow. Show ``user_code`` and ``verification_url`` to the user."""
    config: Config = request.app.state.config
    _require_credentials(config)
    try:
        return await request_device_code(config.trakt.client_id)
    except RemoteError as e:
        logger.error("Trakt device code request failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e)) from e


@router.post("/poll", response_model=DevicePollResult)
async def poll_device_auth(body: PollRequest, request: Request) -> DevicePollResult:
    """Check whether the user approved the device; stores the token on success."""
    config: Config = request.app.state.config
    _require_credentials(config)
    try:
        result, token = await poll_device_token(config.trakt.client_id, config.trakt.client_secret, body.device_code)
    except RemoteError as e:
        logger.error("Trakt device token poll failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e)) from e

    if token is not None:
        try:
            config.save_trakt_token(token)
        except (ConfigError, OSError) as e:
            logger.error("Failed to save Trakt token: %s", e)
            raise HTTPException(status_code=500, detail="failed to save trakt token") from e
        logger.info("Trakt authorized; restart to enable Trakt scrobbling")
    return result
