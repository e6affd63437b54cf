"""Trakt API payloads."""

from pydantic import BaseModel, Field


class TraktMovie(BaseModel):
    title: str
    year: int | None = None
    ids: dict[str, str] = Field(default_factory=dict)


class TraktEpisode(BaseModel):
    title: str
    season: int
    number: int
    ids: dict[str, str] = Field(default_factory=dict)


class TraktShow(BaseModel):
    title: str
    ids: dict[str, str] = Field(default_factory=dict)


class ScrobbleRequest(BaseModel):
    """Body of POST /scrobble/{start,pause,stop}."""

    movie: TraktMovie | None = None
    episode: TraktEpisode | None = None
    show: TraktShow | None = None
    progress: float
    app_version: str


class DeviceCode(BaseModel):
    """Response of POST /oauth/device/code."""

    device_code: str
    user_code: str
    verification_url: str
    expires_in: int
    interval: int


class DevicePollResult(BaseModel):
    """Outcome of polling /oauth/device/token."""

    success: bool = False
    error: str | None = None  # pending, invalid_device_code, already_used, unknown
    error_description: str | None = None
