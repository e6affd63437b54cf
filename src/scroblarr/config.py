"""Configuration models for scroblarr."""

import json
import logging
import re
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.yaml"
TRAKT_TOKEN_FILE = "trakt.json"

DEFAULT_INTERVAL = "10s"
FALLBACK_INTERVAL_SECONDS = 30.0

# Name of the pseudo-target that enables Trakt for a sync group
TRAKT_TARGET = "trakt"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """Parse a duration string such as "10s", "1m30s" or "500ms" into seconds.

    A bare "0" is accepted and means zero.
    """
    text = value.strip()
    if text in ("0", "+0", "-0"):
        return 0.0
    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if not text:
        raise ValueError(f"invalid duration: {value!r}")

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return sign * total


def interval_seconds(value: str | None, default: str = DEFAULT_INTERVAL) -> float:
    """Resolve an interval string, falling back to 30s when it cannot be parsed."""
    try:
        return parse_duration(value if value is not None else default)
    except ValueError:
        logger.warning("Invalid interval %r, using %ss", value, FALLBACK_INTERVAL_SECONDS)
        return FALLBACK_INTERVAL_SECONDS


class ServerType(str, Enum):
    """Supported media server types."""

    PLEX = "plex"
    JELLYFIN = "jellyfin"
    EMBY = "emby"


class ServerConfig(BaseModel):
    """Configuration for a single media server."""

    type: str = ""
    url: str = ""
    token: str = ""
    username: str = ""
    password: str = ""
    rate_limit: float | None = None  # requests per second
    rate_burst: int = 5
    verify_tls: bool = True


class SyncConfig(BaseModel):
    """One sync group: a source polled for sessions and its targets."""

    name: str = ""
    source: str = ""
    targets: list[str] = Field(default_factory=list)
    interval: str | None = None  # Overrides the global interval

    @property
    def trakt_enabled(self) -> bool:
        return TRAKT_TARGET in self.targets


class TraktConfig(BaseModel):
    """Trakt application credentials."""

    client_id: str = ""
    client_secret: str = ""


class TraktToken(BaseModel):
    """OAuth token obtained from the Trakt device flow (trakt.json)."""

    access_token: str = ""
    refresh_token: str = ""
    expires_in: int = 0
    token_type: str = ""


class RequestConfig(BaseModel):
    """Outbound request behaviour shared by all clients."""

    max_retries: int = 3
    timeout_seconds: float = 30.0


class Config(BaseModel):
    """Root configuration model."""

    servers: dict[str, ServerConfig] = Field(default_factory=dict)
    sync: list[SyncConfig] = Field(default_factory=list)
    trakt: TraktConfig = Field(default_factory=TraktConfig)
    request: RequestConfig = Field(default_factory=RequestConfig)
    interval: str = DEFAULT_INTERVAL
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"
    match_movie_titles: bool = False
    dry_run: bool = False

    # Runtime only, never written back to config.yaml
    path: Path | None = Field(default=None, exclude=True)
    trakt_token: TraktToken | None = Field(default=None, exclude=True)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        try:
            return cls.model_validate(data or {})
        except ValidationError as e:
            raise ConfigError(f"error parsing config file: {e}") from e

    @property
    def trakt_enabled(self) -> bool:
        return self.trakt_token is not None and bool(self.trakt_token.access_token)

    def get_interval(self) -> float:
        """Global poll interval in seconds (0 disables scrobbling)."""
        return interval_seconds(self.interval)

    def get_server(self, name: str) -> ServerConfig | None:
        """Get server config by name."""
        return self.servers.get(name)

    def validate_config(self) -> None:
        """Check required fields.

        Raises:
            ConfigError: on the first problem found.
        """
        if not self.servers:
            raise ConfigError("no servers configured")

        for name, server in self.servers.items():
            if not server.url:
                raise ConfigError(f"server {name} URL is required")
            if not server.type:
                raise ConfigError(f"server {name} type is required")
            if server.type not in {t.value for t in ServerType}:
                raise ConfigError(f"server {name} has an invalid type: {server.type}")

        for sync in self.sync:
            if not sync.name:
                raise ConfigError("sync name is required")
            if not sync.source:
                raise ConfigError(f"sync {sync.name} source is required")
            if any(not target for target in sync.targets):
                raise ConfigError(f"sync {sync.name} has an empty target")
            if sync.interval is not None and sync.interval == "0":
                raise ConfigError(f"sync {sync.name} interval cannot be zero")

    # ========== Persistence ==========

    def save(self) -> None:
        """Write the configuration back to config.yaml."""
        if self.path is None:
            raise ConfigError("config path not set")
        data = self.model_dump(mode="json", exclude_none=True)
        with open(self.path / CONFIG_FILE, "w") as f:
            yaml.safe_dump(data, f, sort_keys=False)

    def load_trakt_token(self) -> TraktToken | None:
        """Load trakt.json from the data directory, if present."""
        if self.path is None:
            return None
        token_path = self.path / TRAKT_TOKEN_FILE
        if not token_path.exists():
            return None
        try:
            with open(token_path) as f:
                self.trakt_token = TraktToken.model_validate(json.load(f))
        except (OSError, ValueError) as e:
            raise ConfigError(f"error reading trakt config file: {e}") from e
        return self.trakt_token

    def save_trakt_token(self, token: TraktToken) -> None:
        """Persist a Trakt token to trakt.json."""
        if self.path is None:
            raise ConfigError("config path not set")
        with open(self.path / TRAKT_TOKEN_FILE, "w") as f:
            json.dump(token.model_dump(), f, indent=2)
        self.trakt_token = token


def load_config(data_path: str | Path) -> Config:
    """Load and validate config.yaml (and trakt.json) from a data directory."""
    data_path = Path(data_path)
    config_file = data_path / CONFIG_FILE
    if not config_file.exists():
        raise ConfigError(f"configuration file not found: {config_file}")

    config = Config.from_yaml(config_file)
    config.path = data_path
    config.load_trakt_token()
    config.validate_config()
    return config
