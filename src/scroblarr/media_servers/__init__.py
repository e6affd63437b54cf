"""Media server clients."""

import logging

from ..config import Config, ServerConfig, ServerType
from ..errors import ConfigError, ProviderError
from ..request import ResilientClient, TokenBucket
from .base import MediaServer
from .jellyfin import EmbyServer, JellyfinServer
from .plex import PlexServer

logger = logging.getLogger(__name__)

__all__ = [
    "MediaServer",
    "PlexServer",
    "JellyfinServer",
    "EmbyServer",
    "create_server",
    "create_servers",
]


def _http_client(config: Config, server: ServerConfig) -> ResilientClient:
    rate_limiter = TokenBucket(server.rate_limit, server.rate_burst) if server.rate_limit else None
    return ResilientClient(
        max_retries=config.request.max_retries,
        timeout=config.request.timeout_seconds,
        rate_limiter=rate_limiter,
        verify=server.verify_tls,
    )


def create_server(name: str, server: ServerConfig, config: Config) -> MediaServer:
    """Build an (unconnected) client for a configured server."""
    http = _http_client(config, server)
    match server.type:
        case ServerType.PLEX.value:
            return PlexServer(name, server, http)
        case ServerType.JELLYFIN.value:
            return JellyfinServer(name, server, http)
        case ServerType.EMBY.value:
            return EmbyServer(name, server, http)
        case _:
            raise ConfigError(f"unsupported media server type: {server.type}")


async def create_servers(config: Config) -> dict[str, MediaServer]:
    """Build and connect every configured server.

    Servers that fail to build or connect are logged and skipped.

    Raises:
        ConfigError: no server could be connected.
    """
    servers: dict[str, MediaServer] = {}
    for name, server_config in config.servers.items():
        try:
            server = create_server(name, server_config, config)
        except (ConfigError, ProviderError) as e:
            logger.error("Failed to create server %s: %s", name, e)
            continue
        try:
            await server.connect()
        except ProviderError as e:
            logger.error("Failed to connect to %s: %s", name, e)
            await server.close()
            continue
        servers[name] = server

    if not servers:
        raise ConfigError("no server found")
    return servers
