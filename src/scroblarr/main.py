"""Main entry point for scroblarr."""

import logging
import logging.handlers
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version
from pathlib import Path

import uvicorn
from fastapi import FastAPI

from .api import health_router, status_router, trakt_router
from .config import CONFIG_FILE, Config, load_config
from .errors import ConfigError
from .media_servers import MediaServer, create_servers
from .sync import SyncEngine
from .trakt import TraktClient

LOG_FILE = "scroblarr.log"
LOG_MAX_BYTES = 2 * 1024 * 1024
LOG_BACKUP_COUNT = 2


def setup_logging(level: str = "INFO", data_path: Path | None = None) -> None:
    """Configure logging to stdout and, when a data directory is given, a rotating file."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if data_path is not None:
        log_dir = data_path / "logs"
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            handlers.append(
                logging.handlers.RotatingFileHandler(
                    log_dir / LOG_FILE,
                    maxBytes=LOG_MAX_BYTES,
                    backupCount=LOG_BACKUP_COUNT,
                    encoding="utf-8",
                )
            )
        except OSError as e:
            print(f"Warning: cannot write logs to {log_dir}: {e}")

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )
    # Silence noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def resolve_data_path() -> Path:
    """Data directory from DATA_PATH (default /data), or the current directory for local runs."""
    data_path = Path(os.environ.get("DATA_PATH", "/data"))
    if not (data_path / CONFIG_FILE).exists() and Path(CONFIG_FILE).exists():
        return Path.cwd()
    return data_path


def init_config() -> Config:
    """Load configuration and set up logging; exits when the config is missing or invalid."""
    data_path = resolve_data_path()
    try:
        config = load_config(data_path)
    except ConfigError as e:
        print(f"Error: {e}")
        print(f"Create {CONFIG_FILE} in the data directory or set the DATA_PATH environment variable")
        sys.exit(1)

    setup_logging(config.log_level, data_path)

    logger = logging.getLogger(__name__)
    logger.info("Loaded configuration from %s", data_path / CONFIG_FILE)
    logger.info("Configured servers: %s", list(config.servers))
    return config


async def _shutdown(engine: SyncEngine | None, servers: dict[str, MediaServer], trakt: TraktClient | None) -> None:
    if engine is not None:
        await engine.stop()
    for server in servers.values():
        await server.close()
    if trakt is not None:
        await trakt.close()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build servers and start the sync engine; stop everything on shutdown."""
    logger = logging.getLogger(__name__)
    config: Config = app.state.config

    logger.info("Starting scroblarr...")
    app.state.engine = None

    engine: SyncEngine | None = None
    trakt: TraktClient | None = None
    servers: dict[str, MediaServer] = {}

    if config.get_interval() == 0:
        logger.info("Interval is 0, scrobbling disabled")
    else:
        try:
            servers = await create_servers(config)
            if config.trakt_enabled:
                trakt = TraktClient(config.trakt_token, config.trakt.client_id)
                logger.info("Trakt enabled")
            if config.dry_run:
                logger.info("Dry run: scrobbles will be logged, not sent")

            engine = SyncEngine(config, servers, trakt)
            engine.start()
        except Exception:
            logger.exception("Startup failed, closing clients")
            await _shutdown(engine, servers, trakt)
            raise
        app.state.engine = engine

    yield

    logger.info("Shutting down scroblarr...")
    await _shutdown(app.state.engine, servers, trakt)


def create_app(config: Config | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="scroblarr",
        description="Scrobble playback between Plex, Jellyfin, Emby and Trakt",
        version=version("scroblarr"),
        lifespan=lifespan,
    )
    app.state.config = config if config is not None else init_config()

    app.include_router(health_router)  # /healthz, /readyz
    app.include_router(status_router)  # /api/status, /api/servers
    app.include_router(trakt_router)  # /api/auth/trakt

    return app


def main() -> None:
    """Main entry point."""
    app = create_app()
    config: Config = app.state.config

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
