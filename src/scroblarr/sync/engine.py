"""Sync engine: polls source servers and fans scrobbles out to targets."""

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from typing import Any

from ..config import TRAKT_TARGET, Config, SyncConfig, interval_seconds
from ..media_servers import MediaServer
from ..models import MediaSession, PlaybackState, ScrobbleAction, identity_key, title_identity_key
from ..sessions import SessionStore
from ..trakt import TraktClient
from .policy import derive_action, normalize_completion

logger = logging.getLogger(__name__)


class SyncWorker:
    """Runs one sync group: polls ``source`` and scrobbles to ``targets``.

    Ticks run strictly one after another. Inside a tick every delivery is
    isolated, so one failing target never blocks the others.
    """

    def __init__(
        self,
        name: str,
        source: MediaServer,
        targets: Sequence[MediaServer],
        trakt: TraktClient | None = None,
        interval: float = 10.0,
        store: SessionStore | None = None,
        dry_run: bool = False,
    ):
        self.name = name
        self.source = source
        self.targets = list(targets)
        self.trakt = trakt
        self.interval = interval
        self.store = store if store is not None else SessionStore()
        self.dry_run = dry_run
        self.running = False

    @property
    def trakt_enabled(self) -> bool:
        return self.trakt is not None

    async def run(self, stop_event: asyncio.Event) -> None:
        """Tick every ``interval`` seconds until ``stop_event`` is set or the task is cancelled."""
        self.running = True
        logger.info(
            "[%s] Worker started: %s -> %s (every %ss)",
            self.name,
            self.source.name,
            ", ".join(self._target_names()) or "-",
            self.interval,
        )
        try:
            while not stop_event.is_set():
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
                if stop_event.is_set():
                    break
                try:
                    await self.tick()
                except Exception as e:
                    logger.exception("[%s] Error in sync loop: %s", self.name, e)
        finally:
            self.running = False
            logger.info("[%s] Worker stopped", self.name)

    async def tick(self) -> None:
        """Poll the source once and deliver an action for every tracked session."""
        try:
            active = await self.source.get_sessions()
        except Exception as e:
            logger.error("[%s] Error getting sessions from %s: %s", self.name, self.source.name, e)
            return

        self.store.set_many(active)

        if not active:
            # Nothing playing: everything we were tracking has stopped
            for session in self.store.get_all():
                session.state = PlaybackState.STOPPED.value
                self.store.set(session)

        for session in self.store.get_all():
            action = derive_action(session)
            session = normalize_completion(session, action)
            await self._fan_out(session, action)

    async def _fan_out(self, session: MediaSession, action: ScrobbleAction) -> None:
        deliveries = []
        if self.trakt is not None:
            deliveries.append(self._deliver(TRAKT_TARGET, self.trakt, session, action))
        for target in self.targets:
            deliveries.append(self._deliver(target.name, target, session, action))
        await asyncio.gather(*deliveries)

    async def _deliver(self, target_name: str, target: Any, session: MediaSession, action: ScrobbleAction) -> None:
        if self.dry_run:
            logger.info(
                "[%s] Dry run: would %s '%s' on %s (%.2f%%)",
                self.name,
                action.value,
                session.title,
                target_name,
                session.progress,
            )
            return
        try:
            await target.scrobble(session, action)
        except Exception as e:
            logger.error(
                "[%s] Failed to scrobble '%s' (%s) to %s: %s",
                self.name,
                session.title,
                action.value,
                target_name,
                e,
            )
            return
        logger.info(
            "[%s] Scrobbled %s '%s' to %s at %.2f%%",
            self.name,
            action.value,
            session.title,
            target_name,
            session.progress,
        )

    def _target_names(self) -> list[str]:
        names = [t.name for t in self.targets]
        if self.trakt is not None:
            names.insert(0, TRAKT_TARGET)
        return names

    def status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "source": self.source.name,
            "targets": [t.name for t in self.targets],
            "trakt": self.trakt_enabled,
            "interval_seconds": self.interval,
            "tracked_sessions": len(self.store),
            "running": self.running,
        }


class SyncEngine:
    """Builds a worker per sync group and owns their tasks."""

    def __init__(
        self,
        config: Config,
        servers: dict[str, MediaServer],
        trakt: TraktClient | None = None,
    ):
        self.config = config
        self.servers = servers
        self.trakt = trakt
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self._workers = self._build_workers()

    @property
    def workers(self) -> list[SyncWorker]:
        return list(self._workers)

    @property
    def running(self) -> bool:
        return any(worker.running for worker in self._workers)

    def _build_workers(self) -> list[SyncWorker]:
        key_func = title_identity_key if self.config.match_movie_titles else identity_key
        default_interval = self.config.get_interval()
        workers = []
        for group in self.config.sync:
            worker = self._build_worker(group, default_interval, SessionStore(key_func))
            if worker is not None:
                workers.append(worker)
        return workers

    def _build_worker(self, group: SyncConfig, default_interval: float, store: SessionStore) -> SyncWorker | None:
        source = self.servers.get(group.source)
        if source is None:
            logger.error("[%s] Source server '%s' not found, skipping sync group", group.name, group.source)
            return None

        targets: list[MediaServer] = []
        use_trakt = False
        for target_name in group.targets:
            if target_name == TRAKT_TARGET:
                if self.trakt is None:
                    logger.warning("[%s] Trakt target configured but Trakt is not authorized, skipping", group.name)
                else:
                    use_trakt = True
                continue
            if target_name == group.source:
                logger.debug("[%s] Ignoring target '%s': same as source", group.name, target_name)
                continue
            target = self.servers.get(target_name)
            if target is None:
                logger.error("[%s] Target server '%s' not found, skipping", group.name, target_name)
                continue
            targets.append(target)

        interval = default_interval
        if group.interval is not None:
            interval = interval_seconds(group.interval)

        return SyncWorker(
            name=group.name,
            source=source,
            targets=targets,
            trakt=self.trakt if use_trakt else None,
            interval=interval,
            store=store,
            dry_run=self.config.dry_run,
        )

    def start(self, stop_event: asyncio.Event | None = None) -> None:
        """Spawn one task per worker and return immediately."""
        if self._tasks:
            return
        if stop_event is not None:
            self._stop_event = stop_event
        self._tasks = [
            asyncio.create_task(worker.run(self._stop_event), name=f"sync-{worker.name}") for worker in self._workers
        ]
        logger.info("Sync engine started with %d worker(s)", len(self._tasks))

    async def wait(self) -> None:
        """Wait until every worker has exited."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def stop(self) -> None:
        """Signal every worker, cancel their tasks and wait for them to finish."""
        logger.info("Stopping sync engine")
        self._stop_event.set()
        for task in self._tasks:
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Sync engine stopped")

    def status(self) -> list[dict[str, Any]]:
        """Per-group diagnostics."""
        return [worker.status() for worker in self._workers]

    async def health_check_all(self) -> dict[str, bool]:
        """Check health of every connected server."""

        async def check_server(name: str, server: MediaServer) -> tuple[str, bool]:
            return name, await server.health_check()

        results = await asyncio.gather(*(check_server(name, s) for name, s in self.servers.items()))
        return dict(results)
