"""Interface shared by every media server client."""

from typing import Protocol, runtime_checkable

from ..models import MediaSession, ScrobbleAction


@runtime_checkable
class MediaServer(Protocol):
    """A server that can act as a sync source and/or target."""

    @property
    def name(self) -> str: ...

    @property
    def server_type(self) -> str: ...

    async def connect(self) -> None:
        """Verify connectivity; raises ProviderError on failure."""
        ...

    async def get_sessions(self) -> list[MediaSession]:
        """Return currently active playback sessions."""
        ...

    async def scrobble(self, session: MediaSession, action: ScrobbleAction) -> None:
        """Mirror a session state on this server."""
        ...

    async def health_check(self) -> bool: ...

    async def close(self) -> None: ...
