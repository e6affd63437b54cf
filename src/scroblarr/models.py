"""Data models for scroblarr."""

from enum import Enum

from pydantic import BaseModel, Field


class MediaType(str, Enum):
    """Kinds of media a session can play."""

    MOVIE = "movie"
    EPISODE = "episode"


class PlaybackState(str, Enum):
    """Playback states reported by media servers."""

    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


class ScrobbleAction(str, Enum):
    """Actions forwarded to scrobble targets."""

    START = "start"
    PAUSE = "pause"
    STOP = "stop"


class User(BaseModel):
    """User watching a session."""

    id: str = ""
    username: str = ""


class Library(BaseModel):
    """Library section on a media server."""

    id: str
    name: str
    type: str  # movie, show, music, ...


class MediaSession(BaseModel):
    """Snapshot of one playback instance on a media server.

    ``progress`` is always derived from ``view_offset`` / ``duration`` by the
    provider that built the session. It is only overwritten by the completion
    rule in :mod:`scroblarr.sync.policy`.
    """

    session_id: str = ""
    title: str = ""
    year: int | None = None
    # Kept as plain strings so unknown values reported by a server survive
    type: str = MediaType.MOVIE.value
    state: str = PlaybackState.PLAYING.value
    progress: float = 0.0
    duration: int = 0  # ms
    view_offset: int = 0  # ms

    # External IDs
    imdb_id: str | None = None
    tvdb_id: str | None = None

    # Episodes only
    show_title: str = ""
    episode_title: str = ""
    season_num: int = 0
    episode_num: int = 0

    user: User = Field(default_factory=User)
    source: str = ""  # Name of the server that produced the session
    viewed_at: int | None = None

    library_id: str | None = None
    library_name: str | None = None
    library_type: str | None = None

    @property
    def is_episode(self) -> bool:
        return self.type == MediaType.EPISODE.value


def calculate_progress(view_offset: int, duration: int) -> float:
    """Return playback progress in percent (0 when duration is unknown)."""
    if duration == 0:
        return 0.0
    return view_offset / duration * 100.0


def identity_key(session: MediaSession) -> str:
    """Key used to correlate snapshots of the same item across polls.

    Built from type, show title and episode title only. Movies have neither,
    so every movie maps to the same key ("movie--"). Use
    :func:`title_identity_key` to keep concurrent movies apart.
    """
    return f"{session.type}-{session.show_title}-{session.episode_title}"


def title_identity_key(session: MediaSession) -> str:
    """Identity key that also includes the title."""
    return f"{session.type}-{session.title}-{session.show_title}-{session.episode_title}"
