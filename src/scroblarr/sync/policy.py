"""Mapping from observed playback state to scrobble actions."""

from ..models import MediaSession, PlaybackState, ScrobbleAction

# Stopped sessions past this progress count as watched
COMPLETION_THRESHOLD = 90.0


def derive_action(session: MediaSession) -> ScrobbleAction:
    """Decide which action a session should produce on targets.

    - playing -> start
    - paused -> pause
    - stopped past the completion threshold -> stop (finished)
    - stopped before it -> pause (interrupted)
    - anything else -> start
    """
    match session.state:
        case PlaybackState.PLAYING.value:
            return ScrobbleAction.START
        case PlaybackState.PAUSED.value:
            return ScrobbleAction.PAUSE
        case PlaybackState.STOPPED.value:
            if session.progress > COMPLETION_THRESHOLD:
                return ScrobbleAction.STOP
            return ScrobbleAction.PAUSE
        case _:
            return ScrobbleAction.START


def normalize_completion(session: MediaSession, action: ScrobbleAction) -> MediaSession:
    """Report finished items as fully watched.

    Returns a copy with progress forced to 100 when the action is ``stop`` and
    progress is past the completion threshold; otherwise returns the session
    unchanged.
    """
    if action == ScrobbleAction.STOP and session.progress > COMPLETION_THRESHOLD:
        return session.model_copy(update={"progress": 100.0})
    return session
