"""Exception types for scroblarr."""


class ScroblarrError(Exception):
    """Base class for all scroblarr errors."""


class RetriesExhaustedError(ScroblarrError):
    """All request attempts failed at the transport level."""

    def __init__(self, attempts: int, message: str = "max retries exceeded"):
        super().__init__(f"{message} after {attempts} attempts")
        self.attempts = attempts


class ProviderError(ScroblarrError):
    """A media server call failed (bad response, auth failure, network)."""


class ItemNotFoundError(ProviderError):
    """No matching library item exists on the target server."""


class RemoteError(ScroblarrError):
    """The remote watch-history service rejected or failed a call."""


class ConfigError(ScroblarrError):
    """Configuration is missing or invalid."""
