"""Sync engine and action policy."""

from .engine import SyncEngine, SyncWorker
from .policy import COMPLETION_THRESHOLD, derive_action, normalize_completion

__all__ = ["SyncEngine", "SyncWorker", "derive_action", "normalize_completion", "COMPLETION_THRESHOLD"]
