"""Bounded log of sync and publish failures."""
import logging
from datetime import datetime, timezone
from typing import List

from relay_sync.models import ErrorEntry
from relay_sync.storage import ErrorStorage

logger = logging.getLogger("relay_sync.error_log")


class ErrorLog:
    """Records errors to a storage adapter and serves the most recent ones."""

    def __init__(self, storage: ErrorStorage) -> None:
        self._storage = storage

    def log_error(self, entry: ErrorEntry) -> None:
        self._storage.append(entry)

    def record(self, action: str, error: BaseException, *, source: str = "unknown") -> ErrorEntry:
        """Build an :class:`ErrorEntry` from ``error`` and store it."""
        message = str(error) or type(error).__name__
        entry = ErrorEntry(
            timestamp=datetime.now(timezone.utc),
            action_attempted=action,
            error_message=message,
            error_type=type(error).__name__,
            source=source,
        )
        self.log_error(entry)
        logger.warning("%s failed while trying to %s: %s", source, action, message)
        return entry

    def get_recent_errors(self, limit: int = 5) -> List[ErrorEntry]:
        """Return up to ``limit`` errors, newest first."""
        return self._storage.load_recent(limit)
