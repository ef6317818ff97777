from __future__ import annotations

from pathlib import Path


class UptimeArchiveError(Exception):
    """Base exception for the monitoring data store."""


class ConfigurationError(UptimeArchiveError):
    """Malformed endpoint, maintenance or window configuration."""


class ArchiveIOError(UptimeArchiveError):
    """Disk-level failure while appending, compressing or rebuilding."""

    def __init__(self, message: str, path: Path | None = None) -> None:
        self.path = path
        super().__init__(message)


class ArchiveClosedError(ArchiveIOError):
    """Raised when appending to a day whose archive is already compressed."""


class StoreError(UptimeArchiveError):
    """The shared store refused or failed a sync/commit for a non-conflict reason."""


class StoreConflictError(StoreError):
    """Another writer changed the shared store since our base; retry after sync."""
