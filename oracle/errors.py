# oracle/errors.py
"""
Error taxonomy for the recommendation engine.

Only WorkerStalled and WorkerCrashed ever reach the end user (as the
orchestrator's error state). Everything else is caught at the component
boundary, logged, and turned into degraded output.
"""

from __future__ import annotations


class OracleError(Exception):
    """Base class for all engine errors."""


class BackendUnavailable(OracleError):
    """Embedding or ANN backend is down or missing."""


class SourceFetchFailed(OracleError):
    """One candidate source failed; it contributes zero candidates."""

    def __init__(self, source: str, cause: BaseException | None = None):
        self.source = source
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Candidate source '{source}' failed{detail}")


class WorkerStalled(OracleError):
    """The scoring worker exceeded its idle timeout."""


class WorkerCrashed(OracleError):
    """The scoring worker died or raised."""


class StorageWriteFailed(OracleError):
    """A write to the persistent store failed."""


class DataCorrupt(OracleError):
    """A cached record could not be decoded."""
