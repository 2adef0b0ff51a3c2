"""
Error taxonomy for the export pipeline.

Every stage raises one of these; the orchestrator catches ExportError at the
per-service boundary so one service's failure never reaches its siblings.
"""

from typing import Optional


class ExportError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, *, service: Optional[str] = None) -> None:
        super().__init__(message)
        self.service = service


class ServiceUnavailable(ExportError):
    """ID or metadata request failed or returned an error payload."""
    pass


class FeatureFetchFailed(ExportError):
    """A chunk request failed or returned an error payload."""

    def __init__(self, message: str, *, service: Optional[str] = None, chunk_index: Optional[int] = None) -> None:
        super().__init__(message, service=service)
        self.chunk_index = chunk_index


class GeometryMissing(ExportError):
    """A feature has no geometry. Recovered locally by dropping the feature."""

    def __init__(self, feature: dict) -> None:
        super().__init__("Feature missing geometry")
        self.feature = feature


class StagingIOFailure(ExportError):
    """Unable to create or write a staging file."""
    pass


class MergeIOFailure(ExportError):
    """Unable to read a staged chunk or write the output artifact."""
    pass


class CleanupFailure(ExportError):
    """Staging directory removal failed after a successful merge."""
    pass


class TransferLimitExceeded(FeatureFetchFailed):
    """Server returned a truncated chunk (maxRecordCount below the chunk size)."""
    pass
