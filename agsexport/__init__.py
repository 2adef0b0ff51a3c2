"""
ags-export: export ArcGIS feature service layers to GeoJSON.

Large layers are fetched in object id chunks, staged to disk and stream-merged
into a single FeatureCollection per service.
"""

from .config import ConfigError, ExportConfig, ServiceTarget, load_config
from .errors import (
    CleanupFailure,
    ExportError,
    FeatureFetchFailed,
    GeometryMissing,
    MergeIOFailure,
    ServiceUnavailable,
    StagingIOFailure,
    TransferLimitExceeded,
)
from .pipeline import ServiceResult, export, run_service, run_services

__version__ = "1.0.0"

__all__ = [
    "CleanupFailure",
    "ConfigError",
    "ExportConfig",
    "ExportError",
    "FeatureFetchFailed",
    "GeometryMissing",
    "MergeIOFailure",
    "ServiceResult",
    "ServiceTarget",
    "ServiceUnavailable",
    "StagingIOFailure",
    "TransferLimitExceeded",
    "export",
    "load_config",
    "run_service",
    "run_services",
]
