"""
Query parameter composition for ArcGIS feature service requests.

User parameters come from the configured service address; required parameters
come from the request purpose. Required parameters always win.
"""

from enum import Enum
from typing import Any, Dict, Mapping, Sequence

from .config import ServiceTarget

OUT_SR = "4326"


class OutputFormat(str, Enum):
    """Values of the ArcGIS ``f`` parameter used for feature fetches."""
    GEOJSON = "geoJSON"     # native, no client-side conversion
    JSON = "json"           # legacy ArcGIS JSON geometry

    @property
    def is_native(self) -> bool:
        return self is OutputFormat.GEOJSON


def merge_params(user: Mapping[str, Any], required: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge required params over user params; user-only keys pass through."""
    return {**user, **required}


def _flag(value: bool) -> str:
    return "true" if value else "false"


def ids_query_params(target: ServiceTarget) -> Dict[str, Any]:
    """Parameters for the ids-only listing request."""
    required = {
        "where": "1=1",
        "returnIdsOnly": _flag(True),
        "f": OutputFormat.JSON.value,
    }
    return merge_params(target.user_params, required)


def features_query_params(target: ServiceTarget, object_ids: Sequence[int], output_format: OutputFormat) -> Dict[str, Any]:
    """Parameters for fetching one chunk of full features."""
    required = {
        "objectIds": ",".join(str(oid) for oid in object_ids),
        "geometryType": "esriGeometryEnvelope",
        "returnGeometry": _flag(True),
        "returnIdsOnly": _flag(False),
        "outFields": "*",
        "outSR": OUT_SR,
        "f": output_format.value,
    }
    return merge_params(target.user_params, required)


def metadata_params() -> Dict[str, Any]:
    return {"f": OutputFormat.JSON.value}


def query_url(target: ServiceTarget) -> str:
    return f"{target.base_url}/query"
