"""
Typed decoding of ArcGIS REST responses.

Raw JSON is decoded into one of these types as soon as it arrives; nothing
downstream looks at response dicts directly.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union


class DecodeError(ValueError):
    """Response JSON does not have the expected shape."""
    pass


@dataclass(frozen=True)
class ErrorPayload:
    """The ``{"error": {...}}`` body ArcGIS returns with HTTP 200."""
    message: str
    code: Optional[int] = None
    details: Tuple[str, ...] = ()

    def __str__(self) -> str:
        text = self.message
        if self.code is not None:
            text = f"{self.code}: {text}"
        if self.details:
            text = f"{text} ({'; '.join(self.details)})"
        return text


@dataclass(frozen=True)
class ObjectIds:
    object_ids: Tuple[int, ...]
    object_id_field: Optional[str] = None


@dataclass(frozen=True)
class LayerMetadata:
    name: str
    fields: Tuple[Dict[str, Any], ...] = ()
    supported_query_formats: Tuple[str, ...] = ()
    drawing_info: Optional[Dict[str, Any]] = None
    geometry_type: Optional[str] = None
    object_id_field: Optional[str] = None

    @property
    def supports_geojson(self) -> bool:
        return any(fmt.lower() == "geojson" for fmt in self.supported_query_formats)


@dataclass(frozen=True)
class FeatureSet:
    features: List[Dict[str, Any]] = field(default_factory=list)
    exceeded_transfer_limit: bool = False


IdsResponse = Union[ObjectIds, ErrorPayload]
MetadataResponse = Union[LayerMetadata, ErrorPayload]
FeaturesResponse = Union[FeatureSet, ErrorPayload]


def _require_mapping(payload: Any, what: str) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise DecodeError(f"{what} response is not a JSON object")
    return payload


def decode_error(payload: Dict[str, Any]) -> Optional[ErrorPayload]:
    """Return the ErrorPayload if the body carries one."""
    error = payload.get("error")
    if error is None:
        return None
    if not isinstance(error, dict):
        return ErrorPayload(message=str(error))
    code = error.get("code")
    return ErrorPayload(
        message=str(error.get("message") or "Unknown server error"),
        code=code if isinstance(code, int) else None,
        details=tuple(str(d) for d in error.get("details") or ()),
    )


def decode_object_ids(payload: Any) -> IdsResponse:
    body = _require_mapping(payload, "ids")
    if (error := decode_error(body)) is not None:
        return error

    raw_ids = body.get("objectIds")
    if raw_ids is None:
        # ArcGIS sends null for an empty result
        raw_ids = []
    if not isinstance(raw_ids, list):
        raise DecodeError("objectIds is not a list")

    ids = []
    for oid in raw_ids:
        if isinstance(oid, bool) or not isinstance(oid, int):
            raise DecodeError(f"Non-integer object id: {oid!r}")
        ids.append(oid)

    return ObjectIds(object_ids=tuple(ids), object_id_field=body.get("objectIdFieldName"))


def _object_id_field(body: Dict[str, Any], fields: List[Any]) -> Optional[str]:
    if isinstance(body.get("objectIdField"), str):
        return body["objectIdField"]
    for f in fields:
        if isinstance(f, dict) and f.get("type") == "esriFieldTypeOID":
            return f.get("name")
    return None


def decode_metadata(payload: Any) -> MetadataResponse:
    body = _require_mapping(payload, "metadata")
    if (error := decode_error(body)) is not None:
        return error

    formats = body.get("supportedQueryFormats") or ""
    if not isinstance(formats, str):
        raise DecodeError("supportedQueryFormats is not a string")

    fields = body.get("fields") or []
    if not isinstance(fields, list):
        raise DecodeError("fields is not a list")

    return LayerMetadata(
        name=str(body.get("name") or ""),
        fields=tuple(f for f in fields if isinstance(f, dict)),
        supported_query_formats=tuple(p.strip() for p in formats.split(",") if p.strip()),
        drawing_info=body.get("drawingInfo"),
        geometry_type=body.get("geometryType"),
        object_id_field=_object_id_field(body, fields),
    )


def decode_features(payload: Any) -> FeaturesResponse:
    body = _require_mapping(payload, "features")
    if (error := decode_error(body)) is not None:
        return error

    features = body.get("features")
    if features is None:
        raise DecodeError("Response has no features member")
    if not isinstance(features, list):
        raise DecodeError("features is not a list")

    return FeatureSet(
        features=features,
        exceeded_transfer_limit=bool(body.get("exceededTransferLimit", False)
                                     or (body.get("properties") or {}).get("exceededTransferLimit", False)),
    )
