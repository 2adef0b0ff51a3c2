"""
Feature id enumeration for one service.

Fetches the complete id list and the layer metadata concurrently. Both must
succeed; anything else is a ServiceUnavailable for that service.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from .config import ServiceTarget
from .errors import ServiceUnavailable
from .query import ids_query_params, metadata_params, query_url
from .responses import DecodeError, ErrorPayload, LayerMetadata, ObjectIds, decode_metadata, decode_object_ids

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceInfo:
    object_ids: List[int]
    metadata: LayerMetadata
    object_id_field: Optional[str] = None

    @property
    def feature_count(self) -> int:
        return len(self.object_ids)


def sort_object_ids(object_ids) -> List[int]:
    """Ascending numeric order with duplicates removed."""
    ordered = sorted(set(object_ids))
    if len(ordered) != len(object_ids):
        log.warning(f"[IDS] Dropped {len(object_ids) - len(ordered)} duplicate object ids")
    return ordered


async def _fetch(client, target: ServiceTarget, url: str, params: dict, what: str) -> Any:
    payload = await client.fetch_json(url, params=params)
    if payload is None:
        raise ServiceUnavailable(f"{what} request failed for {target.base_url}", service=target.name)
    return payload


async def fetch_object_ids(client, target: ServiceTarget) -> ObjectIds:
    payload = await _fetch(client, target, query_url(target), ids_query_params(target), "Object id")
    try:
        result = decode_object_ids(payload)
    except DecodeError as e:
        raise ServiceUnavailable(f"Bad object id response: {e}", service=target.name) from e

    if isinstance(result, ErrorPayload):
        raise ServiceUnavailable(f"Object id request returned error: {result}", service=target.name)

    return ObjectIds(object_ids=tuple(sort_object_ids(result.object_ids)), object_id_field=result.object_id_field)


async def fetch_metadata(client, target: ServiceTarget) -> LayerMetadata:
    payload = await _fetch(client, target, target.base_url, metadata_params(), "Metadata")
    try:
        result = decode_metadata(payload)
    except DecodeError as e:
        raise ServiceUnavailable(f"Bad metadata response: {e}", service=target.name) from e

    if isinstance(result, ErrorPayload):
        raise ServiceUnavailable(f"Metadata request returned error: {result}", service=target.name)

    return result


async def enumerate_service(client, target: ServiceTarget) -> ServiceInfo:
    """Fetch sorted ids and metadata for target."""
    results = await asyncio.gather(
        fetch_object_ids(client, target),
        fetch_metadata(client, target),
        return_exceptions=True,
    )
    failure: Optional[BaseException] = next((r for r in results if isinstance(r, BaseException)), None)
    if failure is not None:
        raise failure

    ids, metadata = results
    log.info(f"[IDS] Number of features for service {target.name}: {len(ids.object_ids)}")
    return ServiceInfo(
        object_ids=list(ids.object_ids),
        metadata=metadata,
        object_id_field=ids.object_id_field or metadata.object_id_field,
    )
