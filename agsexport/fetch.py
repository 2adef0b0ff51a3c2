"""
Chunk fetching and staging.

Chunks are issued in ordinal order with a per-service throttle between request
issues and at most ``chunk_concurrency`` requests in flight. Each successful
chunk is put in ascending object id order, converted to GeoJSON features and
streamed to its staging file.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from arcgis2geojson import arcgis2geojson

from .chunking import ChunkTask
from .config import ServiceTarget
from .errors import ExportError, FeatureFetchFailed, GeometryMissing, StagingIOFailure, TransferLimitExceeded
from .geojson_stream import FeatureCollectionWriter
from .query import OutputFormat, features_query_params, query_url
from .responses import DecodeError, ErrorPayload, decode_features

log = logging.getLogger(__name__)


class Throttle:
    """Space request issues at least ``interval`` seconds apart.

    The first wait() returns immediately. The clock starts when a request is
    issued, not when it completes.
    """

    def __init__(
        self,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ) -> None:
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._last_issue: Optional[float] = None

    async def wait(self) -> float:
        """Wait for the next slot and return its issue time."""
        if self._last_issue is not None and self.interval > 0:
            delay = self._last_issue + self.interval - self._clock()
            if delay > 0:
                await self._sleep(delay)
        self._last_issue = self._clock()
        return self._last_issue


@dataclass(frozen=True)
class StagedChunk:
    index: int
    path: Path
    feature_count: int
    dropped: int


def convert_feature(feature: Dict[str, Any]) -> Dict[str, Any]:
    """Convert one ArcGIS JSON feature to a GeoJSON feature."""
    geometry = feature.get("geometry")
    if not geometry:
        raise GeometryMissing(feature)
    return {
        "type": "Feature",
        "properties": feature.get("attributes"),
        "geometry": arcgis2geojson(geometry),
    }


def check_geojson_feature(feature: Dict[str, Any]) -> Dict[str, Any]:
    if not feature.get("geometry"):
        raise GeometryMissing(feature)
    return feature


def feature_object_id(feature: Dict[str, Any], output_format: OutputFormat,
                      object_id_field: Optional[str] = None) -> Optional[int]:
    """Object id of a raw response feature, or None when it carries none."""
    if output_format.is_native:
        oid = feature.get("id")
        if oid is None and object_id_field:
            oid = (feature.get("properties") or {}).get(object_id_field)
    elif object_id_field:
        oid = (feature.get("attributes") or {}).get(object_id_field)
    else:
        oid = None
    if isinstance(oid, bool) or not isinstance(oid, int):
        return None
    return oid


def order_features(features: Sequence[Dict[str, Any]], output_format: OutputFormat,
                   object_id_field: Optional[str] = None) -> List[Dict[str, Any]]:
    """Sort features by object id. Features without an id go last, in server order."""
    keyed = [(feature_object_id(f, output_format, object_id_field), f) for f in features]
    missing = sum(1 for oid, _ in keyed if oid is None)
    if missing:
        log.debug(f"[FETCH] {missing} features carry no object id")
    keyed.sort(key=lambda pair: (pair[0] is None, pair[0] or 0))
    return [f for _, f in keyed]


def write_staged_chunk(task: ChunkTask, features: Sequence[Dict[str, Any]], service: str) -> StagedChunk:
    """Convert and stream features into the chunk's staging file. Blocking."""
    prepare = check_geojson_feature if task.output_format.is_native else convert_feature
    path = task.path
    dropped = 0

    try:
        with FeatureCollectionWriter(path) as writer:
            for feature in features:
                try:
                    writer.write(prepare(feature))
                except GeometryMissing as e:
                    dropped += 1
                    log.warning(f"[FETCH] Feature missing geometry and is omitted ({service}): {e.feature}")
    except OSError as e:
        raise StagingIOFailure(f"Cannot write staging file {path}: {e}", service=service) from e

    return StagedChunk(index=task.index, path=path, feature_count=writer.count, dropped=dropped)


async def fetch_chunk(client, target: ServiceTarget, task: ChunkTask,
                      object_id_field: Optional[str] = None) -> StagedChunk:
    """Fetch one chunk and stage it to disk in ascending object id order."""
    params = features_query_params(target, task.object_ids, task.output_format)
    payload = await client.fetch_json(query_url(target), params=params)

    if payload is None:
        raise FeatureFetchFailed(f"Chunk {task.index} request failed", service=target.name, chunk_index=task.index)

    try:
        result = decode_features(payload)
    except DecodeError as e:
        raise FeatureFetchFailed(f"Chunk {task.index} bad response: {e}",
                                 service=target.name, chunk_index=task.index) from e

    if isinstance(result, ErrorPayload):
        raise FeatureFetchFailed(f"Chunk {task.index} returned error: {result}",
                                 service=target.name, chunk_index=task.index)

    if result.exceeded_transfer_limit:
        raise TransferLimitExceeded(
            f"Chunk {task.index} truncated by server: {len(result.features)} of "
            f"{len(task.object_ids)} features returned (exceededTransferLimit)",
            service=target.name, chunk_index=task.index,
        )

    features = order_features(result.features, task.output_format, object_id_field)
    return await asyncio.to_thread(
        write_staged_chunk, task, features, target.name
    )


async def fetch_chunks(
    client,
    target: ServiceTarget,
    tasks: Sequence[ChunkTask],
    throttle: Optional[Throttle] = None,
    object_id_field: Optional[str] = None
) -> List[StagedChunk]:
    """Fetch and stage every task; results come back in ordinal order.

    Raises the first chunk failure. Once a chunk has failed no further chunks
    are issued; chunks already in flight run to completion.
    """
    throttle = throttle or Throttle(target.throttle)
    slots = asyncio.Semaphore(target.chunk_concurrency)
    total = len(tasks)
    completed = 0
    in_flight: List[asyncio.Task] = []

    async def run_one(task: ChunkTask) -> StagedChunk:
        nonlocal completed
        try:
            staged = await fetch_chunk(client, target, task, object_id_field)
        except ExportError as e:
            log.error(f"[FETCH] Failed request for chunk {task.index} of {target.name}: {e}")
            raise
        finally:
            slots.release()
        completed += 1
        log.info(f"[FETCH] Completed {completed} of {total} requests for {target.name}")
        return staged

    def has_failed() -> bool:
        return any(t.done() and t.exception() is not None for t in in_flight)

    for task in tasks:
        await slots.acquire()
        if has_failed():
            slots.release()
            break
        await throttle.wait()
        in_flight.append(asyncio.create_task(run_one(task)))

    results = await asyncio.gather(*in_flight, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result

    return list(results)
