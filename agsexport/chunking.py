"""Split a service's sorted ids into fixed-size fetch tasks."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Sequence, Tuple

from .query import OutputFormat

log = logging.getLogger(__name__)

# Request-size ceiling for objectIds queries. Not a tuning knob.
CHUNK_SIZE = 100


@dataclass(frozen=True)
class ChunkTask:
    index: int
    object_ids: Tuple[int, ...]
    output_format: OutputFormat
    path: Path


def chunk_count(total: int) -> int:
    return -(-total // CHUNK_SIZE)


def partition_ids(object_ids: Sequence[int]) -> Iterator[Tuple[int, ...]]:
    """Yield consecutive groups of CHUNK_SIZE ids; the last group may be short."""
    for start in range(0, len(object_ids), CHUNK_SIZE):
        yield tuple(object_ids[start:start + CHUNK_SIZE])


def staged_chunk_path(staging_dir: Path, index: int) -> Path:
    return staging_dir / f"{index}.json"


def plan_chunks(object_ids: Sequence[int], output_format: OutputFormat, staging_dir: Path) -> List[ChunkTask]:
    """One ChunkTask per group, numbered by position."""
    tasks = [
        ChunkTask(
            index=index,
            object_ids=group,
            output_format=output_format,
            path=staged_chunk_path(staging_dir, index),
        )
        for index, group in enumerate(partition_ids(object_ids))
    ]
    log.info(f"[PLAN] Getting chunks of {CHUNK_SIZE} features, will make {len(tasks)} total requests")
    return tasks
