"""
Streaming merge of staged chunk files into one FeatureCollection.

Features are read one at a time from each staged file (ijson) and written one
at a time to the output, so memory use does not grow with feature count.
"""

import asyncio
import logging
from pathlib import Path
from typing import Sequence

import ijson

from .errors import CleanupFailure, MergeIOFailure
from .geojson_stream import FeatureCollectionWriter, iter_features
from .workspace import remove_staging_safely

log = logging.getLogger(__name__)


def merge_staged_chunks(paths: Sequence[Path], output_path: Path) -> int:
    """Concatenate the features of paths, in order, into output_path. Blocking.

    Returns the number of features written. A partially written output is
    left in place when a read or write fails.
    """
    output_path = Path(output_path)
    current = output_path
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with FeatureCollectionWriter(output_path) as writer:
            for path in paths:
                current = Path(path)
                for feature in iter_features(current):
                    writer.write(feature)
    except (OSError, ijson.JSONError) as e:
        raise MergeIOFailure(f"Merge failed at {current}: {e}") from e

    log.info(f"[MERGE] Wrote {writer.count} features to {output_path}")
    return writer.count


def cleanup_staging(staging_dir: Path) -> None:
    """Remove the staging directory; raises CleanupFailure if it remains."""
    if not remove_staging_safely(staging_dir):
        raise CleanupFailure(f"Staging directory not removed: {staging_dir}")


async def merge_and_cleanup(paths: Sequence[Path], output_path: Path, staging_dir: Path) -> int:
    """Merge staged chunks, then remove staging_dir. Cleanup failure is only logged."""
    count = await asyncio.to_thread(merge_staged_chunks, paths, output_path)

    try:
        await asyncio.to_thread(cleanup_staging, staging_dir)
    except CleanupFailure as e:
        log.warning(f"[MERGE] {e}")

    return count
