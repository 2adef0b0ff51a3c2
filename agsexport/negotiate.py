"""
Output format negotiation with whole-set retry.

When the layer advertises geoJSON, every chunk is first fetched as geoJSON.
If any chunk fails, the staged results of that attempt are discarded and the
whole chunk set is fetched again as ArcGIS JSON. The two encodings never mix
in one artifact.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .chunking import plan_chunks
from .config import ServiceTarget
from .errors import FeatureFetchFailed
from .fetch import StagedChunk, fetch_chunks
from .ids import ServiceInfo
from .query import OutputFormat
from .responses import LayerMetadata
from .workspace import reset_staging_dir

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptSuccess:
    chunks: List[StagedChunk]

    @property
    def paths(self) -> List[Path]:
        return [c.path for c in self.chunks]

    @property
    def feature_count(self) -> int:
        return sum(c.feature_count for c in self.chunks)

    @property
    def dropped(self) -> int:
        return sum(c.dropped for c in self.chunks)


@dataclass(frozen=True)
class AttemptFailure:
    reason: str
    error: Optional[FeatureFetchFailed] = None


@dataclass(frozen=True)
class Attempt:
    output_format: OutputFormat
    outcome: Union[AttemptSuccess, AttemptFailure]

    @property
    def succeeded(self) -> bool:
        return isinstance(self.outcome, AttemptSuccess)


@dataclass
class Negotiation:
    attempts: List[Attempt] = field(default_factory=list)

    @property
    def chosen(self) -> Optional[Attempt]:
        return next((a for a in self.attempts if a.succeeded), None)


def format_preference(metadata: LayerMetadata) -> List[OutputFormat]:
    """Formats to try, in order."""
    if metadata.supports_geojson:
        return [OutputFormat.GEOJSON, OutputFormat.JSON]
    return [OutputFormat.JSON]


async def run_attempt(client, target: ServiceTarget, object_ids: Sequence[int],
                      output_format: OutputFormat, staging_dir: Path,
                      object_id_field: Optional[str] = None) -> Attempt:
    """Fetch the whole chunk set in one format, starting from an empty staging dir."""
    reset_staging_dir(staging_dir)
    tasks = plan_chunks(object_ids, output_format, staging_dir)
    try:
        chunks = await fetch_chunks(client, target, tasks, object_id_field=object_id_field)
    except FeatureFetchFailed as e:
        return Attempt(output_format, AttemptFailure(reason=str(e), error=e))
    return Attempt(output_format, AttemptSuccess(chunks=chunks))


async def negotiate(client, target: ServiceTarget, info: ServiceInfo, staging_dir: Path) -> Negotiation:
    """Try each format in preference order until one succeeds.

    Raises the last FeatureFetchFailed when every format fails.
    """
    negotiation = Negotiation()
    formats = format_preference(info.metadata)

    for output_format in formats:
        log.info(f"[FORMAT] Fetching {target.name} as {output_format.value}")
        attempt = await run_attempt(client, target, info.object_ids, output_format, staging_dir,
                                    info.object_id_field)
        negotiation.attempts.append(attempt)

        if attempt.succeeded:
            return negotiation

        log.warning(f"[FORMAT] {output_format.value} attempt failed for {target.name}: {attempt.outcome.reason}")

    failure = negotiation.attempts[-1].outcome
    raise failure.error or FeatureFetchFailed(failure.reason, service=target.name)
