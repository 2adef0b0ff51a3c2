"""
Pipeline orchestration.

One pipeline per service: enumerate ids -> negotiate format (plan + fetch +
stage) -> merge -> optional conversion. Pipelines run concurrently behind an
admission semaphore; a failed service never affects its siblings.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .chunking import chunk_count
from .config import ExportConfig, ServiceTarget
from .convert import Converter
from .errors import ExportError
from .http_utils import HttpClient
from .ids import enumerate_service
from .logging import log_source_result
from .merge import merge_and_cleanup
from .monitoring import RunMonitor
from .negotiate import negotiate
from .workspace import ServiceLayout

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    name: str
    success: bool
    artifact_path: Optional[Path] = None
    feature_count: int = 0
    dropped: int = 0
    output_format: Optional[str] = None
    converted_path: Optional[Path] = None
    error: Optional[str] = None
    error_type: Optional[str] = None


async def run_service(
    target: ServiceTarget,
    config: ExportConfig,
    client,
    converter: Optional[Converter] = None,
    monitor: Optional[RunMonitor] = None
) -> ServiceResult:
    """Run one service's pipeline. ExportError is reported, never raised."""
    monitor = monitor or RunMonitor()
    metrics = monitor.start_service(target.name, target.url)

    try:
        info = await enumerate_service(client, target)
        metrics.object_ids = info.feature_count
        metrics.chunks = chunk_count(info.feature_count)

        layout = ServiceLayout.for_target(config.output_dir, target)
        negotiation = await negotiate(client, target, info, layout.staging_dir)
        metrics.attempts = [a.output_format.value for a in negotiation.attempts]

        chosen = negotiation.chosen
        success = chosen.outcome
        metrics.output_format = chosen.output_format.value
        metrics.features_dropped = success.dropped

        log.info(f"[PIPELINE] Finished extracting chunks for {target.name}, merging files...")
        artifact = layout.new_artifact_path()
        count = await merge_and_cleanup(success.paths, artifact, layout.staging_dir)
        metrics.features_written = count
        metrics.artifact_path = str(artifact)
        log.info(f"[PIPELINE] {target.name} is complete. File Location: {artifact}")

    except ExportError as e:
        monitor.end_service(metrics, False, e)
        log_source_result(target.name, False, error=f"{type(e).__name__}: {e}")
        return ServiceResult(name=target.name, success=False, error=str(e), error_type=type(e).__name__)
    except Exception as e:
        monitor.end_service(metrics, False, e)
        raise

    converted = None
    if converter is not None:
        converted = await converter(artifact, target.short_name)
        metrics.converted_path = str(converted) if converted else None

    monitor.end_service(metrics, True)
    log_source_result(target.name, True, count)
    return ServiceResult(
        name=target.name,
        success=True,
        artifact_path=artifact,
        feature_count=count,
        dropped=success.dropped,
        output_format=chosen.output_format.value,
        converted_path=converted,
    )


async def run_services(
    config: ExportConfig,
    client=None,
    converter: Optional[Converter] = None,
    monitor: Optional[RunMonitor] = None
) -> List[ServiceResult]:
    """Run every configured service; results follow config order."""
    monitor = monitor or RunMonitor()
    owns_client = client is None
    client = client or HttpClient(config.http)

    limit = config.max_concurrent_services
    gate = asyncio.Semaphore(limit) if limit else None

    async def admitted(target: ServiceTarget) -> ServiceResult:
        async with gate if gate is not None else contextlib.nullcontext():
            return await run_service(target, config, client, converter, monitor)

    try:
        outcomes = await asyncio.gather(
            *(admitted(t) for t in config.services), return_exceptions=True
        )
    finally:
        if owns_client:
            client.close()

    results = []
    for target, outcome in zip(config.services, outcomes):
        if isinstance(outcome, Exception):
            log.error(f"[PIPELINE] Unexpected failure for {target.name}", exc_info=outcome)
            outcome = ServiceResult(name=target.name, success=False,
                                    error=str(outcome), error_type=type(outcome).__name__)
        elif isinstance(outcome, BaseException):
            raise outcome
        results.append(outcome)
    return results


def export(config: ExportConfig, converter: Optional[Converter] = None,
           monitor: Optional[RunMonitor] = None) -> List[ServiceResult]:
    """Blocking entry point around run_services."""
    return asyncio.run(run_services(config, converter=converter, monitor=monitor))
