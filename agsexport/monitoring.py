"""
Run monitoring for ags-export.

Collects one ServiceMetrics record per service, logs a readable summary and
saves the whole run as JSON.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)


@dataclass
class ServiceMetrics:
    """Metrics for a single service."""
    name: str
    url: str
    start_time: float
    end_time: Optional[float] = None
    success: bool = False
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    object_ids: int = 0
    chunks: int = 0
    features_written: int = 0
    features_dropped: int = 0
    output_format: Optional[str] = None
    attempts: List[str] = field(default_factory=list)
    artifact_path: Optional[str] = None
    converted_path: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        if self.end_time:
            return self.end_time - self.start_time
        return 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result['duration_seconds'] = self.duration_seconds
        result['start_time_iso'] = datetime.fromtimestamp(self.start_time).isoformat()
        if self.end_time:
            result['end_time_iso'] = datetime.fromtimestamp(self.end_time).isoformat()
        return result


class RunMonitor:
    """Collect per-service metrics for one run."""

    def __init__(self) -> None:
        self.metrics: List[ServiceMetrics] = []
        self.run_start_time = time.time()

    def start_service(self, name: str, url: str) -> ServiceMetrics:
        metrics = ServiceMetrics(name=name, url=url, start_time=time.time())
        self.metrics.append(metrics)
        log.debug(f"[MONITOR] Starting service: {name}")
        return metrics

    def end_service(self, metrics: ServiceMetrics, success: bool, error: Optional[BaseException] = None) -> None:
        metrics.end_time = time.time()
        metrics.success = success
        if error is not None:
            metrics.error_type = type(error).__name__
            metrics.error_message = str(error)

        status = "SUCCESS" if success else "FAILED"
        log.debug(f"[MONITOR] Completed service: {metrics.name} - {status} ({metrics.duration_seconds:.2f}s)")

    def get_summary(self) -> Dict[str, Any]:
        total = len(self.metrics)
        successful = sum(1 for m in self.metrics if m.success)

        error_types: Dict[str, int] = {}
        for m in self.metrics:
            if not m.success and m.error_type:
                error_types[m.error_type] = error_types.get(m.error_type, 0) + 1

        return {
            'run_start_time': datetime.fromtimestamp(self.run_start_time).isoformat(),
            'total_duration_seconds': time.time() - self.run_start_time,
            'total_services': total,
            'successful_services': successful,
            'failed_services': total - successful,
            'success_rate': (successful / total * 100) if total > 0 else 0,
            'total_features': sum(m.features_written for m in self.metrics),
            'total_dropped': sum(m.features_dropped for m in self.metrics),
            'error_types': error_types,
            'services': [m.to_dict() for m in self.metrics],
        }

    def log_summary(self) -> None:
        """Log a human-readable summary."""
        summary = self.get_summary()

        log.info("=" * 60)
        log.info("EXPORT SUMMARY")
        log.info("=" * 60)
        log.info(f"Total Duration: {summary['total_duration_seconds']:.2f} seconds")
        log.info(f"Success Rate: {summary['success_rate']:.1f}% "
                 f"({summary['successful_services']}/{summary['total_services']})")
        if summary['error_types']:
            log.info(f"  Failed with errors: {summary['error_types']}")
        log.info(f"  Total features written: {summary['total_features']:,}")
        if summary['total_dropped']:
            log.info(f"  Features dropped (missing geometry): {summary['total_dropped']:,}")

        for m in self.metrics:
            if m.success:
                log.info(f"  {m.name}: {m.features_written:,} features ({m.output_format}) -> {m.artifact_path}")
            else:
                log.info(f"  {m.name}: FAILED {m.error_type}: {m.error_message}")

    def save_metrics(self, output_path: Path) -> None:
        """Save metrics to JSON file."""
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(self.get_summary(), f, indent=2, ensure_ascii=False)

        log.info(f"[MONITOR] Metrics saved to {output_path}")
