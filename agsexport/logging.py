"""
Logging setup for ags-export.

One setup function called by the entry point; every other module just uses
logging.getLogger(__name__).
"""

import sys
from pathlib import Path
from typing import Any, Mapping, Optional

# Import the standard logging module with a different name to avoid conflicts
import logging as std_logging

NOISY_LOGGERS = ("urllib3", "urllib3.connectionpool")


def setup_pipeline_logging(
    console_level: str = "INFO",
    file_path: Optional[Path] = None,
    file_level: str = "DEBUG"
) -> None:
    """
    Configure logging for the whole run.

    Removes existing root handlers, sets the root logger to DEBUG and installs a
    stdout console handler. When file_path is given a detailed file handler is
    added as well (parent directories created).
    """
    root_logger = std_logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(std_logging.DEBUG)

    console_handler = std_logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level.upper())
    console_handler.setFormatter(std_logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(message)s',
        datefmt='%H:%M:%S'
    ))
    root_logger.addHandler(console_handler)

    if file_path:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = std_logging.FileHandler(file_path, mode='w', encoding='utf-8')
        file_handler.setLevel(getattr(std_logging, file_level.upper()))
        file_handler.setFormatter(std_logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s'
        ))
        root_logger.addHandler(file_handler)

    # urllib3 logs every retry at WARNING
    for name in NOISY_LOGGERS:
        std_logging.getLogger(name).setLevel(std_logging.ERROR)


def setup_from_config(log_cfg: Optional[Mapping[str, Any]], log_dir: Path = Path("logs")) -> None:
    """Map the ``logging`` section of the YAML config onto setup_pipeline_logging."""
    log_cfg = log_cfg or {}
    console_level = str(log_cfg.get("level") or log_cfg.get("console_level") or "INFO").upper()

    file_cfg = log_cfg.get("file") or {}
    file_path = None
    file_level = "DEBUG"
    if file_cfg.get("enabled", True):
        file_path = log_dir / (file_cfg.get("name") or "export.log")
        file_level = str(file_cfg.get("level") or "DEBUG").upper()

    setup_pipeline_logging(console_level=console_level, file_path=file_path, file_level=file_level)


def log_phase_start(phase_name: str) -> None:
    std_logging.info(f"🚀 Starting {phase_name} phase")


def log_source_result(
    source_name: str,
    success: bool,
    feature_count: int = 0,
    error: Optional[str] = None
) -> None:
    """Log one standard result line for a service."""
    if success:
        std_logging.info(f"✅ {source_name}: {feature_count:,} features")
    else:
        error_msg = f" ({error})" if error else ""
        std_logging.error(f"❌ {source_name}: failed{error_msg}")


def log_phase_complete(phase_name: str, total_sources: int, successful: int) -> None:
    """Log the phase summary; a warning when any service failed."""
    if successful == total_sources:
        std_logging.info(f"✅ {phase_name} complete: {successful}/{total_sources} services successful")
    else:
        failed = total_sources - successful
        std_logging.warning(f"⚠️  {phase_name} complete: {successful}/{total_sources} services successful ({failed} failed)")
