"""
Output and staging directory management for ags-export.

Layout per service:
    <output_dir>/<service name>/partials/<index>.json    staged chunks
    <output_dir>/<service name>/<short name>_<ms>.geojson  merged artifact
"""

import contextlib
import logging
import os
import re
import shutil
import stat
import time
from dataclasses import dataclass
from pathlib import Path

from .config import ServiceTarget
from .errors import StagingIOFailure

log = logging.getLogger(__name__)

PARTIALS_DIRNAME = "partials"


def sanitize_name(name: str) -> str:
    """Sanitize one path component for the filesystem."""
    if not name:
        return "unknown_service"

    sanitized = re.sub(r'[<>:"/\\|?*\x00-\x1f\x7f-\x9f]', "_", name)
    sanitized = re.sub(r"\s+", "_", sanitized).strip("._")

    return sanitized[:200] if len(sanitized) > 200 else sanitized or "unknown_service"


@dataclass(frozen=True)
class ServiceLayout:
    service_dir: Path
    staging_dir: Path
    short_name: str

    @classmethod
    def for_target(cls, output_dir: Path, target: ServiceTarget) -> "ServiceLayout":
        parts = [sanitize_name(p) for p in target.name.strip("/").split("/") if p.strip()]
        service_dir = Path(output_dir).joinpath(*parts)
        return cls(
            service_dir=service_dir,
            staging_dir=service_dir / PARTIALS_DIRNAME,
            short_name=sanitize_name(target.short_name),
        )

    def new_artifact_path(self, suffix: str = ".geojson") -> Path:
        """Timestamped artifact path that does not collide with earlier runs."""
        stamp = time.time_ns() // 1_000_000
        path = self.service_dir / f"{self.short_name}_{stamp}{suffix}"
        while path.exists():
            stamp += 1
            path = self.service_dir / f"{self.short_name}_{stamp}{suffix}"
        return path


def reset_staging_dir(staging_dir: Path) -> None:
    """Empty and recreate staging_dir so no stale chunks survive."""
    try:
        if staging_dir.exists():
            log.debug(f"[STAGE] Clearing stale staging directory: {staging_dir}")
            shutil.rmtree(staging_dir, onerror=_handle_remove_readonly)
        staging_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StagingIOFailure(f"Cannot prepare staging directory {staging_dir}: {e}") from e


def _handle_remove_readonly(func, path, exc):
    """Error handler for read-only files."""
    # Re-raises from func(path) reach rmtree's caller
    os.chmod(path, stat.S_IWRITE)
    func(path)


def remove_staging_safely(staging_dir: Path, max_attempts: int = 3) -> bool:
    """Remove a staging directory with retries. Returns False if it remains."""
    staging_dir = Path(staging_dir)
    if not staging_dir.exists():
        return True

    for attempt in range(max_attempts):
        try:
            shutil.rmtree(staging_dir, onerror=_handle_remove_readonly)
        except OSError as e:
            log.debug(f"[STAGE] Removal attempt {attempt + 1} failed: {e}")

        if not staging_dir.exists():
            log.debug(f"[STAGE] Removed staging directory (attempt {attempt + 1})")
            return True

        if attempt < max_attempts - 1:
            wait_time = (attempt + 1) * 0.5
            log.debug(f"[STAGE] Waiting {wait_time}s before retry...")
            time.sleep(wait_time)

    # Last resort: clear contents, leave the directory
    for item in staging_dir.rglob("*"):
        if item.is_file():
            with contextlib.suppress(OSError):
                item.unlink()

    return not staging_dir.exists()
