"""
Secondary-format conversion of a merged artifact.

The pipeline only knows the Converter call signature: an artifact path in,
the converted file path (or None) out. Ogr2OgrShapefileConverter shells out to
GDAL's ogr2ogr to produce a zipped shapefile next to the artifact.
"""

import asyncio
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Awaitable, Callable, Optional

log = logging.getLogger(__name__)

Converter = Callable[[Path, str], Awaitable[Optional[Path]]]

DEFAULT_TIMEOUT = 120


def build_ogr2ogr_command(geojson_path: Path, output_path: Path, layer_name: str) -> list:
    return [
        "ogr2ogr",
        "-f", "ESRI Shapefile",
        "-skipfailures",
        "-nln", layer_name,
        str(output_path),
        str(geojson_path),
    ]


class Ogr2OgrShapefileConverter:
    """Convert a GeoJSON artifact to ``<stem>.shp.zip`` with ogr2ogr."""

    def __init__(self, executable: str = "ogr2ogr", timeout: float = DEFAULT_TIMEOUT) -> None:
        self.executable = executable
        self.timeout = timeout

    def available(self) -> bool:
        return shutil.which(self.executable) is not None

    def convert(self, geojson_path: Path, layer_name: str) -> Optional[Path]:
        """Blocking conversion. Returns the zip path, or None when ogr2ogr fails."""
        output_path = geojson_path.with_suffix(".shp.zip")
        cmd = build_ogr2ogr_command(geojson_path, output_path, layer_name)
        cmd[0] = self.executable

        log.info(f"[CONVERT] Generating shapefile for {layer_name}")
        try:
            subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=self.timeout)
        except subprocess.CalledProcessError as e:
            log.error(f"[CONVERT] ogr2ogr error: {e.stderr if e.stderr else str(e)}")
            return None
        except subprocess.TimeoutExpired:
            log.error(f"[CONVERT] ogr2ogr timed out after {self.timeout}s for {geojson_path}")
            return None
        except FileNotFoundError:
            log.error(f"[CONVERT] {self.executable} not found; install GDAL to enable shapefile output")
            return None

        log.info(f"[CONVERT] Shapefile written: {output_path}")
        return output_path

    async def __call__(self, geojson_path: Path, layer_name: str) -> Optional[Path]:
        return await asyncio.to_thread(self.convert, geojson_path, layer_name)
