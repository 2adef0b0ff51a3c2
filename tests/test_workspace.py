"""
Tests for output layout and staging directory handling.
"""
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from agsexport.config import ServiceTarget
from agsexport.convert import Ogr2OgrShapefileConverter, build_ogr2ogr_command
from agsexport.workspace import ServiceLayout, remove_staging_safely, reset_staging_dir, sanitize_name


class TestServiceLayout(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.out = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_layout_paths(self):
        target = ServiceTarget(url="https://example.com/MapServer/0", name="County/Parcels 2024")
        layout = ServiceLayout.for_target(self.out, target)

        self.assertEqual(layout.service_dir, self.out / "County" / "Parcels_2024")
        self.assertEqual(layout.staging_dir, self.out / "County" / "Parcels_2024" / "partials")
        self.assertEqual(layout.short_name, "Parcels_2024")

    def test_artifact_path_does_not_collide(self):
        target = ServiceTarget(url="https://example.com/MapServer/0", name="roads")
        layout = ServiceLayout.for_target(self.out, target)
        layout.service_dir.mkdir(parents=True)

        with patch("agsexport.workspace.time.time_ns", return_value=1_700_000_000_000_000_000):
            first = layout.new_artifact_path()
            first.write_text("{}", encoding="utf-8")
            second = layout.new_artifact_path()

        self.assertEqual(first.name, "roads_1700000000000.geojson")
        self.assertEqual(second.name, "roads_1700000000001.geojson")

    def test_reset_staging_dir_removes_stale_chunks(self):
        staging = self.out / "roads" / "partials"
        staging.mkdir(parents=True)
        (staging / "3.json").write_text("old", encoding="utf-8")

        reset_staging_dir(staging)

        self.assertTrue(staging.is_dir())
        self.assertEqual(list(staging.iterdir()), [])

    def test_remove_staging_safely(self):
        staging = self.out / "partials"
        staging.mkdir()
        (staging / "0.json").write_text("{}", encoding="utf-8")

        self.assertTrue(remove_staging_safely(staging))
        self.assertFalse(staging.exists())
        self.assertTrue(remove_staging_safely(staging))

    def test_sanitize_name(self):
        self.assertEqual(sanitize_name("a<b>c"), "a_b_c")
        self.assertEqual(sanitize_name(""), "unknown_service")
        self.assertEqual(sanitize_name("..."), "unknown_service")


class TestOgr2OgrConverter(unittest.TestCase):

    def test_command(self):
        cmd = build_ogr2ogr_command(Path("out/roads_1.geojson"), Path("out/roads_1.shp.zip"), "roads")
        self.assertEqual(cmd[:3], ["ogr2ogr", "-f", "ESRI Shapefile"])
        self.assertEqual(cmd[-2:], ["out/roads_1.shp.zip", "out/roads_1.geojson"])
        self.assertIn("-skipfailures", cmd)

    def test_convert_success(self):
        converter = Ogr2OgrShapefileConverter()
        with patch("agsexport.convert.subprocess.run") as run:
            result = converter.convert(Path("out/roads_1.geojson"), "roads")
        self.assertEqual(result, Path("out/roads_1.shp.zip"))
        run.assert_called_once()

    def test_convert_failure_returns_none(self):
        converter = Ogr2OgrShapefileConverter()
        error = subprocess.CalledProcessError(1, ["ogr2ogr"], stderr="ERROR 1: bad input")
        with patch("agsexport.convert.subprocess.run", side_effect=error):
            self.assertIsNone(converter.convert(Path("out/roads_1.geojson"), "roads"))

    def test_missing_executable_returns_none(self):
        converter = Ogr2OgrShapefileConverter(executable="definitely-not-ogr2ogr")
        self.assertFalse(converter.available())
        self.assertIsNone(converter.convert(Path("out/roads_1.geojson"), "roads"))


if __name__ == '__main__':
    unittest.main()
