"""
Tests for the streaming merge and staging cleanup.
"""
import asyncio
import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from agsexport.errors import MergeIOFailure
from agsexport.geojson_stream import FeatureCollectionWriter, iter_features
from agsexport.merge import merge_and_cleanup, merge_staged_chunks


def _feature(oid):
    return {"type": "Feature", "properties": {"OBJECTID": oid, "area": oid * 0.5},
            "geometry": {"type": "Point", "coordinates": [oid + 0.25, -1.5]}}


def _stage(path, oids):
    with FeatureCollectionWriter(path) as writer:
        for oid in oids:
            writer.write(_feature(oid))
    return path


class TestMerge(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.staging = self.root / "svc" / "partials"
        self.staging.mkdir(parents=True)

    def tearDown(self):
        self._tmp.cleanup()

    def _chunks(self):
        return [
            _stage(self.staging / "0.json", range(1, 101)),
            _stage(self.staging / "1.json", range(101, 201)),
            _stage(self.staging / "2.json", range(201, 251)),
        ]

    def test_merge_preserves_chunk_order(self):
        output = self.root / "svc" / "svc_1.geojson"
        count = merge_staged_chunks(self._chunks(), output)

        merged = json.loads(output.read_text(encoding="utf-8"))
        self.assertEqual(count, 250)
        self.assertEqual(merged["type"], "FeatureCollection")
        self.assertEqual([f["properties"]["OBJECTID"] for f in merged["features"]], list(range(1, 251)))
        self.assertEqual(merged["features"][0], _feature(1))

    def test_merge_is_repeatable(self):
        chunks = self._chunks()
        first = self.root / "a.geojson"
        second = self.root / "b.geojson"
        merge_staged_chunks(chunks, first)
        merge_staged_chunks(chunks, second)
        self.assertEqual(first.read_bytes(), second.read_bytes())

    def test_empty_chunks_and_empty_input(self):
        empty = _stage(self.staging / "0.json", [])
        output = self.root / "empty.geojson"

        self.assertEqual(merge_staged_chunks([empty], output), 0)
        self.assertEqual(json.loads(output.read_text(encoding="utf-8")), {"type": "FeatureCollection", "features": []})

        self.assertEqual(merge_staged_chunks([], output), 0)
        self.assertEqual(list(iter_features(output)), [])

    def test_corrupt_chunk_raises_merge_failure(self):
        chunks = self._chunks()
        chunks[1].write_text('{"type":"FeatureCollection","features":[{"type":', encoding="utf-8")

        with self.assertRaises(MergeIOFailure):
            merge_staged_chunks(chunks, self.root / "out.geojson")

    def test_missing_chunk_raises_merge_failure(self):
        with self.assertRaises(MergeIOFailure):
            merge_staged_chunks([self.staging / "404.json"], self.root / "out.geojson")

    def test_staging_removed_after_merge(self):
        output = self.root / "svc" / "svc_2.geojson"
        count = asyncio.run(merge_and_cleanup(self._chunks(), output, self.staging))

        self.assertEqual(count, 250)
        self.assertTrue(output.exists())
        self.assertFalse(self.staging.exists())

    def test_cleanup_failure_is_not_fatal(self):
        output = self.root / "svc" / "svc_3.geojson"

        with patch("agsexport.merge.remove_staging_safely", return_value=False), \
             self.assertLogs("agsexport.merge", level="WARNING") as logs:
            count = asyncio.run(merge_and_cleanup(self._chunks(), output, self.staging))

        self.assertEqual(count, 250)
        self.assertTrue(output.exists())
        self.assertTrue(any("Staging directory not removed" in m for m in logs.output))


if __name__ == '__main__':
    unittest.main()
