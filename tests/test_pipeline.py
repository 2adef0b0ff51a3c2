"""
End-to-end tests for the orchestrator against mock services.
"""
import asyncio
import json
import tempfile
import unittest
from pathlib import Path

from agsexport.config import ExportConfig, ServiceTarget
from agsexport.monitoring import RunMonitor
from agsexport.pipeline import run_service, run_services

from mock_service import MockArcGISService, MultiServiceClient

ROADS_URL = "https://example.com/rest/services/Roads/MapServer/0"
RIVERS_URL = "https://example.com/rest/services/Hydro/FeatureServer/2"


class TestPipeline(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.out = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def _config(self, *targets, limit=None):
        return ExportConfig(output_dir=self.out, services=list(targets), max_concurrent_services=limit)

    def test_single_service_end_to_end(self):
        target = ServiceTarget(url=ROADS_URL, name="transport/roads")
        service = MockArcGISService(reversed(range(1, 251)), missing_geometry={42})
        monitor = RunMonitor()

        result = asyncio.run(run_service(target, self._config(target), service, monitor=monitor))

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.feature_count, 249)
        self.assertEqual(result.dropped, 1)
        self.assertEqual(result.output_format, "geoJSON")
        self.assertEqual(result.artifact_path.parent, self.out / "transport" / "roads")
        self.assertTrue(result.artifact_path.name.startswith("roads_"))
        self.assertTrue(result.artifact_path.name.endswith(".geojson"))

        merged = json.loads(result.artifact_path.read_text(encoding="utf-8"))
        ids = [f["properties"]["OBJECTID"] for f in merged["features"]]
        self.assertEqual(ids, [i for i in range(1, 251) if i != 42])
        self.assertFalse((self.out / "transport" / "roads" / "partials").exists())

        metrics = monitor.metrics[0]
        self.assertTrue(metrics.success)
        self.assertEqual(metrics.chunks, 3)
        self.assertEqual(metrics.features_written, 249)

    def test_fallback_artifact_contains_only_legacy_features(self):
        target = ServiceTarget(url=ROADS_URL, name="roads")
        service = MockArcGISService(range(1, 501), fail_ids={"geoJSON": {250}})

        result = asyncio.run(run_service(target, self._config(target), service))

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.output_format, "json")
        merged = json.loads(result.artifact_path.read_text(encoding="utf-8"))
        self.assertEqual(len(merged["features"]), 500)
        self.assertEqual({f["properties"]["source"] for f in merged["features"]}, {"json"})
        self.assertEqual([f["properties"]["OBJECTID"] for f in merged["features"]], list(range(1, 501)))

    def test_artifact_ascending_when_server_reorders_chunks(self):
        target = ServiceTarget(url=ROADS_URL, name="roads")

        for formats in ("JSON, geoJSON", "JSON"):
            service = MockArcGISService(range(1, 251), supported_formats=formats, reverse_chunks=True)
            result = asyncio.run(run_service(target, self._config(target), service))

            self.assertTrue(result.success, result.error)
            merged = json.loads(result.artifact_path.read_text(encoding="utf-8"))
            ids = [f["properties"]["OBJECTID"] for f in merged["features"]]
            self.assertEqual(ids, list(range(1, 251)), formats)

    def test_truncated_chunks_fail_service(self):
        target = ServiceTarget(url=ROADS_URL, name="roads")
        service = MockArcGISService(range(1, 251), max_record_count=40)

        result = asyncio.run(run_service(target, self._config(target), service))

        self.assertFalse(result.success)
        self.assertEqual(result.error_type, "TransferLimitExceeded")
        self.assertIsNone(result.artifact_path)
        self.assertEqual(len(service.feature_calls("geoJSON")), 1)
        self.assertEqual(len(service.feature_calls("json")), 1)
        self.assertEqual(list((self.out / "roads").glob("*.geojson")), [])

    def test_ids_error_fails_service_before_staging(self):
        target = ServiceTarget(url=ROADS_URL, name="roads")
        service = MockArcGISService(range(1, 10), ids_error="Invalid URL")

        result = asyncio.run(run_service(target, self._config(target), service))

        self.assertFalse(result.success)
        self.assertEqual(result.error_type, "ServiceUnavailable")
        self.assertIn("Invalid URL", result.error)
        self.assertFalse((self.out / "roads").exists())

    def test_failed_service_does_not_affect_sibling(self):
        roads = ServiceTarget(url=ROADS_URL, name="roads")
        rivers = ServiceTarget(url=RIVERS_URL, name="rivers")
        client = MultiServiceClient({
            ROADS_URL: MockArcGISService(range(1, 5), metadata_error="Service not started"),
            RIVERS_URL: MockArcGISService(range(1, 120), supported_formats="JSON"),
        })

        results = asyncio.run(run_services(self._config(roads, rivers), client))

        self.assertEqual([r.name for r in results], ["roads", "rivers"])
        self.assertFalse(results[0].success)
        self.assertTrue(results[1].success)
        self.assertEqual(results[1].feature_count, 119)
        self.assertTrue(results[1].artifact_path.exists())

    def test_concurrency_limit_one_runs_services_sequentially(self):
        roads = ServiceTarget(url=ROADS_URL, name="roads")
        rivers = ServiceTarget(url=RIVERS_URL, name="rivers")
        client = MultiServiceClient({
            ROADS_URL: MockArcGISService(range(1, 301)),
            RIVERS_URL: MockArcGISService(range(1, 201)),
        })
        monitor = RunMonitor()

        results = asyncio.run(run_services(self._config(roads, rivers, limit=1), client, monitor=monitor))

        self.assertTrue(all(r.success for r in results))
        self.assertNotEqual(results[0].artifact_path, results[1].artifact_path)
        first, second = monitor.metrics
        self.assertEqual(first.name, "roads")
        self.assertGreaterEqual(second.start_time, first.end_time)

    def test_converter_receives_artifact(self):
        target = ServiceTarget(url=ROADS_URL, name="roads")
        seen = []

        async def converter(path, layer_name):
            seen.append((path, layer_name))
            return path.with_suffix(".shp.zip")

        result = asyncio.run(run_service(target, self._config(target), MockArcGISService(range(1, 3)), converter))

        self.assertEqual(seen, [(result.artifact_path, "roads")])
        self.assertEqual(result.converted_path, result.artifact_path.with_suffix(".shp.zip"))

    def test_converter_not_called_on_failure(self):
        target = ServiceTarget(url=ROADS_URL, name="roads")
        seen = []

        async def converter(path, layer_name):
            seen.append(path)

        service = MockArcGISService(range(1, 3), fail_ids={"geoJSON": {1}, "json": {1}})
        result = asyncio.run(run_service(target, self._config(target), service, converter))

        self.assertFalse(result.success)
        self.assertEqual(result.error_type, "FeatureFetchFailed")
        self.assertEqual(seen, [])

    def test_empty_service_writes_empty_collection(self):
        target = ServiceTarget(url=ROADS_URL, name="roads")
        result = asyncio.run(run_service(target, self._config(target), MockArcGISService([])))

        self.assertTrue(result.success)
        self.assertEqual(result.feature_count, 0)
        merged = json.loads(result.artifact_path.read_text(encoding="utf-8"))
        self.assertEqual(merged["features"], [])


if __name__ == '__main__':
    unittest.main()
