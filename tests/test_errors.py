import unittest
from unittest.mock import MagicMock

from trendzo.errors import EtlError, EtlErrorReporter, error_type_for_phase, normalize_error
from trendzo.persistence import ContentPersistenceError


class NormalizeErrorTestCase(unittest.TestCase):
    def test_phase_maps_to_error_type(self) -> None:
        self.assertEqual(error_type_for_phase("extraction"), "EXTRACT_ERROR")
        self.assertEqual(error_type_for_phase("validation"), "VALIDATION_ERROR")
        self.assertEqual(error_type_for_phase("somewhere"), "UNKNOWN_ERROR")

    def test_exception_is_wrapped(self) -> None:
        cause = ValueError("bad row")

        error = normalize_error(cause, "loading")

        self.assertIsInstance(error, EtlError)
        self.assertEqual(str(error), "bad row")
        self.assertEqual(error.error_type, "LOAD_ERROR")
        self.assertEqual(error.phase, "loading")
        self.assertIs(error.__cause__, cause)

    def test_plain_value_is_described(self) -> None:
        error = normalize_error("timeout", "extraction")

        self.assertEqual(str(error), "Extraction error: timeout")
        self.assertEqual(error.error_type, "EXTRACT_ERROR")

    def test_etl_error_passes_through(self) -> None:
        original = EtlError("no videos", "EXTRACT_ERROR", phase="extraction")

        self.assertIs(normalize_error(original, "loading"), original)


class EtlErrorReporterTestCase(unittest.TestCase):
    def test_report_records_error(self) -> None:
        store = MagicMock()

        error = EtlErrorReporter(store).report(
            RuntimeError("write failed"), "loading", job_id="job-1", item_id="v1", context={"batch": 2}
        )

        self.assertEqual(error.error_type, "LOAD_ERROR")
        record = store.add_error.call_args.args[0]
        self.assertEqual(record["job_id"], "job-1")
        self.assertEqual(record["item_id"], "v1")
        self.assertEqual(record["phase"], "loading")
        self.assertEqual(record["message"], "write failed")
        self.assertEqual(record["context"], {"batch": 2})

    def test_store_failure_is_not_raised(self) -> None:
        store = MagicMock()
        store.add_error.side_effect = ContentPersistenceError("store down")
        store.add_notification.side_effect = ContentPersistenceError("store down")
        reporter = EtlErrorReporter(store)

        with self.assertLogs("trendzo.errors", level="WARNING"):
            reporter.report(RuntimeError("boom"), "extraction", job_id="job-1")
            reporter.notify("trending job failed", "boom", job_id="job-1")

    def test_disabled_reporter_only_logs(self) -> None:
        store = MagicMock()
        reporter = EtlErrorReporter(store, enabled=False)

        reporter.report(RuntimeError("boom"), "extraction")
        reporter.notify("title", "message")

        store.add_error.assert_not_called()
        store.add_notification.assert_not_called()

    def test_error_stats(self) -> None:
        store = MagicMock()
        store.list_errors.return_value = [
            {"error_type": "LOAD_ERROR", "phase": "loading"},
            {"error_type": "LOAD_ERROR", "phase": "loading"},
            {"error_type": "EXTRACT_ERROR", "phase": "extraction"},
        ]

        stats = EtlErrorReporter(store).error_stats("job-1")

        store.list_errors.assert_called_once_with(job_id="job-1", limit=1000)
        self.assertEqual(stats["total_errors"], 3)
        self.assertEqual(stats["by_type"], {"LOAD_ERROR": 2, "EXTRACT_ERROR": 1})
        self.assertEqual(stats["by_phase"], {"loading": 2, "extraction": 1})


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
