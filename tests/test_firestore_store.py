import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from trendzo.config import FirestoreConfig
from trendzo.firestore_store import FirestoreContentStore, build_firestore_client
from trendzo.persistence import RecordNotFoundError


def _snapshot(doc_id: str, data: dict | None, *, exists: bool = True) -> MagicMock:
    snapshot = MagicMock()
    snapshot.id = doc_id
    snapshot.exists = exists
    snapshot.to_dict.return_value = data
    return snapshot


class FirestoreContentStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.client = MagicMock()
        self.collection = self.client.collection.return_value
        self.document = self.collection.document.return_value
        self.store = FirestoreContentStore(self.client)

    def test_create_template_writes_new_document(self) -> None:
        first = self.store.create_template({"id": "ignored", "title": "Easy recipe", "category": "food"})
        second = self.store.create_template({"title": "Easy recipe", "category": "food"})

        self.client.collection.assert_called_with("templates")
        self.assertNotEqual(first["id"], "ignored")
        self.assertNotEqual(first["id"], second["id"])
        payload = self.document.set.call_args_list[0].args[0]
        self.assertNotIn("id", payload)
        self.assertEqual(payload["title"], "Easy recipe")
        self.assertIn("created_at", payload)

    def test_get_missing_document_returns_none(self) -> None:
        self.document.get.return_value = _snapshot("t1", None, exists=False)

        self.assertIsNone(self.store.get_template("t1"))

    def test_timestamps_are_returned_as_naive_utc(self) -> None:
        aware = datetime(2024, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        self.document.get.return_value = _snapshot("j1", {"status": "running", "start_time": aware})

        job = self.store.get_job("j1")

        self.assertEqual(job["id"], "j1")
        self.assertEqual(job["start_time"], datetime(2024, 3, 1, 12, 0))
        self.client.collection.assert_called_with("etlJobs")

    def test_update_missing_sound_raises(self) -> None:
        self.document.get.return_value = _snapshot("m1", None, exists=False)

        with self.assertRaises(RecordNotFoundError):
            self.store.update_sound("m1", {"usage_count": 3})
        self.document.update.assert_not_called()

    def test_upsert_sound_merges_existing(self) -> None:
        self.document.get.return_value = _snapshot(
            "m1",
            {
                "title": "Summer Vibes",
                "usage_history": {"2024-03-01": 1},
                "lifecycle": {"stage": "emerging", "discovery_date": "2024-03-01"},
            },
        )

        stored, created = self.store.upsert_sound(
            {
                "id": "m1",
                "title": "Summer Vibes",
                "usage_count": 4,
                "usage_history": {"2024-03-02": 4},
                "lifecycle": {"discovery_date": "2024-03-02", "last_detected_date": "2024-03-02"},
            }
        )

        self.assertFalse(created)
        self.assertEqual(stored["usage_history"], {"2024-03-01": 1, "2024-03-02": 4})
        self.assertEqual(stored["lifecycle"]["discovery_date"], "2024-03-01")
        self.collection.document.assert_called_with("m1")

    def test_filtered_query_sorts_locally(self) -> None:
        query = self.collection.where.return_value
        query.stream.return_value = [
            _snapshot("old", {"status": "failed", "created_at": datetime(2024, 3, 1)}),
            _snapshot("new", {"status": "failed", "created_at": datetime(2024, 3, 2)}),
        ]

        jobs = self.store.list_jobs(status="failed", limit=5)

        self.collection.where.assert_called_once_with("status", "==", "failed")
        self.collection.order_by.assert_not_called()
        query.order_by.assert_not_called()
        self.assertEqual([job["id"] for job in jobs], ["new", "old"])

    def test_unfiltered_query_orders_in_firestore(self) -> None:
        ordered = self.collection.order_by.return_value
        ordered.limit.return_value.stream.return_value = [_snapshot("j1", {"created_at": datetime(2024, 3, 1)})]

        jobs = self.store.list_jobs(limit=3)

        self.collection.order_by.assert_called_once()
        ordered.limit.assert_called_once_with(3)
        self.assertEqual([job["id"] for job in jobs], ["j1"])

    def test_latest_trend_report(self) -> None:
        ordered = self.collection.order_by.return_value
        ordered.limit.return_value.stream.return_value = [
            _snapshot("r2", {"date": "2024-03-08", "created_at": datetime(2024, 3, 8)})
        ]

        report = self.store.latest_trend_report()

        self.client.collection.assert_called_with("soundTrendReports")
        ordered.limit.assert_called_once_with(1)
        self.assertEqual(report["id"], "r2")

    def test_latest_trend_report_without_reports(self) -> None:
        self.collection.order_by.return_value.limit.return_value.stream.return_value = []

        self.assertIsNone(self.store.latest_trend_report())


class BuildFirestoreClientTestCase(unittest.TestCase):
    @patch("trendzo.firestore_store.firestore")
    @patch("trendzo.firestore_store.credentials")
    @patch("trendzo.firestore_store.firebase_admin")
    def test_initializes_app_once_from_json(
        self,
        firebase_admin_mock: MagicMock,
        credentials_mock: MagicMock,
        firestore_mock: MagicMock,
    ) -> None:
        firebase_admin_mock._apps = {}
        config = FirestoreConfig(credentials_json='{"type": "service_account"}', project_id="trendzo")

        client = build_firestore_client(config)

        credentials_mock.Certificate.assert_called_once_with({"type": "service_account"})
        firebase_admin_mock.initialize_app.assert_called_once_with(
            credentials_mock.Certificate.return_value, {"projectId": "trendzo"}
        )
        self.assertIs(client, firestore_mock.client.return_value)

    @patch("trendzo.firestore_store.firestore")
    @patch("trendzo.firestore_store.credentials")
    @patch("trendzo.firestore_store.firebase_admin")
    def test_existing_app_is_reused(
        self,
        firebase_admin_mock: MagicMock,
        credentials_mock: MagicMock,
        firestore_mock: MagicMock,
    ) -> None:
        firebase_admin_mock._apps = {"[DEFAULT]": object()}

        build_firestore_client(FirestoreConfig(credentials_path="/secrets/firebase.json"))

        credentials_mock.Certificate.assert_called_once_with("/secrets/firebase.json")
        firebase_admin_mock.initialize_app.assert_not_called()
        firestore_mock.client.assert_called_once_with()


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
