import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import MagicMock, patch

from trendzo.config import ConfigurationError, EtlConfig, FirestoreConfig
from trendzo.firestore_store import FirestoreContentStore
from trendzo.persistence import SqlContentStore
from trendzo.stores import build_store


class BuildStoreTestCase(unittest.TestCase):
    def test_supabase_requires_database_url(self) -> None:
        with self.assertRaises(ConfigurationError):
            build_store(EtlConfig(use_supabase=True))

    def test_supabase_uses_sql_store(self) -> None:
        with TemporaryDirectory() as tmpdir:
            db_url = f"sqlite:///{Path(tmpdir) / 'trendzo.db'}"

            store = build_store(EtlConfig(use_supabase=True, db_url=db_url))
            created = store.create_template({"title": "Dance loop", "category": "dance"})

            self.assertIsInstance(store, SqlContentStore)
            self.assertEqual(store.get_template(created["id"])["title"], "Dance loop")

    @patch("trendzo.stores.build_firestore_client")
    def test_firestore_is_the_default(self, build_client_mock: MagicMock) -> None:
        firestore_config = FirestoreConfig(project_id="trendzo")

        store = build_store(EtlConfig(firestore=firestore_config))

        self.assertIsInstance(store, FirestoreContentStore)
        build_client_mock.assert_called_once_with(firestore_config)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
