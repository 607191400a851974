import unittest
from pathlib import Path

from trendzo.config import EtlConfig, RetryConfig, load_config


class LoadConfigTestCase(unittest.TestCase):
    def test_defaults(self) -> None:
        config = load_config({})

        self.assertFalse(config.use_supabase)
        self.assertEqual(config.backend, "firestore")
        self.assertIsNone(config.apify.api_token)
        self.assertEqual(config.apify.actor_id, "clockworks~tiktok-scraper")
        self.assertEqual(config.retry.attempts, 2)
        self.assertEqual(config.timeout.request_timeout, 120.0)
        self.assertFalse(config.api.development)

    def test_supabase_backend_from_either_flag(self) -> None:
        self.assertTrue(load_config({"USE_SUPABASE": "true"}).use_supabase)
        config = load_config({"NEXT_PUBLIC_USE_SUPABASE": "1", "SUPABASE_DB_URL": "postgresql://db/trendzo"})

        self.assertEqual(config.backend, "supabase")
        self.assertEqual(config.db_url, "postgresql://db/trendzo")

    def test_firebase_credentials_path_or_json(self) -> None:
        from_path = load_config({"FIREBASE_CREDENTIALS": "/secrets/firebase.json"})
        from_json = load_config({"FIREBASE_CREDENTIALS": '{"type": "service_account"}'})

        self.assertEqual(from_path.firestore.credentials_path, "/secrets/firebase.json")
        self.assertIsNone(from_path.firestore.credentials_json)
        self.assertEqual(from_json.firestore.credentials_json, '{"type": "service_account"}')
        self.assertIsNone(from_json.firestore.credentials_path)

    def test_api_keys_and_environment(self) -> None:
        config = load_config({"ADMIN_API_KEY": "admin", "ETL_API_KEY": "etl", "TRENDZO_ENV": "Development"})

        self.assertEqual(config.api.accepted_keys(), {"admin", "etl"})
        self.assertTrue(config.api.development)

    def test_numeric_overrides(self) -> None:
        config = load_config(
            {"TRENDZO_MAX_ATTEMPTS": "3", "TRENDZO_REQUEST_TIMEOUT": "15.5", "TRENDZO_LOG_DIR": "/tmp/trendzo"}
        )

        self.assertEqual(config.retry.attempts, 3)
        self.assertEqual(config.timeout.request_timeout, 15.5)
        self.assertEqual(config.log_dir, Path("/tmp/trendzo"))

    def test_invalid_number_names_the_variable(self) -> None:
        with self.assertRaises(ValueError) as ctx:
            load_config({"TRENDZO_MAX_ATTEMPTS": "many"})

        self.assertIn("TRENDZO_MAX_ATTEMPTS", str(ctx.exception))

    def test_disabled_retry_runs_once(self) -> None:
        self.assertEqual(RetryConfig(max_attempts=5, enabled=False).attempts, 1)
        self.assertEqual(EtlConfig().retry.attempts, 2)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
