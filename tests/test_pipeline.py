import unittest
from unittest.mock import MagicMock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import Base
from trendzo.config import EtlConfig, RetryConfig
from trendzo.http_client import ApifyFetchError
from trendzo.jobs import JobReporter
from trendzo.persistence import SqlContentStore
from trendzo.pipeline import JOB_TYPES, run_job


def _memory_store() -> SqlContentStore:
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    return SqlContentStore(sessionmaker(bind=engine))


def _raw_video(video_id: str) -> dict:
    return {
        "id": video_id,
        "text": "New dance challenge",
        "authorMeta": {"id": "a1", "name": "Dancer", "nickName": "dancer"},
        "videoMeta": {"duration": 15},
        "stats": {"playCount": 20000, "diggCount": 2000, "commentCount": 10, "shareCount": 5},
    }


class RunJobTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = _memory_store()
        self.config = EtlConfig()

    def test_job_types(self) -> None:
        self.assertEqual(
            JOB_TYPES,
            ("trending", "categories", "update-stats", "sounds", "sound-stats", "link-sounds", "ai-trending"),
        )

    def test_trending_job_completes(self) -> None:
        source = MagicMock()
        source.scrape_trending.return_value = [_raw_video("v1")]

        outcome = run_job("trending", {"max_items": 7}, config=self.config, store=self.store, source=source)

        source.scrape_trending.assert_called_once_with(7)
        source.close.assert_not_called()
        self.assertTrue(outcome.succeeded)
        self.assertEqual(outcome.job["type"], "trending")
        self.assertEqual(outcome.job["name"], "Trending templates")
        self.assertEqual(outcome.job["parameters"], {"max_items": 7})
        self.assertEqual(outcome.job["result"]["processed"], 1)

    def test_scrape_failure_is_retried_then_fails_job(self) -> None:
        source = MagicMock()
        source.scrape_trending.side_effect = ApifyFetchError("Unexpected status 503 from Apify")

        outcome = run_job("sounds", {}, config=self.config, store=self.store, source=source)

        self.assertEqual(source.scrape_trending.call_count, 2)
        self.assertFalse(outcome.succeeded)
        self.assertEqual(outcome.job["status"], "failed")
        self.assertEqual(len(self.store.list_errors(job_id=outcome.job["id"])), 1)

    def test_no_retry_runs_once(self) -> None:
        self.config.retry = RetryConfig(enabled=False)
        source = MagicMock()
        source.scrape_trending.side_effect = ApifyFetchError("boom")

        run_job("trending", {}, config=self.config, store=self.store, source=source)

        self.assertEqual(source.scrape_trending.call_count, 1)

    def test_unknown_job_type_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            run_job("everything", {}, config=self.config, store=self.store, source=MagicMock())

    def test_invalid_option_fails_scheduled_job(self) -> None:
        job = JobReporter(self.store).create_job("categories")

        with self.assertRaises(ValueError):
            run_job(
                "categories",
                {"limit": "lots"},
                config=self.config,
                store=self.store,
                source=MagicMock(),
                job_id=job["id"],
            )

        stored = self.store.get_job(job["id"])
        self.assertEqual(stored["status"], "failed")
        self.assertIn("limit", stored["error"])

    def test_missing_scraper_token_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            run_job("trending", {}, config=self.config, store=self.store)

    def test_ai_job_requires_openai_key(self) -> None:
        with self.assertRaises(ValueError):
            run_job("ai-trending", {}, config=self.config, store=self.store, source=MagicMock())

    def test_category_options_are_passed_through(self) -> None:
        source = MagicMock()
        source.scrape_by_category.return_value = []

        outcome = run_job(
            "categories",
            {"categories": ["food"], "limit": 3},
            config=self.config,
            store=self.store,
            source=source,
        )

        source.scrape_by_category.assert_called_once_with("food", 3)
        self.assertTrue(outcome.succeeded)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
