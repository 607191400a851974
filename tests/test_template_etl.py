import unittest
from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import Base
from trendzo.errors import EtlErrorReporter
from trendzo.http_client import ApifyFetchError
from trendzo.persistence import SqlContentStore
from trendzo.template_etl import TemplateEtl, update_trend_data


def _memory_store() -> SqlContentStore:
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    return SqlContentStore(sessionmaker(bind=engine))


def _raw_video(video_id: str, *, plays: int = 50000, likes: int = 5000, duration: float = 30, **overrides) -> dict:
    item = {
        "id": video_id,
        "text": "Easy recipe for dinner. Try this at home tonight!",
        "authorMeta": {"id": "a1", "name": "Chef Ana", "nickName": "chefana"},
        "musicMeta": {"musicId": "m1", "musicName": "Summer Vibes", "playUrl": "https://cdn.example.com/m1.mp3"},
        "videoMeta": {"duration": duration},
        "hashtags": [{"name": "food"}],
        "stats": {"playCount": plays, "diggCount": likes, "commentCount": 10, "shareCount": 5},
        "webVideoUrl": f"https://www.tiktok.com/@chefana/video/{video_id}",
    }
    item.update(overrides)
    return item


class FakeSource:
    def __init__(self, *, trending=None, categories=None, videos=None, failing_categories=()) -> None:
        self.trending = trending or []
        self.categories = categories or {}
        self.videos = videos or {}
        self.failing_categories = set(failing_categories)
        self.calls = []

    def scrape_trending(self, max_items=50, **options):
        self.calls.append(("trending", max_items))
        return list(self.trending)

    def scrape_by_category(self, category, limit=20):
        self.calls.append(("category", category, limit))
        if category in self.failing_categories:
            raise ApifyFetchError("Unexpected status 502 from Apify")
        return list(self.categories.get(category, []))

    def scrape_videos(self, video_urls):
        self.calls.append(("videos", tuple(video_urls)))
        return [self.videos[url] for url in video_urls if url in self.videos]


class ProcessHotTrendsTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = _memory_store()

    def test_engagement_and_duration_gates(self) -> None:
        source = FakeSource(
            trending=[
                _raw_video("good"),
                _raw_video("few-plays", plays=9999),
                _raw_video("few-likes", likes=999),
                _raw_video("", plays=90000),
                _raw_video("no-duration", duration=0),
            ]
        )
        etl = TemplateEtl(source, self.store)

        results = etl.process_hot_trends(5)

        self.assertEqual(source.calls, [("trending", 5)])
        self.assertEqual(results["total"], 5)
        self.assertEqual(results["success"], 1)
        self.assertEqual(results["skipped"], 4)
        self.assertEqual(results["failed"], 0)
        template = self.store.get_template(results["templates"][0])
        self.assertEqual(template["source_video_id"], "good")
        self.assertEqual(template["category"], "food")
        self.assertEqual(len(template["structure"]), 3)

    def test_missing_stats_are_skipped(self) -> None:
        raw = _raw_video("no-stats")
        del raw["stats"]

        results = TemplateEtl(FakeSource(trending=[raw]), self.store).process_hot_trends()

        self.assertEqual(results["skipped"], 1)
        self.assertEqual(self.store.list_templates(), [])


class ProcessByCategoriesTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = _memory_store()

    def test_repeated_runs_create_distinct_templates(self) -> None:
        source = FakeSource(categories={"food": [_raw_video("v1")]})
        etl = TemplateEtl(source, self.store)

        first = etl.process_by_categories(["food"], 5)
        second = etl.process_by_categories(["food"], 5)

        self.assertEqual(len(first["templates"]), 1)
        self.assertEqual(len(second["templates"]), 1)
        self.assertNotEqual(first["templates"], second["templates"])
        self.assertEqual(len(self.store.list_templates()), 2)

    def test_failing_category_does_not_stop_others(self) -> None:
        source = FakeSource(categories={"food": [_raw_video("v1")]}, failing_categories={"dance"})
        reporter = EtlErrorReporter(self.store)
        etl = TemplateEtl(source, self.store, error_reporter=reporter)

        results = etl.process_by_categories(["dance", "food"], 10, job_id="job-1")

        self.assertIn("error", results["categories"]["dance"])
        self.assertEqual(results["categories"]["food"]["success"], 1)
        self.assertEqual(results["total_success"], 1)
        self.assertEqual(results["total_failed"], 1)
        errors = self.store.list_errors(job_id="job-1")
        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0]["error_type"], "EXTRACT_ERROR")
        self.assertEqual(errors[0]["item_id"], "dance")

    def test_default_categories(self) -> None:
        source = FakeSource()

        results = TemplateEtl(source, self.store).process_by_categories()

        self.assertEqual(
            [call[1] for call in source.calls],
            ["dance", "product", "tutorial", "comedy", "fashion"],
        )
        self.assertEqual(results["total_success"], 0)


class UpdateTemplateStatsTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = _memory_store()

    def test_refreshes_stats_and_trend_data(self) -> None:
        url = "https://www.tiktok.com/@chefana/video/v1"
        template = self.store.create_template(
            {
                "title": "Easy recipe",
                "category": "food",
                "source_url": url,
                "stats": {"views": 100000, "likes": 1000, "usage_count": 7},
                "trend_data": {"daily_views": {"2024-03-01": 100000}, "growth_rate": 0, "velocity_score": 0},
                "is_active": True,
            }
        )
        self.store.create_template({"title": "No source", "category": "food", "is_active": True})
        source = FakeSource(videos={url: _raw_video("v1", plays=150000, likes=2000)})
        etl = TemplateEtl(source, self.store, today=lambda: date(2024, 3, 2))

        results = etl.update_template_stats()

        self.assertEqual(results, {"total": 2, "updated": 1, "failed": 0, "skipped": 1})
        updated = self.store.get_template(template["id"])
        self.assertEqual(updated["stats"]["views"], 150000)
        self.assertEqual(updated["stats"]["likes"], 2000)
        self.assertEqual(updated["stats"]["usage_count"], 7)
        self.assertEqual(updated["trend_data"]["daily_views"], {"2024-03-01": 100000, "2024-03-02": 150000})
        self.assertEqual(updated["trend_data"]["growth_rate"], 50000)
        self.assertEqual(updated["trend_data"]["velocity_score"], 50)

    def test_missing_source_video_is_skipped(self) -> None:
        self.store.create_template(
            {"title": "Gone", "category": "food", "source_url": "https://www.tiktok.com/@x/video/9", "is_active": True}
        )

        results = TemplateEtl(FakeSource(), self.store).update_template_stats()

        self.assertEqual(results["skipped"], 1)
        self.assertEqual(results["updated"], 0)


class UpdateTrendDataTestCase(unittest.TestCase):
    def test_first_sample_has_no_growth(self) -> None:
        trend = update_trend_data(None, 500, date(2024, 3, 1))

        self.assertEqual(trend, {"daily_views": {"2024-03-01": 500}, "growth_rate": 0, "velocity_score": 0})

    def test_growth_is_per_day_since_previous_sample(self) -> None:
        trend = update_trend_data({"daily_views": {"2024-03-01": 1000}}, 1600, date(2024, 3, 4))

        self.assertEqual(trend["growth_rate"], 200)
        self.assertEqual(trend["velocity_score"], 20)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
