import json
import unittest
from collections import deque
from pathlib import Path
from tempfile import TemporaryDirectory

import httpx

from trendzo.config import ApifyConfig, EtlConfig
from trendzo.http_client import ApifyFetchError, ApifySource


def _config(log_dir: Path) -> EtlConfig:
    return EtlConfig(log_dir=log_dir, apify=ApifyConfig(api_token="token-123"))


class ApifySourceTestCase(unittest.TestCase):
    def test_scrape_trending_posts_actor_input(self) -> None:
        requests = deque()

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=[{"id": "1"}, {"id": "2"}])

        with TemporaryDirectory() as tmpdir:
            source = ApifySource(_config(Path(tmpdir)), transport=httpx.MockTransport(handler))
            try:
                items = source.scrape_trending(5)
            finally:
                source.close()

        self.assertEqual(items, [{"id": "1"}, {"id": "2"}])
        request = requests.popleft()
        self.assertEqual(request.method, "POST")
        self.assertEqual(
            request.url.path,
            "/v2/actor-tasks/clockworks~tiktok-scraper/run-sync-get-dataset-items",
        )
        self.assertEqual(request.headers["authorization"], "Bearer token-123")
        body = json.loads(request.content)
        self.assertEqual(body["maxVideos"], 5)
        self.assertTrue(body["outputAsJson"])
        self.assertTrue(body["includeAudioData"])

    def test_scrape_videos_sends_post_urls(self) -> None:
        bodies = deque()

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=[])

        with TemporaryDirectory() as tmpdir:
            source = ApifySource(_config(Path(tmpdir)), transport=httpx.MockTransport(handler))
            try:
                self.assertEqual(source.scrape_videos([]), [])
                source.scrape_videos(["https://www.tiktok.com/@a/video/1"])
            finally:
                source.close()

        self.assertEqual(len(bodies), 1)
        self.assertEqual(bodies[0]["postURLs"], ["https://www.tiktok.com/@a/video/1"])

    def test_error_status_raises_and_records_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        with TemporaryDirectory() as tmpdir:
            log_dir = Path(tmpdir) / "logs"
            source = ApifySource(_config(log_dir), transport=httpx.MockTransport(handler))
            try:
                with self.assertRaises(ApifyFetchError):
                    source.scrape_by_category("dance", 10)
            finally:
                source.close()

            lines = (log_dir / "fetch_failures.ndjson").read_text(encoding="utf-8").splitlines()

        self.assertEqual(len(lines), 1)
        entry = json.loads(lines[0])
        self.assertEqual(entry["error_type"], "ApifyFetchError")
        self.assertEqual(entry["input"]["category"], "dance")
        self.assertIn("500", entry["error"])

    def test_non_list_payload_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"error": "quota exceeded"})

        with TemporaryDirectory() as tmpdir:
            source = ApifySource(_config(Path(tmpdir)), transport=httpx.MockTransport(handler))
            try:
                with self.assertRaises(ApifyFetchError):
                    source.scrape_by_hashtag("fyp")
            finally:
                source.close()

    def test_transport_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with TemporaryDirectory() as tmpdir:
            source = ApifySource(_config(Path(tmpdir)), transport=httpx.MockTransport(handler))
            try:
                with self.assertRaises(ApifyFetchError):
                    source.scrape_by_user("someone")
            finally:
                source.close()

    def test_missing_token_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            ApifySource(EtlConfig())


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
