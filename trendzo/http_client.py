"""HTTP client for the Apify TikTok scraper actor."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

import httpx

from .config import EtlConfig

LOGGER = logging.getLogger(__name__)
_FETCH_FAILURE_LOG = "fetch_failures.ndjson"


class ApifyFetchError(RuntimeError):
    """Raised when the scraper API call fails or returns an unusable payload."""


class ApifySource:
    """Runs the configured Apify actor task synchronously and returns its dataset items.

    Each call issues a single request; there is no pagination and no
    deduplication across calls.
    """

    def __init__(
        self,
        config: EtlConfig,
        *,
        client: httpx.Client | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not config.apify.api_token:
            raise ValueError("APIFY_API_TOKEN is required to scrape TikTok data")
        self._config = config
        self._transport = transport
        self._client = client or self._build_client()
        self._owns_client = client is None

    def _build_client(self) -> httpx.Client:
        headers = {
            "User-Agent": self._config.user_agent,
            "Authorization": f"Bearer {self._config.apify.api_token}",
            "Content-Type": "application/json",
        }
        kwargs: dict[str, object] = {
            "timeout": self._config.timeout.request_timeout,
            "headers": headers,
        }
        if self._transport:
            kwargs["transport"] = self._transport
        return httpx.Client(**kwargs)

    def run_actor(self, actor_input: Mapping[str, Any]) -> list[dict[str, Any]]:
        url = self._config.apify.run_sync_url()
        payload = {**actor_input, "outputAsJson": True}
        try:
            try:
                response = self._client.post(url, json=payload)
            except httpx.HTTPError as exc:
                raise ApifyFetchError(f"Request to Apify failed: {exc}") from exc

            if response.status_code < 200 or response.status_code >= 300:
                raise ApifyFetchError(f"Unexpected status {response.status_code} from Apify")

            try:
                data = response.json()
            except ValueError as exc:
                raise ApifyFetchError("Apify returned a non-JSON payload") from exc
        except ApifyFetchError as exc:
            self._record_fetch_failure(url, payload, exc)
            raise

        if not isinstance(data, list):
            exc = ApifyFetchError(f"Apify returned {type(data).__name__} instead of a list of items")
            self._record_fetch_failure(url, payload, exc)
            raise exc

        LOGGER.info("Fetched %d items from Apify", len(data))
        return data

    def scrape_trending(self, max_items: int = 50, **options: Any) -> list[dict[str, Any]]:
        LOGGER.info("Scraping up to %d trending videos", max_items)
        actor_input = {
            "maxVideos": max_items,
            "includeAudioData": True,
            "collectSoundMetrics": True,
            "includeRelatedSounds": True,
            **options,
        }
        return self.run_actor(actor_input)

    def scrape_by_category(self, category: str, limit: int = 20) -> list[dict[str, Any]]:
        LOGGER.info("Scraping up to %d videos for category %s", limit, category)
        return self.run_actor({"category": category, "maxVideos": limit, "includeAudioData": True})

    def scrape_by_hashtag(self, hashtag: str, limit: int = 20) -> list[dict[str, Any]]:
        LOGGER.info("Scraping up to %d videos for hashtag #%s", limit, hashtag)
        return self.run_actor({"hashtag": hashtag, "maxVideos": limit, "includeAudioData": True})

    def scrape_by_user(self, username: str, limit: int = 20) -> list[dict[str, Any]]:
        LOGGER.info("Scraping up to %d videos for user %s", limit, username)
        return self.run_actor({"username": username, "maxVideos": limit, "includeAudioData": True})

    def scrape_videos(self, video_urls: Sequence[str]) -> list[dict[str, Any]]:
        if not video_urls:
            return []
        return self.run_actor({"postURLs": list(video_urls), "includeAudioData": True})

    def scrape_videos_by_sound(self, sound_id: str, limit: int = 30) -> list[dict[str, Any]]:
        LOGGER.info("Scraping up to %d videos using sound %s", limit, sound_id)
        return self.run_actor(
            {
                "soundId": sound_id,
                "maxVideos": limit,
                "includeAudioData": True,
                "includeVideoEngagement": True,
            }
        )

    def _record_fetch_failure(self, url: str, actor_input: Mapping[str, Any], exc: Exception) -> None:
        payload = {
            "url": url,
            "input": dict(actor_input),
            "error": str(exc),
            "error_type": type(exc).__name__,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        log_path = self._config.log_dir / _FETCH_FAILURE_LOG
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
        except OSError as file_error:  # pragma: no cover - filesystem failure path
            LOGGER.warning("Failed to record fetch failure for %s: %s", url, file_error)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "ApifySource":  # pragma: no cover - convenience wrapper
        return self

    def __exit__(self, *_exc_info) -> None:  # pragma: no cover - convenience wrapper
        self.close()


__all__ = ["ApifyFetchError", "ApifySource"]
