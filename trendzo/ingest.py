"""Command-line entrypoint for running ETL jobs by hand."""

from __future__ import annotations

import argparse
import json
import logging
from typing import Any, Sequence

from .config import EtlConfig, load_config
from .jobs import summarize_result
from .pipeline import JOB_TYPES, run_job

LOGGER = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run Trendzo template and sound ETL jobs")
    parser.add_argument("job_type", choices=JOB_TYPES, help="ETL job to run")
    parser.add_argument("--max-items", type=int, default=None, help="Videos to scrape for trending jobs")
    parser.add_argument(
        "--categories",
        type=str,
        default=None,
        help="Comma separated categories for the categories job",
    )
    parser.add_argument("--limit", type=int, default=None, help="Items per category or records to update")
    parser.add_argument("--db-url", type=str, default=None, help="SQLAlchemy database URL (implies Supabase backend)")
    parser.add_argument("--no-retry", action="store_true", help="Run the job once without retrying on failure")
    parser.add_argument("--json", action="store_true", help="Print the job summary as JSON")
    return parser


def configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def _parse_categories(raw_value: str | None) -> list[str]:
    if not raw_value:
        return []

    selected: list[str] = []
    for part in raw_value.split(","):
        slug = part.strip().lower()
        if not slug or slug in selected:
            continue
        selected.append(slug)
    return selected


def build_options(args: argparse.Namespace) -> dict[str, Any]:
    options: dict[str, Any] = {}
    if args.max_items is not None:
        options["max_items"] = args.max_items
    if args.limit is not None:
        options["limit"] = args.limit
    categories = _parse_categories(args.categories)
    if categories:
        options["categories"] = categories
    return options


def build_config(args: argparse.Namespace) -> EtlConfig:
    config = load_config()
    if args.db_url:
        config.use_supabase = True
        config.db_url = args.db_url
    if args.no_retry:
        config.retry.enabled = False
    config.ensure_directories()
    return config


def main(argv: Sequence[str] | None = None) -> int:
    configure_logging()
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
        outcome = run_job(args.job_type, build_options(args), config=config)
    except ValueError as exc:
        parser.error(str(exc))

    job = outcome.job
    summary = summarize_result(outcome.result)
    LOGGER.info(
        "Job %s (%s) %s after %d attempt(s): %d processed, %d failed, %d skipped",
        job["id"],
        args.job_type,
        job["status"],
        outcome.attempts,
        summary["processed"],
        summary["failed"],
        summary["skipped"],
    )
    if outcome.error is not None:
        LOGGER.error("Job %s failed: %s", job["id"], outcome.error)
    if args.json:
        print(json.dumps({"job_id": job["id"], "status": job["status"], "result": summary}, default=str))

    return 0 if outcome.succeeded else 1


__all__ = ["build_arg_parser", "build_config", "build_options", "configure_logging", "main"]


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
