"""Configuration utilities shared by the ETL jobs, the API and the workers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_LOG_DIR = Path("storage") / "logs"
DEFAULT_USER_AGENT = "trendzo-etl/1.0"
DEFAULT_APIFY_BASE_URL = "https://api.apify.com/v2"
DEFAULT_APIFY_ACTOR_ID = "clockworks~tiktok-scraper"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class ConfigurationError(ValueError):
    """Raised when the environment does not describe a usable setup."""


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    value = env.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc


def _env_str(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


@dataclass(slots=True)
class RetryConfig:
    # A job is invoked at most this many times within one run; no delay between attempts.
    max_attempts: int = 2
    enabled: bool = True

    @property
    def attempts(self) -> int:
        if not self.enabled:
            return 1
        return max(1, self.max_attempts)


@dataclass(slots=True)
class TimeoutConfig:
    request_timeout: float = 120.0
    openai_timeout: float = 60.0


@dataclass(slots=True)
class ApifyConfig:
    api_token: Optional[str] = None
    actor_id: str = DEFAULT_APIFY_ACTOR_ID
    base_url: str = DEFAULT_APIFY_BASE_URL

    def run_sync_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/actor-tasks/{self.actor_id}/run-sync-get-dataset-items"


@dataclass(slots=True)
class FirestoreConfig:
    credentials_path: Optional[str] = None
    credentials_json: Optional[str] = None
    project_id: Optional[str] = None


@dataclass(slots=True)
class OpenAIConfig:
    api_key: Optional[str] = None
    model: str = DEFAULT_OPENAI_MODEL

    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass(slots=True)
class ApiConfig:
    """Credentials accepted by the protected API routes."""

    admin_api_key: Optional[str] = None
    etl_api_key: Optional[str] = None
    development: bool = False

    def accepted_keys(self) -> set[str]:
        return {key for key in (self.admin_api_key, self.etl_api_key) if key}


@dataclass(slots=True)
class QueueConfig:
    """Celery broker and result backend settings.

    Without explicit URLs the queue shares the SQL database when one is
    configured and otherwise stays in memory.
    """

    broker_url: Optional[str] = None
    result_backend: Optional[str] = None
    always_eager: bool = True
    pool_size: int = 2
    max_overflow: int = 0
    pool_recycle: int = 1800

    def resolve_broker(self, db_url: Optional[str]) -> str:
        if self.broker_url:
            return self.broker_url
        if db_url:
            return db_url if db_url.startswith("sqla+") else f"sqla+{db_url}"
        return "memory://"

    def resolve_backend(self, db_url: Optional[str]) -> str:
        if self.result_backend:
            return self.result_backend
        if db_url:
            return db_url if db_url.startswith("db+") else f"db+{db_url}"
        return "cache+memory://"

    def engine_options(self) -> dict[str, object]:
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_recycle": self.pool_recycle,
            "pool_pre_ping": True,
        }


@dataclass(slots=True)
class EtlConfig:
    use_supabase: bool = False
    db_url: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    log_dir: Path = DEFAULT_LOG_DIR
    record_errors: bool = True
    apify: ApifyConfig = field(default_factory=ApifyConfig)
    firestore: FirestoreConfig = field(default_factory=FirestoreConfig)
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)

    @property
    def backend(self) -> str:
        return "supabase" if self.use_supabase else "firestore"

    def ensure_directories(self) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)


def load_config(env: Mapping[str, str] | None = None) -> EtlConfig:
    """Build an :class:`EtlConfig` from environment variables."""

    env = os.environ if env is None else env

    use_supabase = _env_bool(env, "USE_SUPABASE") or _env_bool(env, "NEXT_PUBLIC_USE_SUPABASE")
    log_dir_raw = _env_str(env, "TRENDZO_LOG_DIR")

    credentials = _env_str(env, "FIREBASE_CREDENTIALS")
    credentials_path: Optional[str] = None
    credentials_json: Optional[str] = None
    if credentials:
        if credentials.startswith("{"):
            credentials_json = credentials
        else:
            credentials_path = credentials

    config = EtlConfig(
        use_supabase=use_supabase,
        db_url=_env_str(env, "SUPABASE_DB_URL") or _env_str(env, "TRENDZO_DATABASE_URL"),
        log_dir=Path(log_dir_raw) if log_dir_raw else DEFAULT_LOG_DIR,
        record_errors=_env_bool(env, "TRENDZO_RECORD_ERRORS", True),
        apify=ApifyConfig(
            api_token=_env_str(env, "APIFY_API_TOKEN"),
            actor_id=_env_str(env, "APIFY_ACTOR_ID") or DEFAULT_APIFY_ACTOR_ID,
            base_url=_env_str(env, "APIFY_BASE_URL") or DEFAULT_APIFY_BASE_URL,
        ),
        firestore=FirestoreConfig(
            credentials_path=credentials_path,
            credentials_json=credentials_json,
            project_id=_env_str(env, "FIREBASE_PROJECT_ID"),
        ),
        openai=OpenAIConfig(
            api_key=_env_str(env, "OPENAI_API_KEY"),
            model=_env_str(env, "OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
        ),
        api=ApiConfig(
            admin_api_key=_env_str(env, "ADMIN_API_KEY"),
            etl_api_key=_env_str(env, "ETL_API_KEY"),
            development=(_env_str(env, "TRENDZO_ENV") or "").lower() == "development",
        ),
        retry=RetryConfig(
            max_attempts=_env_int(env, "TRENDZO_MAX_ATTEMPTS", RetryConfig().max_attempts),
        ),
        timeout=TimeoutConfig(
            request_timeout=_env_float(env, "TRENDZO_REQUEST_TIMEOUT", TimeoutConfig().request_timeout),
        ),
        queue=QueueConfig(
            broker_url=_env_str(env, "TRENDZO_CELERY_BROKER_URL"),
            result_backend=_env_str(env, "TRENDZO_CELERY_RESULT_BACKEND"),
            always_eager=_env_bool(env, "TRENDZO_CELERY_TASK_ALWAYS_EAGER", True),
            pool_size=_env_int(env, "TRENDZO_DB_POOL_SIZE", QueueConfig().pool_size),
            max_overflow=_env_int(env, "TRENDZO_DB_MAX_OVERFLOW", QueueConfig().max_overflow),
            pool_recycle=_env_int(env, "TRENDZO_DB_POOL_RECYCLE", QueueConfig().pool_recycle),
        ),
    )
    return config
