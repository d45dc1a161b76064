"""
Configuration for the print fulfillment core.

Two layers:
    - Config (and subclasses): Flask settings, loaded via app.config.from_object
    - FulfillmentConfig: immutable operator configuration handed to the
      orchestrator, poller and rendition pipeline at construction time

Both read from the environment. A .env file next to this module is loaded
first and takes precedence over the shell environment.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

# Load .env file early so environment variables are available for Config class
# This must happen before the Config class is defined
load_dotenv(override=True)

# Base directory (where this file lives)
BASE_DIR = Path(__file__).resolve().parent


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    return float(value) if value not in (None, "") else default


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    return int(value) if value not in (None, "") else default


class Config:
    """Default configuration for the Flask application."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024  # 2 MB JSON/webhook bodies
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")
    JSON_SORT_KEYS = False

    # Debug mode
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"
    TESTING = False

    # Background services (disabled under test so the suite stays deterministic)
    START_BACKGROUND_SERVICES = _env_bool(os.environ, "START_BACKGROUND_SERVICES", True)

    # Where LocalFileStorage writes rendered PDFs
    RENDITION_STORAGE_DIR = os.environ.get(
        "RENDITION_STORAGE_DIR", str(BASE_DIR / "storage" / "renditions")
    )


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    ENVIRONMENT = "production"


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = False
    TESTING = True
    START_BACKGROUND_SERVICES = False


# =============================================================================
# Operator configuration
# =============================================================================
# Tuning knobs for the fulfillment core. Defaults mirror production values:
#
# PREFERRED_PROVIDER_TOLERANCE: preferred provider wins when its total is
#   within this fraction of the cheapest/fastest quote (0.10 = 10%)
# POLL_STALE_MINUTES: an order is polled once it has had no update this long
# POLL_MAX_AGE_HOURS: orders older than this are left for manual follow-up
# ==========================================================================


@dataclass(frozen=True)
class ProviderCredentials:
    """Credentials and environment for one POD provider."""

    api_key: str
    """API key (Prodigi/Peecho) or OAuth client key (Lulu)."""

    api_secret: str = ""
    """OAuth client secret (Lulu only)."""

    environment: str = "sandbox"
    """'sandbox' or 'live'."""

    webhook_secret: str = ""
    """Shared secret for webhook signature verification."""

    @property
    def is_live(self) -> bool:
        return self.environment == "live"


@dataclass(frozen=True)
class FulfillmentConfig:
    """
    Immutable operator configuration for the fulfillment core.

    Built once at startup (FulfillmentConfig.from_env()) and passed by
    reference to every component that needs it.
    """

    providers: Dict[str, ProviderCredentials] = field(default_factory=dict)
    """Credentials keyed by provider id ('prodigi', 'lulu', 'peecho')."""

    fallback_enabled: bool = True
    """Retry a failed submission once on a different provider."""

    preferred_provider: Optional[str] = None
    """Provider biased by get_best_quote within the cost tolerance."""

    preferred_provider_tolerance: float = 0.10
    """Fractional cost tolerance for the preferred provider."""

    quote_timeout_seconds: float = 20.0
    """Per-provider bound on a quote call."""

    submit_timeout_seconds: float = 45.0
    """Bound on waiting for an in-flight submission of the same order."""

    status_timeout_seconds: float = 10.0
    """Per-call bound on a live status lookup."""

    http_timeout_seconds: float = 15.0
    """requests timeout for a single HTTP call to a vendor."""

    http_max_retries: int = 2
    """Extra attempts for retry-safe vendor calls."""

    poll_interval_seconds: float = 1800.0
    """Time between poller sweeps (30 minutes)."""

    poll_stale_minutes: float = 30.0
    """Orders with no update for this long are polled."""

    poll_max_age_hours: float = 72.0
    """Orders older than this are no longer polled."""

    poll_batch_size: int = 50
    """Orders checked per sweep."""

    worker_concurrency: int = 5
    """Rendition worker pool size."""

    rate_limit_per_second: float = 10.0
    """Maximum rendition job starts per second."""

    job_max_attempts: int = 3
    """Retry ceiling per rendition job."""

    job_backoff_base_seconds: float = 2.0
    """First retry delay; doubles each attempt."""

    preflight_delay_seconds: float = 5.0
    """Delay before a rendition's preflight job becomes due."""

    job_retry_window_hours: float = 24.0
    """Exhausted jobs younger than this are retried by the maintenance sweep."""

    job_retention_days: float = 30.0
    """Finished jobs of finished renditions are dropped after this."""

    cron_secret: str = ""
    """Bearer token required by the /cron routes."""

    require_webhook_signatures: bool = False
    """Reject webhooks for providers without a configured secret."""

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "FulfillmentConfig":
        """
        Build configuration from environment variables.

        Args:
            env: Mapping to read (defaults to os.environ)

        Returns:
            FulfillmentConfig instance
        """
        env = os.environ if env is None else env

        providers: Dict[str, ProviderCredentials] = {}
        for provider_id in ("prodigi", "lulu", "peecho"):
            prefix = provider_id.upper()
            api_key = env.get(f"{prefix}_API_KEY", "")
            if not api_key:
                continue
            providers[provider_id] = ProviderCredentials(
                api_key=api_key,
                api_secret=env.get(f"{prefix}_API_SECRET", ""),
                environment="live" if env.get(f"{prefix}_ENV", "sandbox") in ("live", "production") else "sandbox",
                webhook_secret=env.get(f"{prefix}_WEBHOOK_SECRET", ""),
            )

        return cls(
            providers=providers,
            fallback_enabled=_env_bool(env, "FALLBACK_ENABLED", True),
            preferred_provider=env.get("PREFERRED_PROVIDER") or None,
            preferred_provider_tolerance=_env_float(env, "PREFERRED_PROVIDER_TOLERANCE", 0.10),
            quote_timeout_seconds=_env_float(env, "QUOTE_TIMEOUT_SECONDS", 20.0),
            submit_timeout_seconds=_env_float(env, "SUBMIT_TIMEOUT_SECONDS", 45.0),
            status_timeout_seconds=_env_float(env, "STATUS_TIMEOUT_SECONDS", 10.0),
            http_timeout_seconds=_env_float(env, "HTTP_TIMEOUT_SECONDS", 15.0),
            http_max_retries=_env_int(env, "HTTP_MAX_RETRIES", 2),
            poll_interval_seconds=_env_float(env, "POLL_INTERVAL_SECONDS", 1800.0),
            poll_stale_minutes=_env_float(env, "POLL_STALE_MINUTES", 30.0),
            poll_max_age_hours=_env_float(env, "POLL_MAX_AGE_HOURS", 72.0),
            poll_batch_size=_env_int(env, "POLL_BATCH_SIZE", 50),
            worker_concurrency=_env_int(env, "WORKER_CONCURRENCY", 5),
            rate_limit_per_second=_env_float(env, "RATE_LIMIT_PER_SECOND", 10.0),
            job_max_attempts=_env_int(env, "JOB_MAX_ATTEMPTS", 3),
            job_backoff_base_seconds=_env_float(env, "JOB_BACKOFF_BASE_SECONDS", 2.0),
            preflight_delay_seconds=_env_float(env, "PREFLIGHT_DELAY_SECONDS", 5.0),
            job_retry_window_hours=_env_float(env, "JOB_RETRY_WINDOW_HOURS", 24.0),
            job_retention_days=_env_float(env, "JOB_RETENTION_DAYS", 30.0),
            cron_secret=env.get("CRON_SECRET", ""),
            require_webhook_signatures=_env_bool(
                env,
                "REQUIRE_WEBHOOK_SIGNATURES",
                env.get("FLASK_ENV") == "production",
            ),
        )

    def credentials_for(self, provider_id: str) -> Optional[ProviderCredentials]:
        return self.providers.get(provider_id)
