"""
Runtime configuration for SkyAlert.

Everything is read from environment variables (a local .env file is loaded
first) so deployments only need to set env vars.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Settings:
    """Snapshot of the environment taken at construction time."""
    environment: str
    port: int

    aero_api_key: Optional[str]
    aviationstack_api_key: Optional[str]
    provider_timeout_seconds: float

    supabase_url: Optional[str]
    supabase_service_key: Optional[str]

    resend_api_key: Optional[str]
    email_from: str
    notification_webhook_url: Optional[str]

    cron_api_key: Optional[str]
    cron_signing_key: Optional[str]

    fetch_batch_size: int
    fetch_batch_delay_seconds: float
    flight_cache_enabled: bool
    poll_retention_days: int
    engine_interval_minutes: int
    scheduler_enabled: bool

    @classmethod
    def from_env(cls) -> "Settings":
        environment = os.getenv("ENVIRONMENT", "development")
        return cls(
            environment=environment,
            port=_env_int("PORT", 8000),
            aero_api_key=os.getenv("AERO_API_KEY") or None,
            aviationstack_api_key=os.getenv("AVIATIONSTACK_API_KEY") or None,
            provider_timeout_seconds=_env_float("PROVIDER_TIMEOUT_SECONDS", 15.0),
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_service_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY") or None,
            resend_api_key=os.getenv("RESEND_API_KEY") or None,
            email_from=os.getenv("EMAIL_FROM", "SkyAlert <alerts@skyalert.dev>"),
            notification_webhook_url=os.getenv("NOTIFICATION_WEBHOOK_URL") or None,
            cron_api_key=os.getenv("CRON_API_KEY") or None,
            cron_signing_key=os.getenv("CRON_SIGNING_KEY") or None,
            fetch_batch_size=max(1, _env_int("FETCH_BATCH_SIZE", 5)),
            fetch_batch_delay_seconds=_env_float("FETCH_BATCH_DELAY_SECONDS", 1.0),
            flight_cache_enabled=_env_bool("FLIGHT_CACHE_ENABLED", True),
            poll_retention_days=_env_int("POLL_RETENTION_DAYS", 7),
            engine_interval_minutes=max(1, _env_int("ENGINE_INTERVAL_MINUTES", 5)),
            scheduler_enabled=_env_bool("SCHEDULER_ENABLED", environment != "test"),
        )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def allows_unauthenticated_cron(self) -> bool:
        """Only development/test deployments without any cron secret accept anonymous triggers."""
        return (
            self.environment.lower() in ("development", "test")
            and not self.cron_api_key
            and not self.cron_signing_key
        )


def get_settings() -> Settings:
    return Settings.from_env()
