"""Settings resolved from the environment."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, replace

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://app.asana.com/api/1.0"
DEFAULT_DATABASE_URL = "sqlite:///asana_report.db"
DEFAULT_METADATA_KEY = "asana_sync"


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the client, store and sync."""

    token: str | None = None
    project_id: str | None = None
    team_id: str | None = None
    base_url: str = DEFAULT_BASE_URL
    requests_per_minute: int = 150
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    timeout: float = 30.0
    page_size: int = 100
    database_url: str = DEFAULT_DATABASE_URL
    metadata_key: str = DEFAULT_METADATA_KEY
    service_token: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        return cls(
            token=env.get("ASANA_TOKEN") or None,
            project_id=env.get("ASANA_PROJECT_ID") or None,
            team_id=env.get("ASANA_TEAM_ID") or None,
            base_url=env.get("ASANA_BASE_URL") or DEFAULT_BASE_URL,
            requests_per_minute=_positive_int(env, "ASANA_RATE_LIMIT", 150),
            max_retries=_positive_int(env, "ASANA_MAX_RETRIES", 3),
            timeout=_positive_float(env, "ASANA_TIMEOUT", 30.0),
            database_url=env.get("DATABASE_URL") or DEFAULT_DATABASE_URL,
            metadata_key=env.get("SYNC_METADATA_KEY") or DEFAULT_METADATA_KEY,
            service_token=env.get("SYNC_SERVICE_TOKEN") or None,
        )

    def with_overrides(self, **overrides: object) -> Settings:
        """Return a copy with every non-None override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values)

    def require_source(self) -> None:
        """Raise ConfigurationError unless the Asana token and project id are set."""
        if not self.token:
            raise ConfigurationError(
                "No Asana token configured. Use --token or set ASANA_TOKEN"
            )
        if not self.project_id:
            raise ConfigurationError(
                "No Asana project configured. Use --project or set ASANA_PROJECT_ID"
            )


def _positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %d", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r; using %d", name, raw, default)
        return default
    return value


def _positive_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %s", name, raw, default)
        return default
    return value if value > 0 else default
