"""Configuration utilities for the dashboard client core."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from huddle_dashboard.retry import RetryPolicy

load_dotenv()

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "HUDDLE_DASHBOARD_CONFIG"
API_URL_ENV_VAR = "HUDDLE_API_URL"
TOKEN_ENV_VAR = "HUDDLE_API_TOKEN"
TEAM_ENV_VAR = "HUDDLE_TEAM_ID"
DEFAULT_API_URL = "http://localhost:8000"
DEFAULT_CONFIG_PATH = (
    Path.home() / ".config" / "huddle-dashboard" / "config.json"
)
FILE_VIEWS = ("list", "grid")


def default_api_url() -> str:
    """Return the analysis service base URL from the environment or the default."""

    env_value = os.getenv(API_URL_ENV_VAR)
    if env_value:
        return env_value.rstrip("/")
    return DEFAULT_API_URL


def default_team_id() -> str:
    return os.getenv(TEAM_ENV_VAR, "")


def access_token() -> Optional[str]:
    """Return the bearer credential. It is read from the environment, never persisted."""

    return os.getenv(TOKEN_ENV_VAR) or None


@dataclass
class DashboardConfig:
    """Serializable configuration passed explicitly into the core components."""

    api_url: str = field(default_factory=default_api_url)
    team_id: str = field(default_factory=default_team_id)
    request_timeout: float = 30.0
    poll_interval: float = 2.0
    retry_interval: float = 5.0
    max_poll_retries: int = 1
    max_consecutive_failures: Optional[int] = None
    file_view: str = "list"

    def to_dict(self) -> dict:
        """Return the config as a JSON-serializable dictionary."""

        return asdict(self)

    def set_file_view(self, view: str) -> None:
        """Switch the persisted file view preference."""

        if view not in FILE_VIEWS:
            raise ValueError(f"file view must be one of {', '.join(FILE_VIEWS)}")
        self.file_view = view


def job_retry_policy(config: DashboardConfig) -> RetryPolicy:
    """Build the retry policy used for status queries of upload jobs."""

    return RetryPolicy(
        max_attempts=config.max_poll_retries,
        backoff=config.retry_interval,
        max_consecutive_failures=config.max_consecutive_failures,
    )


def config_path() -> Path:
    """Return the filesystem path where config is stored."""

    override = os.getenv(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser().resolve()

    return DEFAULT_CONFIG_PATH


def _positive(value, fallback: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    return number if number > 0 else fallback


def load_config() -> DashboardConfig:
    """Load configuration from disk, falling back to defaults."""

    path = config_path()
    if not path.exists():
        return DashboardConfig()

    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError:
        # Malformed config; fall back to defaults but keep original file for inspection.
        logger.warning(f"Ignoring malformed config at {path}")
        return DashboardConfig()

    config = DashboardConfig()
    config.api_url = str(data.get("api_url") or config.api_url).rstrip("/")
    config.team_id = str(data.get("team_id") or config.team_id)
    config.request_timeout = _positive(data.get("request_timeout"), config.request_timeout)
    config.poll_interval = _positive(data.get("poll_interval"), config.poll_interval)
    config.retry_interval = _positive(data.get("retry_interval"), config.retry_interval)

    retries = data.get("max_poll_retries", config.max_poll_retries)
    if isinstance(retries, int) and retries >= 0:
        config.max_poll_retries = retries

    ceiling = data.get("max_consecutive_failures")
    if isinstance(ceiling, int) and ceiling > 0:
        config.max_consecutive_failures = ceiling

    if data.get("file_view") in FILE_VIEWS:
        config.file_view = data["file_view"]
    return config


def save_config(config: DashboardConfig) -> None:
    """Persist configuration to disk."""

    path = config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.to_dict(), indent=2))
