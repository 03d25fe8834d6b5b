"""
Configuration for the tutoring session client.

Values come from environment variables so the same code runs against a local
backend, staging, or production without changes:

    TUTOR_API_BASE_URL                backend root, e.g. https://tutor.example.com
    TUTOR_API_TOKEN                   bearer token attached to every request
    TUTOR_HTTP_TIMEOUT_SECONDS        per-request timeout
    TUTOR_POLL_INTERVAL_SECONDS       wait between "PROCESSING" responses
    TUTOR_ADVANCE_DELAY_SECONDS       pause before auto-advancing to the next segment
    TUTOR_POLL_SOFT_CEILING_SECONDS   report "still working" after this long (empty = never)
    TUTOR_POLL_HARD_LIMIT_SECONDS     give up polling after this long (empty = never)
    TUTOR_LOG_LEVEL                   log level for the lecture_tutor package
"""

import os
import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8080"
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0
DEFAULT_POLL_INTERVAL_SECONDS = 2.0
DEFAULT_ADVANCE_DELAY_SECONDS = 0.5
DEFAULT_POLL_SOFT_CEILING_SECONDS = 60.0


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}; using {default}")
        return default


class TutorSettings(BaseModel):
    """Runtime settings for the HTTP gateway and the session loop."""

    model_config = ConfigDict(frozen=True)

    base_url: str = DEFAULT_BASE_URL
    api_token: Optional[str] = None
    http_timeout_seconds: float = Field(default=DEFAULT_HTTP_TIMEOUT_SECONDS, gt=0)
    poll_interval_seconds: float = Field(default=DEFAULT_POLL_INTERVAL_SECONDS, ge=0)
    advance_delay_seconds: float = Field(default=DEFAULT_ADVANCE_DELAY_SECONDS, ge=0)
    poll_soft_ceiling_seconds: Optional[float] = Field(default=DEFAULT_POLL_SOFT_CEILING_SECONDS, ge=0)
    poll_hard_limit_seconds: Optional[float] = Field(default=None, gt=0)
    log_level: str = "INFO"


def load_settings() -> TutorSettings:
    """Build settings from the environment."""
    return TutorSettings(
        base_url=os.getenv("TUTOR_API_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        api_token=os.getenv("TUTOR_API_TOKEN") or None,
        http_timeout_seconds=_env_float("TUTOR_HTTP_TIMEOUT_SECONDS", DEFAULT_HTTP_TIMEOUT_SECONDS),
        poll_interval_seconds=_env_float("TUTOR_POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS),
        advance_delay_seconds=_env_float("TUTOR_ADVANCE_DELAY_SECONDS", DEFAULT_ADVANCE_DELAY_SECONDS),
        poll_soft_ceiling_seconds=_env_float(
            "TUTOR_POLL_SOFT_CEILING_SECONDS", DEFAULT_POLL_SOFT_CEILING_SECONDS
        ),
        poll_hard_limit_seconds=_env_float("TUTOR_POLL_HARD_LIMIT_SECONDS", None),
        log_level=os.getenv("TUTOR_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    """Set up console logging for command-line use."""
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=logging.WARNING,
    )
    logging.getLogger("lecture_tutor").setLevel(getattr(logging, level.upper(), logging.INFO))
