"""
Shipwatch configuration.

Values are read from environment variables (entry points load `.env` with
python-dotenv before importing this module's consumers).
"""

import os

from pydantic import BaseModel, Field

DEFAULT_MODEL = os.getenv("SHIPWATCH_MODEL", "gemini-2.5-flash")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


class PipelineSettings(BaseModel):
    """Tunable heuristics for the extraction and reconciliation pipeline."""

    prefilter_min_matches: int = Field(
        default=2,
        ge=1,
        description="Keyword matches needed to treat a message as shipping-related",
    )
    delivered_after_days: int = Field(
        default=14,
        ge=1,
        description="Days after which an in-flight shipment is assumed delivered",
    )
    in_transit_after_days: int = Field(
        default=7,
        ge=1,
        description="Days after which a shipped package is assumed in transit",
    )
    content_char_budget: int = Field(
        default=4000,
        ge=500,
        description="Maximum characters of message body sent to the model",
    )
    summary_min_length: int = Field(
        default=20,
        ge=0,
        description="Summaries shorter than this are replaced by a template",
    )
    body_snippet_length: int = Field(
        default=500,
        ge=0,
        description="Characters of body text inspected by the pre-filter",
    )
    generative_min_interval: float = Field(
        default=1.0,
        ge=0.0,
        description="Minimum seconds between generative model calls",
    )
    rate_limit_cooldown: float = Field(
        default=30.0,
        ge=0.0,
        description="Seconds to back off after a rate-limit response",
    )
    max_consecutive_failures: int = Field(
        default=3,
        ge=1,
        description="Consecutive model failures before the fallback is disabled",
    )
    generative_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout in seconds for a single model call",
    )

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        """Build settings from SHIPWATCH_* environment variables."""
        defaults = cls()
        return cls(
            prefilter_min_matches=_env_int(
                "SHIPWATCH_PREFILTER_MIN_MATCHES", defaults.prefilter_min_matches
            ),
            delivered_after_days=_env_int(
                "SHIPWATCH_DELIVERED_AFTER_DAYS", defaults.delivered_after_days
            ),
            in_transit_after_days=_env_int(
                "SHIPWATCH_IN_TRANSIT_AFTER_DAYS", defaults.in_transit_after_days
            ),
            content_char_budget=_env_int(
                "SHIPWATCH_CONTENT_CHAR_BUDGET", defaults.content_char_budget
            ),
            summary_min_length=_env_int(
                "SHIPWATCH_SUMMARY_MIN_LENGTH", defaults.summary_min_length
            ),
            body_snippet_length=_env_int(
                "SHIPWATCH_BODY_SNIPPET_LENGTH", defaults.body_snippet_length
            ),
            generative_min_interval=_env_float(
                "SHIPWATCH_GENERATIVE_MIN_INTERVAL", defaults.generative_min_interval
            ),
            rate_limit_cooldown=_env_float(
                "SHIPWATCH_RATE_LIMIT_COOLDOWN", defaults.rate_limit_cooldown
            ),
            max_consecutive_failures=_env_int(
                "SHIPWATCH_MAX_CONSECUTIVE_FAILURES", defaults.max_consecutive_failures
            ),
            generative_timeout=_env_float(
                "SHIPWATCH_GENERATIVE_TIMEOUT", defaults.generative_timeout
            ),
        )
