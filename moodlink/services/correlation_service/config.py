"""Correlation Service configuration and statistical thresholds.

Minimum sample sizes guard every reported coefficient: candidates below
them are excluded, never reported with unstable statistics.
"""
import os
import re
from dataclasses import dataclass
from typing import FrozenSet, Optional

from moodlink.shared.errors import InvalidConfigurationError


# Variables a DailyAggregate exposes for correlation
SUPPORTED_VARIABLES: FrozenSet[str] = frozenset({
    "sentiment",
    "volatility",
    "positive_ratio",
    "negative_ratio",
})

DEFAULT_VARIABLES = ("sentiment", "volatility")

# Named timeframes; anything else must match the generic "<N>d" form
TIMEFRAME_DAYS = {
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "1y": 365,
}

_GENERIC_TIMEFRAME = re.compile(r"^(\d{1,4})d$")


def timeframe_to_days(timeframe: str) -> int:
    """Resolve a timeframe label to a number of days.

    Raises:
        InvalidConfigurationError: For unknown or non-positive timeframes
    """
    if not isinstance(timeframe, str):
        raise InvalidConfigurationError(f"Timeframe must be a string, got {timeframe!r}")

    if timeframe in TIMEFRAME_DAYS:
        return TIMEFRAME_DAYS[timeframe]

    match = _GENERIC_TIMEFRAME.match(timeframe)
    if match and int(match.group(1)) > 0:
        return int(match.group(1))

    raise InvalidConfigurationError(
        f"Unknown timeframe '{timeframe}'. Use 7d, 30d, 90d, 1y or <N>d"
    )


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class CorrelationConfig:
    """Thresholds for correlation analysis."""

    # Minimum sample sizes per analysis family
    min_total_rows: int = 10
    min_paired_observations: int = 10   # Cross-app and health proxies
    min_temporal_points: int = 7        # Daily points per (user, subject)
    min_behavioral_rows: int = 10       # Rows per subject

    # Pattern thresholds (strict comparisons)
    pairwise_pattern_threshold: float = 0.5
    persistence_threshold: float = 0.3
    weekly_threshold: float = 0.2
    engagement_threshold: float = 0.3

    # Recovery episodes (intervention effectiveness)
    recovery_window_days: int = 3
    recovery_drop: float = 0.3
    recovery_rebound: float = 0.2
    recovery_min_episodes: int = 3
    recovery_pattern_threshold: float = 0.3

    # Statistical test approximation
    confidence_half_width: float = 0.1
    significance_level: float = 0.05
    adequate_sample_size: int = 30
    recommended_sample_size: int = 100

    # Result cache
    cache_ttl_seconds: int = 3600
    redis_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "CorrelationConfig":
        """Create config from environment variables.

        Environment variables:
            CORRELATION_MIN_TOTAL_ROWS: Rows required per analysis (default 10)
            CORRELATION_MIN_PAIRED_OBSERVATIONS: Paired user-days (default 10)
            CORRELATION_MIN_TEMPORAL_POINTS: Points per series (default 7)
            CORRELATION_MIN_BEHAVIORAL_ROWS: Rows per subject (default 10)
            CORRELATION_PATTERN_THRESHOLD: Pairwise pattern |r| (default 0.5)
            CORRELATION_PERSISTENCE_THRESHOLD: Lag-1 threshold (default 0.3)
            CORRELATION_WEEKLY_THRESHOLD: Lag-7 threshold (default 0.2)
            CORRELATION_ENGAGEMENT_THRESHOLD: Engagement |r| (default 0.3)
            CORRELATION_CACHE_TTL_SECONDS: Result cache TTL (default 3600)
            REDIS_URL: Redis connection URL for the shared result cache
        """
        return cls(
            min_total_rows=_env_int("CORRELATION_MIN_TOTAL_ROWS", 10),
            min_paired_observations=_env_int("CORRELATION_MIN_PAIRED_OBSERVATIONS", 10),
            min_temporal_points=_env_int("CORRELATION_MIN_TEMPORAL_POINTS", 7),
            min_behavioral_rows=_env_int("CORRELATION_MIN_BEHAVIORAL_ROWS", 10),
            pairwise_pattern_threshold=_env_float("CORRELATION_PATTERN_THRESHOLD", 0.5),
            persistence_threshold=_env_float("CORRELATION_PERSISTENCE_THRESHOLD", 0.3),
            weekly_threshold=_env_float("CORRELATION_WEEKLY_THRESHOLD", 0.2),
            engagement_threshold=_env_float("CORRELATION_ENGAGEMENT_THRESHOLD", 0.3),
            cache_ttl_seconds=_env_int("CORRELATION_CACHE_TTL_SECONDS", 3600),
            redis_url=os.getenv("REDIS_URL") or None,
        )
