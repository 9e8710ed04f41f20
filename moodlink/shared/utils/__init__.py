"""Shared utilities for the moodlink platform."""
from .pii import (
    hash_pii,
    short_hash,
    configure_pii_salt,
    configure_pii_salt_from_env,
    load_pii_salt_from_secrets_manager,
)
from .stats import (
    pearson_correlation,
    lag_correlation,
    trend_strength,
    classify_strength,
    confidence_interval,
    assess_data_quality,
)

__all__ = [
    "hash_pii",
    "short_hash",
    "configure_pii_salt",
    "configure_pii_salt_from_env",
    "load_pii_salt_from_secrets_manager",
    "pearson_correlation",
    "lag_correlation",
    "trend_strength",
    "classify_strength",
    "confidence_interval",
    "assess_data_quality",
]
