"""Correlation Service: statistical relationships in sentiment aggregates.

Analyses:
- cross_app: pairwise Pearson correlation over shared user-days
- temporal: lag autocorrelation and trend per (user, app) series
- behavioral: engagement volume against sentiment per app
- health_outcome / intervention_effectiveness: heuristic proxy indices,
  not validated clinical outcomes
"""

from .cache import InMemoryResultCache, RedisResultCache, ResultCache, fingerprint
from .config import CorrelationConfig, timeframe_to_days
from .engine import CorrelationEngine

__all__ = [
    "CorrelationEngine",
    "CorrelationConfig",
    "timeframe_to_days",
    "ResultCache",
    "InMemoryResultCache",
    "RedisResultCache",
    "fingerprint",
]
