"""Shared domain models for the moodlink platform."""
from .sentiment import (
    MIN_RECORDS_PER_DAY,
    SentimentCategory,
    SentimentRecord,
    DailyAggregate,
    RecordFilter,
    aggregate_daily,
)
from .analysis import (
    AnalysisType,
    PatternType,
    CorrelationResult,
    Pattern,
    Insight,
    CorrelationAnalysis,
    HEURISTIC_PROXY_DISCLAIMER,
)
from .privacy import (
    AnonymizationLevel,
    AuditSpanPolicy,
    AnonymizationTransformation,
    AnonymizationResult,
)

__all__ = [
    "MIN_RECORDS_PER_DAY",
    "SentimentCategory",
    "SentimentRecord",
    "DailyAggregate",
    "RecordFilter",
    "aggregate_daily",
    "AnalysisType",
    "PatternType",
    "CorrelationResult",
    "Pattern",
    "Insight",
    "CorrelationAnalysis",
    "HEURISTIC_PROXY_DISCLAIMER",
    "AnonymizationLevel",
    "AuditSpanPolicy",
    "AnonymizationTransformation",
    "AnonymizationResult",
]
