"""Correlation analysis domain models.

Results are transient and always reproducible from the same input
aggregates; ``to_dict`` produces the JSON-serialisable API shape.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class AnalysisType(Enum):
    """Supported correlation analyses."""
    CROSS_APP = "cross_app"
    TEMPORAL = "temporal"
    BEHAVIORAL = "behavioral"
    HEALTH_OUTCOME = "health_outcome"                          # Heuristic proxy
    INTERVENTION_EFFECTIVENESS = "intervention_effectiveness"  # Heuristic proxy

    @property
    def is_pairwise(self) -> bool:
        """Check if the analysis correlates subjects pairwise."""
        return self in (
            AnalysisType.CROSS_APP,
            AnalysisType.HEALTH_OUTCOME,
            AnalysisType.INTERVENTION_EFFECTIVENESS,
        )

    @property
    def is_heuristic_proxy(self) -> bool:
        """Check if the analysis relies on synthetic outcome indices."""
        return self in (
            AnalysisType.HEALTH_OUTCOME,
            AnalysisType.INTERVENTION_EFFECTIVENESS,
        )


class PatternType(Enum):
    """Qualitative findings derived from correlation coefficients."""
    POSITIVE_CORRELATION = "positive_correlation"
    NEGATIVE_CORRELATION = "negative_correlation"
    PERSISTENCE = "persistence_pattern"
    WEEKLY = "weekly_pattern"
    POSITIVE_ENGAGEMENT = "positive_engagement_pattern"
    DISTRESS_ENGAGEMENT = "distress_engagement_pattern"
    RECOVERY = "recovery_pattern"


HEURISTIC_PROXY_DISCLAIMER = (
    "Stress, wellbeing and risk indices are heuristic proxies derived from "
    "sentiment and volatility. They are not validated clinical outcome "
    "labels and must not be presented as clinical ground truth."
)


@dataclass(frozen=True)
class CorrelationResult:
    """One coefficient between subjects (or within one subject)."""
    subjects: Tuple[str, ...]
    correlation_type: str
    coefficient: float
    strength: str
    sample_size: int
    metadata: Dict[str, Any] = field(default_factory=dict)
    confidence_interval: Optional[Dict[str, float]] = None

    def __post_init__(self):
        if not -1.0 <= self.coefficient <= 1.0:
            raise ValueError(f"Coefficient must be -1.0-1.0, got {self.coefficient}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        result = {
            "subjects": list(self.subjects),
            "type": self.correlation_type,
            "coefficient": round(self.coefficient, 4),
            "strength": self.strength,
            "sample_size": self.sample_size,
            "metadata": self.metadata,
        }
        if self.confidence_interval is not None:
            result["confidence_interval"] = {
                k: round(v, 4) for k, v in self.confidence_interval.items()
            }
        return result


@dataclass(frozen=True)
class Pattern:
    """Qualitative finding rendered from a fixed narrative template."""
    pattern_type: PatternType
    subjects: Tuple[str, ...]
    description: str
    strength: float
    implication: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.pattern_type.value,
            "subjects": list(self.subjects),
            "description": self.description,
            "strength": round(self.strength, 4),
            "implication": self.implication,
        }


@dataclass(frozen=True)
class Insight:
    """Narrative insight triggered by a pattern type."""
    insight_type: str
    message: str
    recommendation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.insight_type,
            "message": self.message,
            "recommendation": self.recommendation,
        }


@dataclass
class CorrelationAnalysis:
    """Complete output of one analyze_correlations call."""
    analysis_type: AnalysisType
    timeframe: str
    subjects: List[str]
    all_correlations: List[CorrelationResult]
    correlations: List[CorrelationResult]
    patterns: List[Pattern]
    insights: List[Insight]
    data_quality: Dict[str, Any]
    data_points_analyzed: int
    statistical_tests: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def strongest_correlation(self) -> Optional[CorrelationResult]:
        """Largest |coefficient| across all candidates, first wins ties."""
        strongest = None
        for corr in self.all_correlations:
            if strongest is None or abs(corr.coefficient) > abs(strongest.coefficient):
                strongest = corr
        return strongest

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON-serialisable response shape."""
        strongest = self.strongest_correlation
        result = {
            "analysis_type": self.analysis_type.value,
            "timeframe": self.timeframe,
            "subjects": self.subjects,
            "summary": {
                "total_correlations": len(self.all_correlations),
                "significant_correlations": len(self.correlations),
                "strongest_correlation": strongest.to_dict() if strongest else None,
                "data_points_analyzed": self.data_points_analyzed,
            },
            "correlations": [c.to_dict() for c in self.correlations],
            "patterns": [p.to_dict() for p in self.patterns],
            "insights": [i.to_dict() for i in self.insights],
            "data_quality": self.data_quality,
            "metadata": self.metadata,
        }
        if self.statistical_tests is not None:
            result["statistical_tests"] = self.statistical_tests
        return result
