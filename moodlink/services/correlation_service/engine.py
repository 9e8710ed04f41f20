"""Correlation engine for per-user, per-app daily sentiment aggregates.

Supports cross-app, temporal, behavioral and two heuristic-proxy
analyses (health outcome, intervention effectiveness). Every reported
coefficient is backed by its analysis family's minimum sample size;
smaller candidates are excluded rather than reported unstable.

The health-outcome and intervention-effectiveness analyses correlate
synthetic stress, wellbeing and risk indices derived from sentiment and
volatility. They are heuristic proxies without labelled ground truth
and are labelled as such in every result they produce.
"""
import itertools
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import (
    Any, Callable, Dict, List, Optional, Sequence, Tuple, Union,
)

from moodlink.shared.errors import (
    AuditPersistenceFailure,
    InsufficientDataError,
    InvalidConfigurationError,
)
from moodlink.shared.models import (
    HEURISTIC_PROXY_DISCLAIMER,
    AnalysisType,
    CorrelationAnalysis,
    CorrelationResult,
    DailyAggregate,
    Pattern,
    PatternType,
)
from moodlink.shared.utils import (
    assess_data_quality,
    classify_strength,
    confidence_interval,
    lag_correlation,
    pearson_correlation,
    short_hash,
    trend_strength,
)
from moodlink.shared.utils.stats import clamp, mean
from moodlink.services.audit_service import AuditAction, AuditEntity, AuditLogger
from .cache import ResultCache, fingerprint
from .config import (
    DEFAULT_VARIABLES,
    SUPPORTED_VARIABLES,
    CorrelationConfig,
    timeframe_to_days,
)
from .patterns import insights_for, render_pattern

logger = logging.getLogger(__name__)

STATISTICAL_TESTS_DISCLAIMER = (
    "Confidence intervals use a fixed +/-0.1 band and the power assessment "
    "is a sample-size heuristic. This is an approximation, not a rigorous "
    "significance test."
)

# A measure maps one aggregate to the value being correlated
Measure = Tuple[str, Callable[[DailyAggregate], float]]


def stress_index(aggregate: DailyAggregate) -> float:
    """Heuristic stress proxy: max(0, 1 - sentiment + volatility)."""
    return max(0.0, 1.0 - aggregate.avg_sentiment + aggregate.volatility)


def wellbeing_index(aggregate: DailyAggregate) -> float:
    """Heuristic wellbeing proxy: sentiment + 0.5, clamped to [0, 1]."""
    return clamp(aggregate.avg_sentiment + 0.5)


def risk_index(aggregate: DailyAggregate) -> float:
    """Heuristic risk proxy: -sentiment + volatility + 0.3, clamped to [0, 1]."""
    return clamp(-aggregate.avg_sentiment + aggregate.volatility + 0.3)


HEALTH_OUTCOME_MEASURES: List[Measure] = [
    ("stress", stress_index),
    ("wellbeing", wellbeing_index),
    ("risk", risk_index),
]

INTERVENTION_MEASURES: List[Measure] = [
    ("wellbeing", wellbeing_index),
    ("risk", risk_index),
]


@dataclass
class AnalysisOutcome:
    """Raw correlations, patterns and extra metadata from one analyzer."""
    correlations: List[CorrelationResult] = field(default_factory=list)
    patterns: List[Pattern] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


class CorrelationEngine:
    """Computes correlations over qualifying daily aggregates.

    The engine holds no per-call state. Collaborators (aggregate source,
    result cache, audit logger) are injected and may be shared.
    """

    def __init__(
        self,
        source: Any,
        config: Optional[CorrelationConfig] = None,
        cache: Optional[ResultCache] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """Initialize engine with dependencies.

        Args:
            source: Object with fetch_daily_aggregates(start, end, subjects)
            config: Thresholds and minimum sample sizes
            cache: Optional result cache
            audit_logger: Optional audit logger for completed analyses
            clock: Returns "now"; the analysis window ends here
        """
        self.source = source
        self.config = config or CorrelationConfig()
        self.cache = cache
        self.audit_logger = audit_logger
        self._clock = clock

        self._analyzers = {
            AnalysisType.CROSS_APP: self._analyze_cross_app,
            AnalysisType.TEMPORAL: self._analyze_temporal,
            AnalysisType.BEHAVIORAL: self._analyze_behavioral,
            AnalysisType.HEALTH_OUTCOME: self._analyze_health_outcome,
            AnalysisType.INTERVENTION_EFFECTIVENESS: self._analyze_intervention,
        }

        logger.info(
            "CORRELATION_ENGINE_INITIALIZED",
            extra={
                "cache_enabled": cache is not None,
                "audit_enabled": audit_logger is not None,
            }
        )

    def analyze_correlations(
        self,
        analysis_type: Union[str, AnalysisType],
        timeframe: str = "30d",
        subjects: Optional[Sequence[str]] = None,
        variables: Optional[Sequence[str]] = None,
        min_correlation_strength: float = 0.3,
        include_statistical_tests: bool = False,
    ) -> Dict[str, Any]:
        """Run an analysis and return its JSON-serialisable result.

        Consults the result cache first when one is wired. Identical
        concurrent requests are not deduplicated.

        Args:
            analysis_type: One of the AnalysisType values
            timeframe: 7d, 30d, 90d, 1y or <N>d, ending now
            subjects: App names; pairwise analyses need at least two
            variables: Aggregate variables to correlate
            min_correlation_strength: |r| below this is not reported
            include_statistical_tests: Attach approximate intervals

        Returns:
            CorrelationAnalysis.to_dict() shaped dictionary

        Raises:
            InvalidConfigurationError: Malformed request
            InsufficientDataError: Fewer qualifying rows than required
        """
        request = self._validate_request(
            analysis_type, timeframe, subjects, variables, min_correlation_strength
        )
        parsed_type, _, subject_list, variable_list = request
        window_end = self._clock()

        cache_key = None
        if self.cache is not None:
            cache_key = fingerprint(
                analysis_type=parsed_type.value,
                timeframe=timeframe,
                window_end=window_end.date(),
                subjects=subject_list,
                variables=variable_list,
                min_correlation_strength=min_correlation_strength,
                include_statistical_tests=include_statistical_tests,
            )
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(
                    "CORRELATION_CACHE_HIT",
                    extra={"analysis_type": parsed_type.value, "cache_key": cache_key[:24]}
                )
                return cached

        analysis = self.analyze(
            parsed_type,
            timeframe,
            subject_list,
            variable_list,
            min_correlation_strength,
            include_statistical_tests,
            window_end=window_end,
        )
        result = analysis.to_dict()

        audited = self._audit(analysis, result)

        if cache_key is not None and audited:
            self.cache.set(cache_key, result, self.config.cache_ttl_seconds)

        return result

    def analyze(
        self,
        analysis_type: Union[str, AnalysisType],
        timeframe: str = "30d",
        subjects: Optional[Sequence[str]] = None,
        variables: Optional[Sequence[str]] = None,
        min_correlation_strength: float = 0.3,
        include_statistical_tests: bool = False,
        window_end: Optional[datetime] = None,
    ) -> CorrelationAnalysis:
        """Compute an analysis without consulting the cache or audit log."""
        parsed_type, days, subject_list, variable_list = self._validate_request(
            analysis_type, timeframe, subjects, variables, min_correlation_strength
        )

        end = window_end or self._clock()
        start = end - timedelta(days=days)

        logger.info(
            "CORRELATION_ANALYSIS_STARTED",
            extra={
                "analysis_type": parsed_type.value,
                "timeframe": timeframe,
                "subject_count": len(subject_list),
                "variables": variable_list,
            }
        )

        fetched = self.source.fetch_daily_aggregates(start, end, subject_list or None)
        rows = [r for r in fetched if r.is_qualified]

        if len(rows) < self.config.min_total_rows:
            logger.warning(
                "CORRELATION_INSUFFICIENT_DATA",
                extra={
                    "analysis_type": parsed_type.value,
                    "qualified_rows": len(rows),
                    "discarded_rows": len(fetched) - len(rows),
                    "required": self.config.min_total_rows,
                }
            )
            raise InsufficientDataError(
                f"Insufficient data for correlation analysis: {len(rows)} qualifying "
                f"rows, minimum {self.config.min_total_rows} required"
            )

        analyzer = self._analyzers[parsed_type]
        outcome = analyzer(rows, subject_list, variable_list)

        candidates = outcome.correlations
        statistical_tests = None
        if include_statistical_tests:
            candidates = [
                replace(
                    c,
                    confidence_interval=confidence_interval(
                        c.coefficient, self.config.confidence_half_width
                    ),
                )
                for c in candidates
            ]
            statistical_tests = self._statistical_tests(len(rows))

        significant = [
            c for c in candidates
            if abs(c.coefficient) >= min_correlation_strength
        ]

        metadata: Dict[str, Any] = {
            "min_correlation_strength": min_correlation_strength,
            "variables": variable_list,
            "window_start": start.isoformat(),
            "window_end": end.isoformat(),
        }
        if parsed_type.is_heuristic_proxy:
            metadata["heuristic_proxy"] = HEURISTIC_PROXY_DISCLAIMER
        metadata.update(outcome.metadata)

        analysis = CorrelationAnalysis(
            analysis_type=parsed_type,
            timeframe=timeframe,
            subjects=subject_list,
            all_correlations=candidates,
            correlations=significant,
            patterns=outcome.patterns,
            insights=insights_for(outcome.patterns),
            data_quality=assess_data_quality(rows),
            data_points_analyzed=len(rows),
            statistical_tests=statistical_tests,
            metadata=metadata,
        )

        logger.info(
            "CORRELATION_ANALYSIS_COMPLETED",
            extra={
                "analysis_type": parsed_type.value,
                "total_correlations": len(candidates),
                "significant_correlations": len(significant),
                "pattern_count": len(outcome.patterns),
                "data_points_analyzed": len(rows),
            }
        )

        return analysis

    def _validate_request(
        self,
        analysis_type: Union[str, AnalysisType],
        timeframe: str,
        subjects: Optional[Sequence[str]],
        variables: Optional[Sequence[str]],
        min_correlation_strength: float,
    ) -> Tuple[AnalysisType, int, List[str], List[str]]:
        """Validate request parameters before any data is fetched."""
        if isinstance(analysis_type, AnalysisType):
            parsed_type = analysis_type
        else:
            try:
                parsed_type = AnalysisType(analysis_type)
            except ValueError:
                raise InvalidConfigurationError(
                    f"Unknown analysis type: {analysis_type}"
                )

        days = timeframe_to_days(timeframe)

        # Deduplicate, keeping request order
        subject_list: List[str] = []
        for subject in subjects or []:
            if subject not in subject_list:
                subject_list.append(subject)

        if parsed_type.is_pairwise and len(subject_list) < 2:
            raise InvalidConfigurationError(
                f"{parsed_type.value} analysis requires at least 2 distinct subjects"
            )

        variable_list = list(variables) if variables else list(DEFAULT_VARIABLES)
        unknown = [v for v in variable_list if v not in SUPPORTED_VARIABLES]
        if unknown:
            raise InvalidConfigurationError(
                f"Unknown variables: {', '.join(unknown)}. "
                f"Supported: {', '.join(sorted(SUPPORTED_VARIABLES))}"
            )

        if not 0.0 <= min_correlation_strength <= 1.0:
            raise InvalidConfigurationError(
                f"min_correlation_strength must be 0.0-1.0, got {min_correlation_strength}"
            )

        return parsed_type, days, subject_list, variable_list

    def _analyze_cross_app(
        self,
        rows: List[DailyAggregate],
        subjects: List[str],
        variables: List[str],
    ) -> AnalysisOutcome:
        measures: List[Measure] = [
            (variable, lambda agg, v=variable: agg.value_of(v))
            for variable in variables
        ]
        return self._analyze_pairwise(rows, subjects, measures)

    def _analyze_health_outcome(
        self,
        rows: List[DailyAggregate],
        subjects: List[str],
        variables: List[str],
    ) -> AnalysisOutcome:
        return self._analyze_pairwise(rows, subjects, HEALTH_OUTCOME_MEASURES, proxy=True)

    def _analyze_intervention(
        self,
        rows: List[DailyAggregate],
        subjects: List[str],
        variables: List[str],
    ) -> AnalysisOutcome:
        outcome = self._analyze_pairwise(rows, subjects, INTERVENTION_MEASURES, proxy=True)

        summaries, recovery_patterns = self._recovery_summary(rows, subjects)
        outcome.patterns.extend(recovery_patterns)
        outcome.metadata["recovery_summary"] = summaries
        return outcome

    def _analyze_pairwise(
        self,
        rows: List[DailyAggregate],
        subjects: List[str],
        measures: List[Measure],
        proxy: bool = False,
    ) -> AnalysisOutcome:
        """Correlate subjects pairwise over shared user-days.

        The first measure is the primary coefficient; every measure is
        reported in metadata.
        """
        by_user_day: Dict[Tuple[str, Any], Dict[str, DailyAggregate]] = defaultdict(dict)
        for row in rows:
            by_user_day[(row.user_id, row.day)][row.subject] = row

        primary_name = measures[0][0]
        outcome = AnalysisOutcome()

        for first, second in itertools.combinations(subjects, 2):
            paired = [
                (day_rows[first], day_rows[second])
                for _, day_rows in sorted(by_user_day.items())
                if first in day_rows and second in day_rows
            ]

            if len(paired) < self.config.min_paired_observations:
                logger.debug(
                    "SUBJECT_PAIR_EXCLUDED",
                    extra={
                        "subjects": [first, second],
                        "paired_observations": len(paired),
                        "required": self.config.min_paired_observations,
                    }
                )
                continue

            coefficients = {
                name: pearson_correlation(
                    [measure(a) for a, _ in paired],
                    [measure(b) for _, b in paired],
                )
                for name, measure in measures
            }
            primary = coefficients[primary_name]

            metadata: Dict[str, Any] = {
                "variable_correlations": {
                    name: round(value, 4) for name, value in coefficients.items()
                },
                "paired_users": len({a.user_id for a, _ in paired}),
                "avg_sentiment": {
                    first: round(mean(a.avg_sentiment for a, _ in paired), 4),
                    second: round(mean(b.avg_sentiment for _, b in paired), 4),
                },
            }
            if proxy:
                metadata["heuristic_proxy"] = HEURISTIC_PROXY_DISCLAIMER

            outcome.correlations.append(CorrelationResult(
                subjects=(first, second),
                correlation_type=f"{primary_name}_correlation",
                coefficient=primary,
                strength=classify_strength(primary),
                sample_size=len(paired),
                metadata=metadata,
            ))

            if abs(primary) > self.config.pairwise_pattern_threshold:
                pattern_type = (
                    PatternType.POSITIVE_CORRELATION if primary > 0
                    else PatternType.NEGATIVE_CORRELATION
                )
                outcome.patterns.append(render_pattern(pattern_type, (first, second), primary))

        return outcome

    def _analyze_temporal(
        self,
        rows: List[DailyAggregate],
        subjects: List[str],
        variables: List[str],
    ) -> AnalysisOutcome:
        outcome = AnalysisOutcome()

        for (user_id, subject), points in sorted(self._series(rows).items()):
            if len(points) < self.config.min_temporal_points:
                continue

            values = [p.avg_sentiment for p in points]
            lag_1 = lag_correlation(values, 1)
            lag_3 = lag_correlation(values, 3)
            lag_7 = lag_correlation(values, 7)

            outcome.correlations.append(CorrelationResult(
                subjects=(subject,),
                correlation_type="temporal_autocorrelation",
                coefficient=lag_1,
                strength=classify_strength(lag_1),
                sample_size=len(values),
                metadata={
                    "user": short_hash(user_id),
                    "lag_correlations": {
                        "lag_1": round(lag_1, 4),
                        "lag_3": round(lag_3, 4),
                        "lag_7": round(lag_7, 4),
                    },
                    "trend_strength": round(trend_strength(values), 4),
                    "weekly_cycle": lag_7 > self.config.weekly_threshold,
                },
            ))

            if lag_1 > self.config.persistence_threshold:
                outcome.patterns.append(render_pattern(PatternType.PERSISTENCE, (subject,), lag_1))
            if lag_7 > self.config.weekly_threshold:
                outcome.patterns.append(render_pattern(PatternType.WEEKLY, (subject,), lag_7))

        return outcome

    def _analyze_behavioral(
        self,
        rows: List[DailyAggregate],
        subjects: List[str],
        variables: List[str],
    ) -> AnalysisOutcome:
        by_subject: Dict[str, List[DailyAggregate]] = defaultdict(list)
        for row in rows:
            by_subject[row.subject].append(row)

        order = subjects or sorted(by_subject)
        threshold = self.config.engagement_threshold
        outcome = AnalysisOutcome()

        for subject in order:
            subject_rows = by_subject.get(subject, [])
            if len(subject_rows) < self.config.min_behavioral_rows:
                continue

            engagement = [float(r.data_points) for r in subject_rows]
            sentiment_corr = pearson_correlation(
                engagement, [r.avg_sentiment for r in subject_rows]
            )
            volatility_corr = pearson_correlation(
                engagement, [r.volatility for r in subject_rows]
            )

            outcome.correlations.append(CorrelationResult(
                subjects=(subject,),
                correlation_type="engagement_sentiment_correlation",
                coefficient=sentiment_corr,
                strength=classify_strength(sentiment_corr),
                sample_size=len(subject_rows),
                metadata={
                    "engagement_volatility_correlation": round(volatility_corr, 4),
                    "avg_engagement": round(mean(engagement), 4),
                    "avg_sentiment": round(mean(r.avg_sentiment for r in subject_rows), 4),
                },
            ))

            if sentiment_corr > threshold:
                outcome.patterns.append(
                    render_pattern(PatternType.POSITIVE_ENGAGEMENT, (subject,), sentiment_corr)
                )
            elif sentiment_corr < -threshold:
                outcome.patterns.append(
                    render_pattern(PatternType.DISTRESS_ENGAGEMENT, (subject,), sentiment_corr)
                )

        return outcome

    def _recovery_summary(
        self,
        rows: List[DailyAggregate],
        subjects: List[str],
    ) -> Tuple[List[Dict[str, Any]], List[Pattern]]:
        """Summarize sentiment drops followed by a rebound, per subject.

        A recovery episode is a day more than ``recovery_drop`` below the
        mean of the preceding window, followed by a window whose mean is
        more than ``recovery_rebound`` above that day.
        """
        window = self.config.recovery_window_days
        strengths: Dict[str, List[float]] = defaultdict(list)

        for (_, subject), points in sorted(self._series(rows).items()):
            values = [p.avg_sentiment for p in points]
            for i in range(window, len(values) - window):
                current = values[i]
                before = mean(values[i - window:i])
                after = mean(values[i + 1:i + 1 + window])
                if (current < before - self.config.recovery_drop
                        and after > current + self.config.recovery_rebound):
                    strengths[subject].append(after - current)

        summaries = []
        patterns = []
        for subject in subjects:
            episodes = strengths.get(subject, [])
            if len(episodes) < self.config.recovery_min_episodes:
                continue

            avg_strength = mean(episodes)
            summaries.append({
                "subject": subject,
                "episode_count": len(episodes),
                "avg_recovery_strength": round(avg_strength, 4),
                "recovery_window_days": window,
            })
            if avg_strength > self.config.recovery_pattern_threshold:
                patterns.append(render_pattern(PatternType.RECOVERY, (subject,), avg_strength))

        return summaries, patterns

    def _series(
        self,
        rows: List[DailyAggregate],
    ) -> Dict[Tuple[str, str], List[DailyAggregate]]:
        """Group rows into per (user, subject) series sorted by day."""
        series: Dict[Tuple[str, str], List[DailyAggregate]] = defaultdict(list)
        for row in rows:
            series[(row.user_id, row.subject)].append(row)
        for points in series.values():
            points.sort(key=lambda p: p.day)
        return series

    def _statistical_tests(self, sample_size: int) -> Dict[str, Any]:
        adequate = sample_size > self.config.adequate_sample_size
        return {
            "method": "approximate",
            "disclaimer": STATISTICAL_TESTS_DISCLAIMER,
            "sample_size": sample_size,
            "significance_level": self.config.significance_level,
            "power_analysis": {
                "achieved": "adequate" if adequate else "limited",
                "recommended_sample_size": max(
                    self.config.recommended_sample_size, sample_size
                ),
            },
        }

    def _audit(self, analysis: CorrelationAnalysis, result: Dict[str, Any]) -> bool:
        """Record a completed analysis; counts only, never identifiers.

        Returns:
            False if the audit entry could not be persisted
        """
        if self.audit_logger is None:
            return True

        try:
            self.audit_logger.log(
                action=AuditAction.CORRELATION_ANALYSIS,
                entity_type=AuditEntity.ANALYSIS,
                entity_id=analysis.analysis_type.value,
                details={
                    "timeframe": analysis.timeframe,
                    "subject_count": len(analysis.subjects),
                    "total_correlations": len(analysis.all_correlations),
                    "significant_correlations": len(analysis.correlations),
                    "data_points_analyzed": analysis.data_points_analyzed,
                },
            )
        except AuditPersistenceFailure as e:
            logger.warning(
                "CORRELATION_AUDIT_DEGRADED",
                extra={"analysis_type": analysis.analysis_type.value, "error": str(e)}
            )
            result["compliance_warnings"] = [e.to_dict()]
            return False

        return True
