"""Sentiment record and daily aggregate domain models.

SentimentRecord is produced upstream and is the sole raw input to both
the correlation and anonymization services. DailyAggregate is derived
per (user, app, day) and only aggregates backed by enough raw records
are valid for statistics.
"""
import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

# Minimum raw records per (user, app, day) for a valid aggregate
MIN_RECORDS_PER_DAY = 3


class SentimentCategory(Enum):
    """Categorical sentiment label attached upstream."""
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class SentimentRecord:
    """A single time-stamped sentiment reading.

    Immutable - records cannot be modified after ingestion.
    ``text_content`` is only populated for dataset export and never
    leaves this process un-anonymized.
    """
    record_id: str
    app_name: str
    user_id: str
    sentiment_score: float      # -1.0 to 1.0
    sentiment_category: str
    timestamp: datetime
    emotional_indicators: Dict[str, float] = field(default_factory=dict)
    context_metadata: Dict[str, Any] = field(default_factory=dict)
    text_content: Optional[str] = None

    def __post_init__(self):
        if not -1.0 <= self.sentiment_score <= 1.0:
            raise ValueError(
                f"Sentiment score must be -1.0-1.0, got {self.sentiment_score}"
            )


@dataclass(frozen=True)
class DailyAggregate:
    """Per (user, subject, day) summary of sentiment records.

    ``subject`` is the app name for app-level analyses.
    ``volatility`` is the sample standard deviation of the day's scores.
    """
    user_id: str
    subject: str
    day: date
    avg_sentiment: float
    data_points: int
    positive_ratio: float = 0.0
    negative_ratio: float = 0.0
    volatility: float = 0.0

    @property
    def is_qualified(self) -> bool:
        """Check if enough raw records back this aggregate."""
        return self.data_points >= MIN_RECORDS_PER_DAY

    def value_of(self, variable: str) -> float:
        """Look up a correlatable variable by name."""
        if variable == "sentiment":
            return self.avg_sentiment
        return float(getattr(self, variable))


def aggregate_daily(
    records: Iterable[SentimentRecord],
    min_records: int = MIN_RECORDS_PER_DAY,
) -> List[DailyAggregate]:
    """Derive qualifying daily aggregates from raw records.

    Groups by (user_id, app_name, calendar day) and discards groups
    backed by fewer than ``min_records`` records.

    Args:
        records: Raw sentiment records
        min_records: Minimum records per day for a valid aggregate

    Returns:
        Aggregates ordered by user, subject and day
    """
    groups: Dict[Tuple[str, str, date], List[SentimentRecord]] = defaultdict(list)
    for record in records:
        key = (record.user_id, record.app_name, record.timestamp.date())
        groups[key].append(record)

    aggregates = []
    for (user_id, app_name, day), group in sorted(groups.items()):
        if len(group) < min_records:
            continue

        scores = [r.sentiment_score for r in group]
        count = len(scores)
        aggregates.append(DailyAggregate(
            user_id=user_id,
            subject=app_name,
            day=day,
            avg_sentiment=sum(scores) / count,
            data_points=count,
            positive_ratio=sum(
                1 for r in group
                if r.sentiment_category == SentimentCategory.POSITIVE.value
            ) / count,
            negative_ratio=sum(
                1 for r in group
                if r.sentiment_category == SentimentCategory.NEGATIVE.value
            ) / count,
            volatility=statistics.stdev(scores) if count > 1 else 0.0,
        ))

    return aggregates


@dataclass(frozen=True)
class RecordFilter:
    """Filter descriptor for research dataset export.

    All bounds are inclusive; ``None`` means unbounded.
    """
    app_names: Tuple[str, ...] = ()
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    sentiment_min: Optional[float] = None
    sentiment_max: Optional[float] = None
    min_records_per_user: Optional[int] = None
    max_records: int = 10000

    def __post_init__(self):
        for bound in (self.sentiment_min, self.sentiment_max):
            if bound is not None and not -1.0 <= bound <= 1.0:
                raise ValueError(f"Sentiment bound must be -1.0-1.0, got {bound}")
        if self.max_records < 1:
            raise ValueError(f"max_records must be positive, got {self.max_records}")

    def matches(self, record: SentimentRecord) -> bool:
        """Check a record against every bound except min_records_per_user."""
        if self.app_names and record.app_name not in self.app_names:
            return False
        if self.start_date and record.timestamp < self.start_date:
            return False
        if self.end_date and record.timestamp > self.end_date:
            return False
        if self.sentiment_min is not None and record.sentiment_score < self.sentiment_min:
            return False
        if self.sentiment_max is not None and record.sentiment_score > self.sentiment_max:
            return False
        return True
