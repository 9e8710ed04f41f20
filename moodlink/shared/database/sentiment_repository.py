"""Sentiment record store: read capability for both services.

The correlation service reads qualifying daily aggregates; the research
export reads raw records through a RecordFilter. The store is read-only
from the services' point of view.
"""
import json
import logging
from collections import Counter
from datetime import datetime
from typing import List, Optional, Sequence

from moodlink.shared.models import (
    MIN_RECORDS_PER_DAY,
    DailyAggregate,
    RecordFilter,
    SentimentRecord,
    aggregate_daily,
)
from .connection import ConnectionManager
from .repository import BaseRepository

logger = logging.getLogger(__name__)


class SentimentRepository(BaseRepository[SentimentRecord]):
    """PostgreSQL-backed sentiment store.

    Daily aggregation happens in SQL so only qualifying
    (user, app, day) groups leave the database.
    """

    AGGREGATE_QUERY = """
        SELECT
            user_id,
            app_name,
            DATE_TRUNC('day', created_at)::date AS analysis_date,
            AVG(sentiment_score) AS avg_sentiment,
            COUNT(*) AS data_points,
            AVG(CASE WHEN sentiment_category = 'positive' THEN 1 ELSE 0 END) AS positive_ratio,
            AVG(CASE WHEN sentiment_category = 'negative' THEN 1 ELSE 0 END) AS negative_ratio,
            STDDEV(sentiment_score) AS sentiment_volatility
        FROM sentiment_data
        WHERE created_at >= %s AND created_at < %s
    """

    RECORD_COLUMNS = """
        SELECT id, app_name, user_id, sentiment_score, sentiment_category,
               text_content, emotional_indicators, context_metadata, created_at
        FROM sentiment_data
    """

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "sentiment_data")

    def _row_to_entity(self, row: tuple) -> SentimentRecord:
        """Convert a sentiment_data row to SentimentRecord.

        Expected columns:
            0: id
            1: app_name
            2: user_id
            3: sentiment_score
            4: sentiment_category
            5: text_content
            6: emotional_indicators (json)
            7: context_metadata (json)
            8: created_at
        """
        indicators = row[6] or {}
        if isinstance(indicators, str):
            indicators = json.loads(indicators)
        metadata = row[7] or {}
        if isinstance(metadata, str):
            metadata = json.loads(metadata)

        return SentimentRecord(
            record_id=str(row[0]),
            app_name=row[1],
            user_id=str(row[2]),
            sentiment_score=float(row[3]),
            sentiment_category=row[4],
            text_content=row[5],
            emotional_indicators=indicators,
            context_metadata=metadata,
            timestamp=row[8],
        )

    def _row_to_aggregate(self, row: tuple) -> DailyAggregate:
        """Convert an aggregate query row to DailyAggregate."""
        return DailyAggregate(
            user_id=str(row[0]),
            subject=row[1],
            day=row[2],
            avg_sentiment=float(row[3]),
            data_points=int(row[4]),
            positive_ratio=float(row[5] or 0),
            negative_ratio=float(row[6] or 0),
            volatility=float(row[7] or 0),
        )

    def fetch_daily_aggregates(
        self,
        start: datetime,
        end: datetime,
        subjects: Optional[Sequence[str]] = None,
    ) -> List[DailyAggregate]:
        """Fetch qualifying daily aggregates in [start, end).

        Args:
            start: Inclusive window start
            end: Exclusive window end
            subjects: Optional app name filter

        Returns:
            Aggregates backed by at least MIN_RECORDS_PER_DAY records
        """
        query = self.AGGREGATE_QUERY
        params: list = [start, end]

        if subjects:
            query += " AND app_name = ANY(%s)"
            params.append(list(subjects))

        query += """
            GROUP BY user_id, app_name, DATE_TRUNC('day', created_at)
            HAVING COUNT(*) >= %s
            ORDER BY user_id, app_name, analysis_date
        """
        params.append(MIN_RECORDS_PER_DAY)

        aggregates = self._fetch_all(query, params, converter=self._row_to_aggregate)

        logger.info(
            "DAILY_AGGREGATES_FETCHED",
            extra={
                "row_count": len(aggregates),
                "subject_filter": len(subjects or []),
            }
        )
        return aggregates

    def fetch_records(self, record_filter: RecordFilter) -> List[SentimentRecord]:
        """Fetch raw records matching an export filter.

        Records come oldest first with the id as tiebreak, so an export
        can resume after the last record it completed.
        """
        query = self.RECORD_COLUMNS + " WHERE 1=1"
        params: list = []

        if record_filter.app_names:
            query += " AND app_name = ANY(%s)"
            params.append(list(record_filter.app_names))
        if record_filter.start_date:
            query += " AND created_at >= %s"
            params.append(record_filter.start_date)
        if record_filter.end_date:
            query += " AND created_at <= %s"
            params.append(record_filter.end_date)
        if record_filter.sentiment_min is not None:
            query += " AND sentiment_score >= %s"
            params.append(record_filter.sentiment_min)
        if record_filter.sentiment_max is not None:
            query += " AND sentiment_score <= %s"
            params.append(record_filter.sentiment_max)
        if record_filter.min_records_per_user:
            query += """ AND user_id IN (
                SELECT user_id FROM sentiment_data
                GROUP BY user_id
                HAVING COUNT(*) >= %s
            )"""
            params.append(record_filter.min_records_per_user)

        query += " ORDER BY created_at ASC, id ASC LIMIT %s"
        params.append(record_filter.max_records)

        records = self._fetch_all(query, params)

        logger.info(
            "SENTIMENT_RECORDS_FETCHED",
            extra={"row_count": len(records), "max_records": record_filter.max_records}
        )
        return records


class InMemoryRecordStore:
    """In-memory sentiment store for development and tests.

    Derives daily aggregates from raw records with the same
    qualification rule as the SQL store.
    """

    def __init__(self, records: Optional[Sequence[SentimentRecord]] = None):
        self._records: List[SentimentRecord] = list(records or [])

    def add(self, record: SentimentRecord) -> None:
        self._records.append(record)

    def fetch_daily_aggregates(
        self,
        start: datetime,
        end: datetime,
        subjects: Optional[Sequence[str]] = None,
    ) -> List[DailyAggregate]:
        in_window = [
            r for r in self._records
            if start <= r.timestamp < end
            and (not subjects or r.app_name in subjects)
        ]
        return aggregate_daily(in_window)

    def fetch_records(self, record_filter: RecordFilter) -> List[SentimentRecord]:
        matching = [r for r in self._records if record_filter.matches(r)]

        if record_filter.min_records_per_user:
            per_user = Counter(r.user_id for r in self._records)
            matching = [
                r for r in matching
                if per_user[r.user_id] >= record_filter.min_records_per_user
            ]

        matching.sort(key=lambda r: (r.timestamp, r.record_id))
        return matching[:record_filter.max_records]
