"""Tests for the repository base class and sentiment record stores."""
import json
from datetime import date, datetime
from unittest.mock import MagicMock

import pytest

from moodlink.shared.database import (
    ConnectionManager,
    DatabaseConfig,
    InMemoryRecordStore,
    RepositoryError,
    SentimentRepository,
)
from moodlink.shared.models import RecordFilter, SentimentRecord


def make_record(score, day=1, hour=9, user="user_1", app="app_a"):
    return SentimentRecord(
        record_id=f"r_{user}_{app}_{day}_{hour}",
        app_name=app,
        user_id=user,
        sentiment_score=score,
        sentiment_category="neutral",
        timestamp=datetime(2024, 3, day, hour),
    )


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def repository(cursor):
    pool = MagicMock()
    conn = pool.getconn.return_value
    conn.cursor.return_value.__enter__.return_value = cursor
    manager = ConnectionManager(DatabaseConfig(host="localhost"), pool=pool)
    return SentimentRepository(manager)


class TestSentimentRepository:
    def test_fetch_daily_aggregates(self, repository, cursor):
        cursor.fetchall.return_value = [
            ("user_1", "app_a", date(2024, 3, 1), 0.25, 4, 0.5, 0.25, None),
        ]

        [aggregate] = repository.fetch_daily_aggregates(
            datetime(2024, 2, 1), datetime(2024, 3, 2), ["app_a", "app_b"]
        )

        assert aggregate.subject == "app_a"
        assert aggregate.data_points == 4
        assert aggregate.volatility == 0.0
        query, params = cursor.execute.call_args.args
        assert "app_name = ANY(%s)" in query
        assert "HAVING COUNT(*) >= %s" in query
        assert params == [datetime(2024, 2, 1), datetime(2024, 3, 2), ["app_a", "app_b"], 3]

    def test_fetch_daily_aggregates_without_subjects(self, repository, cursor):
        cursor.fetchall.return_value = []

        assert repository.fetch_daily_aggregates(datetime(2024, 2, 1), datetime(2024, 3, 1)) == []
        query, _ = cursor.execute.call_args.args
        assert "ANY(%s)" not in query

    def test_fetch_records(self, repository, cursor):
        cursor.fetchall.return_value = [(
            17, "app_a", "user_1", 0.4, "positive", "feeling good",
            json.dumps({"joy": 0.8}), {"source": "journal"}, datetime(2024, 3, 1, 9),
        )]

        [record] = repository.fetch_records(RecordFilter(
            app_names=("app_a",), sentiment_min=0.0, max_records=50,
        ))

        assert record.record_id == "17"
        assert record.text_content == "feeling good"
        assert record.emotional_indicators == {"joy": 0.8}
        assert record.context_metadata == {"source": "journal"}
        query, params = cursor.execute.call_args.args
        assert query.rstrip().endswith("ORDER BY created_at ASC, id ASC LIMIT %s")
        assert params == [["app_a"], 0.0, 50]

    def test_query_failure_raises_repository_error(self, repository, cursor):
        cursor.execute.side_effect = RuntimeError("relation does not exist")

        with pytest.raises(RepositoryError):
            repository.fetch_records(RecordFilter())


class TestInMemoryRecordStore:
    def test_aggregates_window_is_half_open(self):
        store = InMemoryRecordStore(
            [make_record(0.1, day=1, hour=h) for h in (8, 9, 10)]
            + [make_record(0.1, day=2, hour=h) for h in (8, 9, 10)]
        )

        aggregates = store.fetch_daily_aggregates(datetime(2024, 3, 1), datetime(2024, 3, 2))

        assert [a.day for a in aggregates] == [date(2024, 3, 1)]

    def test_aggregates_subject_filter(self):
        store = InMemoryRecordStore(
            [make_record(0.1, hour=h) for h in (8, 9, 10)]
            + [make_record(0.1, hour=h, app="app_b") for h in (8, 9, 10)]
        )

        aggregates = store.fetch_daily_aggregates(
            datetime(2024, 3, 1), datetime(2024, 3, 5), ["app_b"]
        )

        assert {a.subject for a in aggregates} == {"app_b"}

    def test_records_oldest_first_and_limited(self):
        store = InMemoryRecordStore([make_record(0.1, hour=h) for h in (8, 9, 10)])

        records = store.fetch_records(RecordFilter(max_records=2))

        assert [r.timestamp.hour for r in records] == [8, 9]

    def test_records_same_timestamp_ordered_by_id(self):
        store = InMemoryRecordStore([
            make_record(0.1, user="user_b"),
            make_record(0.1, user="user_a"),
        ])

        records = store.fetch_records(RecordFilter())

        assert [r.user_id for r in records] == ["user_a", "user_b"]

    def test_records_min_per_user(self):
        store = InMemoryRecordStore()
        for hour in (8, 9, 10):
            store.add(make_record(0.1, hour=hour, user="frequent"))
        store.add(make_record(0.1, user="rare"))

        records = store.fetch_records(RecordFilter(min_records_per_user=2))

        assert {r.user_id for r in records} == {"frequent"}
