"""Tests for AuditRepository - append-only audit storage."""
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from moodlink.shared.database import ConnectionManager, DatabaseConfig, RepositoryError
from moodlink.services.audit_service import (
    AuditAction,
    AuditEntity,
    AuditLogger,
    AuditRepository,
)


@pytest.fixture
def db():
    pool = MagicMock()
    conn = pool.getconn.return_value
    cursor = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    manager = ConnectionManager(DatabaseConfig(host="localhost"), pool=pool)
    return AuditRepository(manager), conn, cursor


class TestAuditRepository:
    def test_append_inserts_and_commits(self, db):
        repository, conn, cursor = db
        cursor.fetchall.return_value = []
        logger = AuditLogger(repository=repository)

        entry = logger.log(
            AuditAction.EXPORT_DATASET, AuditEntity.DATASET, "ds_1",
            details={"record_count": 3},
        )

        query, params = cursor.execute.call_args.args
        assert "INSERT INTO audit_entries" in query
        assert params[0] == entry.entry_id
        assert params[2] == "export_dataset"
        assert json.loads(params[6]) == {"record_count": 3}
        assert params[8] == entry.entry_hash
        conn.commit.assert_called_once()

    def test_append_failure_raises_repository_error(self, db):
        repository, _, cursor = db
        cursor.execute.side_effect = RuntimeError("permission denied")
        entry = AuditLogger().log(AuditAction.ANONYMIZE_TEXT, AuditEntity.TEXT, "t1")

        with pytest.raises(RepositoryError):
            repository.append(entry)

    def test_latest_entry_converts_row(self, db):
        repository, _, cursor = db
        timestamp = datetime(2024, 3, 1, 12)
        cursor.fetchall.return_value = [(
            "audit_0123456789abcdef", timestamp, "correlation_analysis", "analysis",
            "temporal", "system", '{"significant_correlations": 2}', "genesis", "f" * 64,
        )]

        entry = repository.latest_entry()

        assert entry.action == AuditAction.CORRELATION_ANALYSIS
        assert entry.entity_type == AuditEntity.ANALYSIS
        assert entry.details == {"significant_correlations": 2}
        query, params = cursor.execute.call_args.args
        assert query.endswith("ORDER BY timestamp DESC LIMIT 1")
        assert params == []

    def test_latest_entry_empty_table(self, db):
        repository, _, cursor = db
        cursor.fetchall.return_value = []

        assert repository.latest_entry() is None

    def test_stored_entry_keeps_its_hash(self, db):
        repository, _, cursor = db
        entry = AuditLogger().log(
            AuditAction.EXPORT_DATASET, AuditEntity.DATASET, "ds_1",
            details={"record_count": 3, "cancelled": False},
        )
        stored_at = entry.timestamp.replace(tzinfo=timezone.utc).astimezone(
            timezone(timedelta(hours=2))
        )
        cursor.fetchall.return_value = [(
            entry.entry_id, stored_at, "export_dataset", "dataset", "ds_1", "system",
            {"record_count": 3, "cancelled": False}, entry.previous_hash, entry.entry_hash,
        )]

        stored = repository.latest_entry()

        assert stored.timestamp == entry.timestamp
        assert stored.compute_hash() == entry.entry_hash
