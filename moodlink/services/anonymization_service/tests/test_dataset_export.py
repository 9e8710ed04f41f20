"""Tests for chunked research dataset export."""
import csv
import io
import json
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from moodlink.shared.database import InMemoryRecordStore, RepositoryError
from moodlink.shared.errors import UnknownAnonymizationLevelError
from moodlink.shared.models import AnonymizationLevel, RecordFilter, SentimentRecord
from moodlink.shared.utils import configure_pii_salt
from moodlink.services.audit_service import AuditAction, AuditLogger
from moodlink.services.anonymization_service import (
    AnonymizationConfig,
    ExportCheckpoint,
    ResearchDatasetExporter,
)
from moodlink.services.anonymization_service.dataset_export import EXPORT_FIELDS


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


def make_record(hour, text, app="journal", category="neutral", user="user_1"):
    return SentimentRecord(
        record_id=f"rec_{hour}",
        app_name=app,
        user_id=user,
        sentiment_score=0.1,
        sentiment_category=category,
        timestamp=datetime(2024, 3, 1, hour),
        text_content=text,
    )


@pytest.fixture
def store():
    return InMemoryRecordStore([
        make_record(1, "Contact jane@example.com", category="positive"),
        make_record(2, "Contact bob@example.org"),
        make_record(3, "Contact jane@example.com", app="fitness", category="negative"),
        make_record(4, "I am 34 years old"),
        make_record(5, None, app="fitness"),
    ])


def make_exporter(store, **config):
    config.setdefault("export_chunk_size", 2)
    return ResearchDatasetExporter(store, config=AnonymizationConfig(**config))


class TestExport:
    def test_exports_anonymized_records(self, store):
        export = make_exporter(store).export(RecordFilter(), level="basic")

        assert export.cancelled is False
        assert len(export.records) == 5
        contents = [r.anonymized_content for r in export.records]
        assert contents == [
            "Contact [EMAIL]",
            "Contact [EMAIL]",
            "Contact [EMAIL]",
            "I am 34 years old",
            None,
        ]

    def test_default_level_is_advanced(self, store):
        export = make_exporter(store).export(RecordFilter(app_names=("journal",)))

        assert export.level == AnonymizationLevel.ADVANCED
        assert "I am 30-39 years old" in [r.anonymized_content for r in export.records]

    def test_records_carry_no_identifiers(self, store):
        export = make_exporter(store).export(RecordFilter())

        for record in export.records:
            data = record.to_dict()
            assert tuple(data) == EXPORT_FIELDS
            assert not data["id"].startswith("rec_")
            assert "user_1" not in json.dumps(data)
        assert len({r.id for r in export.records}) == 5

    def test_tokens_consistent_across_chunks(self, store):
        export = make_exporter(store, numbered_tokens=True, export_chunk_size=1).export(
            RecordFilter(), level="basic"
        )

        by_hour = {r.timestamp: r.anonymized_content for r in export.records}
        jane_first = by_hour[datetime(2024, 3, 1, 1).isoformat()]
        jane_second = by_hour[datetime(2024, 3, 1, 3).isoformat()]
        bob = by_hour[datetime(2024, 3, 1, 2).isoformat()]
        assert jane_first == jane_second
        assert bob != jane_first

    def test_unknown_level_rejected_before_fetch(self):
        source = MagicMock()
        exporter = ResearchDatasetExporter(source)

        with pytest.raises(UnknownAnonymizationLevelError):
            exporter.export(RecordFilter(), level="extreme")

        source.fetch_records.assert_not_called()


class TestCancelAndResume:
    def test_cancel_keeps_completed_chunks(self, store):
        checks = []

        def should_cancel():
            checks.append(True)
            return len(checks) > 2

        export = make_exporter(store).export(RecordFilter(), should_cancel=should_cancel)

        assert export.cancelled is True
        assert len(export.records) == 4
        assert len(export.checkpoint.records) == 4
        assert export.checkpoint.last_timestamp == datetime(2024, 3, 1, 4)
        assert export.total_available == 5

    def test_resume_from_checkpoint(self, store):
        exporter = make_exporter(store, numbered_tokens=True)
        cancelled = exporter.export(
            RecordFilter(), level="basic", should_cancel=lambda: True
        )
        assert cancelled.records == []

        partial = exporter.export(
            RecordFilter(), level="basic",
            should_cancel=iter([False, False, True]).__next__,
        )
        saved = json.loads(json.dumps(partial.checkpoint.to_dict()))

        resumed = exporter.export(
            RecordFilter(), level="basic", checkpoint=ExportCheckpoint.from_dict(saved)
        )

        assert resumed.cancelled is False
        assert len(resumed.records) == 5
        assert resumed.dataset_id == partial.dataset_id
        assert resumed.records[:4] == partial.records
        contents = {r.timestamp: r.anonymized_content for r in resumed.records}
        assert (
            contents[datetime(2024, 3, 1, 1).isoformat()]
            == contents[datetime(2024, 3, 1, 3).isoformat()]
        )


    def test_records_added_after_cancel_are_not_exported_twice(self):
        store = InMemoryRecordStore([make_record(h, None) for h in (1, 2, 3, 4)])
        exporter = make_exporter(store)
        partial = exporter.export(RecordFilter(), should_cancel=iter([False, True]).__next__)
        assert len(partial.records) == 2

        store.add(make_record(5, None))
        resumed = exporter.export(RecordFilter(), checkpoint=partial.checkpoint)

        assert [r.timestamp for r in resumed.records] == [
            datetime(2024, 3, 1, h).isoformat() for h in (1, 2, 3, 4)
        ]
        assert resumed.total_available == 4

    def test_resume_within_shared_timestamp(self):
        store = InMemoryRecordStore([
            SentimentRecord(
                record_id=record_id,
                app_name="journal",
                user_id="user_1",
                sentiment_score=0.1,
                sentiment_category="neutral",
                timestamp=datetime(2024, 3, 1, 9),
                text_content=None,
            )
            for record_id in ("c", "a", "b")
        ])
        exporter = make_exporter(store, export_chunk_size=1)
        partial = exporter.export(RecordFilter(), should_cancel=iter([False, True]).__next__)

        resumed = exporter.export(RecordFilter(), checkpoint=partial.checkpoint)

        assert len(partial.records) == 1
        assert len(resumed.records) == 3
        assert resumed.checkpoint.last_ids == frozenset({"a", "b", "c"})


class TestOutputFormats:
    def test_summary(self, store):
        export = make_exporter(store).export(RecordFilter())

        summary = export.summary
        assert summary["total_records"] == 5
        assert summary["app_distribution"] == {"fitness": 2, "journal": 3}
        assert summary["sentiment_distribution"] == {
            "neutral": 3, "positive": 1, "negative": 1,
        }
        assert summary["date_range"] == {
            "start": "2024-03-01T01:00:00",
            "end": "2024-03-01T05:00:00",
        }

    def test_empty_summary(self):
        export = make_exporter(InMemoryRecordStore()).export(RecordFilter())

        assert export.summary["total_records"] == 0
        assert export.summary["date_range"] is None

    def test_csv_field_order(self, store):
        export = make_exporter(store).export(RecordFilter(), level="basic")

        rows = list(csv.reader(io.StringIO(export.to_csv())))

        assert tuple(rows[0]) == EXPORT_FIELDS
        assert len(rows) == 6
        assert rows[2][1:5] == ["journal", "0.1", "neutral", "Contact [EMAIL]"]

    def test_to_dict(self, store):
        export = make_exporter(store).export(RecordFilter())

        data = export.to_dict()

        assert data["dataset_id"] == export.dataset_id
        assert data["anonymization_level"] == "advanced"
        assert len(data["records"]) == 5


class TestExportAudit:
    def test_export_is_audited(self, store):
        audit_logger = AuditLogger()
        exporter = ResearchDatasetExporter(store, audit_logger=audit_logger)

        export = exporter.export(RecordFilter(), actor_id="researcher_hash")

        [entry] = [e for e in audit_logger.entries if e.action == AuditAction.EXPORT_DATASET]
        assert entry.entity_id == export.dataset_id
        assert entry.details["record_count"] == 5
        assert entry.details["cancelled"] is False

    def test_audit_failure_becomes_warning(self, store):
        repository = MagicMock()
        repository.latest_entry.return_value = None
        repository.append.side_effect = RepositoryError("audit store down")
        exporter = ResearchDatasetExporter(
            store, audit_logger=AuditLogger(repository=repository)
        )

        export = exporter.export(RecordFilter())

        assert len(export.records) == 5
        assert export.compliance_warnings[0]["code"] == "AUDIT_PERSISTENCE_FAILURE"
