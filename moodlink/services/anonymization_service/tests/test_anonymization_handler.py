"""Tests for Anonymization Service HTTP handler."""
import csv
import io
from datetime import datetime
from unittest.mock import patch

import pytest

from moodlink.shared.database import InMemoryRecordStore
from moodlink.shared.errors import InvalidConfigurationError
from moodlink.shared.models import SentimentRecord
from moodlink.shared.utils import configure_pii_salt
from moodlink.services.audit_service import AuditRepository
from moodlink.services.anonymization_service import Anonymizer, ResearchDatasetExporter
from moodlink.services.anonymization_service.handler import (
    AnonymizationHandler,
    app,
    build_handler,
    parse_record_filter,
    set_handler,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def store():
    return InMemoryRecordStore([
        SentimentRecord(
            record_id=f"rec_{hour}",
            app_name="journal" if hour % 2 else "fitness",
            user_id="user_1",
            sentiment_score=0.2 * (hour - 2),
            sentiment_category="neutral",
            timestamp=datetime(2024, 3, 1, hour),
            text_content="Talked with Sarah Johnson",
        )
        for hour in range(1, 5)
    ])


@pytest.fixture
def client(store):
    anonymizer = Anonymizer()
    set_handler(AnonymizationHandler(anonymizer, ResearchDatasetExporter(store, anonymizer)))
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client
    set_handler(None)


class TestHealthEndpoints:
    def test_health(self, client):
        response = client.get("/health")

        assert response.json == {"status": "healthy", "service": "anonymization-service"}

    @patch("moodlink.services.anonymization_service.handler.get_connection_manager")
    def test_ready(self, mock_manager, client):
        mock_manager.return_value.health_check.return_value = {"healthy": True, "status": "connected"}

        response = client.get("/ready")

        assert response.status_code == 200
        assert response.json["status"] == "ready"

    @patch("moodlink.services.anonymization_service.handler.get_connection_manager")
    def test_not_ready_without_database(self, mock_manager, client):
        mock_manager.return_value.health_check.return_value = {
            "healthy": False, "status": "error", "error": "could not connect",
        }

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json["database"]["healthy"] is False


class TestAnonymizeEndpoint:
    def test_default_level_is_basic(self, client):
        response = client.post("/anonymize", json={"text": "I am 34 years old, jane@example.com"})

        assert response.status_code == 200
        assert response.json["anonymized_text"] == "I am 34 years old, [EMAIL]"
        assert response.json["level"] == "basic"

    def test_advanced(self, client):
        response = client.post("/anonymize", json={"text": "I am 34 years old", "level": "advanced"})

        assert response.json["anonymized_text"] == "I am 30-39 years old"

    def test_missing_text(self, client):
        response = client.post("/anonymize", json={"level": "basic"})

        assert response.status_code == 400
        assert response.json["error"]["code"] == "INVALID_CONFIGURATION"

    def test_unknown_level(self, client):
        response = client.post("/anonymize", json={"text": "hi", "level": "extreme"})

        assert response.status_code == 400
        assert response.json["error"]["code"] == "UNKNOWN_ANONYMIZATION_LEVEL"

    def test_non_object_body(self, client):
        response = client.post("/anonymize", json="text")

        assert response.status_code == 400


class TestValidateEndpoint:
    def test_reports_leaks(self, client):
        response = client.post("/anonymize/validate", json={
            "original": "Call 555-123-4567",
            "anonymized": "Call 555-123-4567",
        })

        assert response.status_code == 200
        assert response.json["is_valid"] is False
        assert response.json["findings"] == [{"kind": "phone", "matches": 1}]

    def test_missing_fields(self, client):
        response = client.post("/anonymize/validate", json={"original": "x"})

        assert response.status_code == 400


class TestExportEndpoint:
    def test_json_export(self, client):
        response = client.post("/datasets/export", json={
            "filters": {"app_names": ["journal"]},
        })

        assert response.status_code == 200
        body = response.json
        assert body["anonymization_level"] == "advanced"
        assert body["output_format"] == "json"
        assert body["summary"]["total_records"] == 2
        assert {r["anonymized_content"] for r in body["data"]} == {"Talked with [NAME]"}
        assert body["compliance_warnings"] == []
        assert body["cancelled"] is False
        assert "records" not in body

    def test_csv_export(self, client):
        response = client.post("/datasets/export", json={
            "output_format": "csv",
            "max_records": 3,
            "anonymization_level": "basic",
        })

        rows = list(csv.reader(io.StringIO(response.json["data"])))
        assert rows[0][0] == "id"
        assert len(rows) == 4

    def test_sentiment_range(self, client):
        response = client.post("/datasets/export", json={
            "filters": {"sentiment_range": {"min": 0.0, "max": 0.5}},
        })

        assert response.json["summary"]["total_records"] == 3

    @pytest.mark.parametrize("body", [
        {"output_format": "xml"},
        {"filters": "journal"},
        {"filters": {"app_names": "journal"}},
        {"filters": {"start_date": "last tuesday"}},
        {"filters": {"sentiment_range": {"min": 5}}},
        {"max_records": 0},
    ])
    def test_invalid_requests(self, client, body):
        response = client.post("/datasets/export", json=body)

        assert response.status_code == 400
        assert response.json["error"]["code"] == "INVALID_CONFIGURATION"

    def test_export_not_configured(self):
        handler = AnonymizationHandler(Anonymizer())

        with pytest.raises(InvalidConfigurationError):
            handler.export_dataset({})


class TestParseRecordFilter:
    def test_full_filter(self):
        record_filter = parse_record_filter({
            "app_names": ["journal", "fitness"],
            "start_date": "2024-03-01",
            "end_date": "2024-03-31T23:59:59",
            "sentiment_range": {"min": -0.5},
            "min_records_per_user": 3,
        }, max_records=500)

        assert record_filter.app_names == ("journal", "fitness")
        assert record_filter.start_date == datetime(2024, 3, 1)
        assert record_filter.end_date == datetime(2024, 3, 31, 23, 59, 59)
        assert record_filter.sentiment_min == -0.5
        assert record_filter.sentiment_max is None
        assert record_filter.max_records == 500


class TestBuildHandler:
    @patch("moodlink.services.anonymization_service.handler.get_connection_manager")
    def test_shares_audit_logger(self, mock_manager):
        handler = build_handler()

        assert handler.exporter is not None
        assert handler.exporter.audit_logger is handler.anonymizer.audit_logger
        assert isinstance(handler.anonymizer.audit_logger.repository, AuditRepository)
