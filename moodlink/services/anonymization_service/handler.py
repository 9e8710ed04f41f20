"""Anonymization Service HTTP Handler - PII removal and dataset export API.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- POST /anonymize - Anonymize one text
- POST /anonymize/validate - Lint anonymized text for remaining PII
- POST /datasets/export - Export an anonymized research dataset

Caller errors return {"error": {"code", "message"}} with status 400.
"""
import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from moodlink.shared.database import SentimentRepository, get_connection_manager
from moodlink.shared.errors import InvalidConfigurationError, MoodlinkError
from moodlink.shared.models import RecordFilter
from moodlink.shared.utils import configure_pii_salt_from_env
from moodlink.services.audit_service import AuditLogger, AuditRepository
from .anonymizer import Anonymizer
from .config import AnonymizationConfig
from .dataset_export import ResearchDatasetExporter

logger = logging.getLogger(__name__)

app = Flask(__name__)

OUTPUT_FORMATS = ("json", "csv")


def _parse_datetime(value: Optional[str], name: str) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise InvalidConfigurationError(f"{name} must be an ISO 8601 date")


def parse_record_filter(filters: Dict[str, Any], max_records: int) -> RecordFilter:
    """Build a RecordFilter from the request's filter object."""
    sentiment_range = filters.get("sentiment_range") or {}
    app_names = filters.get("app_names") or []
    if not isinstance(app_names, list):
        raise InvalidConfigurationError("filters.app_names must be a list")

    try:
        return RecordFilter(
            app_names=tuple(app_names),
            start_date=_parse_datetime(filters.get("start_date"), "filters.start_date"),
            end_date=_parse_datetime(filters.get("end_date"), "filters.end_date"),
            sentiment_min=sentiment_range.get("min"),
            sentiment_max=sentiment_range.get("max"),
            min_records_per_user=filters.get("min_records_per_user"),
            max_records=int(max_records),
        )
    except (TypeError, ValueError) as e:
        raise InvalidConfigurationError(f"Invalid filters: {e}")


class AnonymizationHandler:
    """Handler for anonymization and export endpoints."""

    def __init__(
        self,
        anonymizer: Anonymizer,
        exporter: Optional[ResearchDatasetExporter] = None,
    ):
        """Initialize handler with dependencies.

        Args:
            anonymizer: Anonymizer for single texts
            exporter: Dataset exporter (None disables /datasets/export)
        """
        self.anonymizer = anonymizer
        self.exporter = exporter

    def anonymize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        text = data.get("text")
        if not isinstance(text, str):
            raise InvalidConfigurationError("text is required")

        result = self.anonymizer.anonymize_text(text, data.get("level", "basic"))
        return result.to_dict()

    def validate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        original = data.get("original")
        anonymized = data.get("anonymized")
        if not isinstance(original, str) or not isinstance(anonymized, str):
            raise InvalidConfigurationError("original and anonymized are required")

        return self.anonymizer.validate_anonymization(original, anonymized).to_dict()

    def export_dataset(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if self.exporter is None:
            raise InvalidConfigurationError("Dataset export is not configured")

        output_format = data.get("output_format", "json")
        if output_format not in OUTPUT_FORMATS:
            raise InvalidConfigurationError(
                f"output_format must be one of: {', '.join(OUTPUT_FORMATS)}"
            )

        filters = data.get("filters") or {}
        if not isinstance(filters, dict):
            raise InvalidConfigurationError("filters must be an object")

        record_filter = parse_record_filter(filters, data.get("max_records", 10000))
        export = self.exporter.export(
            record_filter,
            level=data.get("anonymization_level", "advanced"),
        )

        logger.info(
            "DATASET_EXPORT_SERVED",
            extra={
                "dataset_id": export.dataset_id,
                "record_count": len(export.records),
                "output_format": output_format,
            }
        )

        body = export.to_dict()
        records = body.pop("records")
        body["output_format"] = output_format
        body["data"] = export.to_csv() if output_format == "csv" else records
        return body


def build_handler(config: Optional[AnonymizationConfig] = None) -> AnonymizationHandler:
    """Wire a handler against PostgreSQL with a shared audit trail."""
    config = config or AnonymizationConfig.from_env()
    connection_manager = get_connection_manager()
    audit_logger = AuditLogger(repository=AuditRepository(connection_manager))
    anonymizer = Anonymizer(config=config, audit_logger=audit_logger)
    exporter = ResearchDatasetExporter(
        source=SentimentRepository(connection_manager),
        anonymizer=anonymizer,
        config=config,
        audit_logger=audit_logger,
    )
    return AnonymizationHandler(anonymizer, exporter)


# Global handler instance
_handler: Optional[AnonymizationHandler] = None


def get_handler() -> AnonymizationHandler:
    """Get or create the global handler instance."""
    global _handler
    if _handler is None:
        _handler = build_handler()
    return _handler


def set_handler(handler: Optional[AnonymizationHandler]) -> None:
    """Set the global handler (for testing)."""
    global _handler
    _handler = handler


def _dispatch(operation: str):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        error = InvalidConfigurationError("Request body must be a JSON object")
        return jsonify({"error": error.to_dict()}), 400

    try:
        result = getattr(get_handler(), operation)(data)
    except MoodlinkError as e:
        logger.warning(
            "ANONYMIZATION_REQUEST_REJECTED",
            extra={"operation": operation, "code": e.code}
        )
        return jsonify({"error": e.to_dict()}), 400

    return jsonify(result)


# Flask routes
@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({"status": "healthy", "service": "anonymization-service"})


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check endpoint; 503 while the database is unreachable."""
    database = get_connection_manager().health_check()
    if not database["healthy"]:
        return jsonify({
            "status": "not_ready",
            "service": "anonymization-service",
            "database": database,
        }), 503
    return jsonify({"status": "ready", "service": "anonymization-service"})


@app.route("/anonymize", methods=["POST"])
def anonymize():
    """Anonymize one text.

    Request body:
        text: Required - free text
        level: Optional - basic, advanced or differential_privacy (default basic)
    """
    return _dispatch("anonymize")


@app.route("/anonymize/validate", methods=["POST"])
def validate():
    """Lint anonymized text against the basic PII rules.

    Request body:
        original: Required - text before anonymization
        anonymized: Required - text after anonymization
    """
    return _dispatch("validate")


@app.route("/datasets/export", methods=["POST"])
def export_dataset():
    """Export an anonymized research dataset.

    Request body:
        filters: app_names, start_date, end_date, sentiment_range
            {min, max}, min_records_per_user
        max_records: Optional - record cap (default 10000)
        anonymization_level: Optional - default advanced
        output_format: Optional - json or csv (default json)
    """
    return _dispatch("export_dataset")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    configure_pii_salt_from_env()
    port = int(os.getenv("PORT", "8080"))
    app.run(host="0.0.0.0", port=port)
