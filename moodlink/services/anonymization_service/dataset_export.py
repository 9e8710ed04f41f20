"""Research dataset export.

Exports anonymized sentiment records in bounded chunks. All chunks of
one export run share a single pseudonym map, so a literal keeps its
token across the whole dataset. A checkpoint after every chunk lets an
interrupted or cancelled export resume without redoing finished work.

Output records never carry user identifiers or raw text.
"""
import csv
import io
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Union

from moodlink.shared.errors import AuditPersistenceFailure
from moodlink.shared.models import AnonymizationLevel, RecordFilter, SentimentRecord
from moodlink.services.audit_service import AuditAction, AuditEntity, AuditLogger
from .anonymizer import Anonymizer, parse_level
from .config import AnonymizationConfig
from .pseudonym import PseudonymMap

logger = logging.getLogger(__name__)

# Fixed field order for every output format
EXPORT_FIELDS = (
    "id",
    "app_name",
    "sentiment_score",
    "sentiment_category",
    "anonymized_content",
    "timestamp",
)


@dataclass(frozen=True)
class ExportRecord:
    """One anonymized record of a research dataset."""
    id: str
    app_name: str
    sentiment_score: float
    sentiment_category: str
    anonymized_content: Optional[str]
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in EXPORT_FIELDS}


@dataclass
class ExportCheckpoint:
    """Resumable export state after the last completed chunk.

    ``upper_bound`` pins the newest record timestamp the first run saw;
    records written after it belong to a later export. ``last_timestamp``
    and ``last_ids`` mark the completed position in the oldest-first
    record order. The pseudonym map holds raw literals, so checkpoints
    must be stored with the same protection as the raw records.
    """
    dataset_id: str
    pseudonyms: PseudonymMap
    upper_bound: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None
    last_ids: FrozenSet[str] = frozenset()
    records: List[ExportRecord] = field(default_factory=list)

    def is_pending(self, record: SentimentRecord) -> bool:
        """Check whether a record comes after the completed position."""
        if self.last_timestamp is None:
            return True
        if record.timestamp != self.last_timestamp:
            return record.timestamp > self.last_timestamp
        return record.record_id not in self.last_ids

    def advance(
        self,
        chunk: List[SentimentRecord],
        exported: List[ExportRecord],
    ) -> "ExportCheckpoint":
        """Checkpoint after ``chunk`` completed as ``exported``."""
        last_timestamp = chunk[-1].timestamp
        last_ids = {r.record_id for r in chunk if r.timestamp == last_timestamp}
        if last_timestamp == self.last_timestamp:
            last_ids |= self.last_ids

        return ExportCheckpoint(
            dataset_id=self.dataset_id,
            pseudonyms=self.pseudonyms,
            upper_bound=self.upper_bound,
            last_timestamp=last_timestamp,
            last_ids=frozenset(last_ids),
            records=self.records + exported,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dataset_id": self.dataset_id,
            "pseudonyms": self.pseudonyms.snapshot(),
            "upper_bound": _isoformat(self.upper_bound),
            "last_timestamp": _isoformat(self.last_timestamp),
            "last_ids": sorted(self.last_ids),
            "records": [r.to_dict() for r in self.records],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExportCheckpoint":
        return cls(
            dataset_id=data["dataset_id"],
            pseudonyms=PseudonymMap.restore(data.get("pseudonyms")),
            upper_bound=_parse_isoformat(data.get("upper_bound")),
            last_timestamp=_parse_isoformat(data.get("last_timestamp")),
            last_ids=frozenset(data.get("last_ids", [])),
            records=[ExportRecord(**r) for r in data.get("records", [])],
        )


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_isoformat(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


@dataclass
class DatasetExport:
    """Completed (or cancelled) export with its summary."""
    dataset_id: str
    level: AnonymizationLevel
    records: List[ExportRecord]
    total_available: int
    cancelled: bool = False
    checkpoint: Optional[ExportCheckpoint] = None
    compliance_warnings: List[Dict[str, str]] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, Any]:
        """Record count, app and sentiment distributions, date range."""
        timestamps = sorted(r.timestamp for r in self.records)
        return {
            "total_records": len(self.records),
            "total_available": self.total_available,
            "app_distribution": dict(Counter(r.app_name for r in self.records)),
            "sentiment_distribution": dict(
                Counter(r.sentiment_category for r in self.records)
            ),
            "date_range": {
                "start": timestamps[0],
                "end": timestamps[-1],
            } if timestamps else None,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dataset_id": self.dataset_id,
            "anonymization_level": self.level.value,
            "cancelled": self.cancelled,
            "summary": self.summary,
            "records": [r.to_dict() for r in self.records],
            "compliance_warnings": self.compliance_warnings,
        }

    def to_csv(self) -> str:
        """Flat rendering with the fixed export field order."""
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=EXPORT_FIELDS)
        writer.writeheader()
        for record in self.records:
            writer.writerow(record.to_dict())
        return buffer.getvalue()


class ResearchDatasetExporter:
    """Builds anonymized research datasets from the record store.

    Resuming relies on the record source returning records oldest first,
    with the record id breaking timestamp ties.
    """

    def __init__(
        self,
        source: Any,
        anonymizer: Optional[Anonymizer] = None,
        config: Optional[AnonymizationConfig] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """Initialize exporter.

        Args:
            source: Object with fetch_records(record_filter)
            anonymizer: Anonymizer used for record text
            config: Chunk size and pseudonym settings
            audit_logger: Audit trail for completed exports (optional)
        """
        self.source = source
        self.config = config or AnonymizationConfig()
        self.anonymizer = anonymizer or Anonymizer(config=self.config)
        self.audit_logger = audit_logger

    def export(
        self,
        record_filter: RecordFilter,
        level: Union[str, AnonymizationLevel] = AnonymizationLevel.ADVANCED,
        should_cancel: Optional[Callable[[], bool]] = None,
        checkpoint: Optional[ExportCheckpoint] = None,
        actor_id: str = "system",
    ) -> DatasetExport:
        """Export records matching ``record_filter``.

        Args:
            record_filter: Which records to export
            level: Anonymization level for record text
            should_cancel: Checked before each chunk; True stops the export
            checkpoint: Resume from a previous run's checkpoint
            actor_id: Hashed caller identifier for the audit trail

        Returns:
            DatasetExport; if cancelled, holds the completed prefix

        Raises:
            UnknownAnonymizationLevelError: If level is not recognized
        """
        parsed = parse_level(level)

        if checkpoint is None:
            checkpoint = ExportCheckpoint(
                dataset_id=str(uuid.uuid4()),
                pseudonyms=PseudonymMap(numbered=self.config.numbered_tokens),
            )
        dataset_id = checkpoint.dataset_id

        records = self.source.fetch_records(self._pinned_filter(record_filter, checkpoint))
        if checkpoint.upper_bound is None and records:
            checkpoint = replace(checkpoint, upper_bound=max(r.timestamp for r in records))

        pending = [r for r in records if checkpoint.is_pending(r)]
        chunk_size = self.config.export_chunk_size
        position = 0
        cancelled = False

        logger.info(
            "DATASET_EXPORT_STARTED",
            extra={
                "dataset_id": dataset_id,
                "level": parsed.value,
                "total_records": len(records),
                "resumed_records": len(checkpoint.records),
                "chunk_size": chunk_size,
            }
        )

        while position < len(pending):
            if should_cancel is not None and should_cancel():
                cancelled = True
                logger.warning(
                    "DATASET_EXPORT_CANCELLED",
                    extra={
                        "dataset_id": dataset_id,
                        "processed": len(checkpoint.records),
                        "total_records": len(records),
                    }
                )
                break

            chunk = pending[position:position + chunk_size]
            exported = [self._export_record(r, parsed, checkpoint.pseudonyms) for r in chunk]
            checkpoint = checkpoint.advance(chunk, exported)
            position += len(chunk)

            logger.info(
                "DATASET_EXPORT_PROGRESS",
                extra={
                    "dataset_id": dataset_id,
                    "processed": len(checkpoint.records),
                    "total_records": len(records),
                }
            )

        completed = checkpoint.records
        export = DatasetExport(
            dataset_id=dataset_id,
            level=parsed,
            records=completed,
            total_available=len(records),
            cancelled=cancelled,
            checkpoint=checkpoint,
        )

        self._audit(export, actor_id)

        logger.info(
            "DATASET_EXPORT_FINISHED",
            extra={
                "dataset_id": dataset_id,
                "record_count": len(completed),
                "cancelled": cancelled,
            }
        )
        return export

    @staticmethod
    def _pinned_filter(
        record_filter: RecordFilter,
        checkpoint: ExportCheckpoint,
    ) -> RecordFilter:
        """Cap the filter at the checkpoint's upper bound, if one is set.

        The bound is the newest record the first run fetched, so it never
        lies past the filter's own end_date.
        """
        if checkpoint.upper_bound is None:
            return record_filter
        return replace(record_filter, end_date=checkpoint.upper_bound)

    def _export_record(
        self,
        record: SentimentRecord,
        level: AnonymizationLevel,
        pseudonyms: PseudonymMap,
    ) -> ExportRecord:
        content = None
        if record.text_content:
            content = self.anonymizer.apply(record.text_content, level, pseudonyms).text

        return ExportRecord(
            id=str(uuid.uuid4()),
            app_name=record.app_name,
            sentiment_score=record.sentiment_score,
            sentiment_category=record.sentiment_category,
            anonymized_content=content,
            timestamp=record.timestamp.isoformat(),
        )

    def _audit(self, export: DatasetExport, actor_id: str) -> None:
        if self.audit_logger is None:
            return

        try:
            self.audit_logger.log(
                action=AuditAction.EXPORT_DATASET,
                entity_type=AuditEntity.DATASET,
                entity_id=export.dataset_id,
                actor_id=actor_id,
                details={
                    "level": export.level.value,
                    "record_count": len(export.records),
                    "total_available": export.total_available,
                    "cancelled": export.cancelled,
                },
            )
        except AuditPersistenceFailure as e:
            logger.warning(
                "DATASET_EXPORT_AUDIT_DEGRADED",
                extra={"dataset_id": export.dataset_id, "error": str(e)}
            )
            export.compliance_warnings.append(e.to_dict())
