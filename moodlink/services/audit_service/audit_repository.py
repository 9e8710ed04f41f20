"""Audit repository: append-only PostgreSQL storage for audit entries.

The audit_entries table grants INSERT and SELECT only; entries are
never updated or deleted.
"""
import json
import logging
from datetime import timezone
from typing import Optional

from moodlink.shared.database import BaseRepository, ConnectionManager
from .audit_logger import AuditAction, AuditEntity, AuditEntry

logger = logging.getLogger(__name__)


class AuditRepository(BaseRepository[AuditEntry]):
    """Repository for immutable audit entries."""

    INSERT_QUERY = """
        INSERT INTO audit_entries (
            entry_id, timestamp, action, entity_type, entity_id,
            actor_id, details, previous_hash, entry_hash
        ) VALUES (
            %s, %s, %s, %s, %s, %s, %s, %s, %s
        )
    """

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "audit_entries")

    def append(self, entry: AuditEntry) -> None:
        """Append audit entry to immutable storage.

        Raises:
            RepositoryError: If storage fails
        """
        params = (
            entry.entry_id,
            entry.timestamp,
            entry.action.value,
            entry.entity_type.value,
            entry.entity_id,
            entry.actor_id,
            json.dumps(entry.details, default=str),
            entry.previous_hash,
            entry.entry_hash,
        )
        self._execute(self.INSERT_QUERY, params)

        logger.info(
            "AUDIT_ENTRY_STORED_POSTGRES",
            extra={
                "entry_id": entry.entry_id,
                "action": entry.action.value,
            }
        )

    def latest_entry(self) -> Optional[AuditEntry]:
        """Fetch the newest stored entry, the head of the chain."""
        query = (
            "SELECT entry_id, timestamp, action, entity_type, entity_id, "
            "actor_id, details, previous_hash, entry_hash "
            "FROM audit_entries ORDER BY timestamp DESC LIMIT 1"
        )
        entries = self._fetch_all(query, [])
        return entries[0] if entries else None

    def _row_to_entity(self, row: tuple) -> AuditEntry:
        """Convert PostgreSQL row to AuditEntry.

        Timestamps are returned as naive UTC, the form they were hashed in.
        """
        details = row[6]
        if isinstance(details, str):
            details = json.loads(details)

        timestamp = row[1]
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone(timezone.utc).replace(tzinfo=None)

        return AuditEntry(
            entry_id=row[0],
            timestamp=timestamp,
            action=AuditAction(row[2]),
            entity_type=AuditEntity(row[3]),
            entity_id=row[4],
            actor_id=row[5],
            details=details or {},
            previous_hash=row[7],
            entry_hash=row[8],
        )
