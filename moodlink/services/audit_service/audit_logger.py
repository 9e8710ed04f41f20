"""Audit logger - hash-chained audit trail for privacy operations.

Anonymization runs, dataset exports and correlation analyses emit audit
events. Entries never contain raw PII: identifiers are hashed and
captured spans follow the configured audit span policy.
"""
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from moodlink.shared.database import RepositoryError
from moodlink.shared.errors import AuditPersistenceFailure

if TYPE_CHECKING:
    from .audit_repository import AuditRepository

logger = logging.getLogger(__name__)

GENESIS_HASH = "genesis"


class AuditAction(Enum):
    """Actions that require audit logging."""
    ANONYMIZE_TEXT = "anonymize_text"
    EXPORT_DATASET = "export_dataset"
    CORRELATION_ANALYSIS = "correlation_analysis"


class AuditEntity(Enum):
    """Entity types for audit logging."""
    TEXT = "text"
    DATASET = "dataset"
    ANALYSIS = "analysis"


@dataclass(frozen=True)
class AuditEntry:
    """Immutable audit log entry chained to its predecessor."""
    entry_id: str
    timestamp: datetime
    action: AuditAction
    entity_type: AuditEntity
    entity_id: str
    actor_id: str   # Hashed if it identifies a person
    details: Dict[str, Any] = field(default_factory=dict)
    previous_hash: str = ""
    entry_hash: str = ""

    def compute_hash(self) -> str:
        """Compute SHA-256 hash of entry for verification.

        Returns:
            Hex-encoded hash string
        """
        content = {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "details": self.details,
            "previous_hash": self.previous_hash,
        }
        content_str = json.dumps(content, sort_keys=True, default=str)
        return hashlib.sha256(content_str.encode()).hexdigest()


class AuditLogger:
    """Logs audit entries and maintains the hash chain.

    With a repository wired, entries go to durable storage only and the
    logger keeps just the chain head. The head is resumed from the newest
    stored entry on first use. Without a repository, entries are kept in
    memory for development and tests.

    A storage failure raises AuditPersistenceFailure and leaves the chain
    unchanged.
    """

    def __init__(self, repository: Optional["AuditRepository"] = None):
        """Initialize audit logger.

        Args:
            repository: Durable append-only store (optional)
        """
        self.repository = repository
        self._entries: List[AuditEntry] = []
        self._last_hash: Optional[str] = None if repository is not None else GENESIS_HASH

        logger.info(
            "AUDIT_LOGGER_INITIALIZED",
            extra={"persistent": repository is not None}
        )

    def log(
        self,
        action: AuditAction,
        entity_type: AuditEntity,
        entity_id: str,
        actor_id: str = "system",
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        """Log an audit entry.

        Args:
            action: Action being audited
            entity_type: Type of entity being acted upon
            entity_id: Identifier of entity (hashed if PII)
            actor_id: Caller performing the action (hashed if PII)
            details: Additional context, never raw PII

        Returns:
            Created AuditEntry

        Raises:
            AuditPersistenceFailure: If the repository rejects the entry
                or its newest stored entry fails verification
        """
        entry = AuditEntry(
            entry_id=f"audit_{uuid.uuid4().hex[:16]}",
            timestamp=datetime.utcnow(),
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            details=details or {},
            previous_hash=self._chain_head(),
        )
        entry = replace(entry, entry_hash=entry.compute_hash())

        if self.repository is not None:
            try:
                self.repository.append(entry)
            except RepositoryError as e:
                logger.error(
                    "AUDIT_ENTRY_PERSIST_FAILED",
                    extra={
                        "entry_id": entry.entry_id,
                        "action": action.value,
                        "error": str(e),
                    }
                )
                raise AuditPersistenceFailure(
                    f"Audit entry for {action.value} could not be persisted: {e}"
                ) from e
        else:
            self._entries.append(entry)

        self._last_hash = entry.entry_hash

        logger.info(
            "AUDIT_ENTRY_CREATED",
            extra={
                "entry_id": entry.entry_id,
                "action": action.value,
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "entry_hash": entry.entry_hash[:16],  # Truncated for logs
            }
        )

        return entry

    def _chain_head(self) -> str:
        if self._last_hash is None:
            self._last_hash = self._resume_chain()
        return self._last_hash

    def _resume_chain(self) -> str:
        """Continue the chain from the newest stored entry."""
        try:
            latest = self.repository.latest_entry()
        except RepositoryError as e:
            logger.error("AUDIT_CHAIN_RESUME_FAILED", extra={"error": str(e)})
            raise AuditPersistenceFailure(f"Audit chain head could not be read: {e}") from e

        if latest is None:
            return GENESIS_HASH

        computed = latest.compute_hash()
        if computed != latest.entry_hash:
            logger.critical(
                "AUDIT_ENTRY_HASH_MISMATCH",
                extra={
                    "entry_id": latest.entry_id,
                    "computed": computed[:16],
                    "stored": latest.entry_hash[:16],
                }
            )
            raise AuditPersistenceFailure(
                f"Stored audit entry {latest.entry_id} failed hash verification"
            )

        logger.info("AUDIT_CHAIN_RESUMED", extra={"entry_id": latest.entry_id})
        return latest.entry_hash

    @property
    def entries(self) -> List[AuditEntry]:
        """In-memory entries; always empty when a repository is wired."""
        return list(self._entries)
