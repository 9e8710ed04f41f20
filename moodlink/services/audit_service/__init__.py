"""Audit Service: hash-chained audit trail for privacy operations.

This service provides:
- Append-only logging of anonymization, export and analysis runs
- A hash chain resumed from the newest stored entry
- Durable PostgreSQL storage via AuditRepository

A storage failure surfaces as AuditPersistenceFailure so callers can
report degraded compliance tracking instead of dropping it silently.
"""

from .audit_logger import AuditLogger, AuditAction, AuditEntity, AuditEntry
from .audit_repository import AuditRepository

__all__ = [
    "AuditLogger",
    "AuditAction",
    "AuditEntity",
    "AuditEntry",
    "AuditRepository",
]
