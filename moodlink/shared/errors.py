"""Error taxonomy shared by the correlation and anonymization services.

Every error carries a stable machine-readable code so HTTP handlers can
return a structured error body without inspecting messages.
"""
from typing import Any, Dict


class MoodlinkError(Exception):
    """Base exception for caller-visible analysis errors."""

    code = "MOODLINK_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class InsufficientDataError(MoodlinkError):
    """Sample below the minimum; widen the timeframe or add subjects."""

    code = "INSUFFICIENT_DATA"


class InvalidConfigurationError(MoodlinkError):
    """Malformed request; the caller must fix it, retrying will not help."""

    code = "INVALID_CONFIGURATION"


class UnknownAnonymizationLevelError(MoodlinkError, ValueError):
    """Anonymization level outside basic/advanced/differential_privacy."""

    code = "UNKNOWN_ANONYMIZATION_LEVEL"


class AuditPersistenceFailure(MoodlinkError):
    """Audit trail could not be persisted.

    Non-fatal for anonymization: the result stays valid but compliance
    tracking is degraded and must be surfaced to the caller.
    """

    code = "AUDIT_PERSISTENCE_FAILURE"
