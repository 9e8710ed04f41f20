"""Anonymization domain models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class AnonymizationLevel(Enum):
    """Cumulative anonymization strictness.

    Each level runs every step of the previous level first.
    """
    BASIC = "basic"
    ADVANCED = "advanced"
    DIFFERENTIAL_PRIVACY = "differential_privacy"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def includes(self, other: "AnonymizationLevel") -> bool:
        """Check if this level runs the steps of ``other``."""
        return self.rank >= other.rank


_LEVEL_RANK = {
    AnonymizationLevel.BASIC: 1,
    AnonymizationLevel.ADVANCED: 2,
    AnonymizationLevel.DIFFERENTIAL_PRIVACY: 3,
}


class AuditSpanPolicy(Enum):
    """How the original matched span is retained in audit entries."""
    HASH = "hash"        # Salted hash via hash_pii (default)
    OMIT = "omit"        # Nothing retained
    LITERAL = "literal"  # Raw span; audit store must match raw-data protection


@dataclass(frozen=True)
class AnonymizationTransformation:
    """Append-only audit record of one substitution."""
    kind: str
    original_span: Optional[str]
    replacement: str
    method: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "original_span": self.original_span,
            "replacement": self.replacement,
            "method": self.method,
        }


@dataclass
class AnonymizationResult:
    """Anonymized text plus its full transformation audit trail."""
    text: str
    level: AnonymizationLevel
    transformations: List[AnonymizationTransformation] = field(default_factory=list)
    compliance_warnings: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "anonymized_text": self.text,
            "level": self.level.value,
            "transformations": [t.to_dict() for t in self.transformations],
            "compliance_warnings": self.compliance_warnings,
        }
