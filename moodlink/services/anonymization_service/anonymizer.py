"""Anonymizer - PII removal at three cumulative strictness levels.

Levels:
- basic: ordered PII rule table, category tokens via a job-scoped
  pseudonym map
- advanced: basic + age buckets, location/time suppression and
  diagnosis generalization
- differential_privacy: advanced + month-level dates and bounded
  uniform noise on health measurements

The noise is informal: it is not a calibrated (epsilon, delta)
differential privacy guarantee.
"""
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from moodlink.shared.errors import AuditPersistenceFailure, UnknownAnonymizationLevelError
from moodlink.shared.models import (
    AnonymizationLevel,
    AnonymizationResult,
    AnonymizationTransformation,
    AuditSpanPolicy,
)
from moodlink.shared.utils import hash_pii
from moodlink.services.audit_service import AuditAction, AuditEntity, AuditLogger
from .config import AnonymizationConfig
from .pseudonym import PseudonymMap
from .rules import (
    AGE_PATTERN,
    BASIC_RULES,
    DIAGNOSIS_PATTERNS,
    ISO_DATE_PATTERN,
    LOCATION_TIME_PATTERN,
    LOCATION_TIME_TOKEN,
    MEASUREMENT_PATTERN,
    MONTH_DATE_PATTERN,
    PiiRule,
    age_bucket,
)

logger = logging.getLogger(__name__)

VALIDATION_DISCLAIMER = (
    "Best-effort pattern linter over the basic PII rules. A passing report "
    "is not a de-identification certification."
)


def parse_level(level: Union[str, AnonymizationLevel]) -> AnonymizationLevel:
    """Resolve a level name.

    Raises:
        UnknownAnonymizationLevelError: For anything but the three levels
    """
    if isinstance(level, AnonymizationLevel):
        return level
    try:
        return AnonymizationLevel(level)
    except ValueError:
        raise UnknownAnonymizationLevelError(f"Unknown anonymization level: {level}")


@dataclass
class ValidationReport:
    """Result of re-scanning anonymized text with the basic rules."""
    is_valid: bool
    findings: List[Dict[str, Any]] = field(default_factory=list)
    score: float = 1.0
    original_findings: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "findings": self.findings,
            "score": round(self.score, 4),
            "original_findings": self.original_findings,
            "disclaimer": VALIDATION_DISCLAIMER,
        }


class Anonymizer:
    """Removes PII from free text.

    Holds no per-job state: every call works on its own transformation
    list and pseudonym map unless the caller passes a map to share
    across one job (e.g. a dataset export).
    """

    def __init__(
        self,
        config: Optional[AnonymizationConfig] = None,
        audit_logger: Optional[AuditLogger] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize anonymizer.

        Args:
            config: Anonymization configuration
            audit_logger: Audit trail for anonymization runs (optional)
            rng: Noise source (injected for reproducible tests)
        """
        self.config = config or AnonymizationConfig()
        self.audit_logger = audit_logger
        self.rng = rng or random.Random()

        logger.info(
            "ANONYMIZER_INITIALIZED",
            extra={
                "rule_count": len(BASIC_RULES),
                "audit_span_policy": self.config.audit_span_policy.value,
                "numbered_tokens": self.config.numbered_tokens,
            }
        )

    def anonymize_text(
        self,
        text: str,
        level: Union[str, AnonymizationLevel] = AnonymizationLevel.BASIC,
        pseudonyms: Optional[PseudonymMap] = None,
        actor_id: str = "system",
    ) -> AnonymizationResult:
        """Anonymize text and record the run in the audit trail.

        A failed audit write does not invalidate the result; it is
        returned with a compliance warning instead.

        Args:
            text: Free text that may contain PII
            level: basic, advanced or differential_privacy
            pseudonyms: Job-scoped map (a fresh one is used if omitted)
            actor_id: Hashed caller identifier for the audit trail

        Returns:
            AnonymizationResult with text and transformations

        Raises:
            UnknownAnonymizationLevelError: If level is not recognized
        """
        result = self.apply(text, level, pseudonyms)

        if self.audit_logger is not None:
            try:
                self.audit_logger.log(
                    action=AuditAction.ANONYMIZE_TEXT,
                    entity_type=AuditEntity.TEXT,
                    entity_id=hash_pii(text),
                    actor_id=actor_id,
                    details={
                        "level": result.level.value,
                        "transformation_count": len(result.transformations),
                        "transformations": [t.to_dict() for t in result.transformations],
                        "audit_span_policy": self.config.audit_span_policy.value,
                    },
                )
            except AuditPersistenceFailure as e:
                logger.warning(
                    "ANONYMIZATION_AUDIT_DEGRADED",
                    extra={"level": result.level.value, "error": str(e)}
                )
                result.compliance_warnings.append(e.to_dict())

        return result

    def apply(
        self,
        text: str,
        level: Union[str, AnonymizationLevel] = AnonymizationLevel.BASIC,
        pseudonyms: Optional[PseudonymMap] = None,
    ) -> AnonymizationResult:
        """Run the anonymization pipeline without writing an audit entry.

        Raises:
            UnknownAnonymizationLevelError: If level is not recognized
        """
        parsed = parse_level(level)
        if pseudonyms is None:
            pseudonyms = PseudonymMap(numbered=self.config.numbered_tokens)

        transformations: List[AnonymizationTransformation] = []

        anonymized = self._apply_basic(text, pseudonyms, transformations)
        if parsed.includes(AnonymizationLevel.ADVANCED):
            anonymized = self._apply_advanced(anonymized, transformations)
        if parsed.includes(AnonymizationLevel.DIFFERENTIAL_PRIVACY):
            anonymized = self._apply_differential_privacy(anonymized, transformations)

        logger.debug(
            "TEXT_ANONYMIZED",
            extra={
                "level": parsed.value,
                "transformation_count": len(transformations),
            }
        )

        return AnonymizationResult(
            text=anonymized,
            level=parsed,
            transformations=transformations,
        )

    def validate_anonymization(self, original: str, anonymized: str) -> ValidationReport:
        """Re-scan anonymized text with the basic rule table.

        One finding per rule kind that still matches. Findings carry
        counts only so the report never repeats leaked PII.
        """
        findings = [
            {"kind": rule.kind, "matches": count}
            for rule, count in self._scan(anonymized)
        ]
        score = max(0.0, 1.0 - 0.1 * len(findings))

        report = ValidationReport(
            is_valid=not findings,
            findings=findings,
            score=score,
            original_findings=len(self._scan(original)),
        )

        logger.info(
            "ANONYMIZATION_VALIDATED",
            extra={
                "is_valid": report.is_valid,
                "finding_count": len(findings),
                "score": report.score,
            }
        )
        return report

    def _scan(self, text: str) -> List[tuple]:
        """Rules that match ``text``, with their match counts."""
        hits = []
        for rule in BASIC_RULES:
            count = sum(1 for _ in rule.pattern.finditer(text))
            if count:
                hits.append((rule, count))
        return hits

    def _record(
        self,
        transformations: List[AnonymizationTransformation],
        kind: str,
        original: str,
        replacement: str,
        method: str,
    ) -> None:
        transformations.append(AnonymizationTransformation(
            kind=kind,
            original_span=self._audit_span(original),
            replacement=replacement,
            method=method,
        ))

    def _audit_span(self, span: str) -> Optional[str]:
        """Apply the configured audit span policy to a matched span."""
        policy = self.config.audit_span_policy
        if policy == AuditSpanPolicy.OMIT:
            return None
        if policy == AuditSpanPolicy.LITERAL:
            return span
        return hash_pii(span)

    def _apply_basic(
        self,
        text: str,
        pseudonyms: PseudonymMap,
        transformations: List[AnonymizationTransformation],
    ) -> str:
        for rule in BASIC_RULES:
            text = self._apply_rule(rule, text, pseudonyms, transformations)
        return text

    def _apply_rule(
        self,
        rule: PiiRule,
        text: str,
        pseudonyms: PseudonymMap,
        transformations: List[AnonymizationTransformation],
    ) -> str:
        def replace(match) -> str:
            whole = match.group(0)
            if rule.span_group is None:
                literal = whole
                prefix = suffix = ""
            else:
                start = match.start(rule.span_group) - match.start()
                end = match.end(rule.span_group) - match.start()
                literal = whole[start:end]
                prefix, suffix = whole[:start], whole[end:]

            token = pseudonyms.token_for(literal, rule.token)
            self._record(transformations, rule.kind, literal, token, rule.method)
            return prefix + token + suffix

        return rule.pattern.sub(replace, text)

    def _apply_advanced(
        self,
        text: str,
        transformations: List[AnonymizationTransformation],
    ) -> str:
        def generalize_age(match) -> str:
            replacement = f"{age_bucket(int(match.group(1)))} years old"
            self._record(
                transformations, "age_generalization", match.group(0), replacement, "k_anonymity"
            )
            return replacement

        def suppress(match) -> str:
            self._record(
                transformations,
                "location_time_suppression",
                match.group(0),
                LOCATION_TIME_TOKEN,
                "quasi_identifier_suppression",
            )
            return LOCATION_TIME_TOKEN

        text = AGE_PATTERN.sub(generalize_age, text)
        text = LOCATION_TIME_PATTERN.sub(suppress, text)

        for pattern, general in DIAGNOSIS_PATTERNS:
            def generalize(match, general=general) -> str:
                self._record(
                    transformations,
                    "condition_generalization",
                    match.group(0),
                    general,
                    "medical_generalization",
                )
                return general

            text = pattern.sub(generalize, text)

        return text

    def _apply_differential_privacy(
        self,
        text: str,
        transformations: List[AnonymizationTransformation],
    ) -> str:
        def truncate_month_date(match) -> str:
            replacement = f"{match.group(1)} {match.group(2)}"
            self._record(
                transformations, "date_truncation", match.group(0), replacement, "differential_privacy"
            )
            return replacement

        def truncate_iso_date(match) -> str:
            replacement = f"{match.group(1)}-{match.group(2)}"
            self._record(
                transformations, "date_truncation", match.group(0), replacement, "differential_privacy"
            )
            return replacement

        def add_noise(match) -> str:
            value = float(match.group(1))
            bound = self.config.noise_fraction * value
            noisy = max(0.0, value + self.rng.uniform(-bound, bound))
            replacement = f"{noisy:.1f} {match.group(2)}"
            self._record(
                transformations, "numeric_noise", match.group(0), replacement, "differential_privacy"
            )
            return replacement

        text = MONTH_DATE_PATTERN.sub(truncate_month_date, text)
        text = ISO_DATE_PATTERN.sub(truncate_iso_date, text)
        text = MEASUREMENT_PATTERN.sub(add_noise, text)
        return text
