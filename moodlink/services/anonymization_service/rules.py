"""PII detection rules and generalization tables.

The basic rule table is applied in order, so earlier, more specific
rules claim text before broader ones (person_name runs last). Each rule
is independently testable and the table is enumerable for validation.
"""
import re
from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class PiiRule:
    """One PII category: matcher plus replacement token.

    When ``span_group`` is set only that named group is replaced, leaving
    the surrounding context (e.g. an "MRN:" label) intact.
    """
    kind: str
    pattern: re.Pattern
    token: str
    method: str
    span_group: Optional[str] = None


PATTERN_REPLACEMENT = "pattern_replacement"
HEALTHCARE_SPECIFIC = "healthcare_specific"


BASIC_RULES: Tuple[PiiRule, ...] = (
    PiiRule(
        kind="email",
        pattern=re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
        token="EMAIL",
        method=PATTERN_REPLACEMENT,
    ),
    PiiRule(
        kind="credit_card",
        pattern=re.compile(r"\b(?:\d{4}[-\s]?){3}\d{4}\b"),
        token="CREDIT_CARD",
        method=PATTERN_REPLACEMENT,
    ),
    PiiRule(
        kind="ssn",
        pattern=re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b"),
        token="SSN",
        method=PATTERN_REPLACEMENT,
    ),
    PiiRule(
        kind="phone",
        pattern=re.compile(
            r"(?<!\d)(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}(?!\d)"
        ),
        token="PHONE",
        method=PATTERN_REPLACEMENT,
    ),
    PiiRule(
        kind="date_of_birth",
        pattern=re.compile(
            r"\b(?:0?[1-9]|1[0-2])[-/](?:0?[1-9]|[12]\d|3[01])[-/](?:19|20)\d{2}\b"
        ),
        token="DATE_OF_BIRTH",
        method=PATTERN_REPLACEMENT,
    ),
    PiiRule(
        kind="medical_record_number",
        pattern=re.compile(
            r"\b(?i:MRN|Medical Record(?: Number)?|Patient ID)[:#.\s]*"
            r"(?P<span>(?=[A-Z0-9]*\d)[A-Z0-9]{6,})\b"
        ),
        token="MEDICAL_RECORD_NUMBER",
        method=PATTERN_REPLACEMENT,
        span_group="span",
    ),
    PiiRule(
        kind="insurance_number",
        pattern=re.compile(
            r"\b(?i:Insurance|Policy)(?i:\s+(?:Number|No|ID))?[:#.\s]*"
            r"(?P<span>(?=[A-Z0-9]*\d)[A-Z0-9]{8,})\b"
        ),
        token="INSURANCE_NUMBER",
        method=PATTERN_REPLACEMENT,
        span_group="span",
    ),
    PiiRule(
        kind="address",
        pattern=re.compile(
            r"\b\d{1,5}\s+(?:[A-Za-z]+\s+){1,4}?"
            r"(?:street|st|avenue|ave|road|rd|boulevard|blvd|lane|ln|drive|dr|"
            r"court|ct|circle|cir|place|pl)\b",
            re.IGNORECASE,
        ),
        token="ADDRESS",
        method=PATTERN_REPLACEMENT,
    ),
    PiiRule(
        kind="doctor_name",
        pattern=re.compile(r"\bDr\.?\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?"),
        token="DOCTOR_NAME",
        method=HEALTHCARE_SPECIFIC,
    ),
    PiiRule(
        kind="healthcare_facility",
        pattern=re.compile(
            r"\b(?:[A-Z][a-z]+\s+){1,3}(?:Hospital|Medical Center|Clinic|Health System)\b"
        ),
        token="HEALTHCARE_FACILITY",
        method=HEALTHCARE_SPECIFIC,
    ),
    PiiRule(
        kind="medication",
        pattern=re.compile(
            r"(?:(?<=\d)|\b)(?i:mg|mcg|ml|tablets?|capsules?|doses?)\s+of\s+"
            r"(?P<span>[A-Z][a-z]+)"
        ),
        token="MEDICATION",
        method=HEALTHCARE_SPECIFIC,
        span_group="span",
    ),
    PiiRule(
        kind="medical_procedure",
        pattern=re.compile(
            r"\b(?i:surgery|operation|procedure|treatment|therapy)\s+(?:on|for|of)\s+"
            r"[a-z]+(?:\s+[a-z]+){0,2}"
        ),
        token="MEDICAL_PROCEDURE",
        method=HEALTHCARE_SPECIFIC,
    ),
    PiiRule(
        kind="person_name",
        pattern=re.compile(r"\b[A-Z][a-z]+\s[A-Z][a-z]+\b"),
        token="NAME",
        method=PATTERN_REPLACEMENT,
    ),
)


# Advanced level: k-anonymity age buckets
AGE_PATTERN = re.compile(r"\b(\d{1,3})\s*(?:years?|yrs?)[\s-]*old\b", re.IGNORECASE)

# Upper bounds (exclusive) of each age bucket; the last bucket is open
AGE_BUCKETS: Tuple[Tuple[int, str], ...] = (
    (18, "under 18"),
    (30, "18-29"),
    (40, "30-39"),
    (50, "40-49"),
    (60, "50-59"),
    (70, "60-69"),
)
OLDEST_AGE_BUCKET = "70+"


def age_bucket(age: int) -> str:
    """Generalize an age to its bucket label."""
    for upper, label in AGE_BUCKETS:
        if age < upper:
            return label
    return OLDEST_AGE_BUCKET


# Advanced level: place + clock time is a quasi-identifier. The place may
# already be a replacement token from the basic rules.
LOCATION_TIME_PATTERN = re.compile(
    r"\b(?i:at|in|near)\s+"
    r"(?:\[[A-Z_0-9]+\]|[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)"
    r"\s+(?i:on|at)\s+\d{1,2}:\d{2}(?i:\s*[ap]m)?"
)
LOCATION_TIME_TOKEN = "[LOCATION_TIME_SUPPRESSED]"

# Advanced level: specific diagnoses to broader condition categories
DIAGNOSIS_GENERALIZATIONS: Tuple[Tuple[str, str], ...] = (
    ("diabetes", "metabolic condition"),
    ("hypertension", "cardiovascular condition"),
    ("bipolar disorder", "mental health condition"),
    ("depression", "mental health condition"),
    ("anxiety", "mental health condition"),
    ("ptsd", "mental health condition"),
    ("cancer", "oncological condition"),
    ("arthritis", "musculoskeletal condition"),
    ("asthma", "respiratory condition"),
    ("epilepsy", "neurological condition"),
    ("migraine", "neurological condition"),
)

DIAGNOSIS_PATTERNS: Tuple[Tuple[re.Pattern, str], ...] = tuple(
    (re.compile(r"\b" + re.escape(term) + r"s?\b", re.IGNORECASE), general)
    for term, general in DIAGNOSIS_GENERALIZATIONS
)


# Differential privacy level: dates truncated to month granularity
MONTH_DATE_PATTERN = re.compile(
    r"\b(January|February|March|April|May|June|July|August|September|October|"
    r"November|December)\s+\d{1,2}(?:st|nd|rd|th)?,?\s+(\d{4})\b",
    re.IGNORECASE,
)
ISO_DATE_PATTERN = re.compile(r"\b(\d{4})-(\d{2})-\d{2}\b")

# Differential privacy level: numeric health measurements receive noise
MEASUREMENT_PATTERN = re.compile(
    r"\b(\d+(?:\.\d+)?)\s*(mg|mcg|ml|pounds?|lbs?|kg|degrees?|bpm)\b",
    re.IGNORECASE,
)
