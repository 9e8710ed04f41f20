"""Moodlink research services.

- Correlation Service: correlation analysis over daily sentiment aggregates
- Anonymization Service: PII removal and research dataset export
- Audit Service: hash-chained audit trail of privacy operations

The correlation and anonymization services never call each other; the
HTTP handlers compose them.
"""
