"""Anonymization Service configuration."""
import os
from dataclasses import dataclass

from moodlink.shared.models import AuditSpanPolicy


@dataclass(frozen=True)
class AnonymizationConfig:
    """Configuration for anonymization and dataset export."""

    # Differential privacy: uniform noise bound as a fraction of the value
    noise_fraction: float = 0.1

    # What audit entries keep of each matched span
    audit_span_policy: AuditSpanPolicy = AuditSpanPolicy.HASH

    # [NAME_1], [NAME_2]... per distinct literal instead of [NAME]
    numbered_tokens: bool = False

    # Records anonymized between progress reports and cancel checks
    export_chunk_size: int = 1000

    def __post_init__(self):
        if not 0.0 <= self.noise_fraction <= 1.0:
            raise ValueError(f"noise_fraction must be 0.0-1.0, got {self.noise_fraction}")
        if self.export_chunk_size < 1:
            raise ValueError(
                f"export_chunk_size must be positive, got {self.export_chunk_size}"
            )

    @classmethod
    def from_env(cls) -> "AnonymizationConfig":
        """Create config from environment variables.

        Environment variables:
            ANONYMIZATION_NOISE_FRACTION: Noise bound (default 0.1)
            ANONYMIZATION_AUDIT_SPAN_POLICY: hash, omit or literal (default hash)
            ANONYMIZATION_NUMBERED_TOKENS: true to number tokens (default false)
            ANONYMIZATION_EXPORT_CHUNK_SIZE: Export chunk size (default 1000)
        """
        return cls(
            noise_fraction=float(os.getenv("ANONYMIZATION_NOISE_FRACTION", "0.1")),
            audit_span_policy=AuditSpanPolicy(
                os.getenv("ANONYMIZATION_AUDIT_SPAN_POLICY", "hash").lower()
            ),
            numbered_tokens=os.getenv(
                "ANONYMIZATION_NUMBERED_TOKENS", "false"
            ).lower() in ("1", "true", "yes"),
            export_chunk_size=int(os.getenv("ANONYMIZATION_EXPORT_CHUNK_SIZE", "1000")),
        )
