"""PII handling utilities: zero raw identifiers in logs or audit records.

User identifiers and any PII span captured for audit purposes must be
hashed before logging or storage in developer-accessible systems.
"""
import hashlib
import hmac
import json
import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)


# Salt is loaded from AWS Secrets Manager or PII_HASH_SALT at startup
_PII_SALT: Optional[str] = None

MIN_SALT_LENGTH = 32


def configure_pii_salt(salt: str) -> None:
    """Configure the PII hashing salt.

    Must be called during application startup before any PII hashing.

    Args:
        salt: Secret salt value

    Raises:
        ValueError: If salt is empty or too short
    """
    global _PII_SALT
    if not salt or len(salt) < MIN_SALT_LENGTH:
        logger.critical(
            "PII_SALT_CONFIGURATION_FAILED",
            extra={"reason": "Salt too short or empty", "min_length": MIN_SALT_LENGTH}
        )
        raise ValueError(f"PII salt must be at least {MIN_SALT_LENGTH} characters")

    _PII_SALT = salt
    logger.info("PII_SALT_CONFIGURED", extra={"salt_length": len(salt)})


def load_pii_salt_from_secrets_manager(
    secret_arn: str,
    region: str = "us-east-1",
    key: str = "pii_salt",
) -> None:
    """Load the PII salt from AWS Secrets Manager and configure it.

    The secret may be a plain string or a JSON document holding the
    salt under ``key``.

    Args:
        secret_arn: ARN of the secret
        region: AWS region
        key: JSON key of the salt when the secret is a JSON document
    """
    import boto3

    try:
        client = boto3.client("secretsmanager", region_name=region)
        response = client.get_secret_value(SecretId=secret_arn)
    except Exception as e:
        logger.error(
            "PII_SALT_SECRET_LOAD_FAILED",
            extra={"error": str(e), "secret_arn": secret_arn}
        )
        raise

    secret = response["SecretString"]
    try:
        document = json.loads(secret)
    except ValueError:
        document = None

    if isinstance(document, dict):
        secret = document.get(key, "")

    configure_pii_salt(secret)


def hash_pii(value: str) -> str:
    """Hash a PII value for safe logging and storage.

    Uses HMAC-SHA-256 keyed by the secret salt to create a consistent,
    non-reversible hash of identifiers and captured PII spans.

    Args:
        value: The PII value to hash (user ID, email, matched span, ...)

    Returns:
        64-char hex digest safe for logging

    Raises:
        RuntimeError: If PII salt has not been configured
    """
    if _PII_SALT is None:
        logger.critical(
            "PII_HASH_FAILED",
            extra={"reason": "Salt not configured", "action": "call configure_pii_salt()"}
        )
        raise RuntimeError("PII salt not configured. Call configure_pii_salt() first.")

    return hmac.new(
        _PII_SALT.encode(), value.encode(), hashlib.sha256
    ).hexdigest()


def short_hash(value: str, length: int = 12) -> str:
    """Truncated ``hash_pii`` for display in analysis output."""
    return hash_pii(value)[:length]


def configure_pii_salt_from_env() -> None:
    """Configure the salt at service startup.

    Environment variables:
        PII_SALT_SECRET_ARN: Secrets Manager ARN (preferred in production)
        PII_HASH_SALT: Salt value for development
        AWS_REGION: Region of the secret (default us-east-1)
    """
    secret_arn = os.getenv("PII_SALT_SECRET_ARN")
    if secret_arn:
        load_pii_salt_from_secrets_manager(secret_arn, os.getenv("AWS_REGION", "us-east-1"))
    else:
        configure_pii_salt(os.getenv("PII_HASH_SALT", ""))
