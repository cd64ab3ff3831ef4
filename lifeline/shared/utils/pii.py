"""PII handling for volunteer applications.

Volunteers are known to the engine only by an anonymous id. Legal
identity submitted with an application (name, email, emergency contact)
is reduced to a keyed digest before it is stored or logged.
"""
import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)

MIN_SALT_LENGTH = 32

# Loaded from AWS Secrets Manager in production
_PII_SALT: Optional[str] = None


def configure_pii_salt(salt: str) -> None:
    """Install the process-wide hashing key. Call once at startup.

    Raises:
        ValueError: Salt shorter than MIN_SALT_LENGTH
    """
    global _PII_SALT
    if len(salt or "") < MIN_SALT_LENGTH:
        logger.critical(
            "PII_SALT_REJECTED",
            extra={"min_length": MIN_SALT_LENGTH, "length": len(salt or "")}
        )
        raise ValueError(f"PII salt must be at least {MIN_SALT_LENGTH} characters")

    _PII_SALT = salt
    logger.info("PII_SALT_CONFIGURED")


def hash_pii(value: str) -> str:
    """Keyed SHA-256 digest of a PII value.

    Args:
        value: Raw identifying value

    Returns:
        64-char hex HMAC-SHA256 of value under the configured salt

    Raises:
        RuntimeError: configure_pii_salt() has not run
    """
    if _PII_SALT is None:
        logger.critical("PII_SALT_MISSING")
        raise RuntimeError("PII salt not configured; call configure_pii_salt() at startup")

    return hmac.new(_PII_SALT.encode(), value.encode(), hashlib.sha256).hexdigest()


def hash_identity(full_name: str, email: str) -> str:
    """Hash an applicant's legal identity for background verification.

    Name and email are normalized so the same person always maps to the
    same hash regardless of casing or surrounding whitespace.
    """
    normalized = f"{full_name.strip().lower()}|{email.strip().lower()}"
    return hash_pii(normalized)
