"""PII (Personally Identifiable Information) utilities for safe logging."""

import hashlib
import hmac

from ekicho.core.config import settings


def hash_pii(value: str) -> str:
    """
    Hash PII value for safe logging and tracing using HMAC-SHA256.

    User ids and email addresses never appear in logs or spans in clear text;
    the keyed hash keeps them correlatable across log lines while resisting
    dictionary attacks on common addresses.

    Args:
        value: User id or email address to hash

    Returns:
        64-character lowercase hexadecimal hash (full HMAC-SHA256 digest)

    Raises:
        ValueError: If PII_HASH_SECRET is not configured, empty, or set to placeholder
    """
    if not settings.PII_HASH_SECRET:
        msg = "PII_HASH_SECRET must be configured and non-empty"
        raise ValueError(msg)
    if settings.PII_HASH_SECRET == "REPLACE_ME_WITH_RANDOM_SECRET":
        msg = (
            "PII_HASH_SECRET is set to placeholder value. "
            'Generate a secure secret using: python3 -c "import secrets; print(secrets.token_urlsafe(32))"'
        )
        raise ValueError(msg)
    secret = settings.PII_HASH_SECRET.encode()
    return hmac.new(secret, value.encode(), hashlib.sha256).hexdigest()
