"""Hashing helpers for store keys, handle tags and signatures."""

import hashlib
import hmac


def sha256_hex(value: str | bytes) -> str:
    """Return the hex SHA-256 digest of value (str is UTF-8 encoded)."""
    if isinstance(value, str):
        value = value.encode("utf-8")
    return hashlib.sha256(value).hexdigest()


def hmac_sha256_hex(key: str | bytes, message: str | bytes) -> str:
    """Return hex HMAC-SHA256 of message under key."""
    if isinstance(key, str):
        key = key.encode("utf-8")
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(key, message, hashlib.sha256).hexdigest()


def constant_time_equals(a: str | None, b: str | None) -> bool:
    """Compare two strings in constant time; None never matches."""
    if a is None or b is None:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
