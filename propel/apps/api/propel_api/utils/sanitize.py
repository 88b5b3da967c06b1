"""Secret and PII scrubbing for log output.

Strings longer than MAX_STR_LOG are replaced by a length + digest marker and
never scanned. Shorter strings have bearer tokens, Stripe keys and webhook
signatures masked. Dict values under sensitive keys are always redacted.
"""

import hashlib
import re
import traceback
from typing import Any

MAX_STR_LOG: int = 2048
MAX_DEPTH: int = 6

_SENSITIVE_KEYS: frozenset[str] = frozenset({
    "authorization",
    "token",
    "access_token",
    "api_key",
    "secret",
    "password",
    "signature",
    "stripe-signature",
    "stripe_signature",
    "email",
    "customer_email",
    "public_token",
})

_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"Bearer \S+"),
    re.compile(r"\b(?:sk|rk|pk)_(?:live|test)_\w+"),
    re.compile(r"\bwhsec_\w+"),
    re.compile(r"\bv1=[0-9a-f]{16,}"),
    re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]+"),
]


def payload_hash_bytes(raw: bytes) -> str:
    """Return sha256 hex digest of raw bytes."""
    return hashlib.sha256(raw).hexdigest()


def sanitize_str(s: str) -> str:
    """Return ``s`` with credentials masked, or a digest marker if too long."""
    if not isinstance(s, str):
        return s  # type: ignore[return-value]

    if len(s) > MAX_STR_LOG:
        digest = hashlib.sha256(s.encode("utf-8", errors="replace")).hexdigest()[:16]
        return f"[TRUNCATED len={len(s)} sha256={digest}]"

    result = s
    for pattern in _PATTERNS:
        result = pattern.sub("[REDACTED]", result)
    return result


def sanitize_obj(obj: Any, depth: int = 0) -> Any:
    """Recursively sanitize a log ``extra`` value."""
    if depth >= MAX_DEPTH:
        return "[DEPTH_LIMIT]"

    if isinstance(obj, dict):
        return {
            key: "[REDACTED]"
            if isinstance(key, str) and key.lower() in _SENSITIVE_KEYS
            else sanitize_obj(value, depth + 1)
            for key, value in obj.items()
        }

    if isinstance(obj, (list, tuple)):
        return [sanitize_obj(item, depth + 1) for item in obj]

    if isinstance(obj, str):
        return sanitize_str(obj)

    return obj


def sanitize_exc(exc_info: tuple) -> str:
    """Format an exc_info tuple into a sanitized traceback string.

    Locals are never captured since they may hold secrets.
    """
    _type, value, _tb = exc_info
    if value is None:
        return ""
    te = traceback.TracebackException.from_exception(value, capture_locals=False)
    return sanitize_str("".join(te.format()))
