"""
Payload redaction for audit entries and log lines.
"""

from typing import Any

from jobqueue.constants import REDACTED_MARKER, SENSITIVE_KEYS


def is_sensitive_key(key: str) -> bool:
    """Case-insensitive substring match against the sensitive key denylist."""
    lowered = str(key).lower()
    return any(sensitive in lowered for sensitive in SENSITIVE_KEYS)


def sanitize_payload(payload: Any) -> Any:
    """
    Return a copy of `payload` with sensitive-looking keys replaced.

    Nested mappings and lists are walked; the input is never mutated.

    Args:
        payload: Arbitrary JSON-like job payload.

    Returns:
        The redacted copy (an empty dict for a missing payload).
    """
    if payload is None:
        return {}
    return _redact(payload)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED_MARKER if is_sensitive_key(key) else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact(item) for item in value]
    return value
