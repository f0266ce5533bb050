"""Helpers that keep secrets out of log output."""

from typing import Any

MASK = "***MASKED***"

SENSITIVE_KEY_PARTS = ("token", "password", "secret", "key", "authorization")


def is_sensitive_key(name: str) -> bool:
    """Return True if a mapping key names a secret value."""
    lowered = name.lower()
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def mask_sensitive(value: Any) -> Any:
    """Return a copy of ``value`` with secret-looking entries masked.

    Mappings are walked recursively; any key whose name contains one of
    SENSITIVE_KEY_PARTS has its value replaced by MASK. Lists and tuples are
    walked element by element. Scalars are returned unchanged.

    Args:
        value: A dict, list, or scalar about to be logged.

    Returns:
        A masked copy. The input is never mutated.
    """
    if isinstance(value, dict):
        masked = {}
        for key, item in value.items():
            if isinstance(key, str) and is_sensitive_key(key):
                masked[key] = MASK
            else:
                masked[key] = mask_sensitive(item)
        return masked
    if isinstance(value, (list, tuple)):
        return [mask_sensitive(item) for item in value]
    return value


def redact_secret(value: str, visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters.

    Args:
        value: The secret value to redact.
        visible_chars: Number of characters to show at the start.

    Returns:
        Redacted string with asterisks replacing hidden characters.
    """
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)
