"""
Utility functions for the notification workflow engine.

Includes:
- UTC datetime helpers
- Stable hashing for idempotency keys
- Dot-path lookup into nested JSON values
"""

import hashlib
from datetime import datetime, timezone
from typing import Any


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()


def utc_now() -> datetime:
    """
    Get the current UTC datetime.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def stable_hash(*parts: Any) -> str:
    """SHA-256 hex digest of the parts joined with ':'."""
    raw = ":".join(str(p) for p in parts)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def resolve_path(data: Any, path: str, default: Any = MISSING) -> Any:
    """Resolve a dot-notation path like 'nodes.welcome.provider_id'.

    List elements are addressed by integer segments ('items.0.sku').
    Returns ``default`` when any segment is missing; MISSING if no default given.
    """
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return default
            current = current[part]
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return default
        else:
            return default
    return current
