"""Outgoing payload normalization."""
from typing import Any


def sanitize_payload(value: Any) -> Any:
    """Turn blank strings into None, recursing through mappings only.

    Services treat "" and a missing field differently; callers send the
    sanitized form so neither case needs a per-call guard. Lists and other
    scalars are returned untouched.
    """
    if isinstance(value, dict):
        return {key: sanitize_payload(item) for key, item in value.items()}
    if isinstance(value, str) and not value.strip():
        return None
    return value
