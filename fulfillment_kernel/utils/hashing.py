"""
Canonical JSON and SHA-256 digests.

Partner settings checksums and outbox payloads go through here so that
equal data always serializes to the same text, whatever the key order.
"""

import hashlib
import json
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

# Checked in order; datetime is a date subclass
_ENCODERS: tuple[tuple[type | tuple[type, ...], Callable[[Any], Any]], ...] = (
    # 10, 10.0 and 10.00 encode identically, never in exponent form
    (Decimal, lambda d: format(d.normalize(), "f")),
    (date, lambda d: d.isoformat()),
    (UUID, str),
    (Enum, lambda e: e.value),
    ((set, frozenset), sorted),
)


def _encode(obj: Any) -> Any:
    for kind, encode in _ENCODERS:
        if isinstance(obj, kind):
            return encode(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """Sorted keys, no whitespace, Decimal/date/UUID/Enum rendered as strings."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def hash_payload(payload: Any) -> str:
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()


def to_json_safe(data: Any) -> Any:
    """Round-trip ``data`` through canonical JSON so it fits a JSON column."""
    return json.loads(canonicalize_json(data))
