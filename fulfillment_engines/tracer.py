"""
fulfillment_engines.tracer -- one ENGINE_TRACE record per engine call.

``@traced_engine`` wraps a pure calculation and logs, at DEBUG, the engine
name and version, how long the call took, whether it returned or raised,
and a short fingerprint of the inputs named in ``fingerprint_fields``.
Two calls with equal inputs share a fingerprint, which makes it easy to
line up a support ticket with the decision the engine actually made.

Arguments are matched by name whether passed positionally or by keyword.

    @traced_engine("billing_totals", "1.0", fingerprint_fields=("lines",))
    def compute_totals(lines):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any

# Engines stay free of kernel imports; the kernel configures this namespace.
_logger = logging.getLogger("fulfillment_kernel.engines.tracer")

_FINGERPRINT_LENGTH = 16


def _plain(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return _plain(asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """Hex prefix of a SHA-256 over the named arguments; absent ones hash as null."""
    selected = {name: _plain(arguments.get(name)) for name in fingerprint_fields}
    canonical = json.dumps(selected, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:_FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fingerprint = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            started = time.monotonic()
            outcome = "ok"
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                outcome = type(exc).__name__
                raise
            finally:
                _logger.debug(
                    "ENGINE_TRACE",
                    extra={
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fingerprint,
                        "outcome": outcome,
                        "duration_ms": round((time.monotonic() - started) * 1000, 2),
                        "function": func.__qualname__,
                    },
                )

        wrapper.engine_name = engine_name  # type: ignore[attr-defined]
        wrapper.engine_version = engine_version  # type: ignore[attr-defined]
        return wrapper

    return decorator
