"""Canonical encoding and content fingerprints for template records."""

from __future__ import annotations

import hashlib
import json
import math
from typing import Any


VOLATILE_KEYS = frozenset({"created_at", "updated_at", "saved_at"})


class FingerprintTypeError(TypeError):
    """Raised when a record holds a value with no canonical JSON form."""


def _strip(obj: Any, path: str, drop_volatile: bool) -> Any:
    if isinstance(obj, dict):
        out = {}
        for key, value in obj.items():
            if not isinstance(key, str):
                raise FingerprintTypeError(f"Unsupported key type at {path}: {type(key).__name__}")
            if drop_volatile and key in VOLATILE_KEYS:
                continue
            out[key] = _strip(value, f"{path}.{key}", drop_volatile)
        return out
    if isinstance(obj, (list, tuple)):
        return [_strip(item, f"{path}[{idx}]", drop_volatile) for idx, item in enumerate(obj)]
    if isinstance(obj, float) and not math.isfinite(obj):
        raise ValueError(f"Non-finite float at {path}: {obj!r}")
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    raise FingerprintTypeError(f"Unsupported type at {path}: {type(obj).__name__}")


def canonical_dumps(obj: Any, drop_volatile: bool = False) -> str:
    """Serialize ``obj`` with sorted keys and no whitespace.

    Tuples encode as lists. With ``drop_volatile`` the timestamp keys in
    VOLATILE_KEYS are removed at every depth first.
    """
    cleaned = _strip(obj, "$", drop_volatile)
    return json.dumps(cleaned, sort_keys=True, ensure_ascii=False, separators=(",", ":"), allow_nan=False)


def template_fingerprint(record: Any) -> str:
    """Content hash of a template record, blind to save/create timestamps."""
    data = canonical_dumps(record, drop_volatile=True).encode("utf-8")
    return f"sha256:{hashlib.sha256(data).hexdigest()}"
