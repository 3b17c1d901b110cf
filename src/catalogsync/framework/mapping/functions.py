"""
Helper functions available inside mapping templates.

Functions that transform a value take it as their first argument so they
read naturally as filters (``{{ name | trim_prefix("svc-") }}``). Functions
that build or look up values are called as globals
(``{{ get("projectId", project, "") | quote }}``).

Every function raises ``TypeError`` / ``ValueError`` on bad input; the
mapper turns those into :class:`TemplateExecutionError`.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import uuid
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Callable

import uuid6


def _to_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def _as_list(value: Any, action: str) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    raise TypeError(f"cannot {action} type {type(value).__name__}")


# ── Strings ──────────────────────────────────────────────────


def quote(value: Any) -> str:
    return json.dumps(_to_string(value), ensure_ascii=False)


def trim(value: str) -> str:
    return value.strip()


def trim_prefix(value: str, prefix: str) -> str:
    return value.removeprefix(prefix)


def trim_suffix(value: str, suffix: str) -> str:
    return value.removesuffix(suffix)


def replace(value: str, old: str, new: str) -> str:
    return value.replace(old, new)


def upper(value: str) -> str:
    return value.upper()


def lower(value: str) -> str:
    return value.lower()


def truncate(value: str, length: int) -> str:
    """Keep the first ``length`` characters, or the last ``-length`` when negative."""
    if length < 0 and len(value) + length > 0:
        return value[length:]
    if length >= 0 and len(value) > length:
        return value[:length]
    return value


def split(value: str, sep: str) -> list[str]:
    return value.split(sep)


def b64encode(value: str) -> str:
    return base64.b64encode(value.encode()).decode("ascii")


def b64decode(value: str) -> str:
    try:
        return base64.b64decode(value, validate=True).decode()
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ValueError(f"invalid base64 input: {exc}") from exc


# ── Crypto / ids ─────────────────────────────────────────────


def sha256sum(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


def sha512sum(value: str) -> str:
    return hashlib.sha512(value.encode()).hexdigest()


def uuidv4() -> str:
    return str(uuid.uuid4())


def uuidv6() -> str:
    return str(uuid6.uuid6())


def uuidv7() -> str:
    return str(uuid6.uuid7())


# ── Time / serialization ─────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now() -> str:
    """Current UTC time, RFC 3339 with second precision."""
    return _utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def to_json(value: Any) -> str:
    """Compact JSON with sorted keys."""
    return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False, default=str)


# ── Lists ────────────────────────────────────────────────────


def list_(*elements: Any) -> list[Any]:
    return list(elements)


def append(items: Any, *elements: Any) -> list[Any]:
    return _as_list(items, "append to") + list(elements)


def prepend(items: Any, *elements: Any) -> list[Any]:
    return list(elements) + _as_list(items, "prepend to")


def first(items: Any) -> Any:
    if isinstance(items, (str, list, tuple)):
        return items[0] if items else None
    raise TypeError(f"cannot find first element of type {type(items).__name__}")


def last(items: Any) -> Any:
    if isinstance(items, (str, list, tuple)):
        return items[-1] if items else None
    raise TypeError(f"cannot find last element of type {type(items).__name__}")


def pluck(key: str, items: Sequence[Any]) -> list[Any]:
    """Collect ``key`` from every mapping in ``items`` that has it."""
    return [item[key] for item in _as_list(items, "pluck from") if isinstance(item, Mapping) and key in item]


# ── Objects ──────────────────────────────────────────────────


def object_(*keys_and_values: Any) -> dict[str, Any]:
    """Build a mapping from alternating keys and values; a trailing key maps to None."""
    result: dict[str, Any] = {}
    for idx in range(0, len(keys_and_values), 2):
        key = _to_string(keys_and_values[idx])
        result[key] = keys_and_values[idx + 1] if idx + 1 < len(keys_and_values) else None
    return result


def pick(obj: Mapping[str, Any], *keys: str) -> dict[str, Any]:
    return {key: obj[key] for key in keys if key in obj}


def get(key: str, obj: Mapping[str, Any], default: Any = None) -> Any:
    if not isinstance(obj, Mapping):
        raise TypeError(f"cannot get key from type {type(obj).__name__}")
    return obj.get(key, default)


def set_(key: str, value: Any, obj: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of ``obj`` with ``key`` set to ``value``."""
    if not isinstance(obj, Mapping):
        raise TypeError(f"cannot set key on type {type(obj).__name__}")
    return {**obj, key: value}


# Value-first functions usable with the pipe syntax.
FILTERS: dict[str, Callable[..., Any]] = {
    "quote": quote,
    "trim": trim,
    "trim_prefix": trim_prefix,
    "trim_suffix": trim_suffix,
    "replace": replace,
    "upper": upper,
    "lower": lower,
    "truncate": truncate,
    "split": split,
    "b64encode": b64encode,
    "b64decode": b64decode,
    "sha256sum": sha256sum,
    "sha512sum": sha512sum,
    "to_json": to_json,
    "first": first,
    "last": last,
    "append": append,
    "prepend": prepend,
    "pick": pick,
}

GLOBALS: dict[str, Callable[..., Any]] = {
    **FILTERS,
    "uuidv4": uuidv4,
    "uuidv6": uuidv6,
    "uuidv7": uuidv7,
    "now": now,
    "list": list_,
    "object": object_,
    "pluck": pluck,
    "get": get,
    "set": set_,
}


__all__ = ["FILTERS", "GLOBALS"]
