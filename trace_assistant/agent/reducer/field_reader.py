"""Defensive accessors for untyped event payloads.

Every reader takes an arbitrary value and a key, and returns a typed value or
the supplied default. None of them raise: a payload of the wrong shape simply
reads as absent.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Mapping
from typing import Any

_MISSING = object()


def as_record(value: Any) -> dict[str, Any]:
    """Return value when it is a mapping with string keys, else an empty dict."""
    if isinstance(value, Mapping):
        return {str(key): item for key, item in value.items()}
    return {}


def read_field(source: Any, key: str) -> Any:
    if not isinstance(source, Mapping):
        return None
    return source.get(key)


def read_record(source: Any, key: str) -> dict[str, Any]:
    value = read_field(source, key)
    if isinstance(value, Mapping):
        return as_record(value)
    return {}


def read_list(source: Any, key: str) -> list[Any]:
    value = read_field(source, key)
    if isinstance(value, list):
        return list(value)
    return []


def read_string(source: Any, key: str, default: str = "") -> str:
    """Read a string; numbers are accepted and stringified, everything else defaults."""
    value = read_field(source, key)
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)) and math.isfinite(value):
        return str(value)
    return default


def read_trimmed(source: Any, key: str, default: str = "") -> str:
    value = read_string(source, key, default).strip()
    return value or default


def coerce_number(value: Any) -> float | None:
    """Coerce numbers and numeric strings (``"87%"`` included) to a finite float."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        cleaned = value.replace("%", "").replace("％", "").strip()
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def read_number(source: Any, key: str, default: float | None = None) -> float | None:
    number = coerce_number(read_field(source, key))
    return default if number is None else number


def read_int(source: Any, key: str, default: int = 0) -> int:
    number = read_number(source, key)
    if number is None:
        return default
    return int(number)


def read_bool(source: Any, key: str, default: bool = False) -> bool:
    value = read_field(source, key)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    return default


def read_string_array(source: Any, key: str) -> list[str]:
    """Read a list of strings, stringifying scalar entries and skipping the rest."""
    items: list[str] = []
    for entry in read_list(source, key):
        text = to_text(entry)
        if text:
            items.append(text)
    return items


def to_text(value: Any) -> str:
    """Render scalars as trimmed text; containers and None become empty."""
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and not math.isfinite(value):
        return ""
    return str(value).strip()


def read_aliased(
    source: Any,
    keys: Iterable[str],
    *,
    accept: Callable[[Any], bool] | None = None,
    default: Any = None,
) -> Any:
    """Return the value of the first alias present in ``source``.

    An alias counts as present when the key exists with a non-None value and,
    if ``accept`` is given, the value passes it.
    """
    if not isinstance(source, Mapping):
        return default
    for key in keys:
        value = source.get(key, _MISSING)
        if value is _MISSING or value is None:
            continue
        if accept is not None and not accept(value):
            continue
        return value
    return default


def read_aliased_list(source: Any, keys: Iterable[str]) -> list[Any]:
    value = read_aliased(source, keys, accept=lambda item: isinstance(item, list))
    return list(value) if isinstance(value, list) else []


def read_aliased_record(source: Any, keys: Iterable[str]) -> dict[str, Any]:
    value = read_aliased(source, keys, accept=lambda item: isinstance(item, Mapping))
    return as_record(value)


def read_aliased_text(source: Any, keys: Iterable[str]) -> str:
    return to_text(read_aliased(source, keys, accept=lambda item: to_text(item) != ""))


def read_aliased_number(source: Any, keys: Iterable[str]) -> float | None:
    return coerce_number(read_aliased(source, keys, accept=lambda item: coerce_number(item) is not None))


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives, matching how percentages are shown."""
    return int(math.floor(value + 0.5))
