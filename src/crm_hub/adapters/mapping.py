"""Total mapping helpers shared by every provider adapter.

Provider payloads are loosely typed dicts with fields that may be missing,
null, or the wrong type. Every helper here returns a usable value (or None)
for any input and never raises, so a provider leaving out a field can never
crash a mapping function.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar

E = TypeVar("E", bound=Enum)

_DIGITS = frozenset("0123456789")


def normalize_phone(phone: str | None) -> str:
    """Strip every character that is not a digit or '+'.

    A "+" survives only as the first character of the result, so
    "+61 (0)412 345-678" becomes "+610412345678". Idempotent:
    normalize_phone(normalize_phone(x)) == normalize_phone(x).
    """
    if not phone:
        return ""
    kept: list[str] = []
    for ch in phone:
        if ch in _DIGITS:
            kept.append(ch)
        elif ch == "+" and not kept:
            kept.append(ch)
    return "".join(kept)


def lookup(table: dict[str, E], value: Any, default: E) -> E:
    """Case-insensitive vocabulary lookup with an explicit fallback."""
    if not isinstance(value, str):
        return default
    return table.get(value.strip().lower(), default)


def as_str(value: Any) -> str | None:
    """Provider ids come back as ints or strings; normalize to str."""
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError):
        return None


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are assumed UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def split_full_name(full_name: str) -> tuple[str | None, str | None]:
    """Split "Jane Mary Citizen" into ("Jane", "Mary Citizen")."""
    parts = full_name.split()
    if not parts:
        return None, None
    return parts[0], " ".join(parts[1:]) or None


def join_name(first: str | None, last: str | None) -> str:
    return f"{first or ''} {last or ''}".strip()


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def drop_none(payload: dict[str, Any]) -> dict[str, Any]:
    """Remove None values so providers fall back to their own defaults."""
    return {key: value for key, value in payload.items() if value is not None}


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
