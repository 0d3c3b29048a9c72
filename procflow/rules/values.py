"""
Loosely-typed values and their coercions.

Template data arrives as JSON/YAML, so anything reachable from a rule is one
of: string, number, boolean, timestamp, null, or a nested mapping/sequence.
Rather than comparing whatever Python objects happen to show up, every
comparison and every interpolation goes through one of the coercions here:

- to_text: the string form used by interpolation and equality
- to_timestamp: the datetime form used by (after)/(before)
- coerce_variable: the declared-type form used when an instance is created
"""

import json
import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Union

logger = logging.getLogger(__name__)

Value = Union[str, int, float, bool, datetime, None]

# Numbers larger than this are taken to be epoch milliseconds, not seconds.
_EPOCH_MS_THRESHOLD = 100_000_000_000


class ValueKind(Enum):
    """Tag for a loosely-typed value."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    NULL = "null"
    MAPPING = "mapping"
    SEQUENCE = "sequence"


def kind_of(value: Any) -> ValueKind:
    """Classify a value. bool is checked before int on purpose."""
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, (datetime, date)):
        return ValueKind.TIMESTAMP
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, Mapping):
        return ValueKind.MAPPING
    if isinstance(value, (list, tuple)):
        return ValueKind.SEQUENCE
    return ValueKind.STRING


def format_timestamp(moment: Union[datetime, date]) -> str:
    """ISO-8601, UTC rendered with a trailing Z."""
    if isinstance(moment, datetime):
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        text = moment.astimezone(timezone.utc).isoformat()
        return text.replace("+00:00", "Z")
    return moment.isoformat()


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return format_timestamp(obj)
    return str(obj)


def to_text(value: Any) -> str:
    """String form of a value, as it appears in rendered templates."""
    kind = kind_of(value)
    if kind is ValueKind.NULL:
        return ""
    if kind is ValueKind.BOOLEAN:
        return "true" if value else "false"
    if kind is ValueKind.NUMBER:
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    if kind is ValueKind.TIMESTAMP:
        return format_timestamp(value)
    if kind in (ValueKind.MAPPING, ValueKind.SEQUENCE):
        return json.dumps(value, default=_json_default, sort_keys=True)
    return str(value)


def to_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a value as a UTC-aware datetime.

    Accepts datetimes (naive ones are taken as UTC), dates, epoch numbers
    (seconds, or milliseconds when large) and ISO-8601 strings with or
    without a trailing Z. Returns None when the value is not a timestamp.
    """
    kind = kind_of(value)
    if kind is ValueKind.TIMESTAMP:
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if kind is ValueKind.NUMBER:
        seconds = value / 1000 if abs(value) >= _EPOCH_MS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if kind is ValueKind.STRING and isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug(f"Not a timestamp: {value!r}")
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


_TRUE_WORDS = frozenset({"true", "yes", "1", "on"})
_FALSE_WORDS = frozenset({"false", "no", "0", "off"})


def coerce_variable(value: Any, declared_type: str) -> Any:
    """
    Coerce a supplied instance variable to its declared type.

    Raises:
        ValueError: If the value cannot be represented as that type
    """
    declared = (declared_type or "string").lower()

    if declared in ("string", "email", "text"):
        if kind_of(value) in (ValueKind.MAPPING, ValueKind.SEQUENCE):
            raise ValueError(f"expected a string, got {kind_of(value).value}")
        return to_text(value)

    if declared == "number":
        if kind_of(value) is ValueKind.NUMBER:
            return value
        if isinstance(value, str):
            try:
                number = float(value)
            except ValueError:
                raise ValueError(f"expected a number, got {value!r}") from None
            return int(number) if number.is_integer() else number
        raise ValueError(f"expected a number, got {kind_of(value).value}")

    if declared == "boolean":
        if isinstance(value, bool):
            return value
        lowered = to_text(value).lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
        raise ValueError(f"expected a boolean, got {value!r}")

    if declared in ("date", "datetime", "timestamp"):
        parsed = to_timestamp(value)
        if parsed is None:
            raise ValueError(f"expected a timestamp, got {value!r}")
        return parsed

    # Unknown declared types are passed through untouched.
    return value
