"""
Decoding helpers for loosely-shaped provider payloads

Yahoo returns numbers either bare (`123.4`) or wrapped (`{"raw": 123.4,
"fmt": "123.40"}`), sometimes as an empty dict when the value is missing.
Dates come as epoch seconds, wrapped epochs, or ISO strings. Everything
goes through these helpers instead of ad hoc unwrapping at call sites.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

_WRAPPER_KEYS = ("raw", "value")

def unwrap(value: Any) -> Any:
    """Strip a {raw, fmt} style wrapper, returning the inner value or None"""
    if isinstance(value, dict):
        for key in _WRAPPER_KEYS:
            if key in value:
                return value[key]
        return None
    return value

def to_number(value: Any) -> Optional[float]:
    """
    Decode a provider numeric field

    Returns a finite float, or None when the field is absent, empty,
    non-numeric, NaN or infinite.
    """
    value = unwrap(value)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        cleaned = value.replace(",", "").strip().rstrip("%")
        if not cleaned:
            return None
        try:
            value = float(cleaned)
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        return None
    return value

def to_int(value: Any) -> Optional[int]:
    number = to_number(value)
    return int(number) if number is not None else None

def first_number(record: Dict[str, Any], *names: str) -> Optional[float]:
    """First decodable number among several candidate field names"""
    for name in names:
        number = to_number(record.get(name))
        if number is not None:
            return number
    return None

def to_datetime(value: Any) -> Optional[datetime]:
    """Decode epoch seconds (bare or wrapped), datetimes and ISO strings to aware UTC"""
    value = unwrap(value)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return to_datetime(int(text))
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None

def to_date_string(value: Any) -> Optional[str]:
    """YYYY-MM-DD for any date shape to_datetime understands"""
    parsed = to_datetime(value)
    return parsed.date().isoformat() if parsed else None

def first_item(value: Any) -> Any:
    """First element of a list-or-scalar field"""
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value

def dig(payload: Any, path: Sequence[Any]) -> Any:
    """Walk nested dicts/lists, returning None at the first missing step"""
    current = payload
    for step in path:
        if isinstance(current, dict):
            current = current.get(step)
        elif isinstance(current, list) and isinstance(step, int):
            current = current[step] if -len(current) <= step < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current

def truncate(text: Optional[str], limit: int = 300) -> Optional[str]:
    if text is None:
        return None
    return text if len(text) <= limit else text[:limit] + "..."
