from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from .errors import ValidationError
from .money import check_cents, to_cents
from .time_utils import parse_iso_datetime

HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")

# Upper bound on a single line quantity; larger values are almost always typos
MAX_LINE_QUANTITY = 10_000


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion: rejects bools, floats, decimals, and scientific
    notation; accepts ints and plain digit strings.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def require_id(value: Any, field: str) -> int:
    if value is None:
        raise ValidationError(f"{field} required")
    ident = coerce_int(value, field)
    if ident <= 0:
        raise ValidationError(f"{field} must be a positive id")
    return ident


def require_quantity(value: Any, field: str = "quantity", *, allow_zero: bool = False) -> int:
    qty = coerce_int(value, field)
    minimum = 0 if allow_zero else 1
    if qty < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    if qty > MAX_LINE_QUANTITY:
        raise ValidationError(f"{field} exceeds maximum of {MAX_LINE_QUANTITY}")
    return qty


def require_text(value: Any, field: str, *, max_length: int | None = None) -> str:
    if value is None:
        raise ValidationError(f"{field} required")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} required")
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def optional_text(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def validate_color_hex(value: Any, field: str = "color_hex") -> str:
    text = require_text(value, field)
    if not HEX_COLOR_RE.match(text):
        raise ValidationError(f"{field} must look like #RRGGBB")
    return text.upper()


def optional_datetime(value: Any, field: str) -> datetime | None:
    """Accept a datetime or an ISO-8601 string; returns UTC-naive."""
    if value is None or isinstance(value, datetime):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", details={field: value})


def date_range(start: Any, end: Any) -> tuple[datetime | None, datetime | None]:
    """Inclusive created_at range; either bound may be open."""
    start = optional_datetime(start, "start")
    end = optional_datetime(end, "end")
    if start is not None and end is not None and start > end:
        raise ValidationError("start must not be after end")
    return start, end


def line_unit_price_cents(line: dict) -> int:
    """
    Unit price submitted on a transaction line: either integer
    "unit_price_cents" or a decimal "unit_price" amount.
    """
    if line.get("unit_price_cents") is not None:
        return check_cents(line["unit_price_cents"], "unit_price_cents")
    if line.get("unit_price") is not None:
        return to_cents(line["unit_price"], "unit_price")
    raise ValidationError("unit_price or unit_price_cents required")
