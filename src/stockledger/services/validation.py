from __future__ import annotations

import math
from datetime import date, datetime
from typing import Optional

from stockledger.domain.errors import ValidationError


def positive_qty(value: object, label: str = "Quantity") -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a positive integer.")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"{label} must be a whole number.")
    try:
        qty = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{label} must be a positive integer.") from e
    if qty <= 0:
        raise ValidationError(f"{label} must be >= 1.")
    return qty


def money(value: object, label: str, *, allow_zero: bool = True) -> float:
    try:
        amount = round(float(value), 4)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{label} must be a number.") from e
    if not math.isfinite(amount):
        raise ValidationError(f"{label} must be a finite number.")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{label} must be {'>= 0' if allow_zero else '> 0'}.")
    return amount


def required_id(value: object, label: str) -> int:
    if value is None or value == "" or isinstance(value, bool):
        raise ValidationError(f"{label} is required.")
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{label} must be an id.") from e


def actor_id(value: Optional[str]) -> str:
    actor = (value or "").strip()
    if not actor:
        raise ValidationError("Actor is required.")
    return actor


def event_date(value: object, label: str = "Date") -> Optional[str]:
    """Normalize a date/datetime/ISO string to ``YYYY-MM-DD HH:MM:SS``.

    Lots are ordered by this text, so every stored date must share one format.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip())
        except ValueError as e:
            raise ValidationError(f"{label} must be an ISO date, got {value!r}.") from e
    else:
        raise ValidationError(f"{label} must be a date.")
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat(sep=" ")
