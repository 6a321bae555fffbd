from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
DOLLAR = Decimal("1")


def to_decimal(value: Any, *, field: str = "amount") -> Decimal:
    """Parse a number-ish value into Decimal; raises ValueError with a user-facing message."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"{field} is required.")
    if isinstance(value, bool):
        raise ValueError(f"{field} must be a number.")
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"{field} must be a number.")
    if not d.is_finite():
        raise ValueError(f"{field} must be a number.")
    return d


def money(value: Decimal | int | float | None) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def whole_dollars(value: Decimal) -> Decimal:
    return Decimal(value).quantize(DOLLAR, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal) -> int:
    return int((money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def money_json(value: Decimal | None) -> float | None:
    return float(money(value)) if value is not None else None


def parse_datetime(value: Any, *, field: str = "date") -> datetime | None:
    """Accept ISO dates ("2026-01-31") or datetimes ("2026-01-31T12:00:00[Z]")."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1]
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        raise ValueError(f"{field} must be an ISO date (YYYY-MM-DD).")
    # Stored naive UTC.
    return parsed.replace(tzinfo=None)


def iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_int(value: Any, *, field: str, minimum: int | None = None, maximum: int | None = None) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{field} must be an integer.")
    try:
        n = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be an integer.")
    if minimum is not None and n < minimum:
        raise ValueError(f"{field} must be at least {minimum}.")
    if maximum is not None and n > maximum:
        raise ValueError(f"{field} must be at most {maximum}.")
    return n


def normalize_email(value: Any) -> str:
    return str(value or "").strip().lower()


def clean_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def string_list(value: Any, *, field: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{field} must be a list.")
    out: list[str] = []
    for item in value:
        s = clean_str(item)
        if s and s not in out:
            out.append(s)
    return out
