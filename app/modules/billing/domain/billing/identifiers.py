"""Normalization helpers for loosely-typed identifiers and values."""

from __future__ import annotations

import math
import re
import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

FlowIdentifier = Union[int, str]

_DIGITS_RE = re.compile(r"^\d+$")
_NON_DIGITS_RE = re.compile(r"\D+")
_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_TRUTHY = {"1", "true", "t", "yes", "y", "sim", "s", "on", "ativo", "ativa"}
_FALSY = {"0", "false", "f", "no", "n", "nao", "não", "off", "inativo", "inativa"}


def sanitize_string(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def sanitize_digits(value: Any) -> Optional[str]:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return None
    digits = _NON_DIGITS_RE.sub("", str(value))
    return digits or None


def to_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else None
    if isinstance(value, str):
        trimmed = value.strip()
        if _DIGITS_RE.match(trimmed):
            return int(trimmed)
    return None


def to_bool(value: Any) -> Optional[bool]:
    """Interpret booleans stored as numbers or pt-BR/en words."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUTHY:
            return True
        if normalized in _FALSY:
            return False
    return None


def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a finite number from a number or a pt-BR/en formatted string."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return Decimal(str(value))
    if isinstance(value, str):
        cleaned = re.sub(r"[^\d,.-]", "", value.strip())
        if not cleaned:
            return None
        if "," in cleaned and "." in cleaned:
            # The last separator is the decimal one: "1.490,00" and "1,490.00"
            if cleaned.rfind(",") > cleaned.rfind("."):
                cleaned = cleaned.replace(".", "").replace(",", ".")
            else:
                cleaned = cleaned.replace(",", "")
        elif "," in cleaned:
            cleaned = cleaned.replace(",", ".")
        try:
            parsed = Decimal(cleaned)
        except InvalidOperation:
            return None
        return parsed if parsed.is_finite() else None
    return None


def normalize_financial_flow_identifier(value: Any) -> Optional[FlowIdentifier]:
    """
    Accepts integer ids (or their digit strings) and UUID strings.

    Returns the int, the canonical lowercase UUID string, or None for
    anything else.
    """
    as_int = to_int(value)
    if as_int is not None:
        return as_int if as_int > 0 else None
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, str):
        try:
            return str(uuid.UUID(value.strip()))
        except ValueError:
            return None
    return None


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes (SQLite round trips) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    if _DATE_ONLY_RE.match(trimmed):
        try:
            return datetime.combine(
                date.fromisoformat(trimmed), time.min, tzinfo=timezone.utc
            )
        except ValueError:
            return None
    if trimmed.endswith("Z"):
        trimmed = trimmed[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(trimmed.replace(" ", "T", 1)))
    except ValueError:
        return None
