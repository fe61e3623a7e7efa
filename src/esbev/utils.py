"""Reusable coercion, time and odds helpers."""

from __future__ import annotations

import datetime as dt
import math
from typing import Any
from zoneinfo import ZoneInfo

LOCAL_TIMEZONE = ZoneInfo("Europe/Stockholm")

__all__ = [
    "LOCAL_TIMEZONE",
    "coerce_float",
    "coerce_int",
    "fair_decimal_odds",
    "format_local_datetime",
    "implied_probability_from_decimal",
    "minutes_between",
    "parse_timestamp",
    "utcnow",
]


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def coerce_float(value: Any) -> float | None:
    """Return ``value`` as a finite float, or ``None``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            number = float(stripped)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def coerce_int(value: Any) -> int | None:
    """Return ``value`` as an int when it is a finite whole number."""

    number = coerce_float(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def parse_timestamp(value: Any) -> dt.datetime | None:
    """Parse ISO strings, epoch seconds/milliseconds or datetimes into UTC.

    Naive values are assumed to be UTC.  Unparsable input yields ``None``.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dt.datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        seconds = value / 1000.0 if abs(value) > 1e11 else float(value)
        try:
            return dt.datetime.fromtimestamp(seconds, tz=dt.timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        numeric = coerce_float(text)
        if numeric is not None:
            return parse_timestamp(numeric)
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = dt.datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed.astimezone(dt.timezone.utc)


def minutes_between(first: dt.datetime, second: dt.datetime) -> float:
    return abs((first - second).total_seconds()) / 60.0


def format_local_datetime(value: dt.datetime) -> str:
    """Render ``value`` as ``YYYY-MM-DD - HH:MM`` in Stockholm time."""

    local = value.astimezone(LOCAL_TIMEZONE)
    return local.strftime("%Y-%m-%d - %H:%M")


def implied_probability_from_decimal(decimal_odds: float) -> float:
    """Return the bookmaker's implied win probability from decimal odds."""

    if decimal_odds <= 1.0:
        raise ValueError("Decimal odds must exceed 1.0")
    return 1.0 / decimal_odds


def fair_decimal_odds(probability: float) -> float | None:
    """Convert a model probability into fair decimal odds."""

    if probability <= 0.0:
        return None
    return 1.0 / probability
