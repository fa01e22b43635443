"""Timestamp helpers shared by the data store."""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Optional


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def now_utc_iso() -> str:
    """Return the current UTC time in ISO 8601 with millisecond precision."""
    return now_utc().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def epoch_millis() -> int:
    return time.time_ns() // 1_000_000


def ddmmyyyy(value: Optional[datetime] = None) -> str:
    """Return a compact ``DDMMYYYY`` label used in default file names."""
    dt = value or datetime.now()
    return dt.strftime("%d%m%Y")


def parse_iso(value: Any) -> Optional[datetime]:
    """Best-effort conversion of an ISO string to an aware ``datetime``."""
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def whole_days_since(value: Any, *, now: Optional[datetime] = None) -> Optional[int]:
    """Return full days elapsed since ``value``; never negative."""
    dt = parse_iso(value)
    if dt is None:
        return None
    reference = now or now_utc()
    days = int((reference - dt).total_seconds() // 86400)
    return max(days, 0)


__all__ = [
    "ddmmyyyy",
    "epoch_millis",
    "now_utc",
    "now_utc_iso",
    "parse_iso",
    "whole_days_since",
]
