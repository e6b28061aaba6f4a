from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_zone(name: Optional[str]) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def local_now(zone_name: Optional[str]) -> datetime:
    """Wall-clock 'now' in the business timezone (aware)."""
    return datetime.now(get_zone(zone_name))


def business_date_for(now: datetime, cutoff_hour: int = 6, zone_name: Optional[str] = None) -> date:
    """
    Map a moment to the business day it belongs to.

    Before cutoff_hour:00:00 local time the service still belongs to the
    previous calendar day; from the cutoff on it is today. An aware
    datetime is converted to the business zone first; a naive one is
    taken as local wall-clock time already.
    """
    if now.tzinfo is not None:
        now = now.astimezone(get_zone(zone_name))

    if now.hour < cutoff_hour:
        return now.date() - timedelta(days=1)
    return now.date()


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    return date.fromisoformat(s)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
