"""
Timestamp encoding for the subprocess result payload.

Instants travel between processes as ``"<unix-seconds>.<microseconds> <zone>"``
(e.g. ``"1704110400.250000 Europe/Prague"``) so that neither microsecond
precision nor the job's time zone is lost. The seconds part is floored and
the microseconds part is always six digits, which keeps pre-epoch instants
exact as well.

Zones are named by their IANA key, ``UTC`` for the UTC singleton and
``+HH:MM`` for any other fixed offset.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

_OFFSET_RE = re.compile(r"^([+-])(\d{2}):(\d{2})$")


def zone_name(tz: tzinfo, moment: datetime | None = None) -> str:
    """Return the portable name of a time zone."""
    if isinstance(tz, ZoneInfo):
        return tz.key
    if tz is UTC or tz == UTC:
        return "UTC"
    offset = tz.utcoffset(moment)
    if offset is None:
        raise ValueError(f"Time zone {tz!r} has no usable UTC offset")
    sign = "-" if offset < timedelta(0) else "+"
    minutes = abs(offset) // timedelta(minutes=1)
    return f"{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def parse_zone(name: str) -> tzinfo:
    """Inverse of :func:`zone_name`."""
    if name == "UTC":
        return UTC
    match = _OFFSET_RE.match(name)
    if match:
        sign, hours, minutes = match.groups()
        offset = timedelta(hours=int(hours), minutes=int(minutes))
        return timezone(-offset if sign == "-" else offset)
    return ZoneInfo(name)


def format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        raise ValueError("Cannot encode a naive datetime")
    total_us = (moment - EPOCH) // timedelta(microseconds=1)
    seconds, micro = divmod(total_us, 1_000_000)
    return f"{seconds}.{micro:06d} {zone_name(moment.tzinfo, moment)}"


def parse_timestamp(text: str) -> datetime:
    try:
        value, name = text.split(" ", 1)
        seconds, fraction = value.split(".", 1)
        micro = int(fraction.ljust(6, "0")[:6])
        instant = EPOCH + timedelta(seconds=int(seconds), microseconds=micro)
    except ValueError as e:
        raise ValueError(f"Invalid timestamp {text!r}") from e
    return instant.astimezone(parse_zone(name))


__all__ = ["EPOCH", "format_timestamp", "parse_timestamp", "parse_zone", "zone_name"]
