"""Clock and timezone helpers for ceremonybot."""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo
from functools import lru_cache

logger = logging.getLogger(__name__)

TEST_TIME_ENV = "CEREMONYBOT_TEST_TIME"


class TimeProvider:
    """Provides the current time, with an environment override for tests and demos."""

    def now_utc(self) -> datetime.datetime:
        """Return current UTC time with tzinfo.

        Can be overridden via the CEREMONYBOT_TEST_TIME environment variable
        (ISO 8601, e.g. "2024-01-02T08:45:00Z"). Naive override values are
        treated as UTC.

        Returns:
            Current time in UTC with timezone info
        """
        test_time = os.environ.get(TEST_TIME_ENV)
        if test_time:
            try:
                from dateutil import parser as date_parser

                dt = date_parser.isoparse(test_time)
                return ensure_utc(dt)
            except (ValueError, OverflowError) as e:
                logger.warning("Failed to parse %s=%r: %s", TEST_TIME_ENV, test_time, e)

        return datetime.datetime.now(datetime.timezone.utc)


_time_provider = TimeProvider()


def now_utc() -> datetime.datetime:
    """Get current UTC time (convenience function)."""
    return _time_provider.now_utc()


def ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    """Return ``dt`` as an aware UTC datetime; naive values are assumed UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)


def ensure_aware(dt: datetime.datetime) -> datetime.datetime:
    """Attach UTC to naive datetimes, leaving aware ones (and their zone) untouched."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt


def parse_iso(value: str) -> datetime.datetime:
    """Parse an ISO-8601 string into an aware UTC datetime.

    Accepts a trailing 'Z' or an explicit offset.

    Raises:
        ValueError: if the string is not a valid ISO-8601 timestamp
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.datetime.fromisoformat(value))


def serialize_iso(dt: datetime.datetime) -> str:
    """Serialize an aware datetime to an ISO-8601 UTC string with 'Z' suffix."""
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


@lru_cache(maxsize=64)
def get_zone(tz_name: str) -> zoneinfo.ZoneInfo:
    """Resolve an IANA timezone name, raising ValueError for unknown zones."""
    try:
        return zoneinfo.ZoneInfo(tz_name)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {tz_name!r}") from e


def minutes_of_day(dt: datetime.datetime, tz_name: str = "UTC") -> int:
    """Return wall-clock minutes since midnight of ``dt`` in ``tz_name``."""
    local = ensure_aware(dt).astimezone(get_zone(tz_name))
    return local.hour * 60 + local.minute
