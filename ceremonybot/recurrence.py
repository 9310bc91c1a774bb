"""Recurrence expansion for ceremony events.

Expansion is a pure function of its inputs: the series is always walked from
the base start so that cadence arithmetic and occurrence indices stay stable no
matter which window is requested.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from dateutil.rrule import DAILY, FR, MO, MONTHLY, SA, SU, TH, TU, WE, WEEKLY, rrule

from .exceptions import ConfigurationError
from .models import CalendarEvent, Frequency, Occurrence, RecurrencePattern
from .timeutils import ensure_aware

logger = logging.getLogger(__name__)

DEFAULT_MAX_OCCURRENCES_PER_RULE = 50_000

# Index 0 is Sunday; dateutil numbers Monday as 0.
_WEEKDAYS = (SU, MO, TU, WE, TH, FR, SA)


@dataclass
class ExpanderConfig:
    """Limits applied while walking a recurrence series."""

    max_occurrences_per_rule: int = DEFAULT_MAX_OCCURRENCES_PER_RULE

    @classmethod
    def from_settings(cls, settings: Any) -> "ExpanderConfig":
        """Extract expander limits from a settings object, falling back to defaults."""
        return cls(
            max_occurrences_per_rule=getattr(
                settings, "max_occurrences_per_rule", DEFAULT_MAX_OCCURRENCES_PER_RULE
            ),
        )


def _python_weekday_to_index(dt: datetime) -> int:
    """Convert datetime.weekday() (Monday=0) to the Sunday=0 convention."""
    return (dt.weekday() + 1) % 7


def build_rule(base_start: datetime, pattern: RecurrencePattern) -> rrule:
    """Translate a RecurrencePattern into a dateutil rrule anchored at ``base_start``."""
    kwargs: dict[str, Any] = {
        "dtstart": base_start,
        "interval": pattern.interval,
        "wkst": SU,
        "cache": False,
    }
    if pattern.occurrences is not None:
        kwargs["count"] = pattern.occurrences

    if pattern.frequency == Frequency.DAILY:
        return rrule(DAILY, **kwargs)

    if pattern.frequency == Frequency.WEEKLY:
        days = pattern.days_of_week or (_python_weekday_to_index(base_start),)
        kwargs["byweekday"] = [_WEEKDAYS[d] for d in days]
        return rrule(WEEKLY, **kwargs)

    # Monthly and quarterly share the clamped day-of-month rule.
    if pattern.frequency == Frequency.QUARTERLY:
        kwargs["interval"] = pattern.interval * 3
    day = pattern.day_of_month or base_start.day
    kwargs["bymonthday"] = list(range(min(day, 28), day + 1))
    kwargs["bysetpos"] = -1
    return rrule(MONTHLY, **kwargs)


def expand(
    base_start: datetime,
    base_end: datetime,
    pattern: Optional[RecurrencePattern],
    window_start: datetime,
    window_end: datetime,
    *,
    source_event_id: str = "",
    event: Optional[CalendarEvent] = None,
    config: Optional[ExpanderConfig] = None,
) -> list[Occurrence]:
    """Expand a base occurrence and recurrence rule into occurrences inside a window.

    Args:
        base_start: Start of the first occurrence
        base_end: End of the first occurrence; its offset from ``base_start`` is
            preserved for every occurrence
        pattern: Recurrence rule, or None for a single non-recurring occurrence
        window_start: Inclusive window start
        window_end: Exclusive window end
        source_event_id: Event identifier stamped on each occurrence
        event: Optional event the occurrences reference for inherited fields
        config: Expansion limits

    Returns:
        Occurrences ordered by start time. Recurring occurrences satisfy
        ``window_start <= start < window_end``; a non-recurring occurrence is
        included when it intersects the window.

    Raises:
        ConfigurationError: if ``base_end`` precedes ``base_start``
    """
    base_start = ensure_aware(base_start)
    base_end = ensure_aware(base_end)
    window_start = ensure_aware(window_start)
    window_end = ensure_aware(window_end)
    if base_end < base_start:
        raise ConfigurationError(
            f"occurrence end {base_end.isoformat()} precedes start {base_start.isoformat()}"
        )

    duration = base_end - base_start

    if pattern is None:
        # Zero-duration occurrences (standalone reminders) intersect at their start instant.
        if base_start < window_end and (base_end > window_start or base_start >= window_start):
            return [
                Occurrence(
                    source_event_id=source_event_id,
                    occurrence_index=0,
                    start_time=base_start,
                    end_time=base_end,
                    event=event,
                )
            ]
        return []

    cap = (config or ExpanderConfig()).max_occurrences_per_rule
    results: list[Occurrence] = []
    scanned = 0

    for index, start in enumerate(build_rule(base_start, pattern)):
        if start >= window_end:
            break
        if pattern.end_date is not None and start >= pattern.end_date:
            break
        if index >= cap:
            logger.warning(
                "Recurrence for %r stopped after %d occurrences before reaching window end %s",
                source_event_id,
                cap,
                window_end.isoformat(),
            )
            break
        scanned += 1
        if start < window_start:
            continue
        results.append(
            Occurrence(
                source_event_id=source_event_id,
                occurrence_index=index,
                start_time=start,
                end_time=start + duration,
                event=event,
            )
        )

    logger.debug(
        "Expanded %r: scanned=%d returned=%d window=[%s, %s)",
        source_event_id,
        scanned,
        len(results),
        window_start.isoformat(),
        window_end.isoformat(),
    )
    return results


def expand_event(
    event: CalendarEvent,
    window_start: datetime,
    window_end: datetime,
    config: Optional[ExpanderConfig] = None,
) -> list[Occurrence]:
    """Expand a CalendarEvent; occurrences reference the event for inherited fields."""
    return expand(
        event.start_time,
        event.end_time,
        event.recurrence,
        window_start,
        window_end,
        source_event_id=event.id,
        event=event,
        config=config,
    )
