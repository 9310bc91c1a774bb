"""Windowed, multi-filter queries over expanded event occurrences."""

from __future__ import annotations

import datetime
import logging
from typing import Optional

from .exceptions import CeremonyBotError, StoreUnavailable
from .models import CalendarEvent, EventStatus, Occurrence, QueryFilters, TimeWindow
from .protocols import EventStore
from .recurrence import ExpanderConfig, expand_event

logger = logging.getLogger(__name__)

DEFAULT_UPCOMING_HORIZON = datetime.timedelta(days=14)


def matches_filters(event: CalendarEvent, filters: QueryFilters) -> bool:
    """Check an event against every filter; all must hold."""
    if filters.ceremony_type is not None and event.ceremony_type != filters.ceremony_type:
        return False
    if filters.team_id is not None and event.team_id != filters.team_id:
        return False
    if filters.art_id is not None and event.art_id != filters.art_id:
        return False
    if filters.pi_id is not None and event.program_increment_id != filters.pi_id:
        return False
    if filters.status is not None and event.status != filters.status:
        return False
    # Asking for completed events explicitly implies including them.
    include_completed = filters.include_completed or filters.status == EventStatus.COMPLETED
    if event.status == EventStatus.COMPLETED and not include_completed:
        return False
    if filters.free_text:
        needle = filters.free_text.casefold()
        haystack = [event.title, event.description or "", *event.tags]
        if not any(needle in field.casefold() for field in haystack):
            return False
    return True


def _sort_key(occurrence: Occurrence) -> tuple[datetime.datetime, str]:
    return occurrence.start_time, occurrence.source_event_id


class EventQueryEngine:
    """Answers windowed queries by expanding stored events and filtering occurrences.

    Read-only: never mutates the store, so it is safe to call while the
    scheduler is ticking.
    """

    def __init__(
        self,
        store: EventStore,
        expander_config: Optional[ExpanderConfig] = None,
        upcoming_horizon: datetime.timedelta = DEFAULT_UPCOMING_HORIZON,
    ) -> None:
        """Initialize the query engine.

        Args:
            store: Source of candidate events
            expander_config: Limits passed to recurrence expansion
            upcoming_horizon: How far ahead ``upcoming`` looks
        """
        self.store = store
        self.expander_config = expander_config or ExpanderConfig()
        self.upcoming_horizon = upcoming_horizon

    def _load_events(self, window: TimeWindow, filters: QueryFilters) -> list[CalendarEvent]:
        try:
            return self.store.list_events(window, filters)
        except StoreUnavailable:
            raise
        except (OSError, CeremonyBotError) as e:
            raise StoreUnavailable(f"failed to list events: {e}") from e

    def query(self, window: TimeWindow, filters: Optional[QueryFilters] = None) -> list[Occurrence]:
        """Return occurrences in ``window`` matching ``filters``.

        Args:
            window: Half-open [start, end) range on occurrence start times
            filters: Conjunctive filters; completed events are excluded unless
                requested

        Returns:
            Occurrences ordered by start time, ties broken by source event id

        Raises:
            StoreUnavailable: if the store cannot be read
        """
        filters = filters or QueryFilters()
        events = self._load_events(window, filters)

        occurrences: list[Occurrence] = []
        for event in events:
            if not matches_filters(event, filters):
                continue
            try:
                occurrences.extend(
                    expand_event(event, window.start, window.end, self.expander_config)
                )
            except CeremonyBotError as e:
                logger.warning("Failed to expand event %s (%r): %s", event.id, event.title, e)
                continue

        occurrences.sort(key=_sort_key)
        logger.debug(
            "Query [%s, %s) matched %d occurrences from %d events",
            window.start.isoformat(),
            window.end.isoformat(),
            len(occurrences),
            len(events),
        )
        return occurrences

    def upcoming(
        self,
        now: datetime.datetime,
        limit: int = 10,
        filters: Optional[QueryFilters] = None,
    ) -> list[Occurrence]:
        """Return the next ``limit`` occurrences starting at or after ``now``."""
        window = TimeWindow(start=now, end=now + self.upcoming_horizon)
        return self.query(window, filters)[:limit]
