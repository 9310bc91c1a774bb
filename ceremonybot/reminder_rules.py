"""Derive due reminder instances from events and standalone reminders."""

from __future__ import annotations

import datetime
import logging
from typing import Optional

from .catalogue import display_name
from .exceptions import CeremonyBotError, StoreUnavailable
from .models import (
    CalendarEvent,
    ReminderCategory,
    ReminderIdentity,
    ReminderInstance,
    ReminderType,
    StandaloneReminder,
    TimeWindow,
)
from .protocols import EventStore
from .recurrence import ExpanderConfig, expand, expand_event

logger = logging.getLogger(__name__)

_EPSILON = datetime.timedelta(microseconds=1)

STANDALONE_TITLES = {
    ReminderType.TODO: "Todo Reminder",
    ReminderType.CEREMONY: "Ceremony Reminder",
    ReminderType.CALENDAR: "Calendar Event",
    ReminderType.NOTE: "Note Reminder",
}


def describe_offset(minutes: int) -> str:
    """Render a reminder offset for humans, e.g. 90 -> '1 hour 30 minutes'."""
    parts = []
    for unit, size in (("week", 10080), ("day", 1440), ("hour", 60), ("minute", 1)):
        count, minutes = divmod(minutes, size)
        if count:
            parts.append(f"{count} {unit}{'s' if count != 1 else ''}")
    return " ".join(parts) or "now"


def in_window(due_at: datetime.datetime, window: TimeWindow) -> bool:
    """Left-open membership, so consecutive windows never share an instant."""
    return window.start < due_at <= window.end


class ReminderRuleEngine:
    """Stateless calculator of reminders that became due within a window.

    Deduplication is not done here; the scheduler owns the notified set.
    """

    def __init__(self, store: EventStore, expander_config: Optional[ExpanderConfig] = None):
        self.store = store
        self.expander_config = expander_config or ExpanderConfig()

    def due_reminders(self, now_window: TimeWindow) -> list[ReminderInstance]:
        """Return reminder instances whose due time falls in (start, end].

        Raises:
            StoreUnavailable: if the store cannot be read
        """
        try:
            # No window hint: offsets reach past the window end.
            events = self.store.list_events()
            standalone = self.store.list_standalone_reminders(now_window)
        except StoreUnavailable:
            raise
        except (OSError, CeremonyBotError) as e:
            raise StoreUnavailable(f"failed to read reminder sources: {e}") from e

        instances: list[ReminderInstance] = []
        for event in events:
            if not event.generates_reminders or not event.reminder_offsets:
                continue
            try:
                instances.extend(self._event_reminders(event, now_window))
            except Exception as e:
                logger.warning("Skipping reminders for event %s (%r): %s", event.id, event.title, e)

        for reminder in standalone:
            if not reminder.is_active:
                continue
            try:
                instances.extend(self._standalone_reminders(reminder, now_window))
            except Exception as e:
                logger.warning("Skipping standalone reminder %s: %s", reminder.id, e)

        instances.sort(key=lambda r: (r.due_at, r.identity.key))
        logger.debug(
            "Window (%s, %s]: %d reminders due",
            now_window.start.isoformat(),
            now_window.end.isoformat(),
            len(instances),
        )
        return instances

    def _event_reminders(
        self, event: CalendarEvent, now_window: TimeWindow
    ) -> list[ReminderInstance]:
        max_offset = datetime.timedelta(minutes=max(event.reminder_offsets))
        occurrences = expand_event(
            event,
            now_window.start,
            now_window.end + max_offset + _EPSILON,
            self.expander_config,
        )
        name = display_name(event.ceremony_type)
        due: list[ReminderInstance] = []
        for occurrence in occurrences:
            for offset in event.reminder_offsets:
                due_at = occurrence.start_time - datetime.timedelta(minutes=offset)
                if not in_window(due_at, now_window):
                    continue
                due.append(
                    ReminderInstance(
                        identity=ReminderIdentity(
                            source_id=event.id,
                            occurrence_index=occurrence.occurrence_index,
                            offset_minutes=offset,
                        ),
                        due_at=due_at,
                        category=ReminderCategory.CEREMONY,
                        source_kind="event",
                        title=event.title,
                        message=f"{name} starts in {describe_offset(offset)}",
                        occurrence_start=occurrence.start_time,
                        ceremony_type=event.ceremony_type,
                        meeting_link=event.meeting_link,
                        calendar_event_id=event.id,
                    )
                )
        return due

    def _standalone_reminders(
        self, reminder: StandaloneReminder, now_window: TimeWindow
    ) -> list[ReminderInstance]:
        occurrences = expand(
            reminder.reminder_time,
            reminder.reminder_time,
            reminder.recurrence,
            now_window.start,
            now_window.end + _EPSILON,
            source_event_id=reminder.id,
            config=self.expander_config,
        )
        return [
            ReminderInstance(
                identity=ReminderIdentity(
                    source_id=reminder.id,
                    occurrence_index=occurrence.occurrence_index,
                    offset_minutes=0,
                ),
                due_at=occurrence.start_time,
                category=reminder.category,
                source_kind="standalone",
                title=STANDALONE_TITLES[reminder.type],
                message=reminder.message,
                ceremony_type=reminder.ceremony_type,
                meeting_link=reminder.meeting_link,
                note_id=reminder.note_id,
                todo_id=reminder.todo_id,
                calendar_event_id=reminder.calendar_event_id,
            )
            for occurrence in occurrences
            if in_window(occurrence.start_time, now_window)
        ]
