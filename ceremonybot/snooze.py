"""Dismiss, snooze and action handling for surfaced notifications."""

from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from .exceptions import UnknownActionError
from .models import (
    CeremonyType,
    Notification,
    ReminderCategory,
    ReminderType,
    StandaloneReminder,
)
from .protocols import Clock, EventStore
from .timeutils import now_utc

logger = logging.getLogger(__name__)

DEFAULT_SNOOZE_MINUTES = 15

_SNOOZE_ACTIONS = {"snooze": DEFAULT_SNOOZE_MINUTES, "snooze_5": 5}
# Actions that open something for the caller, keyed to the data field holding the target.
_TARGET_ACTIONS = {
    "join_meeting": "meeting_link",
    "open_note": "note_id",
    "complete_todo": "todo_id",
}
KNOWN_ACTIONS = frozenset({"dismiss", *_SNOOZE_ACTIONS, *_TARGET_ACTIONS})

_CATEGORY_REMINDER_TYPE = {
    ReminderCategory.TODO: ReminderType.TODO,
    ReminderCategory.NOTE: ReminderType.NOTE,
    ReminderCategory.CEREMONY: ReminderType.CEREMONY,
    ReminderCategory.MEETING: ReminderType.CALENDAR,
}


@dataclass
class ActionResult:
    """What a notification action did, for the caller to follow up on."""

    action: str
    notification_id: str
    notification: Optional[Notification] = None
    reminder: Optional[StandaloneReminder] = None
    target: Optional[str] = None


class SnoozeManager:
    """Moves notifications out of the Notified state: Read, Snoozed or Deleted."""

    def __init__(
        self,
        store: EventStore,
        clock: Clock = now_utc,
    ) -> None:
        self.store = store
        self.clock = clock

    def dismiss(self, notification_id: str) -> Notification:
        """Mark a notification read. Terminal; dismissing twice is harmless.

        Raises:
            NotificationNotFound: for an unknown id
        """
        notification = self.store.update_notification(notification_id, {"is_read": True})
        logger.debug("Dismissed notification %s", notification_id)
        return notification

    def snooze(self, notification_id: str, minutes: int) -> StandaloneReminder:
        """Replace a notification with a standalone reminder ``minutes`` from now.

        The new reminder has a fresh id, so its identity never collides with the
        notified set entry of the original.

        Raises:
            ValueError: if ``minutes`` is not positive
            NotificationNotFound: for an unknown id
        """
        if minutes <= 0:
            raise ValueError(f"snooze minutes must be positive, got {minutes}")

        notification = self.store.get_notification(notification_id)
        data = notification.data
        ceremony_type = data.get("ceremony_type")
        reminder = StandaloneReminder(
            id=f"snooze-{uuid.uuid4().hex}",
            type=_CATEGORY_REMINDER_TYPE[notification.category],
            message=f"{notification.title} (snoozed)",
            reminder_time=self.clock() + datetime.timedelta(minutes=minutes),
            note_id=data.get("note_id"),
            todo_id=data.get("todo_id"),
            calendar_event_id=data.get("calendar_event_id"),
            ceremony_type=CeremonyType(ceremony_type) if ceremony_type else None,
            meeting_link=data.get("meeting_link"),
            snoozed_from=notification.reminder_instance_identity,
            created_at=self.clock(),
        )
        # Reminder first: a failure in between leaves a duplicate, never a lost reminder.
        self.store.save_standalone_reminder(reminder)
        self.store.delete_notification(notification_id)
        logger.info(
            "Snoozed notification %s for %d minutes as reminder %s (due %s)",
            notification_id,
            minutes,
            reminder.id,
            reminder.reminder_time.isoformat(),
        )
        return reminder

    def delete(self, notification_id: str) -> None:
        self.store.delete_notification(notification_id)

    def mark_all_read(self) -> int:
        """Mark every unread notification read; returns how many changed."""
        unread = [n for n in self.store.list_notifications() if not n.is_read]
        for notification in unread:
            self.store.update_notification(notification.id, {"is_read": True})
        return len(unread)

    def list_notifications(self, unread_only: bool = False) -> list[Notification]:
        """Return notifications newest first."""
        notifications = self.store.list_notifications()
        if unread_only:
            return [n for n in notifications if not n.is_read]
        return notifications

    def unread_count(self) -> int:
        return sum(1 for n in self.store.list_notifications() if not n.is_read)

    def handle_action(self, notification_id: str, action: str) -> ActionResult:
        """Apply one of the notification actions.

        Raises:
            UnknownActionError: for an action outside the known set
            NotificationNotFound: for an unknown id
        """
        if action not in KNOWN_ACTIONS:
            raise UnknownActionError(f"unknown notification action {action!r}")

        if action == "dismiss":
            return ActionResult(action, notification_id, notification=self.dismiss(notification_id))

        if action in _SNOOZE_ACTIONS:
            reminder = self.snooze(notification_id, _SNOOZE_ACTIONS[action])
            return ActionResult(action, notification_id, reminder=reminder)

        notification = self.store.get_notification(notification_id)
        target = notification.data.get(_TARGET_ACTIONS[action])
        return ActionResult(
            action,
            notification_id,
            notification=self.dismiss(notification_id),
            target=target,
        )
