"""Protocol definitions for the collaborators the reminder core depends on.

The core never touches storage, settings persistence or delivery channels
directly; it talks to these interfaces. Concrete implementations live in
``store``, ``settings_store`` and ``dispatch``.
"""

from __future__ import annotations

import datetime
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any, Optional, Protocol, Union

if TYPE_CHECKING:
    from ceremonybot.models import (
        CalendarEvent,
        Notification,
        NotificationSettings,
        QueryFilters,
        StandaloneReminder,
        TimeWindow,
    )


class EventStore(Protocol):
    """Durable storage for events, reminders, notifications and the notified set.

    Implementations own their concurrency discipline; every method may be
    called from a worker thread. Read or write failures raise StoreUnavailable.
    """

    def list_events(
        self, window: Optional[TimeWindow] = None, filters: Optional[QueryFilters] = None
    ) -> list[CalendarEvent]:
        """Return candidate events.

        Args:
            window: Optional window hint; implementations may pre-filter but
                callers must not rely on it
            filters: Optional filter hint with the same caveat

        Returns:
            Candidate CalendarEvents
        """
        ...

    def list_standalone_reminders(
        self, window: Optional[TimeWindow] = None
    ) -> list[StandaloneReminder]:
        """Return standalone reminders (todo, note, snoozed) that may fall in ``window``."""
        ...

    def record_notified(
        self, identity_key: str, due_at: Optional[datetime.datetime] = None
    ) -> bool:
        """Insert ``identity_key`` into the notified set if absent.

        ``due_at`` is the due time of the reminder, used later by ``prune``.

        Returns:
            True if the key was inserted, False if it was already present
        """
        ...

    def is_notified(self, identity_key: str) -> bool:
        """Check whether ``identity_key`` is already in the notified set."""
        ...

    def save_notification(self, notification: Notification) -> None:
        """Persist a new notification record."""
        ...

    def update_notification(self, notification_id: str, patch: dict[str, Any]) -> Notification:
        """Apply ``patch`` to a stored notification and return the updated record.

        Raises:
            NotificationNotFound: if no notification has that id
        """
        ...

    def delete_notification(self, notification_id: str) -> None:
        """Delete a notification.

        Raises:
            NotificationNotFound: if no notification has that id
        """
        ...

    def get_notification(self, notification_id: str) -> Notification:
        """Fetch one notification.

        Raises:
            NotificationNotFound: if no notification has that id
        """
        ...

    def list_notifications(self) -> list[Notification]:
        """Return all stored notifications, newest first."""
        ...

    def save_standalone_reminder(self, reminder: StandaloneReminder) -> None:
        """Insert or replace a standalone reminder."""
        ...

    def get_last_tick(self) -> Optional[datetime.datetime]:
        """Return the persisted end of the last processed scheduler window, if any."""
        ...

    def set_last_tick(self, value: datetime.datetime) -> None:
        """Persist the end of the last processed scheduler window."""
        ...

    def prune(self, before: datetime.datetime) -> int:
        """Drop notified identities and spent one-off reminders due before ``before``."""
        ...


class DispatchSink(Protocol):
    """Consumer of emitted notifications (badge, OS notification, sound, webhook)."""

    def deliver(self, notification: Notification) -> Union[None, Awaitable[None]]:
        """Deliver a notification, fire-and-forget.

        May be a plain or a coroutine method. Failures are the caller's to log
        and swallow; delivery success never affects scheduler state.
        """
        ...


class SettingsProvider(Protocol):
    """Read-only access to the current notification settings snapshot."""

    def get_notification_settings(self) -> NotificationSettings:
        """Return a complete, immutable settings snapshot."""
        ...


class Clock(Protocol):
    """Protocol for time provider callables."""

    def __call__(self) -> datetime.datetime:
        """Return current UTC time.

        Returns:
            Current UTC datetime
        """
        ...
