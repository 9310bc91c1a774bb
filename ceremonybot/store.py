"""JSON-backed event and notification store with atomic writes."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from .exceptions import ConfigurationError, NotificationNotFound, StoreUnavailable
from .models import CalendarEvent, Notification, QueryFilters, StandaloneReminder, TimeWindow
from .timeutils import parse_iso, serialize_iso

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _load_records(raw: Any, model: type[ModelT], kind: str) -> dict[str, ModelT]:
    """Validate a list of raw records, skipping malformed entries with a warning."""
    records: dict[str, ModelT] = {}
    if not isinstance(raw, list):
        if raw is not None:
            logger.warning("Ignoring %s: expected a list, got %s", kind, type(raw).__name__)
        return records
    for entry in raw:
        try:
            record = model.model_validate(entry)
        except (ValidationError, ConfigurationError) as e:
            logger.warning("Skipping malformed %s record: %s", kind, e)
            continue
        records[record.id] = record  # type: ignore[attr-defined]
    return records


def _load_notified(keys: Any, due_times: Any) -> dict[str, Optional[datetime]]:
    """Rebuild the notified map; keys without a parseable due time keep None."""
    due_times = due_times if isinstance(due_times, dict) else {}
    notified: dict[str, Optional[datetime]] = {}
    for key in keys or []:
        if not isinstance(key, str) or not key:
            continue
        due = due_times.get(key)
        try:
            notified[key] = parse_iso(due) if isinstance(due, str) else None
        except ValueError:
            logger.warning("Ignoring malformed due time %r for %s", due, key)
            notified[key] = None
    return notified


class JsonEventStore:
    """Persistent store for events, standalone reminders, notifications and the notified set.

    The on-disk format is a single JSON object::

        {
          "events": [...],
          "standalone_reminders": [...],
          "notifications": [...],
          "notified": ["<identity key>", ...],
          "notified_due": {"<identity key>": "2024-01-02T08:45:00Z", ...},
          "last_tick": "2024-01-02T09:00:00Z" | null
        }

    Every mutation is persisted before the method returns. A failed write is
    rolled back in memory and surfaces as StoreUnavailable so callers can retry.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._events: dict[str, CalendarEvent] = {}
        self._reminders: dict[str, StandaloneReminder] = {}
        self._notifications: dict[str, Notification] = {}
        # identity key -> due time of the reminder it records (None if unknown)
        self._notified: dict[str, Optional[datetime]] = {}
        self._last_tick: Optional[datetime] = None

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.debug("Could not ensure directory for event store: %s", self._path.parent)

        self.load()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> None:
        """Load JSON from disk (if present) and replace the in-memory state.

        Malformed records are skipped with a warning. A file that exists but
        cannot be read or parsed is left untouched on disk and the current
        in-memory state is kept.

        Raises:
            StoreUnavailable: if the store file is unreadable or corrupt
        """
        with self._lock:
            if not self._path.exists():
                logger.debug("Event store file not found; starting empty: %s", self._path)
                self._events, self._reminders, self._notifications = {}, {}, {}
                self._notified, self._last_tick = {}, None
                return

            try:
                with self._path.open("r", encoding="utf-8") as fh:
                    data = json.load(fh)
                if not isinstance(data, dict):
                    raise ValueError("event store JSON root must be an object")  # noqa: TRY004
            except (OSError, ValueError) as exc:
                logger.error("Failed to read event store %s: %s", self._path, exc)
                raise StoreUnavailable(f"cannot read event store {self._path}: {exc}") from exc

            self._events = _load_records(data.get("events"), CalendarEvent, "event")
            self._reminders = _load_records(
                data.get("standalone_reminders"), StandaloneReminder, "standalone reminder"
            )
            self._notifications = _load_records(
                data.get("notifications"), Notification, "notification"
            )
            self._notified = _load_notified(data.get("notified"), data.get("notified_due"))

            self._last_tick = None
            last_tick = data.get("last_tick")
            if isinstance(last_tick, str):
                try:
                    self._last_tick = parse_iso(last_tick)
                except ValueError:
                    logger.warning("Ignoring malformed last_tick %r", last_tick)

            logger.debug(
                "Loaded event store %s (%d events, %d reminders, %d notifications, %d notified)",
                self._path,
                len(self._events),
                len(self._reminders),
                len(self._notifications),
                len(self._notified),
            )

    def _snapshot(self) -> dict[str, Any]:
        return {
            "events": [e.model_dump(mode="json") for e in self._events.values()],
            "standalone_reminders": [r.model_dump(mode="json") for r in self._reminders.values()],
            "notifications": [n.model_dump(mode="json") for n in self._notifications.values()],
            "notified": sorted(self._notified),
            "notified_due": {
                key: serialize_iso(due) for key, due in sorted(self._notified.items()) if due is not None
            },
            "last_tick": serialize_iso(self._last_tick) if self._last_tick else None,
        }

    def _persist(self) -> None:
        """Persist current in-memory state to disk atomically.

        Writes to a temporary file in the same directory then replaces the
        target, so readers never observe a partial file.

        Raises:
            StoreUnavailable: if the write fails
        """
        data = self._snapshot()
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=self._path.parent, delete=False, encoding="utf-8"
            ) as tf:
                tmp_path = Path(tf.name)
                json.dump(data, tf, ensure_ascii=False, indent=2)
                tf.flush()
                with contextlib.suppress(OSError):
                    os.fsync(tf.fileno())
            os.replace(tmp_path, self._path)
        except (OSError, TypeError, ValueError) as exc:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
            raise StoreUnavailable(f"failed to persist event store to {self._path}: {exc}") from exc

    def _commit(self, undo: Callable[[], None]) -> None:
        """Persist, restoring the previous in-memory state if the write fails."""
        try:
            self._persist()
        except StoreUnavailable:
            undo()
            raise

    # Events

    def list_events(
        self, window: Optional[TimeWindow] = None, filters: Optional[QueryFilters] = None
    ) -> list[CalendarEvent]:
        with self._lock:
            events = list(self._events.values())
        if window is None:
            return events
        # Only one-off events that clearly miss the window can be dropped here.
        return [
            e
            for e in events
            if e.is_recurring or (e.start_time < window.end and e.end_time > window.start)
        ]

    def get_event(self, event_id: str) -> Optional[CalendarEvent]:
        with self._lock:
            return self._events.get(event_id)

    def upsert_event(self, event: CalendarEvent) -> None:
        with self._lock:
            previous = self._events.get(event.id)
            self._events[event.id] = event

            def undo() -> None:
                if previous is None:
                    self._events.pop(event.id, None)
                else:
                    self._events[event.id] = previous

            self._commit(undo)
        logger.debug("Stored event %s (%s)", event.id, event.title)

    def delete_event(self, event_id: str) -> bool:
        """Delete an event; returns False if it did not exist."""
        with self._lock:
            previous = self._events.pop(event_id, None)
            if previous is None:
                return False
            self._commit(lambda: self._events.__setitem__(event_id, previous))
        return True

    # Standalone reminders

    def list_standalone_reminders(
        self, window: Optional[TimeWindow] = None
    ) -> list[StandaloneReminder]:
        with self._lock:
            reminders = list(self._reminders.values())
        if window is None:
            return reminders
        # One-off reminders due at or before window.start were covered by an earlier window.
        return [
            r for r in reminders
            if r.recurrence is not None or window.start < r.reminder_time <= window.end
        ]

    def save_standalone_reminder(self, reminder: StandaloneReminder) -> None:
        with self._lock:
            previous = self._reminders.get(reminder.id)
            self._reminders[reminder.id] = reminder

            def undo() -> None:
                if previous is None:
                    self._reminders.pop(reminder.id, None)
                else:
                    self._reminders[reminder.id] = previous

            self._commit(undo)

    def delete_standalone_reminder(self, reminder_id: str) -> bool:
        with self._lock:
            previous = self._reminders.pop(reminder_id, None)
            if previous is None:
                return False
            self._commit(lambda: self._reminders.__setitem__(reminder_id, previous))
        return True

    # Notified set

    def record_notified(self, identity_key: str, due_at: Optional[datetime] = None) -> bool:
        with self._lock:
            if identity_key in self._notified:
                return False
            self._notified[identity_key] = due_at
            self._commit(lambda: self._notified.pop(identity_key, None))
        return True

    def is_notified(self, identity_key: str) -> bool:
        with self._lock:
            return identity_key in self._notified

    def prune(self, before: datetime) -> int:
        """Forget notified identities and one-off standalone reminders due before ``before``.

        Identities recorded without a due time are kept. Returns the number of
        entries removed.
        """
        with self._lock:
            stale_keys = [k for k, due in self._notified.items() if due is not None and due < before]
            spent = [
                r for r in self._reminders.values()
                if r.recurrence is None and r.reminder_time < before
            ]
            if not stale_keys and not spent:
                return 0
            removed_keys = {k: self._notified.pop(k) for k in stale_keys}
            for reminder in spent:
                del self._reminders[reminder.id]

            def undo() -> None:
                self._notified.update(removed_keys)
                self._reminders.update({r.id: r for r in spent})

            self._commit(undo)
        logger.debug(
            "Pruned %d notified identities and %d spent reminders due before %s",
            len(stale_keys),
            len(spent),
            serialize_iso(before),
        )
        return len(stale_keys) + len(spent)

    # Notifications

    def save_notification(self, notification: Notification) -> None:
        with self._lock:
            previous = self._notifications.get(notification.id)
            self._notifications[notification.id] = notification

            def undo() -> None:
                if previous is None:
                    self._notifications.pop(notification.id, None)
                else:
                    self._notifications[notification.id] = previous

            self._commit(undo)

    def get_notification(self, notification_id: str) -> Notification:
        with self._lock:
            notification = self._notifications.get(notification_id)
        if notification is None:
            raise NotificationNotFound(notification_id)
        return notification

    def list_notifications(self) -> list[Notification]:
        with self._lock:
            notifications = list(self._notifications.values())
        return sorted(notifications, key=lambda n: n.created_at, reverse=True)

    def update_notification(self, notification_id: str, patch: dict[str, Any]) -> Notification:
        with self._lock:
            current = self._notifications.get(notification_id)
            if current is None:
                raise NotificationNotFound(notification_id)
            updated = Notification.model_validate({**current.model_dump(), **patch})
            self._notifications[notification_id] = updated
            self._commit(lambda: self._notifications.__setitem__(notification_id, current))
        return updated

    def delete_notification(self, notification_id: str) -> None:
        with self._lock:
            current = self._notifications.pop(notification_id, None)
            if current is None:
                raise NotificationNotFound(notification_id)
            self._commit(lambda: self._notifications.__setitem__(notification_id, current))

    # Scheduler bookkeeping

    def get_last_tick(self) -> Optional[datetime]:
        with self._lock:
            return self._last_tick

    def set_last_tick(self, value: datetime) -> None:
        with self._lock:
            previous = self._last_tick
            self._last_tick = value

            def undo() -> None:
                self._last_tick = previous

            self._commit(undo)
