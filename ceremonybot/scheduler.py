"""Background notification scheduler.

Each tick scans the window (last_tick, now], turns newly due reminder
instances into Notification records exactly once, and hands them to the
dispatch sinks. State per reminder identity moves Pending -> Notified; the
snooze manager takes it from there.

Ordering of durable writes for one reminder: save_notification, then
record_notified, then dispatch. A write that still fails after retries keeps
last_tick where it was, so the window is scanned again on the next tick.
"""

from __future__ import annotations

import asyncio
import datetime
import inspect
import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

from .async_utils import AsyncOrchestrator, AsyncRetryExhaustedError, AsyncTimeoutError, RetryPolicy
from .catalogue import get_ceremony_info
from .exceptions import StoreUnavailable
from .health import HealthTracker
from .models import (
    Notification,
    NotificationAction,
    NotificationPriority,
    NotificationSettings,
    ReminderCategory,
    ReminderInstance,
    TimeWindow,
)
from .protocols import Clock, DispatchSink, EventStore, SettingsProvider
from .reminder_rules import ReminderRuleEngine
from .timeutils import ensure_utc, minutes_of_day, now_utc, serialize_iso

logger = logging.getLogger(__name__)

_ACTIONS: dict[ReminderCategory, tuple[NotificationAction, ...]] = {
    ReminderCategory.TODO: (
        NotificationAction(label="Mark Done", action="complete_todo", style="primary"),
        NotificationAction(label="Snooze", action="snooze"),
        NotificationAction(label="Dismiss", action="dismiss"),
    ),
    ReminderCategory.CEREMONY: (
        NotificationAction(label="Join Meeting", action="join_meeting", style="primary"),
        NotificationAction(label="Snooze 5 min", action="snooze_5"),
        NotificationAction(label="Dismiss", action="dismiss"),
    ),
    ReminderCategory.NOTE: (
        NotificationAction(label="Open Note", action="open_note", style="primary"),
        NotificationAction(label="Dismiss", action="dismiss"),
    ),
}
_ACTIONS[ReminderCategory.MEETING] = _ACTIONS[ReminderCategory.CEREMONY]

_CATEGORY_PRIORITY = {
    ReminderCategory.CEREMONY: NotificationPriority.MEDIUM,
    ReminderCategory.MEETING: NotificationPriority.MEDIUM,
    ReminderCategory.TODO: NotificationPriority.MEDIUM,
    ReminderCategory.NOTE: NotificationPriority.LOW,
}


@dataclass
class SchedulerConfig:
    """Timing and retry settings for the scheduler loop."""

    tick_interval_seconds: float = 60.0
    tick_timeout_seconds: float = 30.0
    dispatch_timeout_seconds: float = 10.0
    initial_lookback_seconds: Optional[float] = None
    write_retries: int = 3
    write_retry_backoff_seconds: float = 0.5
    notified_retention_days: float = 30.0

    @property
    def initial_lookback(self) -> datetime.timedelta:
        seconds = self.initial_lookback_seconds
        if seconds is None:
            seconds = self.tick_interval_seconds
        return datetime.timedelta(seconds=seconds)

    @classmethod
    def from_settings(cls, settings: Any) -> "SchedulerConfig":
        """Extract scheduler settings from a config object, falling back to defaults."""
        defaults = cls()
        return cls(
            tick_interval_seconds=getattr(settings, "tick_interval_seconds", defaults.tick_interval_seconds),
            tick_timeout_seconds=getattr(settings, "tick_timeout_seconds", defaults.tick_timeout_seconds),
            dispatch_timeout_seconds=getattr(
                settings, "dispatch_timeout_seconds", defaults.dispatch_timeout_seconds
            ),
            initial_lookback_seconds=getattr(settings, "initial_lookback_seconds", None),
            write_retries=getattr(settings, "write_retries", defaults.write_retries),
            write_retry_backoff_seconds=getattr(
                settings, "write_retry_backoff_seconds", defaults.write_retry_backoff_seconds
            ),
            notified_retention_days=getattr(
                settings, "notified_retention_days", defaults.notified_retention_days
            ),
        )


@dataclass
class TickResult:
    """Outcome of one scheduler tick."""

    window: Optional[TimeWindow] = None
    created: list[Notification] = field(default_factory=list)
    suppressed: int = 0
    duplicates: int = 0
    failed: int = 0
    advanced: bool = False


def derive_priority(instance: ReminderInstance) -> NotificationPriority:
    """PI Planning and Inspect & Adapt are high; the rest follow their category."""
    if instance.ceremony_type is not None and instance.category in (
        ReminderCategory.CEREMONY,
        ReminderCategory.MEETING,
    ):
        return get_ceremony_info(instance.ceremony_type).priority
    return _CATEGORY_PRIORITY[instance.category]


def actions_for(category: ReminderCategory) -> list[NotificationAction]:
    return list(_ACTIONS[category])


def suppression_reason(
    instance: ReminderInstance, settings: NotificationSettings
) -> Optional[str]:
    """Return why ``instance`` must not produce a notification, or None."""
    if not settings.enabled:
        return "notifications disabled"
    if not settings.is_category_enabled(instance.category):
        return f"category {instance.category.value} disabled"
    quiet = settings.quiet_hours
    if quiet is not None and quiet.contains(minutes_of_day(instance.due_at, settings.timezone)):
        return f"quiet hours {quiet.start}-{quiet.end}"
    return None


def channels_for(settings: NotificationSettings) -> list[str]:
    channels = ["badge"]
    if settings.sound_enabled:
        channels.append("sound")
    if settings.browser_notifications_enabled:
        channels.append("browser")
    return channels


def build_notification(
    instance: ReminderInstance,
    settings: NotificationSettings,
    created_at: datetime.datetime,
) -> Notification:
    """Create the Notification record for a due reminder instance."""
    data: dict[str, Any] = {
        "identity": instance.identity.key,
        "source_kind": instance.source_kind,
        "due_at": serialize_iso(instance.due_at),
        "occurrence_start": (
            serialize_iso(instance.occurrence_start) if instance.occurrence_start else None
        ),
        "ceremony_type": instance.ceremony_type.value if instance.ceremony_type else None,
        "meeting_link": instance.meeting_link,
        "note_id": instance.note_id,
        "todo_id": instance.todo_id,
        "calendar_event_id": instance.calendar_event_id,
    }
    return Notification(
        id=f"notif-{uuid.uuid4().hex}",
        reminder_instance_identity=instance.identity.key,
        category=instance.category,
        title=instance.title,
        message=instance.message,
        created_at=created_at,
        priority=derive_priority(instance),
        actions=actions_for(instance.category),
        channels=channels_for(settings),
        data={k: v for k, v in data.items() if v is not None},
    )


class NotificationScheduler:
    """Single periodic task that turns due reminders into notifications."""

    def __init__(
        self,
        store: EventStore,
        settings: SettingsProvider,
        sinks: Sequence[DispatchSink] = (),
        rule_engine: Optional[ReminderRuleEngine] = None,
        config: Optional[SchedulerConfig] = None,
        clock: Clock = now_utc,
        health: Optional[HealthTracker] = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: Durable store for notifications, the notified set and last_tick
            settings: Provider of the current notification settings snapshot
            sinks: Dispatch sinks receiving every created notification
            rule_engine: Due-reminder calculator; built over ``store`` if omitted
            config: Timing and retry settings
            clock: Source of "now" when ``tick`` is called without one
            health: Tracker updated with tick outcomes
        """
        self.store = store
        self.settings = settings
        self.sinks = list(sinks)
        self.rule_engine = rule_engine or ReminderRuleEngine(store)
        self.config = config or SchedulerConfig()
        self.clock = clock
        self.health = health or HealthTracker()
        self._orchestrator = AsyncOrchestrator(default_timeout=self.config.dispatch_timeout_seconds)
        self._write_policy = RetryPolicy(
            retries=self.config.write_retries,
            initial_delay=self.config.write_retry_backoff_seconds,
            retry_on=(StoreUnavailable, OSError),
        )
        self._tick_lock = asyncio.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task[None]] = None

    # Tick

    async def tick(self, now: Optional[datetime.datetime] = None) -> TickResult:
        """Process the window (last_tick, now] once.

        Ticks never overlap; a tick exceeding ``tick_timeout_seconds`` is
        cancelled and leaves last_tick unadvanced.
        """
        now = ensure_utc(now or self.clock())
        async with self._tick_lock:
            self.health.record_tick_attempt()
            try:
                result = await self._orchestrator.run_with_timeout(
                    self._tick(now), timeout=self.config.tick_timeout_seconds, label="scheduler tick"
                )
            except AsyncTimeoutError:
                self.health.increment("tick_timeouts")
                logger.error(
                    "Scheduler tick at %s exceeded %.1fs; window will be rescanned",
                    serialize_iso(now),
                    self.config.tick_timeout_seconds,
                )
                return TickResult()
            except StoreUnavailable as e:
                logger.error("Scheduler tick at %s skipped, store unavailable: %s", serialize_iso(now), e)
                return TickResult()

        if result is None:
            return TickResult()
        if result.advanced:
            self.health.record_tick_success()
        return result

    async def _tick(self, now: datetime.datetime) -> TickResult:
        last_tick = await asyncio.to_thread(self.store.get_last_tick)
        if last_tick is None:
            last_tick = now - self.config.initial_lookback
            logger.info("No persisted last tick; starting from %s", serialize_iso(last_tick))

        if now <= last_tick:
            logger.debug("Tick at %s is not after last tick %s; nothing to do", now, last_tick)
            return TickResult(advanced=False)

        window = TimeWindow(start=last_tick, end=now)
        result = TickResult(window=window)
        instances = await asyncio.to_thread(self.rule_engine.due_reminders, window)
        # One consistent settings snapshot for the whole tick.
        settings = self.settings.get_notification_settings()

        write_failed = False
        for instance in instances:
            try:
                await self._process(instance, settings, now, result)
            except AsyncRetryExhaustedError as e:
                write_failed = True
                result.failed += 1
                self.health.increment("failed")
                logger.error(
                    "Durable write failed for reminder %s; window will be rescanned: %s",
                    instance.identity.key,
                    e.__cause__ or e,
                )
            except Exception:
                result.failed += 1
                self.health.increment("failed")
                logger.exception("Failed to process reminder %s", instance.identity.key)

        if write_failed:
            logger.warning("Holding last tick at %s after write failures", serialize_iso(last_tick))
        else:
            try:
                await self._write(self.store.set_last_tick, now)
                result.advanced = True
            except AsyncRetryExhaustedError as e:
                logger.error("Could not persist last tick %s: %s", serialize_iso(now), e.__cause__ or e)
            if result.advanced:
                await self._prune(now)

        logger.info(
            "Tick (%s, %s]: %d due, %d created, %d suppressed, %d duplicate, %d failed",
            serialize_iso(window.start),
            serialize_iso(window.end),
            len(instances),
            len(result.created),
            result.suppressed,
            result.duplicates,
            result.failed,
        )
        return result

    async def _process(
        self,
        instance: ReminderInstance,
        settings: NotificationSettings,
        now: datetime.datetime,
        result: TickResult,
    ) -> None:
        key = instance.identity.key
        if await asyncio.to_thread(self.store.is_notified, key):
            result.duplicates += 1
            self.health.increment("duplicate_skipped")
            logger.debug("Reminder %s already notified; skipping", key)
            return

        reason = suppression_reason(instance, settings)
        if reason is not None:
            result.suppressed += 1
            self.health.increment("suppressed")
            logger.debug("Reminder %s suppressed: %s", key, reason)
            return

        notification = build_notification(instance, settings, now)
        await self._write(self.store.save_notification, notification)
        await self._write(self.store.record_notified, key, instance.due_at)
        result.created.append(notification)
        self.health.increment("created")
        logger.info("Created notification %s for %s (%s)", notification.id, key, notification.title)

        await self._dispatch(notification)

    async def _prune(self, now: datetime.datetime) -> None:
        horizon = now - datetime.timedelta(days=self.config.notified_retention_days)
        try:
            await self._write(self.store.prune, horizon)
        except AsyncRetryExhaustedError as e:
            logger.warning("Could not prune store before %s: %s", serialize_iso(horizon), e.__cause__ or e)

    async def _write(self, func: Callable[..., Any], *args: Any) -> Any:
        return await self._orchestrator.retry_blocking(func, *args, policy=self._write_policy)

    async def _dispatch(self, notification: Notification) -> None:
        for sink in self.sinks:
            try:
                outcome = sink.deliver(notification)
                if inspect.isawaitable(outcome):
                    await self._orchestrator.run_with_timeout(
                        outcome,
                        timeout=self.config.dispatch_timeout_seconds,
                        label=f"{type(sink).__name__} delivery",
                    )
            except Exception as e:
                logger.warning(
                    "Dispatch sink %s failed for notification %s: %s",
                    type(sink).__name__,
                    notification.id,
                    e,
                )

    # Loop lifecycle

    async def run(self, stop_event: asyncio.Event) -> None:
        """Tick immediately, then every ``tick_interval_seconds`` until ``stop_event`` is set."""
        interval = self.config.tick_interval_seconds
        logger.info("Notification scheduler started (interval %.0fs)", interval)
        while not stop_event.is_set():
            self.health.record_background_heartbeat()
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler loop unexpected error")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
        logger.info("Notification scheduler stopped")

    def start(self) -> asyncio.Task[None]:
        """Start the background loop on the running event loop."""
        if self._task is not None and not self._task.done():
            return self._task
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self.run(self._stop_event), name="notification_scheduler")
        return self._task

    async def stop(self) -> None:
        """Stop the loop; an in-flight tick is allowed to finish."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            try:
                await self._task
            finally:
                self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
