"""
Unit tests for ceremonybot.scheduler.NotificationScheduler.

Time never comes from the wall clock here: every tick receives an explicit
``now`` and last_tick is seeded through the store.
"""

import asyncio
import json
from datetime import datetime, timezone

import pytest

from ceremonybot.dispatch import CollectingDispatchSink
from ceremonybot.exceptions import DispatchError, StoreUnavailable
from ceremonybot.health import HealthTracker
from ceremonybot.models import CeremonyType, NotificationPriority, ReminderCategory
from ceremonybot.scheduler import NotificationScheduler, SchedulerConfig, build_notification
from ceremonybot.snooze import SnoozeManager

pytestmark = pytest.mark.unit

UTC = timezone.utc
T0 = datetime(2024, 1, 2, 8, 40, tzinfo=UTC)
T1 = datetime(2024, 1, 2, 8, 50, tzinfo=UTC)


def _config(**overrides) -> SchedulerConfig:
    values = {
        "tick_interval_seconds": 60,
        "tick_timeout_seconds": 5,
        "dispatch_timeout_seconds": 1,
        "write_retries": 1,
        "write_retry_backoff_seconds": 0,
    }
    values.update(overrides)
    return SchedulerConfig(**values)


@pytest.fixture
def health():
    return HealthTracker()


@pytest.fixture
def planning(make_event):
    """Two-hour sprint planning at 09:00 with a meeting link and a 15-minute reminder."""
    return make_event(
        id="planning",
        end_time=datetime(2024, 1, 2, 11, tzinfo=UTC),
        meeting_link="https://meet.example/planning",
    )


@pytest.fixture
def scheduler(store, settings_manager, collecting_sink, health):
    return NotificationScheduler(
        store,
        settings_manager,
        sinks=[collecting_sink],
        config=_config(),
        clock=lambda: T1,
        health=health,
    )


class _RaisingSink:
    def deliver(self, notification):
        raise DispatchError("webhook down")


class _AsyncRaisingSink:
    async def deliver(self, notification):
        raise DispatchError("async webhook down")


class _SlowSink:
    async def deliver(self, notification):
        await asyncio.sleep(5)


class TestTick:
    async def test_creates_notification_for_due_reminder(self, store, scheduler, planning, collecting_sink):
        store.upsert_event(planning)
        store.set_last_tick(T0)

        result = await scheduler.tick(T1)

        assert result.advanced is True
        assert len(result.created) == 1
        notification = result.created[0]
        assert notification.reminder_instance_identity == "planning:0:15"
        assert notification.category == ReminderCategory.CEREMONY
        assert notification.title == "Sprint Planning"
        assert notification.message == "Sprint Planning starts in 15 minutes"
        assert notification.created_at == T1
        assert notification.channels == ["badge", "sound", "browser"]
        assert [a.action for a in notification.actions] == ["join_meeting", "snooze_5", "dismiss"]
        assert notification.data["meeting_link"] == "https://meet.example/planning"
        assert collecting_sink.delivered == [notification]
        assert store.is_notified(notification.reminder_instance_identity)
        assert store.get_last_tick() == T1

    async def test_rescanning_same_window_creates_nothing(self, store, scheduler, planning, collecting_sink):
        store.upsert_event(planning)
        store.set_last_tick(T0)
        await scheduler.tick(T1)

        store.set_last_tick(T0)
        result = await scheduler.tick(T1)

        assert result.created == []
        assert result.duplicates == 1
        assert len(store.list_notifications()) == 1
        assert len(collecting_sink.delivered) == 1

    async def test_first_tick_looks_back_one_interval(self, store, scheduler, planning):
        store.upsert_event(planning)

        result = await scheduler.tick(datetime(2024, 1, 2, 8, 45, 30, tzinfo=UTC))

        assert result.window.start == datetime(2024, 1, 2, 8, 44, 30, tzinfo=UTC)
        assert len(result.created) == 1

    async def test_tick_not_after_last_tick_is_noop(self, store, scheduler, planning):
        store.upsert_event(planning)
        store.set_last_tick(datetime(2024, 1, 2, 9, tzinfo=UTC))

        result = await scheduler.tick(T1)

        assert result.advanced is False
        assert result.created == []
        assert store.get_last_tick() == datetime(2024, 1, 2, 9, tzinfo=UTC)

    async def test_records_success_in_health(self, store, scheduler, planning, health):
        store.upsert_event(planning)
        store.set_last_tick(T0)

        await scheduler.tick(T1)

        assert health.get_last_tick_age_seconds() is not None
        assert health.counters["created"] == 1


class TestSuppression:
    async def test_quiet_hours_suppress_late_evening_and_allow_morning(
        self, store, scheduler, settings_manager, make_event, collecting_sink
    ):
        settings_manager.update({"quiet_hours": {"start": "22:00", "end": "08:00"}})
        store.upsert_event(
            make_event(id="late", start_time=datetime(2024, 1, 2, 23, 45, tzinfo=UTC))
        )
        store.upsert_event(
            make_event(id="morning", start_time=datetime(2024, 1, 3, 9, 15, tzinfo=UTC))
        )
        store.set_last_tick(datetime(2024, 1, 2, 23, tzinfo=UTC))

        result = await scheduler.tick(datetime(2024, 1, 3, 9, 5, tzinfo=UTC))

        assert result.suppressed == 1
        assert [n.reminder_instance_identity for n in result.created] == ["morning:0:15"]
        assert not store.is_notified("late:0:15")
        assert len(collecting_sink.delivered) == 1

    async def test_quiet_hours_evaluated_in_settings_timezone(
        self, store, scheduler, settings_manager, make_event
    ):
        settings_manager.update(
            {
                "timezone": "America/New_York",
                "quiet_hours": {"start": "22:00", "end": "08:00"},
            }
        )
        # Due 12:30 UTC is 07:30 in New York.
        store.upsert_event(make_event(start_time=datetime(2024, 1, 3, 12, 45, tzinfo=UTC)))
        store.set_last_tick(datetime(2024, 1, 3, 12, tzinfo=UTC))

        result = await scheduler.tick(datetime(2024, 1, 3, 13, tzinfo=UTC))

        assert result.suppressed == 1
        assert result.created == []

    async def test_disabled_category_suppressed(self, store, scheduler, settings_manager, make_event):
        settings_manager.update({"category_enabled": {"ceremony": False}})
        store.upsert_event(make_event())
        store.set_last_tick(T0)

        result = await scheduler.tick(T1)

        assert result.suppressed == 1
        assert store.list_notifications() == []

    async def test_globally_disabled(self, store, scheduler, settings_manager, make_event):
        settings_manager.update({"enabled": False})
        store.upsert_event(make_event())
        store.set_last_tick(T0)

        result = await scheduler.tick(T1)

        assert result.suppressed == 1
        assert result.advanced is True

    async def test_channels_follow_settings(self, store, scheduler, settings_manager, make_event):
        settings_manager.update({"sound_enabled": False, "browser_notifications_enabled": False})
        store.upsert_event(make_event())
        store.set_last_tick(T0)

        result = await scheduler.tick(T1)

        assert result.created[0].channels == ["badge"]


class TestPriorityAndActions:
    async def test_pi_planning_is_high_priority(self, store, scheduler, make_event):
        store.upsert_event(make_event(ceremony_type=CeremonyType.PI_PLANNING, title="PI 24.2"))
        store.set_last_tick(T0)

        result = await scheduler.tick(T1)

        assert result.created[0].priority == NotificationPriority.HIGH
        assert result.created[0].message == "PI Planning starts in 15 minutes"

    async def test_todo_reminder_actions(self, store, scheduler, make_reminder):
        store.save_standalone_reminder(
            make_reminder(reminder_time=datetime(2024, 1, 2, 8, 45, tzinfo=UTC))
        )
        store.set_last_tick(T0)

        result = await scheduler.tick(T1)

        notification = result.created[0]
        assert notification.category == ReminderCategory.TODO
        assert notification.priority == NotificationPriority.MEDIUM
        assert [a.action for a in notification.actions] == ["complete_todo", "snooze", "dismiss"]
        assert notification.data["todo_id"] == "todo-42"

    async def test_note_reminder_is_low_priority(self, store, scheduler, make_reminder):
        store.save_standalone_reminder(
            make_reminder(
                type="note",
                note_id="note-1",
                todo_id=None,
                reminder_time=datetime(2024, 1, 2, 8, 45, tzinfo=UTC),
            )
        )
        store.set_last_tick(T0)

        result = await scheduler.tick(T1)

        assert result.created[0].priority == NotificationPriority.LOW
        assert [a.action for a in result.created[0].actions] == ["open_note", "dismiss"]


class TestFailures:
    async def test_sink_failures_do_not_stop_delivery(self, store, settings_manager, make_event):
        collecting = CollectingDispatchSink()
        scheduler = NotificationScheduler(
            store,
            settings_manager,
            sinks=[_RaisingSink(), _AsyncRaisingSink(), collecting],
            config=_config(),
        )
        store.upsert_event(make_event())
        store.set_last_tick(T0)

        result = await scheduler.tick(T1)

        assert result.advanced is True
        assert len(result.created) == 1
        assert collecting.delivered == result.created

    async def test_persistent_write_failure_holds_last_tick(
        self, store, scheduler, make_event, monkeypatch
    ):
        store.upsert_event(make_event())
        store.set_last_tick(T0)
        original = store.save_notification
        failing = {"on": True}

        def flaky_save(notification):
            if failing["on"]:
                raise StoreUnavailable("disk full")
            return original(notification)

        monkeypatch.setattr(store, "save_notification", flaky_save)

        result = await scheduler.tick(T1)

        assert result.failed == 1
        assert result.advanced is False
        assert store.get_last_tick() == T0
        assert not store.is_notified("evt-1:0:15")

        failing["on"] = False
        retry = await scheduler.tick(T1)

        assert [n.reminder_instance_identity for n in retry.created] == ["evt-1:0:15"]
        assert store.get_last_tick() == T1

    async def test_transient_write_failure_is_retried(self, store, scheduler, make_event, monkeypatch):
        store.upsert_event(make_event())
        store.set_last_tick(T0)
        original = store.record_notified
        attempts = []

        def flaky_record(key, due_at=None):
            attempts.append(key)
            if len(attempts) == 1:
                raise OSError("temporarily unavailable")
            return original(key, due_at)

        monkeypatch.setattr(store, "record_notified", flaky_record)

        result = await scheduler.tick(T1)

        assert len(attempts) == 2
        assert len(result.created) == 1
        assert result.advanced is True

    async def test_store_unavailable_skips_tick(self, store, settings_manager):
        class _DownEngine:
            def due_reminders(self, window):
                raise StoreUnavailable("offline")

        scheduler = NotificationScheduler(
            store, settings_manager, rule_engine=_DownEngine(), config=_config()
        )
        store.set_last_tick(T0)

        result = await scheduler.tick(T1)

        assert result.advanced is False
        assert store.get_last_tick() == T0

    async def test_tick_timeout_leaves_last_tick(self, store, settings_manager, make_event, health):
        scheduler = NotificationScheduler(
            store,
            settings_manager,
            sinks=[_SlowSink()],
            config=_config(tick_timeout_seconds=0.05, dispatch_timeout_seconds=5),
            health=health,
        )
        store.upsert_event(make_event())
        store.set_last_tick(T0)

        result = await scheduler.tick(T1)

        assert result.advanced is False
        assert store.get_last_tick() == T0
        assert health.counters["tick_timeouts"] == 1

    async def test_one_failing_reminder_does_not_abort_tick(
        self, store, scheduler, planning, make_event, collecting_sink, health, monkeypatch
    ):
        store.upsert_event(planning)
        store.upsert_event(make_event(id="review", title="Sprint Review", ceremony_type="sprint_review"))
        store.set_last_tick(T0)

        def build_or_fail(instance, settings, created_at):
            if instance.identity.key == "planning:0:15":
                raise RuntimeError("template error")
            return build_notification(instance, settings, created_at)

        monkeypatch.setattr("ceremonybot.scheduler.build_notification", build_or_fail)

        result = await scheduler.tick(T1)

        assert result.advanced is True
        assert result.failed == 1
        assert [n.reminder_instance_identity for n in result.created] == ["review:0:15"]
        assert [n.title for n in collecting_sink.delivered] == ["Sprint Review"]
        assert not store.is_notified("planning:0:15")
        assert store.get_last_tick() == T1
        assert health.counters["failed"] == 1

    async def test_advanced_tick_prunes_expired_history(self, store, scheduler, planning):
        store.upsert_event(planning)
        store.record_notified("retro:0:15", datetime(2023, 11, 1, 8, 45, tzinfo=UTC))
        store.set_last_tick(T0)

        result = await scheduler.tick(T1)

        assert result.advanced is True
        assert not store.is_notified("retro:0:15")
        assert store.is_notified("planning:0:15")
        data = json.loads(store.path.read_text(encoding="utf-8"))
        assert data["notified_due"] == {"planning:0:15": "2024-01-02T08:45:00Z"}

    async def test_held_tick_does_not_prune(self, store, scheduler, planning, monkeypatch):
        store.upsert_event(planning)
        store.record_notified("retro:0:15", datetime(2023, 11, 1, 8, 45, tzinfo=UTC))
        store.set_last_tick(T0)

        def down(*_args, **_kwargs):
            raise StoreUnavailable("disk detached")

        monkeypatch.setattr(store, "save_notification", down)

        result = await scheduler.tick(T1)

        assert result.advanced is False
        assert store.is_notified("retro:0:15")


class TestSnoozeRefire:
    async def test_snoozed_notification_fires_again(self, store, scheduler, make_event):
        store.upsert_event(make_event(meeting_link="https://meet.example/planning"))
        store.set_last_tick(T0)
        first = (await scheduler.tick(T1)).created[0]

        reminder = SnoozeManager(store, clock=lambda: T1).snooze(first.id, 5)
        result = await scheduler.tick(datetime(2024, 1, 2, 9, tzinfo=UTC))

        assert [n.reminder_instance_identity for n in result.created] == [f"{reminder.id}:0:0"]
        refired = result.created[0]
        assert refired.message == "Sprint Planning (snoozed)"
        assert refired.category == ReminderCategory.CEREMONY
        assert refired.data["meeting_link"] == "https://meet.example/planning"
        assert [n.id for n in store.list_notifications()] == [refired.id]


class TestLifecycle:
    async def test_start_ticks_and_stop_ends_loop(self, scheduler, health):
        task = scheduler.start()
        assert scheduler.start() is task
        await asyncio.sleep(0.05)

        await scheduler.stop()

        assert not scheduler.running
        assert health.get_background_task_status()["status"] == "running"

