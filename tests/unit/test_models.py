"""Unit tests for ceremonybot.models validation and helpers."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from ceremonybot.exceptions import ConfigurationError
from ceremonybot.models import (
    EventStatus,
    NotificationSettings,
    QuietHours,
    RecurrencePattern,
    ReminderCategory,
    ReminderIdentity,
    TimeWindow,
)

pytestmark = pytest.mark.unit

UTC = timezone.utc


class TestCalendarEvent:
    def test_zero_duration_rejected(self, make_event):
        start = datetime(2024, 1, 2, 9, tzinfo=UTC)
        with pytest.raises(ConfigurationError):
            make_event(start_time=start, end_time=start)

    def test_negative_offset_rejected(self, make_event):
        with pytest.raises(ConfigurationError):
            make_event(reminder_offsets=[15, -5])

    def test_offsets_deduplicated_in_order(self, make_event):
        event = make_event(reminder_offsets=[60, 15, 60, 5])
        assert event.reminder_offsets == [60, 15, 5]

    def test_naive_times_treated_as_utc(self, make_event):
        event = make_event(
            start_time=datetime(2024, 1, 2, 9), end_time=datetime(2024, 1, 2, 10)
        )
        assert event.start_time == datetime(2024, 1, 2, 9, tzinfo=UTC)
        assert event.duration == timedelta(hours=1)

    def test_unknown_time_zone_rejected(self, make_event):
        with pytest.raises(ConfigurationError):
            make_event(time_zone="Mars/Olympus_Mons")

    @pytest.mark.parametrize(
        "status,expected",
        [
            (EventStatus.SCHEDULED, True),
            (EventStatus.IN_PROGRESS, True),
            (EventStatus.CANCELLED, False),
            (EventStatus.COMPLETED, False),
        ],
    )
    def test_generates_reminders_by_status(self, make_event, status, expected):
        assert make_event(status=status).generates_reminders is expected

    def test_json_round_trip_keeps_recurrence(self, make_event):
        event = make_event(
            recurrence=RecurrencePattern(frequency="weekly", interval=2, days_of_week=(2,)),
            tags={"mobile"},
        )
        restored = type(event).model_validate(event.model_dump(mode="json"))

        assert restored.recurrence == event.recurrence
        assert restored.start_time == event.start_time
        assert restored.tags == {"mobile"}


class TestRecurrencePattern:
    def test_days_sorted_and_deduplicated(self):
        pattern = RecurrencePattern(frequency="weekly", days_of_week=(5, 1, 5))
        assert pattern.days_of_week == (1, 5)

    def test_is_bounded(self):
        assert RecurrencePattern(frequency="daily", occurrences=3).is_bounded
        assert not RecurrencePattern(frequency="daily").is_bounded


class TestTimeWindow:
    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            TimeWindow(
                start=datetime(2024, 1, 2, tzinfo=UTC), end=datetime(2024, 1, 1, tzinfo=UTC)
            )

    def test_contains_is_half_open(self):
        window = TimeWindow(
            start=datetime(2024, 1, 1, tzinfo=UTC), end=datetime(2024, 1, 2, tzinfo=UTC)
        )
        assert window.contains(datetime(2024, 1, 1, tzinfo=UTC))
        assert not window.contains(datetime(2024, 1, 2, tzinfo=UTC))


class TestReminderIdentity:
    def test_key_format(self):
        identity = ReminderIdentity(source_id="evt-1", occurrence_index=3, offset_minutes=15)
        assert identity.key == "evt-1:3:15"

    def test_from_key_allows_colons_in_source_id(self):
        identity = ReminderIdentity.from_key("team:alpha:evt:2:60")
        assert identity.source_id == "team:alpha:evt"
        assert identity.occurrence_index == 2
        assert identity.offset_minutes == 60


class TestQuietHours:
    def test_overnight_range_wraps_midnight(self):
        quiet = QuietHours(start="22:00", end="08:00")

        assert quiet.contains(23 * 60 + 30)
        assert quiet.contains(7 * 60 + 59)
        assert quiet.contains(22 * 60)
        assert not quiet.contains(8 * 60)
        assert not quiet.contains(9 * 60)

    def test_same_day_range(self):
        quiet = QuietHours(start="12:00", end="13:00")
        assert quiet.contains(12 * 60 + 30)
        assert not quiet.contains(13 * 60)

    def test_equal_bounds_mean_no_quiet_period(self):
        assert not QuietHours(start="09:00", end="09:00").contains(9 * 60)

    def test_disabled_never_contains(self):
        assert not QuietHours(enabled=False).contains(23 * 60)

    @pytest.mark.parametrize("value", ["24:00", "7:00", "12:60", "noon"])
    def test_invalid_time_rejected(self, value):
        with pytest.raises(ValidationError):
            QuietHours(start=value)


class TestNotificationSettings:
    def test_defaults_enable_every_category(self):
        settings = NotificationSettings()
        assert all(settings.is_category_enabled(c) for c in ReminderCategory)
        assert settings.quiet_hours is None

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError):
            NotificationSettings(timezone="Nowhere/Special")

    def test_category_keys_accept_strings(self):
        settings = NotificationSettings.model_validate({"category_enabled": {"todo": False}})
        assert not settings.is_category_enabled(ReminderCategory.TODO)
        assert settings.is_category_enabled(ReminderCategory.CEREMONY)
