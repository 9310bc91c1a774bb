"""Unit tests for ceremonybot.timeutils, ceremonybot.catalogue and ceremonybot.logging_config."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from ceremonybot import timeutils
from ceremonybot.catalogue import CEREMONIES, display_name, get_ceremony_info, new_event
from ceremonybot.logging_config import configure_logging, get_logging_status
from ceremonybot.models import CeremonyType, NotificationPriority

pytestmark = pytest.mark.unit


class TestTimeUtils:
    def test_test_time_override(self, monkeypatch):
        monkeypatch.setenv(timeutils.TEST_TIME_ENV, "2024-01-02T08:45:00Z")
        assert timeutils.now_utc() == datetime(2024, 1, 2, 8, 45, tzinfo=timezone.utc)

    def test_invalid_override_falls_back_to_clock(self, monkeypatch):
        monkeypatch.setenv(timeutils.TEST_TIME_ENV, "yesterday-ish")
        now = timeutils.now_utc()
        assert abs(now - datetime.now(timezone.utc)) < timedelta(minutes=1)

    def test_parse_and_serialize_use_z(self):
        parsed = timeutils.parse_iso("2024-01-02T08:45:00Z")
        assert parsed == datetime(2024, 1, 2, 8, 45, tzinfo=timezone.utc)
        assert timeutils.serialize_iso(parsed) == "2024-01-02T08:45:00Z"

    def test_parse_offset_converted_to_utc(self):
        parsed = timeutils.parse_iso("2024-01-02T09:45:00+01:00")
        assert parsed == datetime(2024, 1, 2, 8, 45, tzinfo=timezone.utc)
        assert parsed.utcoffset() == timedelta(0)

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            timeutils.parse_iso("next tuesday")

    def test_minutes_of_day_in_zone(self):
        # 13:30 UTC is 08:30 in New York during standard time.
        dt = datetime(2024, 1, 2, 13, 30, tzinfo=timezone.utc)
        assert timeutils.minutes_of_day(dt, "America/New_York") == 8 * 60 + 30
        assert timeutils.minutes_of_day(dt) == 13 * 60 + 30

    def test_unknown_zone(self):
        with pytest.raises(ValueError):
            timeutils.get_zone("Atlantis/Capital")


class TestCatalogue:
    def test_every_ceremony_type_has_metadata(self):
        assert set(CEREMONIES) == set(CeremonyType)

    def test_program_ceremonies_high_priority(self):
        assert get_ceremony_info(CeremonyType.PI_PLANNING).priority == NotificationPriority.HIGH
        assert get_ceremony_info("inspect_adapt").priority == NotificationPriority.HIGH
        assert get_ceremony_info(CeremonyType.DAILY_STANDUP).priority == NotificationPriority.MEDIUM

    def test_display_name(self):
        assert display_name(CeremonyType.INSPECT_ADAPT) == "Inspect & Adapt"
        assert display_name(None) == "Reminder"

    def test_unknown_string_rejected(self):
        with pytest.raises(ValueError):
            get_ceremony_info("hackathon")


class TestLoggingConfig:
    @pytest.fixture(autouse=True)
    def restore_levels(self):
        names = ["", "ceremonybot", "aiohttp.access", "aiohttp.server", "aiohttp.web",
                 "aiohttp.web_log", "httpx", "httpcore", "asyncio"]
        saved = {name: logging.getLogger(name).level for name in names}
        yield
        for name, level in saved.items():
            logging.getLogger(name).setLevel(level)

    def test_debug_env_forces_debug(self, monkeypatch):
        monkeypatch.setenv("CEREMONYBOT_DEBUG", "yes")
        configure_logging(debug_mode=False)

        assert logging.getLogger("ceremonybot").level == logging.DEBUG
        assert get_logging_status()["httpx"] == "WARNING"

    def test_force_debug_overrides_env(self, monkeypatch):
        monkeypatch.setenv("CEREMONYBOT_DEBUG", "1")
        configure_logging(force_debug=False)

        assert logging.getLogger("ceremonybot").level == logging.INFO

    def test_log_level_env_sets_root(self, monkeypatch):
        monkeypatch.setenv("CEREMONYBOT_LOG_LEVEL", "warning")
        configure_logging()

        assert get_logging_status()["root"] == "WARNING"


class TestNewEvent:
    def test_defaults_from_catalogue(self):
        start = datetime(2024, 1, 8, 9, tzinfo=timezone.utc)

        event = new_event(CeremonyType.PI_PLANNING, id="pi-7", start_time=start, art_id="art-1")

        assert event.title == "PI Planning"
        assert event.end_time == start + timedelta(minutes=1440)
        assert event.reminder_offsets == [1440, 10080]
        assert event.art_id == "art-1"

    def test_explicit_fields_win(self):
        start = datetime(2024, 1, 8, 9, tzinfo=timezone.utc)

        event = new_event(
            "daily_standup",
            id="su",
            start_time=start,
            title="Alpha Standup",
            end_time=start + timedelta(minutes=10),
            reminder_offsets=[2],
        )

        assert event.title == "Alpha Standup"
        assert event.duration == timedelta(minutes=10)
        assert event.reminder_offsets == [2]
