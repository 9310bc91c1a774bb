"""Shared fixtures for ceremonybot tests."""

from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from ceremonybot.dispatch import CollectingDispatchSink
from ceremonybot.models import CalendarEvent, CeremonyType, StandaloneReminder
from ceremonybot.settings_store import NotificationSettingsManager
from ceremonybot.store import JsonEventStore


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Clear ceremonybot environment overrides before and after each test.

    CEREMONYBOT_TEST_TIME freezes the default clock and CEREMONYBOT_* config
    variables override loaded configuration; neither may leak between tests.
    """
    for name in (
        "CEREMONYBOT_TEST_TIME",
        "CEREMONYBOT_DEBUG",
        "CEREMONYBOT_LOG_LEVEL",
        "CEREMONYBOT_TICK_INTERVAL_SECONDS",
        "CEREMONYBOT_SERVER_PORT",
        "CEREMONYBOT_WEBHOOK_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def make_event() -> Callable[..., CalendarEvent]:
    """Factory for CalendarEvent with sensible defaults.

    Defaults: a 30-minute sprint planning on 2024-01-02 09:00 UTC with a single
    15-minute reminder. Any field can be overridden by keyword.
    """

    def _make(**overrides: Any) -> CalendarEvent:
        start = overrides.pop("start_time", datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc))
        values: dict[str, Any] = {
            "id": "evt-1",
            "title": "Sprint Planning",
            "ceremony_type": CeremonyType.SPRINT_PLANNING,
            "start_time": start,
            "end_time": start + timedelta(minutes=30),
            "reminder_offsets": [15],
        }
        values.update(overrides)
        return CalendarEvent(**values)

    return _make


@pytest.fixture
def make_reminder() -> Callable[..., StandaloneReminder]:
    """Factory for StandaloneReminder (a todo due 2024-01-02 10:00 UTC by default)."""

    def _make(**overrides: Any) -> StandaloneReminder:
        values: dict[str, Any] = {
            "id": "rem-1",
            "type": "todo",
            "message": "Update the sprint board",
            "reminder_time": datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc),
            "todo_id": "todo-42",
        }
        values.update(overrides)
        return StandaloneReminder(**values)

    return _make


@pytest.fixture
def store(tmp_path: Any) -> JsonEventStore:
    """Empty JSON store in a temporary directory."""
    return JsonEventStore(tmp_path / "store.json")


@pytest.fixture
def settings_manager() -> NotificationSettingsManager:
    """In-memory settings with all defaults (no quiet hours)."""
    return NotificationSettingsManager()


@pytest.fixture
def collecting_sink() -> CollectingDispatchSink:
    return CollectingDispatchSink()
