"""Data models for the ceremony calendar and reminder engine."""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from .exceptions import ConfigurationError
from .timeutils import ensure_aware, ensure_utc, get_zone

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class CeremonyType(str, Enum):
    """Scaled Agile ceremony types."""

    SPRINT_PLANNING = "sprint_planning"
    DAILY_STANDUP = "daily_standup"
    SPRINT_REVIEW = "sprint_review"
    SPRINT_RETROSPECTIVE = "sprint_retrospective"
    BACKLOG_REFINEMENT = "backlog_refinement"
    PI_PLANNING = "pi_planning"
    SYSTEM_DEMO = "system_demo"
    INSPECT_ADAPT = "inspect_adapt"
    ART_SYNC = "art_sync"
    PO_SYNC = "po_sync"
    SCRUM_OF_SCRUMS = "scrum_of_scrums"
    SOLUTION_DEMO = "solution_demo"
    PRE_POST_PI_PLANNING = "pre_post_pi_planning"
    INNOVATION_PLANNING = "innovation_planning"


class EventStatus(str, Enum):
    """Lifecycle status of a calendar event."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Frequency(str, Enum):
    """Recurrence frequency."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class ReminderType(str, Enum):
    """Source type of a standalone reminder."""

    TODO = "todo"
    NOTE = "note"
    CALENDAR = "calendar"
    CEREMONY = "ceremony"


class ReminderCategory(str, Enum):
    """Notification category, switchable per user in settings."""

    TODO = "todo"
    CEREMONY = "ceremony"
    MEETING = "meeting"
    NOTE = "note"


class NotificationPriority(str, Enum):
    """Notification priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# Recurrence


class RecurrencePattern(BaseModel):
    """Recurrence rule for a calendar event or standalone reminder.

    Weekday indices follow 0=Sunday .. 6=Saturday. ``end_date`` is an
    exclusive upper bound on occurrence start times; ``occurrences`` caps the
    series length counted from the base start. The two are mutually exclusive.
    """

    model_config = ConfigDict(frozen=True)

    frequency: Frequency
    interval: int = Field(default=1, description="Every N frequency units")
    days_of_week: tuple[int, ...] = Field(default=(), description="Weekday indices, weekly only")
    day_of_month: Optional[int] = Field(default=None, description="Day 1-31, monthly only")
    end_date: Optional[datetime] = Field(default=None, description="Exclusive end bound")
    occurrences: Optional[int] = Field(default=None, description="Maximum occurrence count")

    @field_validator("days_of_week")
    @classmethod
    def _normalize_days(cls, value: tuple[int, ...]) -> tuple[int, ...]:
        for day in value:
            if not 0 <= day <= 6:
                raise ConfigurationError(f"days_of_week entries must be 0..6, got {day}")
        return tuple(sorted(set(value)))

    @field_validator("end_date")
    @classmethod
    def _end_date_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_configuration(self) -> RecurrencePattern:
        if self.interval <= 0:
            raise ConfigurationError(f"interval must be positive, got {self.interval}")
        if self.end_date is not None and self.occurrences is not None:
            raise ConfigurationError("end_date and occurrences are mutually exclusive")
        if self.occurrences is not None and self.occurrences <= 0:
            raise ConfigurationError(f"occurrences must be positive, got {self.occurrences}")
        if self.day_of_month is not None and not 1 <= self.day_of_month <= 31:
            raise ConfigurationError(f"day_of_month must be 1..31, got {self.day_of_month}")
        return self

    @property
    def is_bounded(self) -> bool:
        """True when the series terminates on its own (end_date or count)."""
        return self.end_date is not None or self.occurrences is not None


# Events and occurrences


class CalendarEvent(BaseModel):
    """A ceremony on the calendar, possibly recurring."""

    id: str = Field(..., description="Event ID")
    title: str = Field(..., description="Event title")
    description: Optional[str] = Field(default=None, description="Event description")
    ceremony_type: CeremonyType = Field(..., description="Ceremony type")

    start_time: datetime = Field(..., description="Start of the first occurrence")
    end_time: datetime = Field(..., description="End of the first occurrence")
    time_zone: str = Field(default="UTC", description="IANA zone used for recurrence wall-clock")

    location: Optional[str] = None
    is_virtual: bool = False
    meeting_link: Optional[str] = None
    attendees: set[str] = Field(default_factory=set)
    organizer: str = ""

    recurrence: Optional[RecurrencePattern] = None
    reminder_offsets: list[int] = Field(
        default_factory=lambda: [15], description="Minutes before start, positive"
    )
    status: EventStatus = EventStatus.SCHEDULED

    # Dimensional tags, used only for filtering
    program_increment_id: Optional[str] = None
    sprint_id: Optional[str] = None
    art_id: Optional[str] = None
    team_id: Optional[str] = None
    tags: set[str] = Field(default_factory=set)

    # Metadata
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @field_validator("reminder_offsets")
    @classmethod
    def _normalize_offsets(cls, value: list[int]) -> list[int]:
        seen: list[int] = []
        for offset in value:
            if offset <= 0:
                raise ConfigurationError(f"reminder offsets must be positive, got {offset}")
            if offset not in seen:
                seen.append(offset)
        return seen

    @model_validator(mode="after")
    def _check_times(self) -> CalendarEvent:
        if self.end_time <= self.start_time:
            raise ConfigurationError(
                f"event {self.id!r} must end after it starts "
                f"({self.start_time.isoformat()} .. {self.end_time.isoformat()})"
            )
        try:
            zone = get_zone(self.time_zone)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        # Recurrence arithmetic runs on the event's own wall clock.
        self.start_time = self.start_time.astimezone(zone)
        self.end_time = self.end_time.astimezone(zone)
        return self

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def generates_reminders(self) -> bool:
        """Cancelled and completed events never produce reminders."""
        return self.status not in (EventStatus.CANCELLED, EventStatus.COMPLETED)

    @field_serializer("created_at", "updated_at", when_used="unless-none")
    def _serialize_meta(self, dt: datetime) -> str:
        return dt.isoformat()


class Occurrence(BaseModel):
    """One concrete instance of an event; other fields come from ``event`` by reference."""

    model_config = ConfigDict(frozen=True)

    source_event_id: str
    occurrence_index: int
    start_time: datetime
    end_time: datetime
    event: Optional[CalendarEvent] = Field(default=None, exclude=True)

    @property
    def title(self) -> str:
        return self.event.title if self.event else ""

    @property
    def ceremony_type(self) -> Optional[CeremonyType]:
        return self.event.ceremony_type if self.event else None

    @property
    def status(self) -> Optional[EventStatus]:
        return self.event.status if self.event else None

    def to_api_model(self) -> dict[str, Any]:
        """Serialize for the read-only HTTP projection."""
        data: dict[str, Any] = {
            "source_event_id": self.source_event_id,
            "occurrence_index": self.occurrence_index,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
        }
        if self.event is not None:
            data.update(
                {
                    "title": self.event.title,
                    "ceremony_type": self.event.ceremony_type.value,
                    "status": self.event.status.value,
                    "location": self.event.location,
                    "is_virtual": self.event.is_virtual,
                    "meeting_link": self.event.meeting_link,
                    "team_id": self.event.team_id,
                    "art_id": self.event.art_id,
                    "program_increment_id": self.event.program_increment_id,
                    "sprint_id": self.event.sprint_id,
                    "tags": sorted(self.event.tags),
                }
            )
        return data


class TimeWindow(BaseModel):
    """Half-open time range [start, end)."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _ordered(self) -> TimeWindow:
        if self.end < self.start:
            raise ValueError("window end must not precede window start")
        return self

    def contains(self, dt: datetime) -> bool:
        return self.start <= dt < self.end


class QueryFilters(BaseModel):
    """Conjunctive filters for occurrence queries."""

    ceremony_type: Optional[CeremonyType] = None
    team_id: Optional[str] = None
    art_id: Optional[str] = None
    pi_id: Optional[str] = None
    status: Optional[EventStatus] = None
    include_completed: bool = False
    free_text: Optional[str] = None


# Reminders


class StandaloneReminder(BaseModel):
    """A reminder not derived from event offsets (todo, note, snoozed notification)."""

    id: str
    type: ReminderType
    message: str
    reminder_time: datetime
    is_active: bool = True

    note_id: Optional[str] = None
    todo_id: Optional[str] = None
    calendar_event_id: Optional[str] = None
    ceremony_type: Optional[CeremonyType] = None
    meeting_link: Optional[str] = None

    recurrence: Optional[RecurrencePattern] = None
    snoozed_from: Optional[str] = Field(default=None, description="Identity key it replaces")
    created_at: Optional[datetime] = None

    @field_validator("reminder_time")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @property
    def category(self) -> ReminderCategory:
        return _REMINDER_TYPE_CATEGORY[self.type]


_REMINDER_TYPE_CATEGORY = {
    ReminderType.TODO: ReminderCategory.TODO,
    ReminderType.NOTE: ReminderCategory.NOTE,
    ReminderType.CEREMONY: ReminderCategory.CEREMONY,
    ReminderType.CALENDAR: ReminderCategory.MEETING,
}


class ReminderIdentity(BaseModel):
    """Composite deduplication key of a reminder instance."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    occurrence_index: int = 0
    offset_minutes: int = 0

    @property
    def key(self) -> str:
        return f"{self.source_id}:{self.occurrence_index}:{self.offset_minutes}"

    @classmethod
    def from_key(cls, key: str) -> ReminderIdentity:
        source_id, index, offset = key.rsplit(":", 2)
        return cls(source_id=source_id, occurrence_index=int(index), offset_minutes=int(offset))


class ReminderInstance(BaseModel):
    """One (occurrence, offset) pair that has become, or will become, due."""

    model_config = ConfigDict(frozen=True)

    identity: ReminderIdentity
    due_at: datetime
    category: ReminderCategory
    source_kind: Literal["event", "standalone"]
    title: str
    message: str

    occurrence_start: Optional[datetime] = None
    ceremony_type: Optional[CeremonyType] = None
    meeting_link: Optional[str] = None
    note_id: Optional[str] = None
    todo_id: Optional[str] = None
    calendar_event_id: Optional[str] = None


# Notifications


class NotificationAction(BaseModel):
    """A user action offered on a notification."""

    model_config = ConfigDict(frozen=True)

    label: str
    action: str
    style: Literal["primary", "secondary", "danger"] = "secondary"


class Notification(BaseModel):
    """A surfaced reminder, persisted so it survives reloads."""

    id: str
    reminder_instance_identity: str = Field(..., description="ReminderIdentity.key")
    category: ReminderCategory
    title: str
    message: str
    created_at: datetime
    is_read: bool = False
    priority: NotificationPriority = NotificationPriority.MEDIUM
    actions: list[NotificationAction] = Field(default_factory=list)
    channels: list[str] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class QuietHours(BaseModel):
    """Daily wall-clock range during which notifications are suppressed."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    start: str = "22:00"
    end: str = "08:00"

    @field_validator("start", "end")
    @classmethod
    def _hhmm(cls, value: str) -> str:
        if not _HHMM_RE.match(value):
            raise ValueError(f"expected HH:MM, got {value!r}")
        return value

    @staticmethod
    def _to_minutes(value: str) -> int:
        hours, minutes = value.split(":")
        return int(hours) * 60 + int(minutes)

    @property
    def start_minutes(self) -> int:
        return self._to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return self._to_minutes(self.end)

    def contains(self, minute_of_day: int) -> bool:
        """Whether ``minute_of_day`` falls in [start, end), wrapping midnight when start > end."""
        if not self.enabled:
            return False
        start, end = self.start_minutes, self.end_minutes
        if start == end:
            return False
        if start > end:
            return minute_of_day >= start or minute_of_day < end
        return start <= minute_of_day < end


def _default_categories() -> dict[ReminderCategory, bool]:
    return {category: True for category in ReminderCategory}


class NotificationSettings(BaseModel):
    """User-scoped notification preferences; always handled as a whole snapshot."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    sound_enabled: bool = True
    browser_notifications_enabled: bool = True
    category_enabled: dict[ReminderCategory, bool] = Field(default_factory=_default_categories)
    quiet_hours: Optional[QuietHours] = None
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        get_zone(value)
        return value

    def is_category_enabled(self, category: ReminderCategory) -> bool:
        return self.category_enabled.get(category, True)
