"""Static metadata for Scaled Agile ceremony types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from .models import CalendarEvent, CeremonyType, NotificationPriority


@dataclass(frozen=True)
class CeremonyInfo:
    """Display and default-scheduling metadata for one ceremony type."""

    name: str
    level: str  # team | program | solution
    default_duration_minutes: int
    default_reminder_offsets: tuple[int, ...] = (15,)
    priority: NotificationPriority = NotificationPriority.MEDIUM


CEREMONIES: dict[CeremonyType, CeremonyInfo] = {
    CeremonyType.SPRINT_PLANNING: CeremonyInfo("Sprint Planning", "team", 480, (60, 1440)),
    CeremonyType.DAILY_STANDUP: CeremonyInfo("Daily Standup", "team", 15, (5,)),
    CeremonyType.SPRINT_REVIEW: CeremonyInfo("Sprint Review", "team", 120, (30,)),
    CeremonyType.SPRINT_RETROSPECTIVE: CeremonyInfo("Sprint Retrospective", "team", 90),
    CeremonyType.BACKLOG_REFINEMENT: CeremonyInfo("Backlog Refinement", "team", 90),
    CeremonyType.PI_PLANNING: CeremonyInfo(
        "PI Planning", "program", 1440, (1440, 10080), NotificationPriority.HIGH
    ),
    CeremonyType.SYSTEM_DEMO: CeremonyInfo("System Demo", "program", 90, (60, 1440)),
    CeremonyType.INSPECT_ADAPT: CeremonyInfo(
        "Inspect & Adapt", "program", 480, (60, 1440), NotificationPriority.HIGH
    ),
    CeremonyType.ART_SYNC: CeremonyInfo("ART Sync", "program", 60),
    CeremonyType.PO_SYNC: CeremonyInfo("PO Sync", "program", 60),
    CeremonyType.SCRUM_OF_SCRUMS: CeremonyInfo("Scrum of Scrums", "program", 30),
    CeremonyType.SOLUTION_DEMO: CeremonyInfo("Solution Demo", "solution", 120, (60, 1440)),
    CeremonyType.PRE_POST_PI_PLANNING: CeremonyInfo("Pre/Post PI Planning", "solution", 480, (1440,)),
    CeremonyType.INNOVATION_PLANNING: CeremonyInfo("Innovation & Planning", "program", 2400, (1440,)),
}


def get_ceremony_info(ceremony_type: CeremonyType | str) -> CeremonyInfo:
    """Look up catalogue metadata, accepting either the enum or its string value.

    Raises:
        ValueError: for an unknown ceremony type string
    """
    return CEREMONIES[CeremonyType(ceremony_type)]


def display_name(ceremony_type: CeremonyType | str | None) -> str:
    if ceremony_type is None:
        return "Reminder"
    return get_ceremony_info(ceremony_type).name


def new_event(
    ceremony_type: CeremonyType | str,
    *,
    id: str,
    start_time: datetime,
    title: Optional[str] = None,
    **fields: Any,
) -> CalendarEvent:
    """Build a CalendarEvent with the catalogue defaults for its ceremony type.

    ``title``, ``end_time`` and ``reminder_offsets`` fall back to the display
    name, the default duration and the default offsets; any other
    CalendarEvent field may be passed through ``fields``.
    """
    info = get_ceremony_info(ceremony_type)
    fields.setdefault("end_time", start_time + timedelta(minutes=info.default_duration_minutes))
    fields.setdefault("reminder_offsets", list(info.default_reminder_offsets))
    return CalendarEvent(
        id=id,
        title=title or info.name,
        ceremony_type=CeremonyType(ceremony_type),
        start_time=start_time,
        **fields,
    )
