"""Health tracking for the notification scheduler."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class HealthStatus:
    """Health status information for the service."""

    status: str  # "ok" or "degraded"
    server_time_iso: str
    uptime_seconds: int
    pid: int
    last_tick_success_age_seconds: Optional[int]
    last_tick_attempt_age_seconds: Optional[int]
    counters: dict[str, int] = field(default_factory=dict)
    background_tasks: list[dict[str, Any]] = field(default_factory=list)


class HealthTracker:
    """Tracks scheduler tick outcomes and reminder counters."""

    COUNTERS = ("created", "suppressed", "duplicate_skipped", "failed", "tick_timeouts")

    def __init__(self, stale_after_seconds: int = 900) -> None:
        self.stale_after_seconds = stale_after_seconds
        self._start_time: float = time.time()
        self._last_tick_attempt: Optional[float] = None
        self._last_tick_success: Optional[float] = None
        self._background_task_heartbeat: Optional[float] = None
        self._counters: dict[str, int] = dict.fromkeys(self.COUNTERS, 0)

    def record_tick_attempt(self) -> None:
        self._last_tick_attempt = time.time()

    def record_tick_success(self) -> None:
        self._last_tick_success = time.time()

    def record_background_heartbeat(self) -> None:
        self._background_task_heartbeat = time.time()

    def increment(self, counter: str, amount: int = 1) -> None:
        """Increment a named counter.

        Raises:
            KeyError: for a counter name outside COUNTERS
        """
        if counter not in self._counters:
            raise KeyError(counter)
        self._counters[counter] += amount

    @property
    def counters(self) -> dict[str, int]:
        return dict(self._counters)

    def get_uptime_seconds(self) -> int:
        return int(time.time() - self._start_time)

    def get_last_tick_age_seconds(self) -> Optional[int]:
        """Seconds since the last successful tick, or None if none has succeeded."""
        if self._last_tick_success is None:
            return None
        return int(time.time() - self._last_tick_success)

    def get_last_attempt_age_seconds(self) -> Optional[int]:
        if self._last_tick_attempt is None:
            return None
        return int(time.time() - self._last_tick_attempt)

    def get_background_task_status(self) -> dict[str, Any]:
        if self._background_task_heartbeat is None:
            return {"name": "notification_scheduler", "status": "unknown", "last_heartbeat_age_s": None}

        heartbeat_age = int(time.time() - self._background_task_heartbeat)
        status = "running" if heartbeat_age < self.stale_after_seconds else "stale"
        return {
            "name": "notification_scheduler",
            "status": status,
            "last_heartbeat_age_s": heartbeat_age,
        }

    def determine_overall_status(self) -> str:
        last_success_age = self.get_last_tick_age_seconds()
        if last_success_age is None or last_success_age > self.stale_after_seconds:
            return "degraded"
        return "ok"

    def get_health_status(self, current_time_iso: str) -> HealthStatus:
        """Get comprehensive health status.

        Args:
            current_time_iso: Current time in ISO format

        Returns:
            HealthStatus object with all health information
        """
        return HealthStatus(
            status=self.determine_overall_status(),
            server_time_iso=current_time_iso,
            uptime_seconds=self.get_uptime_seconds(),
            pid=os.getpid(),
            last_tick_success_age_seconds=self.get_last_tick_age_seconds(),
            last_tick_attempt_age_seconds=self.get_last_attempt_age_seconds(),
            counters=self.counters,
            background_tasks=[self.get_background_task_status()],
        )
