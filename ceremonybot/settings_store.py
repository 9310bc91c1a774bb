"""Notification settings snapshot holder with JSON persistence."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from .exceptions import StoreUnavailable
from .models import NotificationSettings

logger = logging.getLogger(__name__)


class NotificationSettingsManager:
    """Holds the current NotificationSettings as an immutable snapshot.

    Readers always get a complete settings object; ``update`` builds a new
    snapshot, persists it, and only then swaps the reference.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        """Create a settings manager.

        Args:
            path: Optional JSON file to load from and persist to. Without a
                path the settings live in memory only.
        """
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._settings = NotificationSettings()
        if self._path is not None:
            self.load()

    def load(self) -> None:
        """Load settings from disk, keeping defaults if the file is missing or invalid."""
        if self._path is None or not self._path.exists():
            logger.debug("Notification settings file not found; using defaults")
            return
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
            settings = NotificationSettings.model_validate(data)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Failed to load notification settings %s: %s", self._path, exc)
            return
        with self._lock:
            self._settings = settings
        logger.debug("Loaded notification settings from %s", self._path)

    def get_notification_settings(self) -> NotificationSettings:
        return self._settings

    def update(self, changes: Union[NotificationSettings, dict[str, Any]]) -> NotificationSettings:
        """Replace the settings snapshot.

        Args:
            changes: A full NotificationSettings, or a partial mapping merged
                over the current snapshot

        Returns:
            The new snapshot

        Raises:
            pydantic.ValidationError: if the merged settings are invalid
            StoreUnavailable: if persisting fails; the old snapshot stays active
        """
        with self._lock:
            if isinstance(changes, NotificationSettings):
                new_settings = changes
            else:
                merged = {**self._settings.model_dump(), **changes}
                new_settings = NotificationSettings.model_validate(merged)
            self._persist(new_settings)
            self._settings = new_settings
        logger.info(
            "Notification settings updated (enabled=%s, quiet_hours=%s)",
            new_settings.enabled,
            new_settings.quiet_hours,
        )
        return new_settings

    def _persist(self, settings: NotificationSettings) -> None:
        if self._path is None:
            return
        tmp_path = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=self._path.parent, delete=False, encoding="utf-8"
            ) as tf:
                tmp_path = Path(tf.name)
                json.dump(settings.model_dump(mode="json"), tf, ensure_ascii=False, indent=2)
                tf.flush()
                with contextlib.suppress(OSError):
                    os.fsync(tf.fileno())
            os.replace(tmp_path, self._path)
        except OSError as exc:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
            raise StoreUnavailable(f"failed to persist settings to {self._path}: {exc}") from exc
