"""Dispatch sinks that receive emitted notifications."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from .exceptions import DispatchError
from .models import Notification

logger = logging.getLogger(__name__)


class LoggingDispatchSink:
    """Writes one log line per delivered notification."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def deliver(self, notification: Notification) -> None:
        logger.log(
            self.level,
            "Notification %s [%s/%s] %s: %s (channels=%s)",
            notification.id,
            notification.category.value,
            notification.priority.value,
            notification.title,
            notification.message,
            ",".join(notification.channels) or "-",
        )


class CollectingDispatchSink:
    """Keeps delivered notifications in memory."""

    def __init__(self) -> None:
        self.delivered: list[Notification] = []

    def deliver(self, notification: Notification) -> None:
        self.delivered.append(notification)

    def clear(self) -> None:
        self.delivered.clear()


class WebhookDispatchSink:
    """POSTs each notification as JSON to a webhook URL."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        """Initialize the webhook sink.

        Args:
            url: Endpoint receiving the POST
            timeout: Per-request timeout in seconds
            client: Optional shared client; a private one is created otherwise
            headers: Extra request headers
        """
        self.url = url
        self.headers = headers or {}
        self._timeout = httpx.Timeout(timeout, connect=min(timeout, 10.0))
        self._client = client
        self._owns_client = client is None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
            self._owns_client = True
        return self._client

    async def deliver(self, notification: Notification) -> None:
        """POST the notification.

        Raises:
            DispatchError: on a network error or a non-2xx response
        """
        client = await self._ensure_client()
        payload: dict[str, Any] = notification.model_dump(mode="json")
        try:
            response = await client.post(self.url, json=payload, headers=self.headers)
        except httpx.HTTPError as e:
            raise DispatchError(f"webhook POST to {self.url} failed: {e}") from e

        if not response.is_success:
            raise DispatchError(
                f"webhook POST to {self.url} returned HTTP {response.status_code}"
            )
        logger.debug("Delivered notification %s to %s", notification.id, self.url)

    async def aclose(self) -> None:
        """Close the HTTP client if this sink created it."""
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
            logger.debug("Closed webhook HTTP client")
        self._client = None
