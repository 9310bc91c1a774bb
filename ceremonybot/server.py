"""aiohttp server: read-only calendar projection, notification actions and the scheduler lifecycle."""

from __future__ import annotations

import asyncio
import contextlib
import datetime
import logging
import signal
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from aiohttp import web
from pydantic import ValidationError

from .config_loader import Config
from .dispatch import LoggingDispatchSink, WebhookDispatchSink
from .exceptions import ConfigurationError, NotificationNotFound, StoreUnavailable, UnknownActionError
from .health import HealthTracker
from .models import QueryFilters, TimeWindow
from .protocols import Clock, DispatchSink
from .query_engine import EventQueryEngine
from .recurrence import ExpanderConfig
from .reminder_rules import ReminderRuleEngine
from .scheduler import NotificationScheduler, SchedulerConfig
from .settings_store import NotificationSettingsManager
from .snooze import DEFAULT_SNOOZE_MINUTES, SnoozeManager
from .store import JsonEventStore
from .timeutils import now_utc, parse_iso, serialize_iso

logger = logging.getLogger(__name__)

DEFAULT_QUERY_SPAN = datetime.timedelta(days=7)
MAX_UPCOMING_LIMIT = 100

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@dataclass
class Services:
    """Everything the HTTP routes and the scheduler share."""

    store: JsonEventStore
    settings: NotificationSettingsManager
    query_engine: EventQueryEngine
    scheduler: NotificationScheduler
    snooze: SnoozeManager
    health: HealthTracker
    clock: Clock = now_utc
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)


def build_services(
    config: Config,
    clock: Clock = now_utc,
    extra_sinks: Optional[list[DispatchSink]] = None,
) -> Services:
    """Wire store, engines, scheduler and sinks from configuration."""
    store = JsonEventStore(config.store_path)
    settings = NotificationSettingsManager(config.settings_path)
    expander_config = ExpanderConfig.from_settings(config)
    health = HealthTracker(stale_after_seconds=max(900, config.tick_interval_seconds * 3))

    sinks: list[DispatchSink] = [LoggingDispatchSink()]
    closers: list[Callable[[], Awaitable[None]]] = []
    if config.webhook_url:
        webhook = WebhookDispatchSink(config.webhook_url, timeout=config.dispatch_timeout_seconds)
        sinks.append(webhook)
        closers.append(webhook.aclose)
    sinks.extend(extra_sinks or [])

    scheduler = NotificationScheduler(
        store,
        settings,
        sinks=sinks,
        rule_engine=ReminderRuleEngine(store, expander_config),
        config=SchedulerConfig.from_settings(config),
        clock=clock,
        health=health,
    )
    return Services(
        store=store,
        settings=settings,
        query_engine=EventQueryEngine(
            store,
            expander_config,
            upcoming_horizon=datetime.timedelta(days=config.upcoming_horizon_days),
        ),
        scheduler=scheduler,
        snooze=SnoozeManager(store, clock=clock),
        health=health,
        clock=clock,
        closers=closers,
    )


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Map domain errors to JSON error responses."""
    try:
        return await handler(request)
    except NotificationNotFound as e:
        return web.json_response({"error": f"notification not found: {e}"}, status=404)
    except (UnknownActionError, ConfigurationError) as e:
        return web.json_response({"error": str(e)}, status=400)
    except StoreUnavailable as e:
        logger.error("Store unavailable serving %s %s: %s", request.method, request.path, e)
        return web.json_response({"error": "store unavailable"}, status=503)
    except ValidationError as e:
        return web.json_response(
            {
                "error": "validation failed",
                "details": e.errors(include_url=False, include_context=False, include_input=False),
            },
            status=400,
        )
    except ValueError as e:
        return web.json_response({"error": str(e)}, status=400)


def _parse_bool(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ("1", "true", "yes", "on")


def _filters_from_query(query: Any) -> QueryFilters:
    return QueryFilters(
        ceremony_type=query.get("ceremony_type") or None,
        team_id=query.get("team_id") or None,
        art_id=query.get("art_id") or None,
        pi_id=query.get("pi_id") or None,
        status=query.get("status") or None,
        include_completed=_parse_bool(query.get("include_completed")),
        free_text=query.get("q") or None,
    )


async def _read_json(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        data = await request.json()
    except ValueError as e:
        raise ValueError("invalid json") from e
    if not isinstance(data, dict):
        raise ValueError("request body must be a JSON object")  # noqa: TRY004
    return data


def register_api_routes(app: web.Application, services: Services) -> None:
    """Register the JSON API routes.

    Args:
        app: aiohttp web application
        services: Shared store, engines and scheduler
    """

    async def health_check(_request: web.Request) -> web.Response:
        """Report scheduler health and reminder counters."""
        status = services.health.get_health_status(serialize_iso(services.clock()))
        body = {
            "status": status.status,
            "server_time_iso": status.server_time_iso,
            "server_status": {"uptime_s": status.uptime_seconds, "pid": status.pid},
            "scheduler": {
                "running": services.scheduler.running,
                "last_tick_attempt_age_s": status.last_tick_attempt_age_seconds,
                "last_tick_success_age_s": status.last_tick_success_age_seconds,
                "counters": status.counters,
            },
            "background_tasks": status.background_tasks,
        }
        return web.json_response(body, status=200 if status.status == "ok" else 503)

    async def list_occurrences(request: web.Request) -> web.Response:
        """Occurrences in [start, end) matching the query-string filters."""
        query = request.rel_url.query
        start = parse_iso(query["start"]) if "start" in query else services.clock()
        end = parse_iso(query["end"]) if "end" in query else start + DEFAULT_QUERY_SPAN
        window = TimeWindow(start=start, end=end)
        filters = _filters_from_query(query)
        occurrences = await asyncio.to_thread(services.query_engine.query, window, filters)
        return web.json_response(
            {
                "window": {"start": serialize_iso(window.start), "end": serialize_iso(window.end)},
                "count": len(occurrences),
                "occurrences": [o.to_api_model() for o in occurrences],
            }
        )

    async def upcoming_occurrences(request: web.Request) -> web.Response:
        query = request.rel_url.query
        try:
            limit = int(query.get("limit", "10"))
        except ValueError as e:
            raise ValueError("limit must be an integer") from e
        if not 1 <= limit <= MAX_UPCOMING_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_UPCOMING_LIMIT}")
        occurrences = await asyncio.to_thread(
            services.query_engine.upcoming, services.clock(), limit, _filters_from_query(query)
        )
        return web.json_response({"occurrences": [o.to_api_model() for o in occurrences]})

    async def list_notifications(request: web.Request) -> web.Response:
        unread_only = _parse_bool(request.rel_url.query.get("unread_only"))
        notifications = await asyncio.to_thread(services.snooze.list_notifications, unread_only)
        unread = await asyncio.to_thread(services.snooze.unread_count)
        return web.json_response(
            {
                "unread_count": unread,
                "notifications": [n.model_dump(mode="json") for n in notifications],
            }
        )

    async def dismiss_notification(request: web.Request) -> web.Response:
        notification = await asyncio.to_thread(
            services.snooze.dismiss, request.match_info["notification_id"]
        )
        return web.json_response({"notification": notification.model_dump(mode="json")})

    async def snooze_notification(request: web.Request) -> web.Response:
        data = await _read_json(request)
        minutes = data.get("minutes", DEFAULT_SNOOZE_MINUTES)
        if isinstance(minutes, bool) or not isinstance(minutes, int):
            raise ValueError("minutes must be a positive integer")
        reminder = await asyncio.to_thread(
            services.snooze.snooze, request.match_info["notification_id"], minutes
        )
        return web.json_response({"reminder": reminder.model_dump(mode="json")})

    async def notification_action(request: web.Request) -> web.Response:
        data = await _read_json(request)
        action = data.get("action")
        if not action or not isinstance(action, str):
            raise ValueError("missing or invalid action")
        result = await asyncio.to_thread(
            services.snooze.handle_action, request.match_info["notification_id"], action
        )
        return web.json_response(
            {
                "action": result.action,
                "notification_id": result.notification_id,
                "target": result.target,
                "notification": result.notification.model_dump(mode="json")
                if result.notification
                else None,
                "reminder": result.reminder.model_dump(mode="json") if result.reminder else None,
            }
        )

    async def read_all(_request: web.Request) -> web.Response:
        updated = await asyncio.to_thread(services.snooze.mark_all_read)
        return web.json_response({"updated": updated})

    async def get_settings(_request: web.Request) -> web.Response:
        settings = services.settings.get_notification_settings()
        return web.json_response(settings.model_dump(mode="json"))

    async def put_settings(request: web.Request) -> web.Response:
        data = await _read_json(request)
        settings = await asyncio.to_thread(services.settings.update, data)
        return web.json_response(settings.model_dump(mode="json"))

    app.router.add_get("/api/health", health_check)
    app.router.add_get("/api/occurrences", list_occurrences)
    app.router.add_get("/api/occurrences/upcoming", upcoming_occurrences)
    app.router.add_get("/api/notifications", list_notifications)
    app.router.add_post("/api/notifications/read-all", read_all)
    app.router.add_post("/api/notifications/{notification_id}/dismiss", dismiss_notification)
    app.router.add_post("/api/notifications/{notification_id}/snooze", snooze_notification)
    app.router.add_post("/api/notifications/{notification_id}/action", notification_action)
    app.router.add_get("/api/settings/notifications", get_settings)
    app.router.add_put("/api/settings/notifications", put_settings)


def make_app(services: Services) -> web.Application:
    """Create the aiohttp application for ``services``."""
    app = web.Application(middlewares=[error_middleware])
    register_api_routes(app, services)
    return app


async def start_server(
    config: Config,
    external_stop_event: Optional[asyncio.Event] = None,
) -> None:
    """Run the HTTP server and the notification scheduler until signalled to stop.

    Args:
        config: Loaded configuration
        external_stop_event: Optional event to signal shutdown. If provided,
            signal handlers are not registered (caller owns signal handling).
    """
    services = build_services(config)
    app = make_app(services)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host=config.server_bind, port=config.server_port)
    try:
        await site.start()
    except OSError:
        logger.exception("Failed to start server on %s:%d", config.server_bind, config.server_port)
        await runner.cleanup()
        raise
    logger.info("Server started on %s:%d", config.server_bind, config.server_port)

    services.scheduler.start()

    stop_event = external_stop_event or asyncio.Event()
    if external_stop_event is None:
        loop = asyncio.get_running_loop()

        def _on_signal() -> None:
            logger.info("Shutdown signal received")
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, _on_signal)

    await stop_event.wait()
    logger.info("Stop event received, shutting down")

    try:
        await services.scheduler.stop()
    except Exception as e:
        logger.warning("Scheduler error during shutdown: %s", e)

    await runner.cleanup()

    for close in services.closers:
        try:
            await close()
        except Exception as e:
            logger.warning("Error closing dispatch sink: %s", e)

    logger.info("Server shutdown complete")

