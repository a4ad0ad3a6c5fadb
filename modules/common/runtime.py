"""Application runtime scaffolding: health server, scheduler and log channel."""

from __future__ import annotations

import asyncio
import logging
import math
import os
import random
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from aiohttp import web
from discord.ext import commands

from shared import health as healthmod
from modules.common.logs import log as human_log
from shared.config import (
    get_bot_name,
    get_env_name,
    get_log_channel_id,
    get_poll_interval_sec,
)
from config.runtime import get_port
from shared.logging import get_trace_id, set_trace_id, setup_logging
from modules.guild_sync.cycle import HEALTH_COMPONENT, GuildSyncCycle

log = logging.getLogger("c1c.runtime")

EXTENSIONS: tuple[str, ...] = ("cogs.guild_sync_admin",)

_ACTIVE_RUNTIME: "Runtime | None" = None


async def create_app(*, runtime: "Runtime | None" = None) -> web.Application:
    """Create and configure the aiohttp application used by the runtime."""

    static_fields = {"env": get_env_name(), "bot": get_bot_name()}
    access_logger = setup_logging(
        static_fields=static_fields,
        access_logger_name="aiohttp.access",
        access_static_fields={"env": static_fields["env"], "bot": static_fields["bot"]},
    )

    healthmod.set_component("runtime", True)

    @web.middleware
    async def tracing_middleware(
        request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
    ) -> web.StreamResponse:
        trace = set_trace_id()
        started = time.perf_counter()
        status = 500
        try:
            response = await handler(request)
            status = getattr(response, "status", status)
            response.headers["X-Trace-Id"] = trace
            return response
        finally:
            duration_ms = int((time.perf_counter() - started) * 1000)
            access_logger.info(
                "http_request",
                extra={
                    "trace": trace,
                    "path": request.path,
                    "method": request.method,
                    "status": status,
                    "ms": duration_ms,
                },
            )

    app = web.Application(middlewares=[tracing_middleware])

    def _base_payload() -> dict[str, Any]:
        return {
            "ok": True,
            "bot": get_bot_name(),
            "env": get_env_name(),
            "version": os.getenv("BOT_VERSION", "dev"),
        }

    async def root(_: web.Request) -> web.Response:
        payload = _base_payload()
        payload["trace"] = get_trace_id()
        return web.json_response(payload)

    async def ready(_: web.Request) -> web.Response:
        components = healthmod.components_snapshot()
        ok = healthmod.overall_ready()
        return web.json_response({"ok": ok, "components": components})

    async def _health_payload() -> tuple[dict[str, Any], bool]:
        if runtime is None:
            return _base_payload(), True
        return await runtime._health_payload()

    async def health(_: web.Request) -> web.Response:
        base_payload, healthy = await _health_payload()
        components = healthmod.components_snapshot()
        components_ok = all(item.get("ok", False) for item in components.values())
        ready_ok = healthmod.overall_ready()
        payload = dict(base_payload)
        payload.update(
            {
                "ok": bool(healthy and components_ok),
                "components": components,
                "ready": ready_ok,
                "endpoint": "health",
            }
        )
        status = 200 if payload["ok"] else 503
        return web.json_response(payload, status=status)

    async def healthz(_: web.Request) -> web.Response:
        payload, healthy = await _health_payload()
        payload = dict(payload)
        payload["endpoint"] = "healthz"
        status = 200 if healthy else 503
        return web.json_response(payload, status=status)

    app.router.add_get("/", root)
    app.router.add_get("/ready", ready)
    app.router.add_get("/health", health)
    app.router.add_get("/healthz", healthz)

    return app


def set_active_runtime(runtime: "Runtime | None") -> None:
    """Set the active runtime used by module-level helpers."""

    global _ACTIVE_RUNTIME
    _ACTIVE_RUNTIME = runtime


def get_active_runtime() -> "Runtime | None":
    """Return the active runtime instance if one has been registered."""

    return _ACTIVE_RUNTIME


async def send_log_message(message: str) -> None:
    """Proxy to the active runtime's log channel helper, if available."""

    runtime = get_active_runtime()
    if runtime is None:
        return
    await runtime.send_log_message(message)


def _trim_message(message: str, *, limit: int = 1800) -> str:
    message = message.strip()
    if len(message) <= limit:
        return message
    return f"{message[: limit - 1]}…"


class _RecurringJob:
    def __init__(
        self,
        scheduler: "Scheduler",
        *,
        interval: timedelta,
        jitter: str | float | None = None,
        tag: str | None = None,
        name: str | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._interval = interval
        self._jitter = jitter
        self.tag = tag
        self.name = name
        self.next_run: datetime | None = None

    def _pick_jitter(self) -> float:
        if self._jitter == "small":
            window = min(60.0, self._interval.total_seconds() * 0.05)
        elif isinstance(self._jitter, (int, float)):
            window = abs(float(self._jitter))
        else:
            return 0.0
        if window <= 0:
            return 0.0
        return random.uniform(-window, window)

    def _compute_next_run(self, reference: datetime | None = None) -> datetime:
        now = reference or datetime.now(timezone.utc)
        interval_seconds = max(1.0, self._interval.total_seconds())
        # Align to UTC boundaries with optional jitter.
        cycles = math.floor(now.timestamp() / interval_seconds)
        candidate = datetime.fromtimestamp((cycles + 1) * interval_seconds, tz=timezone.utc)
        jitter_offset = self._pick_jitter()
        if jitter_offset:
            candidate = candidate + timedelta(seconds=jitter_offset)
        if candidate <= now:
            candidate = now + timedelta(seconds=1)
        return candidate

    async def _sleep_until_due(self) -> None:
        if self.next_run is None:
            self.next_run = self._compute_next_run()
        while True:
            now = datetime.now(timezone.utc)
            delay = (self.next_run - now).total_seconds()
            if delay <= 0:
                break
            await asyncio.sleep(min(delay, 60.0))

    def do(self, job: Callable[[], Awaitable[None]], *, run_now: bool = False) -> asyncio.Task:
        """Run ``job`` every interval; ``run_now`` also fires once immediately."""

        self.next_run = datetime.now(timezone.utc) if run_now else self._compute_next_run()

        async def runner() -> None:
            while True:
                await self._sleep_until_due()
                try:
                    await job()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    log.exception(
                        "recurring job error",
                        extra={
                            "job_name": self.name or getattr(job, "__name__", "job"),
                            "tag": self.tag,
                        },
                    )
                finally:
                    self.next_run = self._compute_next_run()

        task_name = self.name or getattr(job, "__name__", "recurring_job")
        return self._scheduler.spawn(runner(), name=task_name)


class Scheduler:
    """Very small asyncio task supervisor for background jobs."""

    def __init__(self) -> None:
        self._tasks: list[asyncio.Task] = []

    def spawn(self, coro: Awaitable, *, name: Optional[str] = None) -> asyncio.Task:
        if name is not None:
            task = asyncio.create_task(coro, name=name)
        else:
            task = asyncio.create_task(coro)
        self._tasks.append(task)
        return task

    def every(
        self,
        *,
        hours: float = 0.0,
        minutes: float = 0.0,
        seconds: float = 0.0,
        jitter: str | float | None = None,
        tag: str | None = None,
        name: str | None = None,
    ) -> _RecurringJob:
        total_seconds = float(hours) * 3600.0 + float(minutes) * 60.0 + float(seconds)
        if total_seconds <= 0:
            total_seconds = 60.0
        interval = timedelta(seconds=total_seconds)
        return _RecurringJob(self, interval=interval, jitter=jitter, tag=tag, name=name)

    async def shutdown(self) -> None:
        for task in self._tasks:
            if not task.done():
                task.cancel()
        for task in self._tasks:
            if task.done():
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:  # pragma: no cover - best-effort cleanup
                log.exception("scheduler task error during shutdown")


class Runtime:
    """Container object that wires the bot, health server, scheduler and sync cycle."""

    def __init__(self, bot: commands.Bot, *, cycle: Optional[GuildSyncCycle] = None) -> None:
        self.bot = bot
        self.scheduler = Scheduler()
        self.cycle = cycle or GuildSyncCycle(bot, reporter=self.send_log_message)
        self._sync_job: Optional[asyncio.Task] = None
        self._web_app: Optional[web.Application] = None
        self._web_runner: Optional[web.AppRunner] = None
        self._web_site: Optional[web.TCPSite] = None
        set_active_runtime(self)

    async def start_webserver(self, *, port: Optional[int] = None) -> None:
        if self._web_site is not None:
            return
        port = port or get_port()
        app = await create_app(runtime=self)
        self._web_app = app
        self._web_runner = web.AppRunner(app)
        await self._web_runner.setup()
        self._web_site = web.TCPSite(self._web_runner, host="0.0.0.0", port=port)
        await self._web_site.start()
        human_log.human("info", f"web server listening • port={port}")
        log.info("web server listening", extra={"port": port})

    async def _health_payload(self) -> tuple[dict, bool]:
        interval = get_poll_interval_sec()
        stale_after = interval * 3
        sync_age = healthmod.component_age_sec(HEALTH_COMPONENT)
        closed = self.bot.is_closed()
        healthy = not closed and (sync_age is None or sync_age <= stale_after)
        payload = {
            "ok": healthy,
            "bot": get_bot_name(),
            "env": get_env_name(),
            "version": os.getenv("BOT_VERSION", "dev"),
            "connected": self.bot.is_ready() and not closed,
            "poll_interval_sec": interval,
            "sync_age_seconds": None if sync_age is None else round(sync_age, 3),
            "stale_after_sec": stale_after,
            "sync_running": self.cycle.running,
        }
        return payload, healthy

    async def shutdown_webserver(self) -> None:
        site, runner = self._web_site, self._web_runner
        self._web_site = None
        self._web_runner = None
        self._web_app = None
        if site is not None:
            await site.stop()
        if runner is not None:
            await runner.cleanup()

    async def send_log_message(self, message: str) -> None:
        channel_id = get_log_channel_id()
        if not channel_id:
            return
        content = _trim_message(str(message))
        if not content:
            return
        await self.bot.wait_until_ready()
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(channel_id)
            except Exception:
                log.exception("failed to fetch log channel", extra={"channel_id": channel_id})
                return
        try:
            await channel.send(content)
        except Exception:
            log.exception("failed to send log message", extra={"channel_id": channel_id})

    def start_guild_sync(self) -> bool:
        """Schedule the recurring reconciliation job once; later calls are no-ops."""

        if self._sync_job is not None and not self._sync_job.done():
            return False
        interval = get_poll_interval_sec()
        job = self.scheduler.every(seconds=interval, tag="guild_sync", name="guild_sync")

        async def guild_sync_runner() -> None:
            await self.cycle.run_once(reason="scheduled")

        self._sync_job = job.do(guild_sync_runner, run_now=True)
        log.info(
            "🕒 **GuildSync** — scheduled • every=%ss",
            interval,
            extra={"interval_sec": interval},
        )
        return True

    async def load_extensions(self) -> None:
        """Load the command cogs into the shared bot instance."""

        for ext in EXTENSIONS:
            try:
                await self.bot.load_extension(ext)
            except Exception as exc:
                human_log.human("warning", "extension load failed", extension=ext, error=str(exc))
                log.exception("extension load failed", extra={"extension": ext})
            else:
                human_log.human("info", "extension loaded", extension=ext)

    async def start(self, token: str) -> None:
        await self.start_webserver()
        await self.load_extensions()
        await self.bot.start(token)

    async def close(self) -> None:
        await self.shutdown_webserver()
        await self.scheduler.shutdown()
        set_active_runtime(None)
