import asyncio
import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from modules.common import runtime


def test_scheduler_job_exception_does_not_cancel(
    caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def runner() -> None:
        scheduler = runtime.Scheduler()

        attempt = {"count": 0}

        async def maybe_fail() -> None:
            attempt["count"] += 1
            if attempt["count"] == 1:
                raise RuntimeError("boom")

        def fast_next_run(self, reference=None):
            now = reference or runtime.datetime.now(runtime.timezone.utc)
            return now + runtime.timedelta(milliseconds=10)

        monkeypatch.setattr(runtime._RecurringJob, "_compute_next_run", fast_next_run)

        caplog.set_level(logging.ERROR, logger="c1c.runtime")

        scheduler.every(seconds=1, name="test_job", tag="test").do(maybe_fail)

        await asyncio.sleep(0.05)
        await scheduler.shutdown()

        assert attempt["count"] >= 2
        assert any("recurring job error" in record.message for record in caplog.records)

    asyncio.run(runner())


def test_start_guild_sync_runs_immediately_and_only_once() -> None:
    async def runner() -> None:
        cycle = SimpleNamespace(run_once=AsyncMock(return_value=[]), running=False)
        rt = runtime.Runtime(bot=SimpleNamespace(), cycle=cycle)
        try:
            assert rt.start_guild_sync() is True
            assert rt.start_guild_sync() is False
            for _ in range(50):
                if cycle.run_once.await_count:
                    break
                await asyncio.sleep(0.01)
        finally:
            await rt.close()

        cycle.run_once.assert_awaited_once_with(reason="scheduled")
        assert runtime.get_active_runtime() is None

    asyncio.run(runner())
