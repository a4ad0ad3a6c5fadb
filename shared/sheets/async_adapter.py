"""Async adapter for Google Sheets operations.

gspread is synchronous; this module offloads its calls into a small bounded
:class:`~concurrent.futures.ThreadPoolExecutor` so the Discord event loop
never blocks on spreadsheet I/O.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from threading import Lock
from typing import Callable, ParamSpec, TypeVar

P = ParamSpec("P")
T = TypeVar("T")

_logger = logging.getLogger(__name__)
_EXECUTOR: ThreadPoolExecutor | None = None
_EXECUTOR_LOCK = Lock()
# Guilds are polled one after another, so a couple of workers is plenty.
_MAX_WORKERS = 2


def _get_executor() -> ThreadPoolExecutor:
    global _EXECUTOR
    if _EXECUTOR is None:
        with _EXECUTOR_LOCK:
            if _EXECUTOR is None:
                _EXECUTOR = ThreadPoolExecutor(
                    max_workers=_MAX_WORKERS,
                    thread_name_prefix="sheets-io",
                )
                _logger.info(
                    "SheetsAsyncAdapter initialized (max_workers=%d)", _MAX_WORKERS
                )
    return _EXECUTOR


def shutdown_executor(wait: bool = True) -> None:
    """Shut down the shared executor if it has been initialised."""

    global _EXECUTOR
    if _EXECUTOR is not None:
        with _EXECUTOR_LOCK:
            if _EXECUTOR is not None:
                _EXECUTOR.shutdown(wait=wait)
                _EXECUTOR = None
                _logger.info("SheetsAsyncAdapter executor shut down")


async def arun(
    func: Callable[P, T],
    *args: P.args,
    timeout: float | None = None,
    **kwargs: P.kwargs,
) -> T:
    """Execute ``func`` in the adapter executor and await the result."""

    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(_get_executor(), partial(func, *args, **kwargs))
    if timeout is not None:
        return await asyncio.wait_for(future, timeout)
    return await future


__all__ = ["arun", "shutdown_executor"]
