"""Supervisor process main loop: signals, live reload and orderly shutdown."""

from __future__ import annotations

import asyncio
import signal
import sys
from collections.abc import Sequence
from contextlib import suppress
from typing import Any

import structlog

from fnruntime.reloader import DevReloader
from fnruntime.settings import Settings
from fnruntime.supervisor import Supervisor

LOGGER = structlog.get_logger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def default_command() -> list[str]:
    return [sys.executable, "-m", "transports.http_fastapi"]


async def run_supervisor(settings: Settings, command: Sequence[str] | None = None) -> int:
    """Supervise the server until a shutdown signal; return the process exit code."""

    loop = asyncio.get_running_loop()
    supervisor = Supervisor(command or default_command(), settings)
    shutdown = asyncio.Event()
    stop_watching = asyncio.Event()
    exit_code = 0

    def request_shutdown(signum: int) -> None:
        LOGGER.info("supervisor.signal", signal=signal.Signals(signum).name)
        shutdown.set()

    def uncaught(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        nonlocal exit_code
        error = context.get("exception")
        LOGGER.error(
            "supervisor.uncaught",
            message=context.get("message"),
            error=str(error) if error is not None else None,
        )
        exit_code = 1
        shutdown.set()

    for signum in SHUTDOWN_SIGNALS:
        loop.add_signal_handler(signum, request_shutdown, signum)
    loop.set_exception_handler(uncaught)

    reloader: DevReloader | None = None
    watch_task: asyncio.Task[None] | None = None
    try:
        await supervisor.start()
        if settings.is_development:
            reloader = DevReloader(supervisor.restart, settings.reload_debounce)
            watch_task = asyncio.create_task(reloader.watch(settings.watch_path, stop_watching))
            watch_task.add_done_callback(_log_watch_end)
            LOGGER.info("reloader.started", path=str(settings.watch_path))
        await shutdown.wait()
    except Exception as exc:  # noqa: BLE001 - shut down cleanly, then report failure
        LOGGER.error("supervisor.crashed", error=str(exc), exc_info=exc)
        exit_code = 1
    finally:
        LOGGER.info("supervisor.shutting_down", exit_code=exit_code)
        stop_watching.set()
        if watch_task is not None and not watch_task.done():
            watch_task.cancel()
            with suppress(asyncio.CancelledError):
                await watch_task
        if reloader is not None:
            await reloader.aclose()
        try:
            await supervisor.shutdown()
        except Exception as exc:  # noqa: BLE001 - best effort, exit regardless
            LOGGER.error("supervisor.stop_failed", error=str(exc))
        supervisor.close()
        for signum in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(signum)

    return exit_code


def _log_watch_end(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        LOGGER.error("reloader.failed", error=str(error))
