"""Development-time restart on source changes."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import structlog
from watchfiles import Change, DefaultFilter, awatch

from fnruntime.supervisor import Timer

LOGGER = structlog.get_logger(__name__)


class ReloadFilter(DefaultFilter):
    """Skip dependency, VCS and build directories plus hidden files under ``root``.

    Only the part of a path below ``root`` is inspected, so a project that
    itself lives under ``build/`` or ``venv/`` still reloads.
    """

    ignore_dirs = (
        *DefaultFilter.ignore_dirs,
        "venv",
        "site-packages",
        "dist",
        "build",
    )

    def __init__(self, root: Path) -> None:
        super().__init__()
        self.root = root.resolve()

    def __call__(self, change: Change, path: str) -> bool:
        candidate = Path(path).resolve()
        try:
            relative = candidate.relative_to(self.root)
        except ValueError:
            relative = candidate
        if not relative.parts:
            return True
        if not super().__call__(change, str(relative)):
            return False
        return not any(part.startswith(".") for part in relative.parts)


class DevReloader:
    """Debounce change notifications into restarts, one restart at a time."""

    def __init__(self, restart: Callable[[], Awaitable[Any]], debounce: float = 0.5) -> None:
        self._restart = restart
        self.debounce = debounce
        self._timer = Timer("debounce")
        self._in_flight = False
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def notify(self, path: str) -> None:
        LOGGER.info("reloader.change", path=path)
        self._timer.schedule(self.debounce, self._fire)

    def close(self) -> None:
        self._timer.cancel()

    async def aclose(self) -> None:
        """Cancel the pending debounce and any restart still running."""
        self.close()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def watch(self, root: Path, stop_event: asyncio.Event | None = None) -> None:
        async for changes in awatch(root, watch_filter=ReloadFilter(root), stop_event=stop_event):
            for _change, path in changes:
                self.notify(path)

    def _fire(self) -> None:
        task = asyncio.create_task(self._run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self) -> None:
        if self._in_flight:
            LOGGER.info("reloader.restart_dropped")
            return
        self._in_flight = True
        try:
            await self._restart()
        finally:
            self._in_flight = False
