"""Supervision of the HTTP server subprocess.

The supervisor owns at most one child at a time. It restarts the child after
an unexpected exit (outside development), and stops it by signalling the
whole process group with SIGTERM, escalating to SIGKILL on the direct PID
when the child does not exit within ``stop_timeout``.
"""

from __future__ import annotations

import asyncio
import os
import signal
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from fnruntime.settings import Settings

LOGGER = structlog.get_logger(__name__)


class SupervisorState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class Timer:
    """Cancelable ``loop.call_later`` handle; scheduling replaces any pending call."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, delay: float, callback: Callable[..., Any], *args: Any) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._fire, callback, args)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        self._handle = None
        callback(*args)


@dataclass(slots=True)
class ChildProcess:
    process: asyncio.subprocess.Process
    exited: asyncio.Event = field(default_factory=asyncio.Event)
    watcher: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int:
        return self.process.pid


def describe_exit(returncode: int) -> tuple[int | None, signal.Signals | None]:
    """Split a returncode into ``(exit code, signal)``; exactly one is set."""
    if returncode >= 0:
        return returncode, None
    try:
        return None, signal.Signals(-returncode)
    except ValueError:
        return returncode, None


class Supervisor:
    def __init__(
        self,
        command: Sequence[str],
        settings: Settings,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.command = list(command)
        self.env = dict(os.environ if env is None else env)
        self.development = settings.is_development
        self.restart_delay = settings.restart_delay
        self.stop_timeout = settings.stop_timeout

        self.state = SupervisorState.STOPPED
        self.child: ChildProcess | None = None
        self.spawn_count = 0

        self._restart_timer = Timer("restart")
        self._kill_timer = Timer("kill")
        self._restarting = False
        self._restart_idle = asyncio.Event()
        self._restart_idle.set()
        self._shutting_down = False
        self._stop_task: asyncio.Task[None] | None = None
        self._start_tasks: set[asyncio.Task[Any]] = set()
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def restart_pending(self) -> bool:
        return self._restart_timer.pending

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    async def start(self) -> ChildProcess | None:
        if self._shutting_down:
            LOGGER.info("supervisor.start_refused")
            return None
        if self.child is not None:
            LOGGER.warning("supervisor.already_running", pid=self.child.pid)
            return self.child

        self._restart_timer.cancel()
        self.state = SupervisorState.STARTING
        LOGGER.info("supervisor.starting", command=self.command)
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                env=self.env,
                start_new_session=True,
            )
        except OSError as exc:
            self.state = SupervisorState.STOPPED
            LOGGER.error("supervisor.spawn_failed", command=self.command, error=str(exc))
            self._schedule_restart()
            return None

        child = ChildProcess(process=process)
        self.child = child
        self.spawn_count += 1
        child.watcher = self._spawn_task(self._watch(child))
        self.state = SupervisorState.RUNNING
        LOGGER.info("supervisor.spawned", pid=child.pid)
        return child

    async def stop(self) -> None:
        """Stop the current child; concurrent callers share one stop."""
        if self._stop_task is None or self._stop_task.done():
            self._stop_task = self._spawn_task(self._stop_child())
        await asyncio.shield(self._stop_task)

    async def _stop_child(self) -> None:
        self._restart_timer.cancel()
        child = self.child
        if child is None:
            LOGGER.info("supervisor.no_child")
            self.state = SupervisorState.STOPPED
            return

        self.state = SupervisorState.STOPPING
        pid = child.pid
        LOGGER.info("supervisor.stopping", pid=pid)

        escalated = asyncio.get_running_loop().create_future()

        def escalate() -> None:
            LOGGER.warning("supervisor.kill_timeout", pid=pid, timeout_seconds=self.stop_timeout)
            try:
                os.kill(pid, signal.SIGKILL)
            except OSError as exc:
                LOGGER.error("supervisor.sigkill_failed", pid=pid, error=str(exc))
            if not escalated.done():
                escalated.set_result(None)

        self._kill_timer.schedule(self.stop_timeout, escalate)
        exited = asyncio.ensure_future(child.exited.wait())
        try:
            if not child.exited.is_set():
                self._terminate_tree(pid)
            await asyncio.wait({exited, escalated}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            self._kill_timer.cancel()
            exited.cancel()
            self.child = None
            self.state = SupervisorState.STOPPED

        if child.exited.is_set():
            LOGGER.info("supervisor.stopped", pid=pid)

    async def restart(self) -> bool:
        """Stop then start; returns False when a restart is in flight or shutdown began."""
        if self._restarting or self._shutting_down:
            LOGGER.info("supervisor.restart_skipped", shutting_down=self._shutting_down)
            return False

        self._restarting = True
        self._restart_idle.clear()
        LOGGER.info("supervisor.restarting")
        try:
            await self.stop()
            if await self.start() is not None:
                LOGGER.info("supervisor.restarted")
        except Exception as exc:  # noqa: BLE001 - a failed restart must not kill the supervisor
            LOGGER.error("supervisor.restart_failed", error=str(exc))
        finally:
            self._restarting = False
            self._restart_idle.set()
        return True

    async def shutdown(self) -> None:
        """Final stop: no later start, restart or crash recovery spawns a child."""
        self._shutting_down = True
        self._restart_timer.cancel()
        # A restart or delayed start already past its checks may still spawn.
        await self._restart_idle.wait()
        if self._start_tasks:
            await asyncio.gather(*self._start_tasks, return_exceptions=True)
        await self.stop()

    def close(self) -> None:
        self._restart_timer.cancel()
        self._kill_timer.cancel()

    def _terminate_tree(self, pid: int) -> None:
        try:
            os.killpg(os.getpgid(pid), signal.SIGTERM)
            return
        except OSError as exc:
            LOGGER.warning("supervisor.sigterm_failed", pid=pid, error=str(exc))
        try:
            os.killpg(os.getpgid(pid), signal.SIGKILL)
            LOGGER.info("supervisor.sigkill_sent", pid=pid)
        except OSError as exc:
            LOGGER.error("supervisor.sigkill_failed", pid=pid, error=str(exc))

    async def _watch(self, child: ChildProcess) -> None:
        returncode = await child.process.wait()
        child.exited.set()
        code, sig = describe_exit(returncode)
        LOGGER.info(
            "supervisor.exited",
            pid=child.pid,
            code=code,
            signal=sig.name if sig is not None else None,
        )

        # Exits of replaced children and of children being stopped are handled by stop().
        if child is not self.child or self.state is SupervisorState.STOPPING:
            return

        self.child = None
        self.state = SupervisorState.STOPPED
        if self.should_restart(code, sig):
            LOGGER.warning("supervisor.crashed", pid=child.pid, restart_in_seconds=self.restart_delay)
            self._schedule_restart()

    def should_restart(self, code: int | None, sig: signal.Signals | None) -> bool:
        return not self.development and code != 0 and sig is not signal.SIGTERM

    def _schedule_restart(self) -> None:
        if self.development or self._shutting_down:
            return
        self._restart_timer.schedule(self.restart_delay, self._restart_now)

    def _restart_now(self) -> None:
        task = self._spawn_task(self.start())
        self._start_tasks.add(task)
        task.add_done_callback(self._start_tasks.discard)

    def _spawn_task(self, coro: Any) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
