"""Execution engine: spawns an agent process per task and streams its output."""

from __future__ import annotations

import asyncio
import os
import signal
import subprocess
import sys
from collections.abc import Callable
from typing import cast

from agentorch import events, log
from agentorch.engines.base import CommandSpec
from agentorch.engines.registry import resolve_command
from agentorch.errors import ConfigurationError, LockContention, SpawnFailure, describe_failure
from agentorch.events import EventSink, NullSink
from agentorch.registry import TaskRegistry
from agentorch.streams import STDERR_PREFIX, drain
from agentorch.tasks.model import (
    EXIT_CANCELLED,
    EXIT_SPAWN_FAILED,
    Task,
    TaskStatus,
    now_ms,
)

CANCELLED_LINE = "[system] Task stopped by user"
SHUTDOWN_LINE = "[system] Task stopped: server shutting down"

CommandResolver = Callable[[Task], CommandSpec]


def _spawn_kwargs() -> dict[str, object]:
    """Put each agent in its own process group so a kill reaches its children."""
    if sys.platform == "win32":
        return {"creationflags": int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0))}
    return {"start_new_session": True}


def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        if sys.platform != "win32":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        pass


class ExecutionEngine:
    """Runs tasks to a terminal state and handles forced cancellation.

    Every terminal transition goes through :meth:`_finish`, which is a no-op
    for a task that is already terminal. Natural completion and
    :meth:`cancel` can therefore race without double-reporting.
    """

    def __init__(
        self,
        registry: TaskRegistry,
        sink: EventSink | None = None,
        resolver: CommandResolver = resolve_command,
    ) -> None:
        self.registry = registry
        self.sink: EventSink = sink or NullSink()
        self._resolve = resolver
        self._procs: dict[str, asyncio.subprocess.Process] = {}
        # task id -> stop note, set while the process is being created
        self._starting: dict[str, str | None] = {}

    # ── queries ──────────────────────────────────────────────────

    def is_running(self, task_id: str) -> bool:
        return task_id in self._procs

    def is_starting(self, task_id: str) -> bool:
        return task_id in self._starting

    def running_ids(self) -> list[str]:
        return list(self._procs)

    # ── run ──────────────────────────────────────────────────────

    async def run(self, task: Task) -> TaskStatus:
        """Execute *task* to completion and return its terminal status.

        Raises :class:`LockContention` without touching any state when the
        task's folder is held by someone else.
        """
        if self.registry.get(task.id) is not task or task.status != TaskStatus.QUEUED:
            log.debug(f"{task.id[:8]}: removed or stopped before start, skipping")
            return task.status

        locks = self.registry.locks
        if not locks.acquire(task):
            raise LockContention(task.folder_path, locks.holder(task.folder_path))
        self.registry.update(task.id, status=TaskStatus.RUNNING, started_at=now_ms())
        self.sink.emit(events.task_updated(task))
        log.info(f"{log.task_tag(task)} started in {task.folder_path}")

        self._starting[task.id] = None
        try:
            proc = await self._spawn(task, self._resolve(task))
        except (ConfigurationError, SpawnFailure) as exc:
            return self._fail_to_start(task, str(exc))
        except asyncio.CancelledError:
            self._finish(task, TaskStatus.ERROR, EXIT_CANCELLED, note=SHUTDOWN_LINE)
            raise
        finally:
            stopped = self._starting.pop(task.id, None)

        if stopped is not None:
            # Stopped or removed while the process was being created.
            _kill(proc)
            await proc.wait()
            locks.release(task)
            log.debug(f"{task.id[:8]}: reaped process stopped during start")
            return self._current_status(task)

        self._procs[task.id] = proc
        lines: asyncio.Queue[str | None] = asyncio.Queue()
        producers = [
            asyncio.create_task(drain(cast(asyncio.StreamReader, proc.stdout), lines)),
            asyncio.create_task(drain(cast(asyncio.StreamReader, proc.stderr), lines, STDERR_PREFIX)),
        ]

        try:
            await self._pump(task, lines, len(producers))
            exit_code = await proc.wait()
        except asyncio.CancelledError:
            self._terminate(task.id, SHUTDOWN_LINE, EXIT_CANCELLED)
            raise
        except Exception as exc:
            log.error(f"{log.task_tag(task)} output handling failed: {exc}")
            self._terminate(task.id, f"[error] {exc}", EXIT_SPAWN_FAILED)
            return self._current_status(task)
        finally:
            for producer in producers:
                producer.cancel()

        if self._procs.get(task.id) is proc:
            del self._procs[task.id]

        status = TaskStatus.COMPLETED if exit_code == 0 else TaskStatus.ERROR
        return self._finish(task, status, exit_code)

    async def _spawn(self, task: Task, spec: CommandSpec) -> asyncio.subprocess.Process:
        log.debug(f"{task.id[:8]}: exec {spec.cmd[0]} (cwd={spec.cwd})")
        try:
            proc = await asyncio.create_subprocess_exec(
                *spec.cmd,
                cwd=spec.cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=spec.full_env(),
                **_spawn_kwargs(),  # type: ignore[arg-type]
            )
        except OSError as exc:
            raise SpawnFailure(f"Failed to start {spec.cmd[0]}: {exc}") from exc
        if proc.stdout is None or proc.stderr is None:
            _kill(proc)
            raise SpawnFailure(f"Failed to start {spec.cmd[0]}: output pipes unavailable")
        return proc

    async def _pump(self, task: Task, lines: asyncio.Queue[str | None], producers: int) -> None:
        """Deliver lines from the drainers until every producer signalled EOF."""
        remaining = producers
        while remaining:
            line = await lines.get()
            if line is None:
                remaining -= 1
                continue
            self._deliver(task, line)

    def _deliver(self, task: Task, line: str) -> None:
        current = self.registry.get(task.id)
        if current is None or current.is_terminal:
            log.debug(f"{task.id[:8]}: dropped late output line")
            return
        self.registry.append_output(task.id, line)
        self.sink.emit(events.task_output(task.id, line))
        log.output(task, line)

    # ── cancellation ─────────────────────────────────────────────

    def cancel(self, task_id: str) -> bool:
        """Kill the process running or being started for *task_id*. ``False`` if there is none."""
        return self._terminate(task_id, CANCELLED_LINE, EXIT_CANCELLED)

    def abort(self, task: Task, message: str) -> TaskStatus:
        """Force *task* into ``error`` after an internal failure, killing its process."""
        proc = self._procs.pop(task.id, None)
        if proc is not None:
            _kill(proc)
        return self._fail_to_start(task, message)

    def shutdown(self) -> None:
        for task_id in [*self._procs, *self._starting]:
            self._terminate(task_id, SHUTDOWN_LINE, EXIT_CANCELLED)

    def _terminate(self, task_id: str, note: str, exit_code: int) -> bool:
        proc = self._procs.pop(task_id, None)
        if proc is not None:
            _kill(proc)
            release = True
        elif task_id in self._starting and self._starting[task_id] is None:
            # run() kills the process once it exists, then frees the folder.
            self._starting[task_id] = note
            release = False
        else:
            return False
        task = self.registry.get(task_id)
        if task is not None:
            self._finish(task, TaskStatus.ERROR, exit_code, note=note, release=release)
        return True

    # ── terminal transitions ─────────────────────────────────────

    def _fail_to_start(self, task: Task, message: str) -> TaskStatus:
        return self._finish(task, TaskStatus.ERROR, EXIT_SPAWN_FAILED, note=f"[error] {message}")

    def _current_status(self, task: Task) -> TaskStatus:
        current = self.registry.get(task.id)
        return current.status if current is not None else TaskStatus.ERROR

    def _finish(
        self,
        task: Task,
        status: TaskStatus,
        exit_code: int,
        *,
        note: str | None = None,
        release: bool = True,
    ) -> TaskStatus:
        if release:
            self.registry.locks.release(task)

        current = self.registry.get(task.id)
        if current is None:
            log.debug(f"{task.id[:8]}: finished after removal, nothing to report")
            return status
        if current.is_terminal:
            return current.status

        if note:
            self.registry.append_output(task.id, note)
            self.sink.emit(events.task_output(task.id, note))
        self.registry.update(task.id, status=status, exit_code=exit_code, completed_at=now_ms())
        self.sink.emit(events.task_updated(current))
        self.sink.emit(events.task_completed(task.id, exit_code))

        if status == TaskStatus.COMPLETED:
            log.success(f"{log.task_tag(task)} completed")
        else:
            reason = describe_failure(exit_code, current.output[-20:])
            log.warn(f"{log.task_tag(task)} failed: {reason}")
        return status
