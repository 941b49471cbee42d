"""Folder-aware scheduler: starts every queued task whose folder is free."""

from __future__ import annotations

import asyncio

from agentorch import log
from agentorch.errors import LockContention
from agentorch.executor import ExecutionEngine
from agentorch.registry import TaskRegistry
from agentorch.tasks.model import Task, TaskStatus


class Scheduler:
    """Decides which queued tasks may start and dispatches them.

    Usage::

        sched = Scheduler(registry, engine)
        sched.runnable()              # queued tasks whose folder is free
        sched.schedule_runnable()     # dispatch them, fire-and-forget
        sched.request_pass()          # schedule a pass on the next loop tick
        await sched.wait_idle()       # until no dispatched execution remains

    Must be driven from the event loop thread. A pass never awaits, so
    registry and lock reads inside it cannot interleave with a completion.
    """

    def __init__(self, registry: TaskRegistry, engine: ExecutionEngine) -> None:
        self.registry = registry
        self.engine = engine
        self._active = False
        self._dirty = False
        self._closed = False
        self._dispatched: set[str] = set()  # handed to the engine, not yet returned
        self._inflight: set[asyncio.Task[None]] = set()

    # ── state queries ────────────────────────────────────────────

    def _count(self, *statuses: TaskStatus) -> int:
        return sum(1 for t in self.registry.all_tasks() if t.status in statuses)

    def count_queued(self) -> int:
        return self._count(TaskStatus.QUEUED)

    def count_running(self) -> int:
        return self._count(TaskStatus.RUNNING)

    def count_done(self) -> int:
        return self._count(TaskStatus.COMPLETED)

    def count_failed(self) -> int:
        return self._count(TaskStatus.ERROR)

    # ── runnable set ─────────────────────────────────────────────

    def runnable(self) -> list[Task]:
        """Queued tasks that may start now, at most one per folder, in queue order."""
        ready: list[Task] = []
        claimed: set[str] = set()
        for task in self.registry.queued():
            folder = task.folder_path
            if folder in claimed:
                continue
            claimed.add(folder)
            if task.id in self._dispatched:
                continue
            if not self.registry.locks.can_start(task):
                continue
            ready.append(task)
        return ready

    def explain_block(self, task_id: str) -> str:
        """Human-readable explanation of why *task_id* is not running."""
        task = self.registry.get(task_id)
        if task is None:
            return "unknown task"
        if task.status != TaskStatus.QUEUED:
            return f"task is {task.status.value}"

        holder = self.registry.locks.holder(task.folder_path)
        if holder and holder != task.id:
            return f"folder {task.folder_path} held by {holder[:8]}"

        for other in self.registry.queued():
            if other.id == task.id:
                break
            if other.folder_path == task.folder_path:
                return f"waiting behind {other.id[:8]} in {task.folder_path}"
        if task.id in self._dispatched:
            return "starting"
        return ""

    # ── dispatch ─────────────────────────────────────────────────

    def schedule_runnable(self) -> list[Task]:
        """Run one scheduling pass and return the tasks it dispatched.

        A call made while a pass is active only marks the scheduler dirty;
        the active pass then repeats before returning.
        """
        if self._closed:
            return []
        if self._active:
            self._dirty = True
            return []

        self._active = True
        started: list[Task] = []
        try:
            while True:
                self._dirty = False
                for task in self.runnable():
                    self._dispatch(task)
                    started.append(task)
                if not self._dirty:
                    break
        finally:
            self._active = False

        if started:
            log.debug(
                f"Dispatched {len(started)} task(s); "
                f"{self.count_queued()} queued, {len(self.registry.locks)} folder(s) busy"
            )
        return started

    def request_pass(self) -> None:
        """Schedule a fresh pass after the current callback has returned."""
        asyncio.get_running_loop().call_soon(self.schedule_runnable)

    def _dispatch(self, task: Task) -> None:
        self._dispatched.add(task.id)
        runner = asyncio.create_task(self._execute(task), name=f"agentorch-{task.id[:8]}")
        self._inflight.add(runner)
        runner.add_done_callback(self._inflight.discard)

    def close(self) -> None:
        """Stop dispatching. Tasks already handed out but not started stay queued."""
        self._closed = True

    async def _execute(self, task: Task) -> None:
        if self._closed:
            self._dispatched.discard(task.id)
            return
        try:
            await self.engine.run(task)
        except LockContention as exc:
            log.warn(f"{log.task_tag(task)} not started: {self.explain_block(task.id) or exc}")
        except Exception as exc:
            # One broken task must not take the scheduler down with it.
            log.error(f"{log.task_tag(task)} crashed: {exc!r}")
            if task.status == TaskStatus.RUNNING:
                self.engine.abort(task, str(exc))
        finally:
            self._dispatched.discard(task.id)
            self.request_pass()

    async def wait_idle(self) -> None:
        """Wait until every dispatched execution, including follow-ups, has returned."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
            # Let pending request_pass callbacks dispatch follow-up work.
            await asyncio.sleep(0)
