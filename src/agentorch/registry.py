"""In-memory task registry: task map, presentation order and folder locks."""

from __future__ import annotations

from dataclasses import fields
from typing import Any

from agentorch.locks import FolderLockTable
from agentorch.tasks.model import AgentKind, Task, TaskStatus, new_task_id, normalize_folder

_TASK_FIELDS = frozenset(f.name for f in fields(Task))
_IMMUTABLE_FIELDS = frozenset({"id", "folder_path", "agent", "created_at"})


class TaskRegistry:
    """Owns every task record, their order, and the folder lock table.

    Usage::

        reg = TaskRegistry()
        task = reg.create("/work/repo", AgentKind.CLAUDE, "fix the tests")
        reg.reorder(task.id, "up")
        reg.remove(task.id)         # also releases its folder lock
    """

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._order: list[str] = []
        self.locks = FolderLockTable()

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    # ── creation / lookup ────────────────────────────────────────

    def create(
        self,
        folder_path: str,
        agent: AgentKind,
        prompt: str,
        original_prompt: str | None = None,
    ) -> Task:
        task = Task(
            id=new_task_id(),
            folder_path=normalize_folder(folder_path),
            agent=agent,
            prompt=prompt,
            original_prompt=original_prompt,
        )
        self._tasks[task.id] = task
        self._order.append(task.id)
        return task

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def all_tasks(self) -> list[Task]:
        return [self._tasks[tid] for tid in self._order if tid in self._tasks]

    def queued(self) -> list[Task]:
        return [t for t in self.all_tasks() if t.status == TaskStatus.QUEUED]

    def order(self) -> list[str]:
        return list(self._order)

    # ── mutation ─────────────────────────────────────────────────

    def update(self, task_id: str, **changes: Any) -> Task | None:
        """Merge *changes* into the task. Unknown or immutable fields raise ``TypeError``."""
        bad = set(changes) - (_TASK_FIELDS - _IMMUTABLE_FIELDS)
        if bad:
            raise TypeError(f"Cannot update task field(s): {', '.join(sorted(bad))}")
        task = self._tasks.get(task_id)
        if task is None:
            return None
        for name, value in changes.items():
            setattr(task, name, value)
        return task

    def append_output(self, task_id: str, line: str) -> Task | None:
        task = self._tasks.get(task_id)
        if task is None:
            return None
        task.output.append(line)
        return task

    def remove(self, task_id: str, *, release_lock: bool = True) -> bool:
        task = self._tasks.pop(task_id, None)
        if task is None:
            return False
        if release_lock:
            self.locks.release(task)
        self._order.remove(task_id)
        return True

    def reorder(self, task_id: str, direction: str) -> bool:
        """Swap *task_id* with its neighbour. ``False`` at either boundary."""
        if direction not in ("up", "down"):
            return False
        try:
            index = self._order.index(task_id)
        except ValueError:
            return False

        new_index = index - 1 if direction == "up" else index + 1
        if new_index < 0 or new_index >= len(self._order):
            return False

        self._order[index], self._order[new_index] = self._order[new_index], self._order[index]
        return True
