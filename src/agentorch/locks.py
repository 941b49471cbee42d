"""Per-folder exclusivity: at most one running task per working directory."""

from __future__ import annotations

from agentorch import log
from agentorch.tasks.model import Task


class FolderLockTable:
    """Maps a normalized folder path to the id of the task running there.

    All methods are synchronous. Callers on the event loop get atomic
    check-and-set for free as long as they do not ``await`` between a
    check and the matching state change.
    """

    def __init__(self) -> None:
        self._locked: dict[str, str] = {}  # folder -> task_id

    def __contains__(self, folder: object) -> bool:
        return folder in self._locked

    def __len__(self) -> int:
        return len(self._locked)

    def holder(self, folder: str) -> str | None:
        return self._locked.get(folder)

    def held_folders(self) -> dict[str, str]:
        return dict(self._locked)

    def can_start(self, task: Task) -> bool:
        holder = self._locked.get(task.folder_path)
        return holder is None or holder == task.id

    def acquire(self, task: Task) -> bool:
        if not self.can_start(task):
            return False
        self._locked[task.folder_path] = task.id
        log.debug(f"Lock {task.folder_path} -> {task.id[:8]}")
        return True

    def release(self, task: Task) -> None:
        # A stale release must not clobber a newer holder.
        if self._locked.get(task.folder_path) == task.id:
            del self._locked[task.folder_path]
            log.debug(f"Unlock {task.folder_path} (was {task.id[:8]})")
