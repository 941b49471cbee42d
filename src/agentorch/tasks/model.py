"""Task data model shared by the registry, scheduler and execution engine."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# Reserved exit codes for outcomes that never produced a real process status.
EXIT_SPAWN_FAILED = -1
EXIT_CANCELLED = -9


class TaskStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.ERROR)


class AgentKind(str, Enum):
    CLAUDE = "claude"
    CODEX = "codex"


def now_ms() -> int:
    return int(time.time() * 1000)


def new_task_id() -> str:
    return uuid.uuid4().hex


def normalize_folder(path: str) -> str:
    """Strip trailing separators so ``/a/b/`` and ``/a/b`` lock the same folder."""
    stripped = path.rstrip("/\\")
    if not stripped and path:
        return path[0]
    return stripped


@dataclass
class Task:
    id: str
    folder_path: str
    agent: AgentKind
    prompt: str
    original_prompt: str | None = None
    status: TaskStatus = TaskStatus.QUEUED
    output: list[str] = field(default_factory=list)
    exit_code: int | None = None
    created_at: int = field(default_factory=now_ms)
    started_at: int | None = None
    completed_at: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        """Wire representation sent to observers."""
        data: dict[str, Any] = {
            "id": self.id,
            "folderPath": self.folder_path,
            "agent": self.agent.value,
            "prompt": self.prompt,
            "status": self.status.value,
            "terminalOutput": list(self.output),
            "createdAt": self.created_at,
        }
        if self.original_prompt is not None:
            data["originalPrompt"] = self.original_prompt
        if self.exit_code is not None:
            data["exitCode"] = self.exit_code
        if self.started_at is not None:
            data["startedAt"] = self.started_at
        if self.completed_at is not None:
            data["completedAt"] = self.completed_at
        return data
