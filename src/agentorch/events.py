"""Lifecycle and output notifications delivered to observers."""

from __future__ import annotations

from typing import Any, Protocol

from agentorch.tasks.model import Task

Message = dict[str, Any]


class EventSink(Protocol):
    """Receives notifications for fan-out. Fire-and-forget, no acknowledgement."""

    def emit(self, message: Message) -> None: ...


class NullSink:
    def emit(self, message: Message) -> None:
        pass


# ── message builders ─────────────────────────────────────────────


def task_added(task: Task) -> Message:
    return {"type": "task_added", "task": task.to_dict()}


def task_updated(task: Task) -> Message:
    return {"type": "task_updated", "task": task.to_dict()}


def task_output(task_id: str, line: str) -> Message:
    return {"type": "task_output", "taskId": task_id, "output": line}


def task_completed(task_id: str, exit_code: int) -> Message:
    return {"type": "task_completed", "taskId": task_id, "exitCode": exit_code}


def task_removed(task_id: str) -> Message:
    return {"type": "task_removed", "taskId": task_id}


def queue_reordered(task_ids: list[str]) -> Message:
    return {"type": "queue_reordered", "taskIds": list(task_ids)}


def queue_snapshot(tasks: list[Task]) -> Message:
    return {"type": "queue_snapshot", "tasks": [t.to_dict() for t in tasks]}


def prompt_enhanced(original: str, enhanced: str) -> Message:
    return {"type": "prompt_enhanced", "original": original, "enhanced": enhanced}


def detection_result(result: dict[str, Any]) -> Message:
    return {"type": "detection_result", "data": result}


def error(message: str) -> Message:
    return {"type": "error", "message": message}
