"""Control surface: validates caller requests and maps them onto the core."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from agentorch import events, log
from agentorch.config import Config
from agentorch.detector import DetectionResult, detect_agents
from agentorch.engines.registry import resolve_command
from agentorch.errors import ServiceError
from agentorch.events import EventSink, Message
from agentorch.executor import CommandResolver, ExecutionEngine
from agentorch.ollama import enhance_prompt
from agentorch.registry import TaskRegistry
from agentorch.scheduler import Scheduler
from agentorch.tasks.model import AgentKind, Task, TaskStatus

Reply = Callable[[Message], None]
Enhancer = Callable[[str, str, str, str], str]
Detector = Callable[[str], Awaitable[DetectionResult]]


# ── client messages ──────────────────────────────────────────────


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RequestDetection(_Message):
    type: Literal["request_detection"]


class CreateTask(_Message):
    type: Literal["create_task"]
    folder_path: str = Field(alias="folderPath", min_length=1)
    agent: AgentKind
    prompt: str = Field(min_length=1)
    original_prompt: str | None = Field(default=None, alias="originalPrompt")


class EnhancePrompt(_Message):
    type: Literal["enhance_prompt"]
    prompt: str = Field(min_length=1)
    model: str = Field(min_length=1)
    agent: AgentKind


class ReorderTask(_Message):
    type: Literal["reorder_task"]
    task_id: str = Field(alias="taskId")
    direction: Literal["up", "down"]


class RemoveTask(_Message):
    type: Literal["remove_task"]
    task_id: str = Field(alias="taskId")


class StopTask(_Message):
    type: Literal["stop_task"]
    task_id: str = Field(alias="taskId")


ClientMessage = Annotated[
    Union[RequestDetection, CreateTask, EnhancePrompt, ReorderTask, RemoveTask, StopTask],
    Field(discriminator="type"),
]
_CLIENT_MESSAGE: TypeAdapter[Any] = TypeAdapter(ClientMessage)


def parse_message(data: Any) -> _Message:
    """Validate a decoded client message. Raises ``ValidationError``."""
    return _CLIENT_MESSAGE.validate_python(data)


def _describe_validation(exc: ValidationError) -> str:
    first = exc.errors()[0]
    where = ".".join(str(p) for p in first.get("loc", ()) if p is not None)
    msg = first.get("msg", "invalid value")
    return f"Invalid message: {where}: {msg}" if where else f"Invalid message: {msg}"


# ── orchestrator ─────────────────────────────────────────────────


class Orchestrator:
    """Owns the registry, scheduler and engine, and serves caller requests.

    State-changing requests run on the event loop one at a time; only the
    awaited collaborators (detection, enhancement) suspend.
    """

    def __init__(
        self,
        cfg: Config,
        sink: EventSink,
        *,
        resolver: CommandResolver = resolve_command,
        enhancer: Enhancer = enhance_prompt,
        detector: Detector = detect_agents,
    ) -> None:
        self.cfg = cfg
        self.sink = sink
        self.registry = TaskRegistry()
        self.engine = ExecutionEngine(self.registry, sink, resolver)
        self.scheduler = Scheduler(self.registry, self.engine)
        self._enhancer = enhancer
        self._detector = detector

    # ── operations ───────────────────────────────────────────────

    def create_task(
        self,
        folder_path: str,
        agent: AgentKind,
        prompt: str,
        original_prompt: str | None = None,
    ) -> Task:
        task = self.registry.create(folder_path, agent, prompt, original_prompt)
        log.info(f"{log.task_tag(task)} queued for {task.folder_path}")
        self.sink.emit(events.task_added(task))
        self.scheduler.schedule_runnable()
        return task

    def reorder_task(self, task_id: str, direction: str) -> bool:
        if not self.registry.reorder(task_id, direction):
            return False
        self.sink.emit(events.queue_reordered(self.registry.order()))
        return True

    def remove_task(self, task_id: str) -> bool:
        task = self.registry.get(task_id)
        if task is None:
            return False
        # A task whose process is still being created keeps its folder
        # until the engine has reaped that process.
        starting = self.engine.is_starting(task_id)
        if task.status == TaskStatus.RUNNING:
            # Removing must not leave an agent running in a folder we just unlocked.
            self.engine.cancel(task_id)
        self.registry.remove(task_id, release_lock=not starting)
        self.sink.emit(events.task_removed(task_id))
        log.info(f"{log.task_tag(task)} removed")
        self.scheduler.schedule_runnable()
        return True

    def stop_task(self, task_id: str) -> bool:
        if not self.engine.cancel(task_id):
            return False
        self.scheduler.schedule_runnable()
        return True

    async def enhance(self, model: str, prompt: str, agent: AgentKind) -> str:
        return await asyncio.to_thread(self._enhancer, model, prompt, agent.value, self.cfg.ollama_url)

    async def detect(self) -> DetectionResult:
        return await self._detector(self.cfg.ollama_url)

    def snapshot(self) -> list[Task]:
        return self.registry.all_tasks()

    async def shutdown(self) -> None:
        self.scheduler.close()
        self.engine.shutdown()
        await self.scheduler.wait_idle()

    # ── request handling ─────────────────────────────────────────

    async def handle(self, raw: str | bytes | dict[str, Any], reply: Reply) -> None:
        """Serve one caller request. Failures go back to the caller as ``error``."""
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except (json.JSONDecodeError, UnicodeDecodeError):
                reply(events.error("Invalid message format"))
                return

        try:
            msg = parse_message(raw)
        except ValidationError as exc:
            reply(events.error(_describe_validation(exc)))
            return

        try:
            await self._dispatch(msg, reply)
        except Exception as exc:
            log.error(f"Request {msg.type} failed: {exc!r}")  # type: ignore[attr-defined]
            reply(events.error(str(exc) or type(exc).__name__))

    async def _dispatch(self, msg: _Message, reply: Reply) -> None:
        match msg:
            case RequestDetection():
                result = await self.detect()
                reply(events.detection_result(result.to_dict()))

            case CreateTask():
                self.create_task(msg.folder_path, msg.agent, msg.prompt, msg.original_prompt)

            case EnhancePrompt():
                try:
                    enhanced = await self.enhance(msg.model, msg.prompt, msg.agent)
                except ServiceError as exc:
                    reply(events.error(f"Enhancement failed: {exc}"))
                    return
                reply(events.prompt_enhanced(msg.prompt, enhanced))

            case ReorderTask():
                if msg.task_id not in self.registry:
                    reply(events.error(f"Unknown task: {msg.task_id}"))
                    return
                self.reorder_task(msg.task_id, msg.direction)

            case RemoveTask():
                if not self.remove_task(msg.task_id):
                    reply(events.error(f"Unknown task: {msg.task_id}"))

            case StopTask():
                if not self.stop_task(msg.task_id):
                    reason = self.scheduler.explain_block(msg.task_id)
                    reply(events.error(f"Task {msg.task_id} is not running ({reason or 'not started'})"))
