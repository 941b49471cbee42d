"""Engine registry: get the right adapter by agent kind."""

from __future__ import annotations

from agentorch.engines.base import CommandSpec, EngineBase
from agentorch.engines.claude import ClaudeEngine
from agentorch.engines.codex import CodexEngine
from agentorch.errors import ConfigurationError
from agentorch.tasks.model import AgentKind, Task


def get_engine(name: str | AgentKind) -> EngineBase:
    """Return an engine adapter for *name*."""
    key = name.value if isinstance(name, AgentKind) else name
    match key:
        case "claude":
            return ClaudeEngine()
        case "codex":
            return CodexEngine()
        case _:
            raise ConfigurationError(f"Unknown agent: {key}")


def all_engines() -> list[EngineBase]:
    return [get_engine(name) for name in ENGINE_NAMES]


def resolve_command(task: Task) -> CommandSpec:
    """Map a task to the command that runs it."""
    return get_engine(task.agent).build_cmd(task.prompt, task.folder_path)


ENGINE_NAMES = tuple(kind.value for kind in AgentKind)
