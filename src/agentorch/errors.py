"""Error taxonomy and exit classification for task execution."""

from __future__ import annotations

from enum import Enum

from agentorch.tasks.model import EXIT_CANCELLED, EXIT_SPAWN_FAILED


class OrchestratorError(RuntimeError):
    """Base class for errors raised by agentorch."""


class ConfigurationError(OrchestratorError):
    """The task's agent kind does not map to a command template."""


class LockContention(OrchestratorError):
    """A task tried to start while its folder was held by another task."""

    def __init__(self, folder: str, holder: str | None) -> None:
        super().__init__(f"Folder {folder} is locked by task {holder}")
        self.folder = folder
        self.holder = holder


class SpawnFailure(OrchestratorError):
    """The agent process could not be created."""


class ServiceError(OrchestratorError):
    """A local helper service answered with an error."""


class ServiceUnavailable(ServiceError):
    """A local helper service could not be reached."""


class FailureKind(str, Enum):
    NONE = "none"
    ABNORMAL_EXIT = "abnormal_exit"
    SPAWN_FAILURE = "spawn_failure"
    CANCELLED = "cancelled"


def classify_exit(exit_code: int) -> FailureKind:
    if exit_code == 0:
        return FailureKind.NONE
    if exit_code == EXIT_CANCELLED:
        return FailureKind.CANCELLED
    if exit_code == EXIT_SPAWN_FAILED:
        return FailureKind.SPAWN_FAILURE
    return FailureKind.ABNORMAL_EXIT


RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "usage limit",
    "you've hit your limit",
    "quota",
    "429",
    "too many requests",
)

AUTH_FAILURE_PATTERNS: tuple[str, ...] = (
    "not logged in",
    "please log in",
    "invalid api key",
    "unauthorized",
    "401",
    "authentication",
)


def _contains_any(text: str, patterns: tuple[str, ...]) -> bool:
    lower = text.lower()
    return any(pattern in lower for pattern in patterns)


def looks_like_rate_limit(text: str) -> bool:
    """Return ``True`` when text matches a rate/usage/quota limit."""
    if not text:
        return False
    return _contains_any(text, RATE_LIMIT_PATTERNS)


def looks_like_auth_failure(text: str) -> bool:
    """Return ``True`` when the agent CLI complains about missing credentials."""
    if not text:
        return False
    return _contains_any(text, AUTH_FAILURE_PATTERNS)


def describe_failure(exit_code: int, stderr_lines: list[str]) -> str:
    """Short human description of why a task ended, for the server log."""
    kind = classify_exit(exit_code)
    if kind == FailureKind.NONE:
        return "ok"
    if kind == FailureKind.CANCELLED:
        return "stopped by user"
    if kind == FailureKind.SPAWN_FAILURE:
        return "could not start agent"

    joined = "\n".join(stderr_lines)
    if looks_like_rate_limit(joined):
        return f"exit code {exit_code} (rate limited)"
    if looks_like_auth_failure(joined):
        return f"exit code {exit_code} (authentication problem)"
    return f"exit code {exit_code}"
