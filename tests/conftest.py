"""Shared fixtures for agentorch tests.

Process tests run real ``sys.executable -c`` scripts through
``python_resolver``: a task's prompt is Python source executed inside the
task's folder, so each test controls exactly what the "agent" prints and
how it exits. Use tmp_path for every working directory.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from agentorch.config import Config
from agentorch.executor import ExecutionEngine
from agentorch.registry import TaskRegistry
from agentorch.scheduler import Scheduler
from agentorch.tasks.model import AgentKind, Task

from .fakes import RecordingSink, python_resolver


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register opt-in switch for tests that launch real agent CLIs."""
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run end-to-end tests marked with 'e2e'.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip e2e tests unless explicitly enabled."""
    if config.getoption("--run-e2e"):
        return

    skip_e2e = pytest.mark.skip(
        reason="E2E tests are skipped by default. Use --run-e2e to include them.",
    )
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture
def cfg(monkeypatch: pytest.MonkeyPatch) -> Config:
    for name in ("AGENTORCH_HOST", "AGENTORCH_PORT", "OLLAMA_HOST"):
        monkeypatch.delenv(name, raising=False)
    return Config(open_browser=False)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def registry() -> TaskRegistry:
    return TaskRegistry()


@pytest.fixture
def engine(registry: TaskRegistry, sink: RecordingSink) -> ExecutionEngine:
    return ExecutionEngine(registry, sink, python_resolver)


@pytest.fixture
def scheduler(registry: TaskRegistry, engine: ExecutionEngine) -> Scheduler:
    return Scheduler(registry, engine)


@pytest.fixture
def folders(tmp_path: Path):
    """Factory creating named working directories under tmp_path."""

    def _make(*names: str) -> list[Path]:
        paths = []
        for name in names:
            p = tmp_path / name
            p.mkdir(exist_ok=True)
            paths.append(p)
        return paths

    return _make


@pytest.fixture
def make_task(registry: TaskRegistry):
    """Factory fixture that creates queued tasks in the shared registry."""

    def _make(
        folder: str | Path,
        prompt: str = "print('hi')",
        agent: AgentKind = AgentKind.CLAUDE,
    ) -> Task:
        return registry.create(str(folder), agent, prompt)

    return _make
