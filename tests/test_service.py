"""Tests for agentorch.service: request validation and the control surface."""

from __future__ import annotations

import asyncio
import json

import pytest

from agentorch.executor import CANCELLED_LINE
from agentorch.service import CreateTask, Orchestrator, parse_message
from agentorch.tasks.model import EXIT_CANCELLED, AgentKind, TaskStatus

from .fakes import BLOCK_UNTIL_RELEASED, FakeEnhancer, RecordingSink, fake_detector, python_resolver, wait_for


@pytest.fixture
def enhancer() -> FakeEnhancer:
    return FakeEnhancer()


@pytest.fixture
def orch(cfg, sink, enhancer) -> Orchestrator:
    return Orchestrator(cfg, sink, resolver=python_resolver, enhancer=enhancer, detector=fake_detector)


@pytest.fixture
def replies() -> RecordingSink:
    return RecordingSink()


def _create(folder, prompt: str = "print('hi')", agent: str = "claude") -> str:
    return json.dumps({"type": "create_task", "folderPath": str(folder), "agent": agent, "prompt": prompt})


class TestParseMessage:
    def test_create_task_aliases(self):
        msg = parse_message({"type": "create_task", "folderPath": "/p", "agent": "codex", "prompt": "x"})
        assert isinstance(msg, CreateTask)
        assert msg.folder_path == "/p"
        assert msg.agent == AgentKind.CODEX
        assert msg.original_prompt is None

    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "launch_rockets"},
            {"type": "create_task", "folderPath": "/p", "agent": "gpt-pilot", "prompt": "x"},
            {"type": "create_task", "folderPath": "", "agent": "claude", "prompt": "x"},
            {"type": "reorder_task", "taskId": "t", "direction": "left"},
            {"type": "stop_task"},
            [],
        ],
    )
    def test_invalid_payloads_rejected(self, payload):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            parse_message(payload)


class TestHandleErrors:
    @pytest.mark.asyncio
    async def test_bad_json_replies_invalid_format(self, orch, replies, sink):
        await orch.handle("{not json", replies.emit)
        assert replies.messages == [{"type": "error", "message": "Invalid message format"}]
        assert sink.messages == []

    @pytest.mark.asyncio
    async def test_validation_error_reaches_caller_only(self, orch, replies, sink):
        await orch.handle(json.dumps({"type": "create_task", "agent": "claude"}), replies.emit)

        (reply,) = replies.messages
        assert reply["type"] == "error"
        assert reply["message"].startswith("Invalid message")
        assert sink.messages == []
        assert len(orch.registry) == 0

    @pytest.mark.asyncio
    async def test_unknown_task_ids(self, orch, replies):
        for kind in ("remove_task", "stop_task"):
            await orch.handle({"type": kind, "taskId": "missing"}, replies.emit)
        await orch.handle({"type": "reorder_task", "taskId": "missing", "direction": "up"}, replies.emit)

        assert [m["type"] for m in replies.messages] == ["error", "error", "error"]

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_error_reply(self, orch, replies, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("registry exploded")

        monkeypatch.setattr(orch, "create_task", boom)
        await orch.handle(_create("/p"), replies.emit)
        assert replies.messages == [{"type": "error", "message": "registry exploded"}]


class TestCreateAndRun:
    @pytest.mark.asyncio
    async def test_create_broadcasts_and_runs(self, orch, replies, sink, folders):
        (p1,) = folders("p1")
        await orch.handle(_create(p1, "print('from agent')"), replies.emit)

        (added,) = sink.of_type("task_added")
        task_id = added["task"]["id"]
        assert added["task"]["status"] == "queued"
        await orch.scheduler.wait_idle()

        task = orch.registry.get(task_id)
        assert task.status == TaskStatus.COMPLETED
        assert sink.output_for(task_id) == ["from agent"]
        assert sink.of_type("task_completed")[-1]["exitCode"] == 0
        assert replies.messages == []

    @pytest.mark.asyncio
    async def test_original_prompt_is_recorded(self, orch, folders):
        (p1,) = folders("p1")
        await orch.handle(
            {
                "type": "create_task",
                "folderPath": str(p1),
                "agent": "codex",
                "prompt": "print('long')",
                "originalPrompt": "short",
            },
            lambda m: None,
        )
        (task,) = orch.snapshot()
        assert task.original_prompt == "short"
        assert task.agent == AgentKind.CODEX
        await orch.scheduler.wait_idle()

    @pytest.mark.asyncio
    async def test_reorder_broadcasts_new_order(self, orch, sink, folders):
        (p1,) = folders("p1")
        a = orch.create_task(str(p1), AgentKind.CLAUDE, BLOCK_UNTIL_RELEASED)
        b = orch.create_task(str(p1), AgentKind.CLAUDE, "print('b')")
        c = orch.create_task(str(p1), AgentKind.CLAUDE, "print('c')")

        await orch.handle({"type": "reorder_task", "taskId": c.id, "direction": "up"}, sink.emit)
        await orch.handle({"type": "reorder_task", "taskId": a.id, "direction": "up"}, sink.emit)

        assert sink.of_type("queue_reordered") == [{"type": "queue_reordered", "taskIds": [a.id, c.id, b.id]}]
        assert sink.of_type("error") == []

        (p1 / "release").touch()
        await orch.scheduler.wait_idle()
        assert c.started_at <= b.started_at

    @pytest.mark.asyncio
    async def test_stop_running_task(self, orch, sink, replies, folders):
        (p1,) = folders("p1")
        task = orch.create_task(str(p1), AgentKind.CLAUDE, BLOCK_UNTIL_RELEASED)
        await wait_for(lambda: orch.engine.is_running(task.id))

        await orch.handle({"type": "stop_task", "taskId": task.id}, replies.emit)

        assert replies.messages == []
        assert task.exit_code == EXIT_CANCELLED
        assert task.output[-1] == CANCELLED_LINE
        assert sink.of_type("task_updated")[-1]["task"]["status"] == "error"
        await orch.scheduler.wait_idle()

    @pytest.mark.asyncio
    async def test_remove_running_task_kills_it_and_unblocks_folder(self, orch, sink, folders):
        (p1,) = folders("p1")
        first = orch.create_task(str(p1), AgentKind.CLAUDE, BLOCK_UNTIL_RELEASED)
        second = orch.create_task(str(p1), AgentKind.CLAUDE, "print('next')")
        await wait_for(lambda: orch.engine.is_running(first.id))

        assert orch.remove_task(first.id) is True

        assert orch.registry.get(first.id) is None
        assert sink.of_type("task_removed") == [{"type": "task_removed", "taskId": first.id}]
        await orch.scheduler.wait_idle()
        assert second.status == TaskStatus.COMPLETED
        assert not orch.engine.is_running(first.id)

    @pytest.mark.asyncio
    async def test_remove_queued_task(self, orch, folders):
        (p1,) = folders("p1")
        first = orch.create_task(str(p1), AgentKind.CLAUDE, BLOCK_UNTIL_RELEASED)
        queued = orch.create_task(str(p1), AgentKind.CLAUDE, "print('never')")

        assert orch.remove_task(queued.id) is True
        assert orch.registry.order() == [first.id]

        (p1 / "release").touch()
        await orch.scheduler.wait_idle()
        assert queued.output == []


GHOST = "open('ghost', 'w').close()"
SLOW_GHOST = "import time; time.sleep(0.3); open('ghost', 'w').close()"


class TestStartupWindow:
    @pytest.mark.asyncio
    async def test_remove_before_dispatched_task_runs(self, orch, sink, folders):
        (p1,) = folders("p1")
        task = orch.create_task(str(p1), AgentKind.CLAUDE, GHOST)
        assert task.status == TaskStatus.QUEUED

        assert orch.remove_task(task.id) is True
        await orch.scheduler.wait_idle()

        assert not (p1 / "ghost").exists()
        assert len(orch.registry.locks) == 0
        assert [m for m in sink.of_type("task_updated") if m["task"]["id"] == task.id] == []

    @pytest.mark.asyncio
    async def test_remove_while_process_is_starting_keeps_folder_exclusive(self, orch, folders):
        (p1,) = folders("p1")
        ghost = orch.create_task(str(p1), AgentKind.CLAUDE, SLOW_GHOST)
        await asyncio.sleep(0)
        assert ghost.status == TaskStatus.RUNNING
        assert orch.engine.is_starting(ghost.id)
        assert not orch.engine.is_running(ghost.id)

        assert orch.remove_task(ghost.id) is True
        nxt = orch.create_task(str(p1), AgentKind.CLAUDE, "print('next')")

        # The folder stays with the removed task until its process is reaped.
        assert orch.registry.locks.holder(nxt.folder_path) == ghost.id
        assert nxt.status == TaskStatus.QUEUED

        await wait_for(lambda: nxt.status.is_terminal)
        await orch.scheduler.wait_idle()
        assert nxt.status == TaskStatus.COMPLETED
        assert not orch.engine.is_running(ghost.id)
        await asyncio.sleep(0.5)
        assert not (p1 / "ghost").exists()
        assert len(orch.registry.locks) == 0

    @pytest.mark.asyncio
    async def test_stop_while_process_is_starting(self, orch, sink, replies, folders):
        (p1,) = folders("p1")
        task = orch.create_task(str(p1), AgentKind.CLAUDE, SLOW_GHOST)
        await asyncio.sleep(0)
        assert orch.engine.is_starting(task.id)

        await orch.handle({"type": "stop_task", "taskId": task.id}, replies.emit)

        assert replies.messages == []
        assert task.status == TaskStatus.ERROR
        assert task.exit_code == EXIT_CANCELLED
        assert task.output == [CANCELLED_LINE]
        assert sink.of_type("task_completed") == [
            {"type": "task_completed", "taskId": task.id, "exitCode": EXIT_CANCELLED}
        ]
        await orch.scheduler.wait_idle()
        await asyncio.sleep(0.5)
        assert not (p1 / "ghost").exists()
        assert len(orch.registry.locks) == 0

    @pytest.mark.asyncio
    async def test_stop_queued_task_explains_why(self, orch, replies, folders):
        (p1,) = folders("p1")
        first = orch.create_task(str(p1), AgentKind.CLAUDE, BLOCK_UNTIL_RELEASED)
        waiting = orch.create_task(str(p1), AgentKind.CLAUDE, "print(1)")
        await wait_for(lambda: orch.engine.is_running(first.id))

        await orch.handle({"type": "stop_task", "taskId": waiting.id}, replies.emit)

        (reply,) = replies.messages
        assert reply["type"] == "error"
        assert f"held by {first.id[:8]}" in reply["message"]
        (p1 / "release").touch()
        await orch.scheduler.wait_idle()


class TestCollaborators:
    @pytest.mark.asyncio
    async def test_enhance_replies_to_caller(self, orch, replies, enhancer, cfg):
        await orch.handle(
            {"type": "enhance_prompt", "prompt": "fix bug", "model": "llama3", "agent": "codex"},
            replies.emit,
        )
        assert replies.messages == [
            {"type": "prompt_enhanced", "original": "fix bug", "enhanced": "enhanced prompt"}
        ]
        assert enhancer.calls == [("llama3", "fix bug", "codex", cfg.ollama_url)]

    @pytest.mark.asyncio
    async def test_enhance_failure_is_error_reply(self, cfg, sink, replies):
        orch = Orchestrator(cfg, sink, enhancer=FakeEnhancer(fail=True), detector=fake_detector)
        await orch.handle(
            {"type": "enhance_prompt", "prompt": "fix bug", "model": "llama3", "agent": "claude"},
            replies.emit,
        )
        (reply,) = replies.messages
        assert reply["type"] == "error"
        assert reply["message"].startswith("Enhancement failed:")
        assert len(orch.registry) == 0
        assert sink.messages == []

    @pytest.mark.asyncio
    async def test_detection_result(self, orch, replies):
        await orch.handle({"type": "request_detection"}, replies.emit)
        (reply,) = replies.messages
        assert reply["type"] == "detection_result"
        agents = {a["name"]: a for a in reply["data"]["agents"]}
        assert agents["claude"]["installed"] is True
        assert agents["codex"]["installed"] is False
        assert reply["data"]["ollama"]["models"][0]["name"] == "llama3"


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_stops_running_and_starts_nothing_new(self, orch, sink, folders):
        (p1,) = folders("p1")
        running = orch.create_task(str(p1), AgentKind.CLAUDE, BLOCK_UNTIL_RELEASED)
        waiting = orch.create_task(str(p1), AgentKind.CLAUDE, "print('too late')")
        await wait_for(lambda: orch.engine.is_running(running.id))

        await orch.shutdown()

        assert running.status == TaskStatus.ERROR
        assert running.exit_code == EXIT_CANCELLED
        assert waiting.status == TaskStatus.QUEUED
        assert orch.engine.running_ids() == []
        assert len(orch.registry.locks) == 0
