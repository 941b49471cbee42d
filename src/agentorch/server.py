"""WebSocket transport: broadcasts task events and accepts client commands.

- ``/ws``          bidirectional JSON messages (see ``agentorch.events``)
- ``/api/tasks``   current queue snapshot
- ``/api/health``  liveness and counters
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from agentorch import events, log
from agentorch.config import VERSION, Config
from agentorch.events import Message
from agentorch.notify import open_browser
from agentorch.service import Orchestrator


class ClientHub:
    """Event sink that fans messages out to every connected WebSocket.

    Each client has its own outbox drained by one writer task, so messages
    reach a client in the order they were emitted.
    """

    def __init__(self) -> None:
        self._clients: dict[WebSocket, asyncio.Queue[Message]] = {}

    def __len__(self) -> int:
        return len(self._clients)

    def emit(self, message: Message) -> None:
        for outbox in self._clients.values():
            outbox.put_nowait(message)

    async def connect(self, websocket: WebSocket) -> asyncio.Queue[Message]:
        await websocket.accept()
        outbox: asyncio.Queue[Message] = asyncio.Queue()
        self._clients[websocket] = outbox
        log.info(f"Client connected ({len(self._clients)} total)")
        return outbox

    def disconnect(self, websocket: WebSocket) -> None:
        if self._clients.pop(websocket, None) is not None:
            log.info(f"Client disconnected ({len(self._clients)} total)")


async def _write_outbox(websocket: WebSocket, outbox: asyncio.Queue[Message]) -> None:
    while True:
        message = await outbox.get()
        await websocket.send_json(message)


def create_app(cfg: Config | None = None, **orchestrator_kwargs: Any) -> FastAPI:
    """Build the FastAPI app. Extra kwargs go to :class:`Orchestrator`."""
    cfg = cfg or Config()
    hub = ClientHub()
    orchestrator = Orchestrator(cfg, hub, **orchestrator_kwargs)
    handlers: set[asyncio.Task[None]] = set()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.success(f"agentorch {VERSION} listening on {cfg.url}")
        if cfg.open_browser:
            open_browser(cfg.url)
        yield
        running = orchestrator.engine.running_ids()
        if running:
            log.warn(f"Stopping {len(running)} running task(s)")
        await orchestrator.shutdown()

    app = FastAPI(title="agentorch", version=VERSION, lifespan=lifespan)
    app.state.cfg = cfg
    app.state.hub = hub
    app.state.orchestrator = orchestrator

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        sched = orchestrator.scheduler
        return {
            "status": "ok",
            "version": VERSION,
            "clients": len(hub),
            "queued": sched.count_queued(),
            "running": sched.count_running(),
            "completed": sched.count_done(),
            "failed": sched.count_failed(),
        }

    @app.get("/api/tasks")
    async def tasks() -> list[dict[str, Any]]:
        return [t.to_dict() for t in orchestrator.snapshot()]

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        outbox = await hub.connect(websocket)
        outbox.put_nowait(events.queue_snapshot(orchestrator.snapshot()))
        writer = asyncio.create_task(_write_outbox(websocket, outbox))
        try:
            while True:
                text = await websocket.receive_text()
                # Handled concurrently so a slow enhancement does not block stop requests.
                handler = asyncio.create_task(orchestrator.handle(text, outbox.put_nowait))
                handlers.add(handler)
                handler.add_done_callback(handlers.discard)
        except WebSocketDisconnect:
            pass
        finally:
            hub.disconnect(websocket)
            writer.cancel()

    return app


def run_server(cfg: Config) -> None:
    import uvicorn

    uvicorn.run(
        create_app(cfg),
        host=cfg.host,
        port=cfg.port,
        log_level="debug" if cfg.verbose else "warning",
    )
