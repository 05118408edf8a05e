"""FastAPI application, lifespan, CORS, and WebSocket connection manager."""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Dict

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from storyteller.config import get_settings
from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    from storyteller.database import AsyncSessionLocal, create_tables, engine
    from storyteller.services.llm import LLMClient
    from storyteller.state.registry import SessionRegistry
    from storyteller.state.usage import UsageLedger

    settings = get_settings()
    await create_tables(engine)

    app.state.session_factory = AsyncSessionLocal
    app.state.registry = SessionRegistry(settings)
    app.state.ledger = UsageLedger(AsyncSessionLocal, settings)
    app.state.llm = LLMClient(ledger=app.state.ledger, settings=settings)

    reapers = [
        asyncio.create_task(app.state.registry.run_reaper(settings.registry_sweep_interval)),
        asyncio.create_task(app.state.ledger.run_reaper(settings.usage_sweep_interval)),
    ]
    logger.info("app_started | registry_sweep=%ss | usage_sweep=%ss",
                settings.registry_sweep_interval, settings.usage_sweep_interval)
    yield

    for task in reapers:
        task.cancel()
    for task in reapers:
        with contextlib.suppress(asyncio.CancelledError):
            await task
    await engine.dispose()
    logger.info("app_stopped")


app = FastAPI(title="Storyteller Engine", version="1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Connection Manager ---
class ConnectionManager:
    """Open sockets by socket id. A reconnect under the same id replaces the old socket."""

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}

    async def connect(self, socket_id: str, websocket: WebSocket):
        await websocket.accept()
        if socket_id in self.active_connections:
            logger.warning("socket_replaced | socket=%s", socket_id)
        self.active_connections[socket_id] = websocket

    def disconnect(self, socket_id: str, websocket: WebSocket):
        if self.active_connections.get(socket_id) is websocket:
            del self.active_connections[socket_id]

    def __len__(self) -> int:
        return len(self.active_connections)

    async def send_json(self, message: dict, websocket: WebSocket):
        await websocket.send_json(message)


manager = ConnectionManager()
