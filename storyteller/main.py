"""Application entry point: ``uvicorn storyteller.main:app``."""

from dotenv import load_dotenv

load_dotenv()

from storyteller.app import app  # noqa: E402
from storyteller.routers import extraction, health, lorebook, media, prompts, usage  # noqa: E402
from storyteller.ws.handler import websocket_endpoint  # noqa: E402

app.include_router(health.router)
app.include_router(usage.router)
app.include_router(lorebook.router)
app.include_router(extraction.router)
app.include_router(media.router)
app.include_router(prompts.router)
app.add_api_websocket_route("/ws/{socket_id}", websocket_endpoint)
