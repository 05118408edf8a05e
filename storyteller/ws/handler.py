import json

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from storyteller.app import manager
from storyteller.schemas.socket_events import (
    MAX_MESSAGE_BYTES,
    VALID_EVENTS,
    SocketMessage,
    validate_event,
)
from storyteller.state.registry import CapacityExceededError
from storyteller.utils.logging_config import get_logger
from storyteller.ws.actions import get_action_dispatch
from storyteller.ws.actions.session import release_session
from storyteller.ws.context import WsSessionContext

_logger = get_logger("storyteller.ws.handler")

ACTION_DISPATCH = get_action_dispatch()


async def _error(websocket: WebSocket, code: str, message: str) -> None:
    await manager.send_json({"type": "error", "code": code, "message": message}, websocket)


async def websocket_endpoint(websocket: WebSocket, socket_id: str):
    """Envelope loop: ``{"action": <event>, "payload": {...}}`` in, typed replies out."""
    await manager.connect(socket_id, websocket)
    _logger.info("websocket_connected | socket=%s", socket_id)

    ctx = WsSessionContext(
        websocket=websocket,
        socket_id=socket_id,
        registry=websocket.app.state.registry,
        ledger=websocket.app.state.ledger,
    )

    try:
        while True:
            data = await websocket.receive_text()
            ctx.action = ""

            if len(data.encode("utf-8", errors="replace")) > MAX_MESSAGE_BYTES:
                await _error(websocket, "MESSAGE_TOO_LARGE",
                             f"Message exceeds {MAX_MESSAGE_BYTES // 1024}KB limit")
                continue

            try:
                message = json.loads(data)
            except (json.JSONDecodeError, ValueError) as exc:
                await _error(websocket, "INVALID_JSON", f"Malformed JSON: {exc}")
                continue

            try:
                envelope = SocketMessage.model_validate(message)
            except ValidationError as exc:
                await _error(websocket, "INVALID_FORMAT",
                             f"Invalid message envelope: {exc.errors()[0]['msg']}")
                continue

            action = envelope.action
            if action not in VALID_EVENTS:
                await _error(websocket, "UNKNOWN_ACTION", f"Unknown action: {action}")
                continue

            outcome = validate_event(action, envelope.payload)
            if not outcome.valid:
                await _error(websocket, "INVALID_PAYLOAD", outcome.error)
                continue

            ctx.action = action
            try:
                await ACTION_DISPATCH[action](ctx, outcome.data)
            except CapacityExceededError as exc:
                _logger.error("capacity_exceeded | socket=%s | action=%s | map=%s",
                              socket_id, action, exc.map_name)
                await _error(websocket, "CAPACITY_EXCEEDED", str(exc))

    except WebSocketDisconnect:
        _logger.info("websocket_disconnected | socket=%s | session=%s", socket_id, ctx.session_id)
    except Exception as e:
        _logger.exception("websocket_loop_failed | socket=%s", socket_id)
        try:
            await manager.send_json({"type": "error", "code": "INTERNAL_ERROR", "message": str(e)}, websocket)
        except (RuntimeError, WebSocketDisconnect):
            pass
    finally:
        release_session(ctx)
        manager.disconnect(socket_id, websocket)
