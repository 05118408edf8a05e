"""Handle ``join-session`` and bind a socket to its story session."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import WebSocket

from storyteller.app import manager
from storyteller.utils.logging_config import get_logger
from storyteller.ws.context import WsSessionContext

logger = get_logger("storyteller.ws.session")


def usage_forwarder(websocket: WebSocket):
    """Usage listener that pushes each snapshot to *websocket* as ``usage-update``."""
    async def forward(session_id: str, snapshot: Dict[str, Any]) -> None:
        await manager.send_json(
            {"type": "usage-update", "session_id": session_id, "usage": snapshot}, websocket
        )
    return forward


def ensure_session(ctx: WsSessionContext, session_id: str) -> None:
    """Bind *ctx* to *session_id*, registering and subscribing on first use.

    Raises ``CapacityExceededError`` when the registry or ledger is full; the
    context is left unchanged in that case.
    """
    if ctx.session_id == session_id:
        ctx.registry.touch_session(ctx.socket_id)
        return

    ctx.ledger.get(session_id)
    ctx.session_record = ctx.registry.register_session(ctx.socket_id, session_id)

    if ctx.unsubscribe_usage is not None:
        ctx.unsubscribe_usage()
    ctx.unsubscribe_usage = ctx.ledger.subscribe(session_id, usage_forwarder(ctx.websocket))
    logger.info("socket_bound | socket=%s | session=%s | previous=%s",
                ctx.socket_id, session_id, ctx.session_id)
    ctx.session_id = session_id


def release_session(ctx: WsSessionContext) -> None:
    """Drop the usage subscription and the registry entry this connection owns.

    A reconnect under the same socket id registers a fresh record; the old
    connection must leave that one alone.
    """
    if ctx.unsubscribe_usage is not None:
        ctx.unsubscribe_usage()
        ctx.unsubscribe_usage = None
    owned = ctx.session_record
    ctx.session_record = None
    if owned is not None and ctx.registry.active_sessions.get(ctx.socket_id) is owned:
        ctx.registry.active_sessions.pop(ctx.socket_id)


async def handle_join_session(ctx: WsSessionContext, data: dict) -> None:
    ensure_session(ctx, data["session_id"])
    if data.get("user_id"):
        ctx.user_id = data["user_id"]
        if ctx.session_record is not None:
            ctx.session_record.data["user_id"] = data["user_id"]

    await manager.send_json({
        "type": "session-joined",
        "session_id": ctx.session_id,
        "usage": ctx.ledger.snapshot(ctx.session_id),
    }, ctx.websocket)
