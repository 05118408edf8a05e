"""Handle the launch-sequence events: check, confirm, cancel and retry a stage."""

from __future__ import annotations

from storyteller.app import manager
from storyteller.state.registry import LaunchSequence
from storyteller.utils.logging_config import get_logger
from storyteller.ws.actions.session import ensure_session
from storyteller.ws.context import WsSessionContext

logger = get_logger("storyteller.ws.launch")


def launch_status(sequence: LaunchSequence) -> dict:
    return {
        "type": "launch-status",
        "session_id": sequence.session_id,
        "stages": dict(sequence.stages),
        "cancelled": sequence.cancelled,
        "ready": sequence.is_ready,
    }


def _sequence_for(ctx: WsSessionContext) -> LaunchSequence:
    sequence = ctx.registry.launch_sequences.get(ctx.session_id)
    if sequence is None:
        sequence = ctx.registry.start_launch(ctx.session_id)
        logger.info("launch_started | session=%s", ctx.session_id)
    return sequence


async def handle_check_ready(ctx: WsSessionContext, data: dict) -> None:
    ensure_session(ctx, data["session_id"])
    await manager.send_json(launch_status(_sequence_for(ctx)), ctx.websocket)


async def handle_confirm_ready(ctx: WsSessionContext, data: dict) -> None:
    ensure_session(ctx, data["session_id"])
    sequence = ctx.registry.launch_sequences.get(ctx.session_id)
    if sequence is None:
        await manager.send_json({"type": "error", "code": "NO_LAUNCH_SEQUENCE",
                                 "message": "No launch sequence for this session"}, ctx.websocket)
        return
    if not sequence.is_ready:
        await manager.send_json(launch_status(sequence), ctx.websocket)
        return

    ctx.registry.launch_sequences.pop(ctx.session_id)
    pending = ctx.registry.pending_audio.pop(ctx.session_id)
    logger.info("launch_confirmed | session=%s | pending_audio=%s", ctx.session_id, pending is not None)
    await manager.send_json({
        "type": "launch-confirmed",
        "session_id": ctx.session_id,
        "audio": pending.payload if pending is not None else None,
    }, ctx.websocket)


async def handle_cancel_launch(ctx: WsSessionContext, data: dict) -> None:
    ensure_session(ctx, data["session_id"])
    cancelled = ctx.registry.cancel_launch(ctx.session_id)
    logger.info("launch_cancel_requested | session=%s | cancelled=%s", ctx.session_id, cancelled)
    await manager.send_json({"type": "launch-cancelled", "session_id": ctx.session_id,
                             "cancelled": cancelled}, ctx.websocket)


async def handle_retry_stage(ctx: WsSessionContext, data: dict) -> None:
    ensure_session(ctx, data["session_id"])
    sequence = _sequence_for(ctx)
    sequence.retry_stage(data["stage"])
    logger.info("launch_stage_retry | session=%s | stage=%s", ctx.session_id, data["stage"])
    await manager.send_json(launch_status(sequence), ctx.websocket)
