"""Handle story-turn events: voice input, continue, choices and picture-book images.

Text generation runs elsewhere; these handlers record intent in the
registry and report generation progress back to the socket.
"""

from __future__ import annotations

from typing import Optional

from storyteller.app import manager
from storyteller.state.registry import GenerationProgress
from storyteller.utils.logging_config import get_logger
from storyteller.ws.actions.session import ensure_session
from storyteller.ws.context import WsSessionContext

logger = get_logger("storyteller.ws.story")


def progress_message(progress: GenerationProgress) -> dict:
    return {
        "type": "generation-progress",
        "session_id": progress.session_id,
        "step": progress.step,
        "progress": progress.progress,
        "message": progress.message,
        "is_generating": progress.is_generating,
    }


def begin_progress(ctx: WsSessionContext, step: str, message: str) -> GenerationProgress:
    """Reuse the session's progress record or admit a new one."""
    registry = ctx.registry
    progress: Optional[GenerationProgress] = registry.generation_progress.get(ctx.session_id)
    if progress is None or not progress.is_generating:
        progress = registry.start_progress(ctx.session_id, step)
    progress.update(registry.clock(), step=step, progress=0, message=message)
    return progress


def _remember(ctx: WsSessionContext, **values) -> None:
    record = ctx.registry.active_sessions.get(ctx.socket_id)
    if record is not None:
        record.data.update(values)


async def handle_voice_input(ctx: WsSessionContext, data: dict) -> None:
    ensure_session(ctx, data["session_id"])
    _remember(ctx, last_transcript=data["transcript"])
    logger.info("voice_input | session=%s | chars=%d | confidence=%s",
                ctx.session_id, len(data["transcript"]), data["confidence"])
    await manager.send_json({
        "type": "voice-transcript",
        "session_id": ctx.session_id,
        "transcript": data["transcript"],
        "confidence": data["confidence"],
    }, ctx.websocket)


async def handle_continue_story(ctx: WsSessionContext, data: dict) -> None:
    ensure_session(ctx, data["session_id"])
    _remember(ctx, voice_id=data["voice_id"], autoplay=data["autoplay"])
    progress = begin_progress(ctx, "queued", data["direction"] or "continue")
    logger.info("continue_story | session=%s | autoplay=%s | has_direction=%s",
                ctx.session_id, data["autoplay"], bool(data["direction"]))
    await manager.send_json(progress_message(progress), ctx.websocket)


async def handle_submit_choice(ctx: WsSessionContext, data: dict) -> None:
    ensure_session(ctx, data["session_id"])
    choice = data["choice_key"] or data["choice_id"]
    _remember(ctx, last_choice=choice, from_recording=data["from_recording"])
    progress = begin_progress(ctx, "choice", f"choice {choice}")
    logger.info("choice_submitted | session=%s | choice=%s | diverge_at=%s",
                ctx.session_id, choice, data["diverge_at_segment"])
    await manager.send_json(progress_message(progress), ctx.websocket)


async def handle_picture_book_images(ctx: WsSessionContext, data: dict) -> None:
    ensure_session(ctx, data["session_id"])
    progress = begin_progress(ctx, "picture_book_images", f"scene {data['scene_id']}")
    await manager.send_json({
        "type": "picture-book-images-queued",
        "session_id": ctx.session_id,
        "scene_id": data["scene_id"],
    }, ctx.websocket)
    await manager.send_json(progress_message(progress), ctx.websocket)
