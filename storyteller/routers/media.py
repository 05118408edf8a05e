"""Cover image and sound effect endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel, Field

from storyteller.services.images import ImageGenerationError, ImageGenerator
from storyteller.services.sound_effects import SoundEffectError, SoundEffectService
from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.routers.media")

router = APIRouter(prefix="/api", tags=["media"])


class CoverRequest(BaseModel):
    session_id: str
    story: Dict[str, Any] = Field(default_factory=dict)
    prompts: Optional[List[str]] = None
    size: str = "1792x1024"
    quality: str = "hd"


class SfxRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=1000)
    duration: float = Field(10, gt=0, le=30)
    loop: bool = False
    prompt_influence: float = Field(0.5, ge=0, le=1)
    session_id: Optional[str] = None


@router.post("/images/cover")
async def generate_cover(body: CoverRequest, request: Request):
    generator = ImageGenerator(request.app.state.llm, request.app.state.ledger)
    try:
        if body.prompts:
            image = await generator.generate_with_fallback(
                body.prompts, session_id=body.session_id, size=body.size, quality=body.quality,
            )
        else:
            image = await generator.generate_cover(
                body.story, session_id=body.session_id, size=body.size, quality=body.quality,
            )
    except ImageGenerationError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return image.to_dict()


@router.post("/sfx")
async def generate_sfx(body: SfxRequest, request: Request):
    service = SoundEffectService(request.app.state.session_factory, request.app.state.ledger)
    if not service.enabled:
        raise HTTPException(status_code=503, detail="Sound effects not enabled - API key missing")
    try:
        audio = await service.generate(
            body.prompt, duration=body.duration, loop=body.loop,
            prompt_influence=body.prompt_influence, session_id=body.session_id,
        )
    except SoundEffectError as exc:
        logger.error("sfx_request_failed | error=%s", exc)
        raise HTTPException(status_code=502, detail=str(exc))
    return Response(content=audio, media_type="audio/mpeg")
