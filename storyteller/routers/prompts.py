"""Director personas and intensity instruction previews."""

from __future__ import annotations

from typing import Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from storyteller.prompts import directors, intensity

router = APIRouter(prefix="/api", tags=["prompts"])


class GenreWeights(BaseModel):
    genres: Dict[str, float] = Field(default_factory=dict)


class GuidanceRequest(BaseModel):
    director: Optional[str] = None
    multi_voice: bool = True
    hide_speech_tags: bool = False


class IntensityRequest(BaseModel):
    levels: Dict[str, float] = Field(default_factory=dict)


@router.get("/directors")
async def list_directors():
    return directors.list_personas()


@router.post("/directors/recommend")
async def recommend_director(body: GenreWeights):
    key = directors.get_for_genres(body.genres)
    return {"director": key}


@router.post("/directors/guidance")
async def director_guidance(body: GuidanceRequest):
    persona = directors.resolve(body.director)
    guidance = directors.build_guidance(
        {"multi_voice": body.multi_voice, "hide_speech_tags": body.hide_speech_tags}, persona,
    )
    return {"director": persona.key if persona else None, "guidance": guidance}


@router.post("/intensity")
async def intensity_block(body: IntensityRequest):
    unknown = sorted(set(body.levels) - set(intensity.DIMENSIONS))
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown intensity dimensions: {unknown}")
    return {
        "instructions": {
            dim: intensity.get_instruction(dim, level)
            for dim, level in body.levels.items() if level > 0
        },
        "block": intensity.build_intensity_block(body.levels),
    }
