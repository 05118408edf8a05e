"""Story bible extraction endpoints."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from storyteller.extraction.pipeline import EXTRACTORS, extract_story_bible

router = APIRouter(prefix="/api/extraction", tags=["extraction"])


class ExtractionRequest(BaseModel):
    text: str = Field(..., min_length=1)
    session_id: Optional[str] = None
    analysis: Optional[Dict[str, Any]] = None


@router.post("")
async def extract_all(body: ExtractionRequest, request: Request):
    bible = await extract_story_bible(
        body.text, request.app.state.llm, analysis=body.analysis, session_id=body.session_id,
    )
    return bible.to_dict()


@router.post("/{category}")
async def extract_category(category: str, body: ExtractionRequest, request: Request):
    extractor = EXTRACTORS.get(category)
    if extractor is None:
        raise HTTPException(status_code=404, detail=f"Unknown extraction category: {category}")
    result = await extractor(
        body.text, request.app.state.llm, analysis=body.analysis, session_id=body.session_id,
    )
    return result.to_dict()
