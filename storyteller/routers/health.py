"""Registry health and QA audit endpoints."""

from __future__ import annotations

from typing import Dict

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from storyteller.app import manager
from storyteller.utils import qa_logger

router = APIRouter(prefix="/api", tags=["health"])


class IntensityCheck(BaseModel):
    session_id: str
    expected: Dict[str, float]
    actual: Dict[str, float]
    excerpt: str = ""
    tolerance: float = Field(15, ge=0, le=100)


@router.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "registry": request.app.state.registry.stats(),
        "usage_sessions": len(request.app.state.ledger),
        "connections": len(manager),
    }


@router.post("/qa/intensity")
async def check_intensity(body: IntensityCheck):
    mismatches = qa_logger.find_mismatches(body.expected, body.actual, body.tolerance)
    if mismatches:
        qa_logger.log_intensity_mismatch(
            body.session_id, body.expected, body.actual, mismatches, body.excerpt,
        )
    return {"mismatches": mismatches, "summary": qa_logger.describe_mismatches(mismatches)}


@router.get("/qa/errors")
async def recent_qa_errors(limit: int = 50):
    return qa_logger.get_recent_errors(limit)


@router.get("/qa/stats")
async def qa_stats(hours: float = 24):
    return qa_logger.get_stats(hours)
