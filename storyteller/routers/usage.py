"""Usage and cost ledger endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from storyteller.state.usage import UsageLedger

router = APIRouter(prefix="/api/usage", tags=["usage"])


def _ledger(request: Request, session_id: str) -> UsageLedger:
    ledger: UsageLedger = request.app.state.ledger
    if session_id not in ledger:
        raise HTTPException(status_code=404, detail=f"No usage tracked for session {session_id}")
    return ledger


@router.get("/{session_id}")
async def get_usage(session_id: str, request: Request):
    return _ledger(request, session_id).snapshot(session_id)


@router.get("/{session_id}/summary")
async def get_usage_summary(session_id: str, request: Request):
    return _ledger(request, session_id).summary(session_id)


@router.post("/{session_id}/persist")
async def persist_usage(session_id: str, request: Request):
    saved = await _ledger(request, session_id).persist(session_id)
    if not saved:
        raise HTTPException(status_code=503, detail="Usage snapshot could not be persisted")
    return {"session_id": session_id, "persisted": True}
