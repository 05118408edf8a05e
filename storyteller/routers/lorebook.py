"""Lorebook CRUD, search, import/export and trigger preview."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from storyteller.services.lorebook import Lorebook

router = APIRouter(prefix="/api/lorebook/{session_id}", tags=["lorebook"])


class LoreEntryRequest(BaseModel):
    title: str = Field(..., min_length=1)
    content: str = ""
    entry_type: str = "general"
    importance: int = Field(50, ge=0, le=100)
    tags: List[str] = Field(default_factory=list)


class LoreEntryUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    entry_type: Optional[str] = None
    importance: Optional[int] = Field(None, ge=0, le=100)
    tags: Optional[List[str]] = None


class TriggerRequest(BaseModel):
    text: str
    max_entries: int = Field(5, ge=1, le=50)


async def _lorebook(request: Request, session_id: str) -> Lorebook:
    lorebook = Lorebook(session_id, request.app.state.session_factory)
    await lorebook.load()
    return lorebook


@router.get("")
async def list_entries(session_id: str, request: Request, entry_type: Optional[str] = None):
    lorebook = await _lorebook(request, session_id)
    entries = lorebook.entries_by_type(entry_type) if entry_type else lorebook.entries
    return [e.to_dict() for e in entries]


@router.get("/search")
async def search_entries(session_id: str, q: str, request: Request):
    lorebook = await _lorebook(request, session_id)
    return [e.to_dict() for e in lorebook.search(q)]


@router.post("", status_code=201)
async def add_entry(session_id: str, body: LoreEntryRequest, request: Request):
    lorebook = await _lorebook(request, session_id)
    entry = await lorebook.add(
        body.title, body.content,
        entry_type=body.entry_type, importance=body.importance, tags=body.tags,
    )
    return entry.to_dict()


@router.patch("/{entry_id}")
async def update_entry(session_id: str, entry_id: int, body: LoreEntryUpdate, request: Request):
    lorebook = await _lorebook(request, session_id)
    entry = await lorebook.update(entry_id, **body.model_dump(exclude_none=True))
    if entry is None:
        raise HTTPException(status_code=404, detail="Lore entry not found")
    return entry.to_dict()


@router.delete("/{entry_id}")
async def delete_entry(session_id: str, entry_id: int, request: Request):
    lorebook = await _lorebook(request, session_id)
    if not await lorebook.remove(entry_id):
        raise HTTPException(status_code=404, detail="Lore entry not found")
    return {"deleted": entry_id}


@router.get("/export")
async def export_entries(session_id: str, request: Request):
    return (await _lorebook(request, session_id)).export()


@router.post("/import")
async def import_entries(session_id: str, data: Dict[str, Any], request: Request):
    lorebook = await _lorebook(request, session_id)
    try:
        imported = await lorebook.import_entries(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"imported": len(imported)}


@router.post("/triggered")
async def triggered_entries(session_id: str, body: TriggerRequest, request: Request):
    lorebook = await _lorebook(request, session_id)
    entries = lorebook.find_triggered(body.text, body.max_entries)
    return {
        "entries": [e.to_dict() for e in entries],
        "injection": lorebook.generate_injection(entries),
    }
