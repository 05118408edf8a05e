"""
Lorebook: keyword-triggered context injection.

Entries for one session are loaded (highest importance first, capped) and
indexed by keyword.  Scene text is scored against that index and the best
entries are rendered into a delimited block for the prompt.  Every mutation
rebuilds the whole index; with at most a few hundred entries that is cheaper
than keeping incremental bookkeeping correct.
"""
from __future__ import annotations

import dataclasses
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storyteller.config import get_settings
from storyteller.models import LoreEntry
from storyteller.utils.logging_config import SessionAdapter, get_logger

_logger = get_logger("storyteller.lorebook")

_PROPER_NOUN = re.compile(r"\b[A-Z][a-z]{2,}\b")
_UPDATABLE = ("title", "content", "importance", "tags", "entry_type")


@dataclasses.dataclass
class LorebookEntry:
    id: int
    session_id: str
    title: str
    content: str = ""
    entry_type: str = "general"
    importance: int = 50
    tags: List[str] = dataclasses.field(default_factory=list)

    @classmethod
    def from_row(cls, row: LoreEntry) -> "LorebookEntry":
        return cls(
            id=row.id,
            session_id=row.session_id,
            title=row.title or "",
            content=row.content or "",
            entry_type=row.entry_type or "general",
            importance=row.importance if row.importance is not None else 50,
            tags=list(row.tags or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


def extract_keywords(entry: LorebookEntry) -> List[str]:
    """Title words longer than two characters, tags, and capitalized words in the content."""
    keywords: List[str] = []
    if entry.title:
        keywords.extend(w for w in entry.title.split() if len(w) > 2)
    keywords.extend(t for t in entry.tags if isinstance(t, str) and t.strip())
    if entry.content:
        keywords.extend(_PROPER_NOUN.findall(entry.content))

    seen = set()
    out = []
    for keyword in keywords:
        normalized = keyword.strip().lower()
        if normalized and normalized not in seen:
            seen.add(normalized)
            out.append(normalized)
    return out


def generate_injection(entries: Iterable[LorebookEntry]) -> str:
    sections = [
        f"[{(e.entry_type or 'lore').upper()}] {e.title}:\n{e.content}" for e in entries
    ]
    if not sections:
        return ""
    return "\n--- RELEVANT LORE ---\n" + "\n\n".join(sections) + "\n--- END LORE ---\n"


class Lorebook:
    def __init__(
        self,
        session_id: str,
        session_factory: async_sessionmaker[AsyncSession],
        max_entries: Optional[int] = None,
    ):
        self.session_id = session_id
        self._session_factory = session_factory
        self.max_entries = max_entries or get_settings().lorebook_max_entries
        self.entries: List[LorebookEntry] = []
        self.keyword_index: Dict[str, List[int]] = {}
        self.log = SessionAdapter(_logger, session_id)

    # -- index ----------------------------------------------------------------

    def build_index(self) -> None:
        index: Dict[str, List[int]] = {}
        for entry in self.entries:
            for keyword in extract_keywords(entry):
                index.setdefault(keyword, []).append(entry.id)
        self.keyword_index = index

    def _entry(self, entry_id: int) -> Optional[LorebookEntry]:
        return next((e for e in self.entries if e.id == entry_id), None)

    # -- persistence ----------------------------------------------------------

    async def load(self) -> List[LorebookEntry]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(LoreEntry)
                .where(LoreEntry.session_id == self.session_id)
                .order_by(LoreEntry.importance.desc(), LoreEntry.id)
                .limit(self.max_entries)
            )
            rows = result.scalars().all()
        self.entries = [LorebookEntry.from_row(r) for r in rows]
        self.build_index()
        self.log.info("lorebook_loaded | entries=%d | keywords=%d",
                      len(self.entries), len(self.keyword_index))
        return self.entries

    async def add(
        self,
        title: str,
        content: str = "",
        *,
        entry_type: str = "general",
        importance: int = 50,
        tags: Optional[List[str]] = None,
    ) -> LorebookEntry:
        row = LoreEntry(
            session_id=self.session_id,
            title=title,
            content=content or "",
            entry_type=entry_type or "general",
            importance=importance,
            tags=list(tags or []),
        )
        async with self._session_factory() as db:
            db.add(row)
            await db.commit()
            await db.refresh(row)
        entry = LorebookEntry.from_row(row)
        self.entries.append(entry)
        self.build_index()
        self.log.info("lorebook_entry_added | id=%s | title=%s", entry.id, title)
        return entry

    async def update(self, entry_id: int, **updates: Any) -> Optional[LorebookEntry]:
        changes = {k: v for k, v in updates.items() if k in _UPDATABLE and v is not None}
        if not changes:
            return None
        async with self._session_factory() as db:
            row = await db.get(LoreEntry, entry_id)
            if row is None or row.session_id != self.session_id:
                return None
            for key, value in changes.items():
                setattr(row, key, value)
            await db.commit()
            await db.refresh(row)
        updated = LorebookEntry.from_row(row)
        for i, entry in enumerate(self.entries):
            if entry.id == entry_id:
                self.entries[i] = updated
                break
        self.build_index()
        self.log.info("lorebook_entry_updated | id=%s | fields=%s", entry_id, sorted(changes))
        return updated

    async def remove(self, entry_id: int) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                delete(LoreEntry).where(
                    LoreEntry.id == entry_id, LoreEntry.session_id == self.session_id
                )
            )
            await db.commit()
        self.entries = [e for e in self.entries if e.id != entry_id]
        self.build_index()
        self.log.info("lorebook_entry_removed | id=%s", entry_id)
        return bool(result.rowcount)

    # -- queries --------------------------------------------------------------

    def find_triggered(self, text: str, max_entries: int = 5) -> List[LorebookEntry]:
        """Entries whose keywords appear in *text*, best first.

        Exact word hits score 2, substring hits on keywords longer than four
        characters score 1, and importance/10 breaks ties.
        """
        if not self.entries or not text:
            return []

        scores: Dict[int, float] = {}
        for word in text.lower().split():
            for entry_id in self.keyword_index.get(word, ()):
                scores[entry_id] = scores.get(entry_id, 0) + 2
            for keyword, entry_ids in self.keyword_index.items():
                if len(keyword) > 4 and (keyword in word or word in keyword):
                    for entry_id in entry_ids:
                        scores[entry_id] = scores.get(entry_id, 0) + 1

        ranked = []
        for entry_id, score in scores.items():
            entry = self._entry(entry_id)
            if entry is not None:
                ranked.append((score + (entry.importance or 0) / 10, entry))
        ranked.sort(key=lambda pair: pair[0], reverse=True)
        return [entry for _, entry in ranked[:max_entries]]

    def generate_injection(self, entries: Iterable[LorebookEntry]) -> str:
        return generate_injection(entries)

    def context_for(self, text: str, max_entries: int = 5) -> str:
        return generate_injection(self.find_triggered(text, max_entries))

    def entries_by_type(self, entry_type: str) -> List[LorebookEntry]:
        return [e for e in self.entries if e.entry_type == entry_type]

    def search(self, query: str) -> List[LorebookEntry]:
        lowered = (query or "").lower()
        return [
            e for e in self.entries
            if lowered in e.title.lower()
            or lowered in e.content.lower()
            or any(lowered in t.lower() for t in e.tags)
        ]

    # -- import / export ------------------------------------------------------

    def export(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "entries": [
                {
                    "title": e.title,
                    "content": e.content,
                    "entry_type": e.entry_type,
                    "importance": e.importance,
                    "tags": list(e.tags),
                }
                for e in self.entries
            ],
            "exported_at": datetime.now(timezone.utc).isoformat(),
        }

    async def import_entries(self, data: Dict[str, Any]) -> List[LorebookEntry]:
        entries = data.get("entries") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise ValueError("Invalid lorebook data")

        imported = []
        for raw in entries:
            if not isinstance(raw, dict) or not raw.get("title"):
                continue
            imported.append(await self.add(
                raw["title"],
                raw.get("content") or "",
                entry_type=raw.get("entry_type") or "imported",
                importance=raw.get("importance") or 50,
                tags=raw.get("tags") or [],
            ))
        self.log.info("lorebook_imported | count=%d", len(imported))
        return imported
