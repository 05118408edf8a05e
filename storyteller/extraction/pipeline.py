"""
Story bible orchestrator.

Runs every extractor concurrently, tolerates individual failures, then
resolves entities that more than one extractor claimed.  Resolution is
deterministic: names are compared after normalization and the category
earlier in ``CATEGORY_PRECEDENCE`` keeps the entity.
"""
from __future__ import annotations

import asyncio
import dataclasses
import inspect
import re
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from storyteller.extraction.base import ExtractionResult
from storyteller.extraction.characters import extract_characters
from storyteller.extraction.factions import extract_factions
from storyteller.extraction.items import extract_items
from storyteller.extraction.locations import extract_locations
from storyteller.extraction.lore import extract_lore
from storyteller.extraction.world import extract_world
from storyteller.schemas.entities import WorldInfo
from storyteller.services.llm import LLMClient
from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.extraction.pipeline")

ProgressCallback = Callable[[str, str, Dict[str, Any]], Union[None, Awaitable[None]]]

CATEGORY_PRECEDENCE = ("characters", "items", "factions", "locations", "lore")

EXTRACTORS = {
    "characters": extract_characters,
    "items": extract_items,
    "factions": extract_factions,
    "locations": extract_locations,
    "lore": extract_lore,
    "world": extract_world,
}

_LEADING_ARTICLE = re.compile(r"^(the|a|an)\s+")
_WHITESPACE = re.compile(r"\s+")


def normalize_entity_name(name: Optional[str]) -> str:
    """Lowercase, drop one leading article, collapse whitespace."""
    if not name:
        return ""
    lowered = _WHITESPACE.sub(" ", name.strip().lower())
    return _LEADING_ARTICLE.sub("", lowered).strip()


def _record_name(category: str, record: Any) -> str:
    return getattr(record, "title" if category == "lore" else "name", "") or ""


@dataclasses.dataclass
class StoryBible:
    characters: List[Any] = dataclasses.field(default_factory=list)
    items: List[Any] = dataclasses.field(default_factory=list)
    factions: List[Any] = dataclasses.field(default_factory=list)
    locations: List[Any] = dataclasses.field(default_factory=list)
    lore: List[Any] = dataclasses.field(default_factory=list)
    world: Optional[WorldInfo] = None
    tokens_used: int = 0
    errors: Dict[str, str] = dataclasses.field(default_factory=dict)
    misplaced_entries: List[Dict[str, str]] = dataclasses.field(default_factory=list)
    duplicates_removed: List[Dict[str, str]] = dataclasses.field(default_factory=list)
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return len(self.errors) < len(EXTRACTORS)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            **{c: [r.model_dump() for r in getattr(self, c)] for c in CATEGORY_PRECEDENCE},
            "world": self.world.model_dump() if self.world else {},
            "tokens_used": self.tokens_used,
            "errors": dict(self.errors),
            "misplaced_entries": list(self.misplaced_entries),
            "duplicates_removed": list(self.duplicates_removed),
            "duration_ms": self.duration_ms,
        }


def deduplicate_across_categories(bible: StoryBible) -> List[Dict[str, str]]:
    """Keep each normalized name in exactly one category; returns what was dropped."""
    owner: Dict[str, str] = {}
    removed: List[Dict[str, str]] = []
    for category in CATEGORY_PRECEDENCE:
        kept = []
        for record in getattr(bible, category):
            key = normalize_entity_name(_record_name(category, record))
            if not key:
                kept.append(record)
                continue
            holder = owner.get(key)
            if holder is not None and holder != category:
                removed.append({
                    "name": _record_name(category, record),
                    "dropped_from": category,
                    "kept_in": holder,
                })
                continue
            owner.setdefault(key, category)
            kept.append(record)
        setattr(bible, category, kept)

    if removed:
        logger.info("cross_category_dedup | removed=%d | detail=%s", len(removed), removed)
    return removed


async def _notify(on_progress: Optional[ProgressCallback], category: str, status: str,
                  detail: Dict[str, Any]) -> None:
    if on_progress is None:
        return
    try:
        result = on_progress(category, status, detail)
        if inspect.isawaitable(result):
            await result
    except Exception as exc:
        logger.warning("extraction_progress_callback_failed | category=%s | error=%s", category, exc)


async def extract_story_bible(
    text: str,
    llm: LLMClient,
    *,
    analysis: Optional[Dict[str, Any]] = None,
    session_id: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> StoryBible:
    """Run all extractors over *text* and assemble a de-duplicated story bible."""
    started = time.monotonic()
    logger.info("story_bible_extraction_started | chars=%d | extractors=%d",
                len(text), len(EXTRACTORS), extra={"session_id": session_id})

    async def run(category: str, extractor) -> ExtractionResult:
        await _notify(on_progress, category, "started", {})
        result = await extractor(text, llm, analysis=analysis, session_id=session_id)
        status = "complete" if result.success else "failed"
        await _notify(on_progress, category, status,
                      {"count": len(result.records), "error": result.error})
        return result

    categories = list(EXTRACTORS)
    outcomes = await asyncio.gather(
        *(run(c, EXTRACTORS[c]) for c in categories), return_exceptions=True
    )

    bible = StoryBible()
    for category, outcome in zip(categories, outcomes):
        if isinstance(outcome, BaseException):
            logger.error("extractor_crashed | category=%s | error=%s", category, outcome)
            bible.errors[category] = str(outcome)
            continue
        bible.tokens_used += outcome.tokens_used
        if not outcome.success:
            bible.errors[category] = outcome.error or "unknown error"
        if category == "world":
            bible.world = outcome.records[0] if outcome.records else None
        else:
            setattr(bible, category, list(outcome.records))
        bible.misplaced_entries.extend(outcome.misplaced_entries)

    bible.duplicates_removed = deduplicate_across_categories(bible)
    bible.duration_ms = int((time.monotonic() - started) * 1000)

    logger.info(
        "story_bible_extraction_complete | characters=%d | items=%d | factions=%d | "
        "locations=%d | lore=%d | failed=%s | tokens=%d",
        len(bible.characters), len(bible.items), len(bible.factions),
        len(bible.locations), len(bible.lore), sorted(bible.errors), bible.tokens_used,
        extra={"session_id": session_id, "duration_ms": bible.duration_ms},
    )
    await _notify(on_progress, "story_bible", "complete",
                  {"tokens_used": bible.tokens_used, "errors": dict(bible.errors)})
    return bible
