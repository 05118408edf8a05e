"""
Lore extractor: knowledge about the world, not things in it.

The model regularly files named objects, organizations and creatures under
lore despite the prompt.  ``is_likely_item``, ``is_likely_faction`` and
``is_likely_character`` catch those after the fact; rejected entries are
reported in ``misplaced_entries`` so the other extractors' output stays the
single home for them.

Keyword patterns run against lowercased text; the proper-noun gates run
against the title as written, since capitalization is the signal.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from storyteller.extraction.base import (
    ExtractionResult,
    describe_document,
    normalize_records,
    request_array,
)
from storyteller.schemas.entities import LORE_TYPES, LoreRecord
from storyteller.services.llm import LLMClient
from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.extraction.lore")

TEMPERATURE = 0.2
MAX_TOKENS = 10_000
TEXT_LIMIT = 60_000

_ITEM_PATTERNS = (
    re.compile(r"\b(sword|axe|bow|staff|wand|dagger|spear|shield)\b"),
    re.compile(r"\b(armor|helm|helmet|boots|gloves|ring|amulet|necklace)\b"),
    re.compile(r"\b(vehicle|car|ship|boat|aircraft|spaceship|wagon|carriage)\b"),
    re.compile(r"\b(potion|elixir|scroll|tome|book of)\b"),
    re.compile(r"\b(artifact|relic|treasure)\b"),
    re.compile(r"^the\s+[a-z]+\s+(sword|blade|staff|ring|crown|gem)"),
)
_NAMED_ITEM_TITLE = re.compile(r"^(the|a)\s+[A-Z]")

_FACTION_PATTERNS = (
    re.compile(r"\b(guild|order|brotherhood|sisterhood|council|alliance)\b"),
    re.compile(r"\b(kingdom|empire|republic|nation|tribe|clan)\b"),
    re.compile(r"\b(gang|syndicate|cartel|mafia)\b"),
    re.compile(r"\b(church|temple|cult|religion|sect)\b"),
    re.compile(r"\b(company|corporation|merchant)\s+(guild|company)"),
    re.compile(r"\b(army|navy|military|knights|guard)\b"),
)
_NAMED_FACTION_TITLE = re.compile(r"^the\s+[A-Z]")

_PROPER_NAME = re.compile(r"^[A-Z][a-z]+(\s+[A-Z][a-z]+)*$")
_PERSONAL_TRAITS = re.compile(r"\b(loyal|brave|cunning|wise|fierce)\b")
_NAMED_ANIMAL = re.compile(r"\b(dog|cat|horse|wolf|dragon|eagle)\s+named\s+", re.IGNORECASE)


def is_likely_item(title: str, content: str) -> bool:
    lower_title = title.lower()
    lead = content.lower()[:200]
    if not _NAMED_ITEM_TITLE.match(title):
        return False
    return any(p.search(lower_title) or p.search(lead) for p in _ITEM_PATTERNS)


def is_likely_faction(title: str, content: str) -> bool:
    if not _NAMED_FACTION_TITLE.match(title):
        return False
    lower_title = title.lower()
    return any(p.search(lower_title) for p in _FACTION_PATTERNS)


def is_likely_character(title: str, content: str) -> bool:
    lower_content = content.lower()
    if _PROPER_NAME.match(title):
        is_creature = any(word in lower_content for word in ("creature", "monster", "beast"))
        if is_creature or _PERSONAL_TRAITS.search(lower_content[:300]):
            return True
    return bool(_NAMED_ANIMAL.search(content))


def classify_misplaced(title: str, content: str) -> Optional[str]:
    """Category a lore entry actually belongs to, or ``None`` if it is lore."""
    if is_likely_item(title, content):
        return "item"
    if is_likely_faction(title, content):
        return "faction"
    if is_likely_character(title, content):
        return "character"
    return None


_TYPE_LINES = "\n".join(f"  - {name}: {hint}" for name, hint in LORE_TYPES.items())

SYSTEM_PROMPT = f"""You are an expert Lore Extractor for story bibles.
Lore is KNOWLEDGE ABOUT the world, not physical things IN the world.

## EXTRACT AS LORE
Historical events, world rules, legends and prophecies, cultural customs, general species information,
magic theory, religious doctrine, economic systems, eras and timelines, languages, cosmology.

Entry types:
{_TYPE_LINES}

## DO NOT EXTRACT AS LORE
| Wrong | Right category |
|-------|----------------|
| "Excalibur, the legendary sword" | item |
| "Gandalf the Grey" | character |
| "The Thieves Guild" | faction |
| "The City of Gondor" | location |
| "Seamus the dog" | character (named creature) |

## FIELDS
entry_type, title, content, importance (0-100), related_characters[], related_locations[],
related_items[], related_factions[], tags[], time_relevance (past|present|future|timeless), is_secret

## IMPORTANCE
100 central to the plot or world, 75 frequently referenced, 50 moderately important,
25 background detail, 10 flavor text.

Return valid JSON:
{{"lore": [ {{...}}, ... ], "extraction_notes": "observations about the lore system"}}"""


async def extract_lore(
    text: str,
    llm: LLMClient,
    *,
    analysis: Optional[Dict[str, Any]] = None,
    session_id: Optional[str] = None,
) -> ExtractionResult:
    user_prompt = (
        "Extract ALL pure lore (knowledge, history, rules, customs, legends) from this document.\n\n"
        "REMEMBER: Do NOT extract individual characters, specific items, organizations, or "
        "locations. Those go to other extractors.\n\n"
        f"{describe_document(analysis)}\n\nDOCUMENT TEXT:\n{text[:TEXT_LIMIT]}"
    )
    try:
        payload, tokens = await request_array(
            llm, "lore_extraction", SYSTEM_PROMPT, user_prompt,
            key="lore", temperature=TEMPERATURE, max_tokens=MAX_TOKENS,
            required_field="title", session_id=session_id,
        )
    except Exception as exc:
        logger.error("lore_extraction_failed | error=%s", exc)
        return ExtractionResult.failed("lore", exc)

    kept: List[Dict[str, Any]] = []
    misplaced: List[Dict[str, str]] = []
    for entry in payload["lore"]:
        if not isinstance(entry, dict):
            continue
        title = str(entry.get("title") or "")
        content = str(entry.get("content") or "")
        category = classify_misplaced(title, content)
        if category is not None:
            misplaced.append({"type": category, "title": title})
            continue
        kept.append(entry)

    if misplaced:
        logger.info("lore_misplaced_filtered | count=%d | entries=%s", len(misplaced), misplaced)

    lore = normalize_records(LoreRecord, kept, category="lore")
    logger.info("lore_extraction_complete | found=%d | tokens=%d", len(lore), tokens)
    return ExtractionResult(
        category="lore",
        records=lore,
        tokens_used=tokens,
        extraction_notes=payload.get("extraction_notes"),
        misplaced_entries=misplaced,
    )
