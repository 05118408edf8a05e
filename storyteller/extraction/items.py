"""Item extractor: physical objects that can be owned, carried or used."""
from __future__ import annotations

from typing import Any, Dict, Optional

from storyteller.extraction.base import (
    ExtractionResult,
    describe_document,
    normalize_records,
    request_array,
)
from storyteller.schemas.entities import ITEM_TYPES, Item
from storyteller.services.llm import LLMClient
from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.extraction.items")

TEMPERATURE = 0.3
MAX_TOKENS = 12_000
TEXT_LIMIT = 80_000

_TYPE_LINES = "\n".join(f"  - {name}: {hint}" for name, hint in ITEM_TYPES.items())

SYSTEM_PROMPT = f"""You are an expert Item Extractor for story bibles and world-building documents.
Identify and extract ALL physical objects, vehicles, weapons, artifacts and equipment mentioned.

## EXTRACT AS ITEMS
- Weapons, armor, vehicles, tools, artifacts, books and documents
- Clothing and accessories when significant or magical
- Consumables, keys and access tokens, currency and treasure

Item types:
{_TYPE_LINES}

## DO NOT EXTRACT (they belong elsewhere)
- Sentient beings, even mechanical ones such as robots or AI: characters
- Named animals with personality (named horses, pets, familiars): characters
- Buildings and permanent structures: locations
- Abstract powers and spells: lore
- Organizations: factions
- Historical events: lore

## FIELDS
name, item_type, subtype, description, appearance, size (tiny|small|medium|large|huge|colossal),
material, condition (pristine|good|worn|damaged|broken|ancient), magical_properties, mundane_properties,
abilities[], limitations[], rarity (common|uncommon|rare|very_rare|legendary|unique|artifact),
value_description, current_owner, current_location, origin, creator, history, stats_json,
attunement_required, importance (0-100)

Return valid JSON:
{{"items": [ {{...}}, ... ], "extraction_notes": "short summary of what was found"}}"""


async def extract_items(
    text: str,
    llm: LLMClient,
    *,
    analysis: Optional[Dict[str, Any]] = None,
    session_id: Optional[str] = None,
) -> ExtractionResult:
    user_prompt = (
        "Extract ALL items from this document. Be thorough: include every named object, "
        "weapon, vehicle and artifact mentioned.\n\n"
        f"{describe_document(analysis)}\n\nDOCUMENT TEXT:\n{text[:TEXT_LIMIT]}"
    )
    try:
        payload, tokens = await request_array(
            llm, "item_extraction", SYSTEM_PROMPT, user_prompt,
            key="items", temperature=TEMPERATURE, max_tokens=MAX_TOKENS, session_id=session_id,
        )
    except Exception as exc:
        logger.error("item_extraction_failed | error=%s", exc)
        return ExtractionResult.failed("items", exc)

    items = normalize_records(Item, payload["items"], category="items")
    logger.info("item_extraction_complete | found=%d | tokens=%d", len(items), tokens)
    return ExtractionResult(
        category="items",
        records=items,
        tokens_used=tokens,
        extraction_notes=payload.get("extraction_notes"),
    )
