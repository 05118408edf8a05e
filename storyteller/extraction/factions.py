"""Faction extractor: groups and organizations with multiple members."""
from __future__ import annotations

from typing import Any, Dict, Optional

from storyteller.extraction.base import (
    ExtractionResult,
    describe_document,
    normalize_records,
    request_array,
)
from storyteller.schemas.entities import FACTION_TYPES, Faction
from storyteller.services.llm import LLMClient
from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.extraction.factions")

TEMPERATURE = 0.3
MAX_TOKENS = 12_000
TEXT_LIMIT = 80_000

_TYPE_LINES = "\n".join(f"  - {name}: {hint}" for name, hint in FACTION_TYPES.items())

SYSTEM_PROMPT = f"""You are an expert Faction Extractor for story bibles and world-building documents.
Identify and extract ALL organizations, groups and collective entities mentioned.

## EXTRACT AS FACTIONS
Guilds, kingdoms and empires, cults, companies, armies, tribes and clans, gangs, churches,
schools, noble houses, alliances, councils, knightly orders, rebel groups, secret societies.

Faction types:
{_TYPE_LINES}

## DO NOT EXTRACT (they belong elsewhere)
- Individual leaders or members: characters
- Headquarters and territories as places: locations
- Events in the faction's history: lore

## FIELDS
name, faction_type, alignment, description, motto, symbol_description, leadership_type, leader_name,
hierarchy, member_count, goals[], methods[], values[], secrets, allies[], enemies[], headquarters,
territories[], resources[], founding, history, current_state, importance (0-100)

Return valid JSON:
{{"factions": [ {{...}}, ... ], "extraction_notes": "short summary of what was found"}}"""


async def extract_factions(
    text: str,
    llm: LLMClient,
    *,
    analysis: Optional[Dict[str, Any]] = None,
    session_id: Optional[str] = None,
) -> ExtractionResult:
    user_prompt = (
        "Extract ALL factions, organizations, and groups from this document. Be thorough: "
        "include every guild, kingdom, cult, company, and collective entity mentioned.\n\n"
        f"{describe_document(analysis)}\n\nDOCUMENT TEXT:\n{text[:TEXT_LIMIT]}"
    )
    try:
        payload, tokens = await request_array(
            llm, "faction_extraction", SYSTEM_PROMPT, user_prompt,
            key="factions", temperature=TEMPERATURE, max_tokens=MAX_TOKENS, session_id=session_id,
        )
    except Exception as exc:
        logger.error("faction_extraction_failed | error=%s", exc)
        return ExtractionResult.failed("factions", exc)

    factions = normalize_records(Faction, payload["factions"], category="factions")
    logger.info("faction_extraction_complete | found=%d | tokens=%d", len(factions), tokens)
    return ExtractionResult(
        category="factions",
        records=factions,
        tokens_used=tokens,
        extraction_notes=payload.get("extraction_notes"),
    )
