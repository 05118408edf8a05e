"""
Character extractor.

Long documents are processed in overlapping chunks; the same character seen
in several chunks is folded into one record by ``merge_character_data``.
The merge is deterministic and idempotent: merging a record with itself
returns it unchanged.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from storyteller.extraction.base import (
    ExtractionResult,
    chunk_text,
    normalize_records,
    request_array,
)
from storyteller.schemas.entities import (
    CONFIDENCE_RANK,
    ROLE_PRIORITY,
    Character,
    DeathDetails,
    FamilyMember,
    Relationship,
    relationship_key,
)
from storyteller.services.llm import LLMClient
from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.extraction.characters")

TEMPERATURE = 0.2
MAX_TOKENS = 12_000

SYSTEM_PROMPT = """You are an exhaustive character extraction specialist. Extract EVERY character mentioned in the text with every detail the text supports.

## WHO COUNTS AS A CHARACTER
- Named people, including those only mentioned in passing or in history
- Unnamed people with a narrative role ("The Blacksmith", "Village Elder")
- Named animals with personality (pets, mounts, familiars): set is_animal_companion and companion_to
- Sentient machines, spirits and creatures that act as individuals

## WHO DOES NOT
- Organizations and groups: those are factions
- Objects, vehicles, weapons, even when named: those are items
- Species or races described in general: that is lore

## VITAL STATUS (check carefully)
- is_alive / is_deceased for the story's present; is_historical for figures only in the past
- death_details {cause, timing, location, killer, circumstances, impact, body_status} when deceased
- vital_status_summary: one line such as "ALIVE - main protagonist" or "DECEASED - killed in battle"

## FIELDS
name, display_name, aliases[], gender (male|female|non-binary|unknown, infer from pronouns),
age_group (child|teen|young_adult|adult|middle_aged|elderly|unknown), age_specific, species (default human),
is_animal_companion, companion_to, role (protagonist|antagonist|supporting|minor|mentioned),
faction_allegiance, description, appearance, clothing_style, physical_condition, personality, traits[],
values, fears, flaws, strengths, backstory, occupation, former_occupations[], social_status, education,
origin, abilities[], skills[], weaknesses[], signature_moves[], motivations, secrets, internal_conflicts,
external_conflicts, relationships_mentioned[{to, type, notes}], enemies[], allies[], romantic_interests[],
family[{name, relation, status}], dialogue_style, voice_description (pitch, tone, accent, pace for TTS),
first_appearance_context, character_arc, symbolic_role, importance (0-100), confidence (high|medium|low),
extraction_notes

Return valid JSON:
{"characters": [ {...}, ... ], "extraction_summary": "overview of characters found"}"""


# ---------------------------------------------------------------------------
# Merge policy
# ---------------------------------------------------------------------------

_FIRST_NON_EMPTY = (
    "name", "display_name", "age_specific", "companion_to", "faction_allegiance",
    "occupation", "social_status", "first_appearance_context",
)
_LONGER = (
    "description", "appearance", "clothing_style", "physical_condition", "personality",
    "values", "fears", "flaws", "strengths", "backstory", "education", "origin",
    "motivations", "secrets", "internal_conflicts", "external_conflicts", "dialogue_style",
    "voice_description", "character_arc", "symbolic_role", "extraction_notes",
)
_UNION = (
    "aliases", "traits", "former_occupations", "abilities", "skills", "weaknesses",
    "signature_moves", "enemies", "allies", "romantic_interests",
)
_OR_FLAGS = ("is_animal_companion", "is_deceased", "is_historical")


def longer_string(first: Optional[str], second: Optional[str]) -> Optional[str]:
    """The longer of two strings; ties keep *first*."""
    if not first:
        return second
    if not second:
        return first
    return first if len(first) >= len(second) else second


def merge_arrays(first: Iterable[str], second: Iterable[str]) -> List[str]:
    """Lowercased union in arrival order."""
    merged: List[str] = []
    for value in [*first, *second]:
        key = value.lower() if isinstance(value, str) else value
        if key not in merged:
            merged.append(key)
    return merged


def prioritize_role(first: str, second: str) -> str:
    return first if ROLE_PRIORITY.get(first, 0) >= ROLE_PRIORITY.get(second, 0) else second


def max_confidence(first: str, second: str) -> str:
    return first if CONFIDENCE_RANK.get(first, 0) >= CONFIDENCE_RANK.get(second, 0) else second


def _known(value: Optional[str]) -> bool:
    return bool(value) and value != "unknown"


def merge_death_details(
    first: Optional[DeathDetails], second: Optional[DeathDetails]
) -> Optional[DeathDetails]:
    if first is None:
        return second
    if second is None:
        return first
    return DeathDetails(
        cause=first.cause if _known(first.cause) else (second.cause or "unknown"),
        timing=longer_string(first.timing, second.timing),
        location=longer_string(first.location, second.location),
        killer=first.killer or second.killer,
        circumstances=longer_string(first.circumstances, second.circumstances),
        impact=longer_string(first.impact, second.impact),
        body_status=first.body_status if _known(first.body_status) else (second.body_status or "unknown"),
    )


def merge_relationships(first: List[Relationship], second: List[Relationship]) -> List[Relationship]:
    seen = set()
    out = []
    for rel in [*first, *second]:
        key = relationship_key(rel)
        if key not in seen:
            seen.add(key)
            out.append(rel)
    return out


def merge_family(first: List[FamilyMember], second: List[FamilyMember]) -> List[FamilyMember]:
    seen = set()
    out = []
    for member in [*first, *second]:
        key = member.name.lower()
        if key and key not in seen:
            seen.add(key)
            out.append(member)
    return out


def merge_character_data(existing: Character, new: Character) -> Character:
    """Fold *new* into *existing*, preferring the more detailed information."""
    update: Dict[str, Any] = {}

    for field in _FIRST_NON_EMPTY:
        update[field] = getattr(existing, field) or getattr(new, field)
    for field in _LONGER:
        update[field] = longer_string(getattr(existing, field), getattr(new, field))
    for field in _UNION:
        update[field] = merge_arrays(getattr(existing, field), getattr(new, field))
    for field in _OR_FLAGS:
        update[field] = getattr(existing, field) or getattr(new, field)

    update["description"] = update["description"] or ""
    update["gender"] = existing.gender if _known(existing.gender) else new.gender
    update["age_group"] = existing.age_group if _known(existing.age_group) else new.age_group
    update["species"] = existing.species or new.species or "human"
    update["role"] = prioritize_role(existing.role, new.role)

    is_deceased = update["is_deceased"]
    if existing.is_alive is not None:
        update["is_alive"] = existing.is_alive
    elif new.is_alive is not None:
        update["is_alive"] = new.is_alive
    else:
        update["is_alive"] = True
    update["vital_status_summary"] = (
        existing.vital_status_summary
        or new.vital_status_summary
        or ("DECEASED" if is_deceased else "ALIVE")
    )
    update["death_details"] = merge_death_details(existing.death_details, new.death_details)

    update["relationships"] = merge_relationships(existing.relationships, new.relationships)
    update["family"] = merge_family(existing.family, new.family)

    update["confidence"] = max_confidence(existing.confidence, new.confidence)
    update["importance"] = max(existing.importance, new.importance)
    update["source_chunk_index"] = (
        existing.source_chunk_index if existing.source_chunk_index is not None
        else new.source_chunk_index
    )
    return existing.model_copy(update=update)


def dedupe_characters(characters: Iterable[Character]) -> List[Character]:
    """Group by lowercased trimmed name and merge each group in arrival order."""
    merged: Dict[str, Character] = {}
    for character in characters:
        key = character.name.lower().strip()
        if not key:
            continue
        if key in merged:
            merged[key] = merge_character_data(merged[key], character)
        else:
            # Self-merge fills vital status defaults.
            merged[key] = merge_character_data(character, character)
    return list(merged.values())


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

async def extract_characters(
    text: str,
    llm: LLMClient,
    *,
    analysis: Optional[Dict[str, Any]] = None,
    session_id: Optional[str] = None,
) -> ExtractionResult:
    chunks = chunk_text(text)
    if len(chunks) > 1:
        logger.info("character_extraction_chunked | chunks=%d | chars=%d", len(chunks), len(text))

    found: List[Character] = []
    tokens = 0
    failures: List[str] = []

    for index, chunk in enumerate(chunks):
        if len(chunks) > 1:
            user_prompt = (
                f"Extract ALL characters from this section (part {index + 1} of {len(chunks)}):\n\n{chunk}"
            )
        else:
            user_prompt = f"Extract ALL characters from this text:\n\n{chunk}"

        try:
            payload, used = await request_array(
                llm, "character_extraction", SYSTEM_PROMPT, user_prompt,
                key="characters", temperature=TEMPERATURE, max_tokens=MAX_TOKENS,
                session_id=session_id,
            )
        except Exception as exc:
            failures.append(str(exc))
            logger.error("character_chunk_failed | chunk=%d/%d | error=%s",
                         index + 1, len(chunks), exc)
            continue

        tokens += used
        records = normalize_records(Character, payload["characters"], category="characters",
                                    chunk_index=index)
        found.extend(records)
        logger.info("character_chunk_done | chunk=%d/%d | found=%d", index + 1, len(chunks), len(records))

    if failures and len(failures) == len(chunks):
        return ExtractionResult.failed("characters", failures[-1], tokens_used=tokens)

    unique = dedupe_characters(found)
    logger.info("character_extraction_complete | raw=%d | unique=%d | tokens=%d",
                len(found), len(unique), tokens)
    return ExtractionResult(category="characters", records=unique, tokens_used=tokens)
