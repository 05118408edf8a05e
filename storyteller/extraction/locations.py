"""Location extractor, from planets down to single rooms."""
from __future__ import annotations

from typing import Any, Dict, Optional

from storyteller.extraction.base import ExtractionResult, normalize_records, request_array
from storyteller.schemas.entities import LOCATION_TYPES, Location
from storyteller.services.llm import LLMClient
from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.extraction.locations")

TEMPERATURE = 0.2
MAX_TOKENS = 8_000
TEXT_LIMIT = 40_000

SYSTEM_PROMPT = f"""You are an expert location analyst. Extract EVERY location mentioned in the text, from planets to individual rooms.

For each location identify:
- name: the location's name
- location_type: {"|".join(LOCATION_TYPES)}
- description: what it looks and feels like
- atmosphere: the mood of the place
- parent_name: the containing location, if any ("Hogwarts" contains "Great Hall")
- significance: why this place matters to the story
- features[]: notable features
- associated_characters[]: characters who live, work or gather here
- events_here[]: important events at this location
- is_real_world: true for places that exist in reality
- confidence: high|medium|low

Include named places, unnamed but described places ("the dark forest"), abstract realms
("the spirit realm") and mobile locations ("the ship", "the caravan").
Organizations are factions, not locations.

Return valid JSON:
{{"locations": [ {{...}}, ... ], "location_hierarchy_notes": "how locations relate"}}"""


async def extract_locations(
    text: str,
    llm: LLMClient,
    *,
    analysis: Optional[Dict[str, Any]] = None,
    session_id: Optional[str] = None,
) -> ExtractionResult:
    hint = ""
    if (analysis or {}).get("extraction_hints", {}).get("location_format") == "hierarchical":
        hint = "Locations appear to be organized hierarchically; pay attention to containment.\n\n"
    user_prompt = f"{hint}Extract ALL locations from this text:\n\n{text[:TEXT_LIMIT]}"
    try:
        payload, tokens = await request_array(
            llm, "location_extraction", SYSTEM_PROMPT, user_prompt,
            key="locations", temperature=TEMPERATURE, max_tokens=MAX_TOKENS, session_id=session_id,
        )
    except Exception as exc:
        logger.error("location_extraction_failed | error=%s", exc)
        return ExtractionResult.failed("locations", exc)

    locations = normalize_records(Location, payload["locations"], category="locations")
    logger.info("location_extraction_complete | found=%d | tokens=%d", len(locations), tokens)
    return ExtractionResult(
        category="locations",
        records=locations,
        tokens_used=tokens,
        extraction_notes=payload.get("location_hierarchy_notes"),
    )
