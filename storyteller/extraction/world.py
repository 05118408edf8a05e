"""World/setting extractor. Produces a single ``WorldInfo`` record."""
from __future__ import annotations

from typing import Any, Dict, Optional

from storyteller.extraction.base import ExtractionResult, request_object
from storyteller.schemas.entities import WorldInfo
from storyteller.services.llm import LLMClient
from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.extraction.world")

TEMPERATURE = 0.2
MAX_TOKENS = 8_000
TEXT_LIMIT = 40_000

SYSTEM_PROMPT = """You are an expert world-builder analyst. Extract ALL world and setting information from the text.

Focus on setting and atmosphere, time period, technology, magic or supernatural systems,
society and governance, cultures, economy, religion, physical laws, climate, tone and mood.
Even small details matter.

Return JSON:
{
  "world": {
    "name": "world or setting name, or a descriptive name",
    "description": "comprehensive description of the setting",
    "genre": "fantasy|sci-fi|contemporary|historical|horror|romance|thriller|mystery|western|post-apocalyptic|steampunk|cyberpunk|other",
    "sub_genres": [], "time_period": "", "technology_level": "", "technologies": [],
    "magic_system": "description or null", "magic_rules": [], "society_structure": "",
    "governments": [], "cultures": [], "religions": [], "economy": "",
    "tone": "dark|light|gritty|whimsical|serious|comedic|mixed", "mood": "", "themes": [],
    "visual_style": "", "unique_elements": [], "world_rules": [], "conflicts": []
  },
  "extraction_notes": "observations about the world-building"
}"""


async def extract_world(
    text: str,
    llm: LLMClient,
    *,
    analysis: Optional[Dict[str, Any]] = None,
    session_id: Optional[str] = None,
) -> ExtractionResult:
    user_prompt = f"Extract all world-building and setting information from this text:\n\n{text[:TEXT_LIMIT]}"
    try:
        payload, tokens = await request_object(
            llm, "world_extraction", SYSTEM_PROMPT, user_prompt,
            temperature=TEMPERATURE, max_tokens=MAX_TOKENS, session_id=session_id,
        )
    except Exception as exc:
        logger.error("world_extraction_failed | error=%s", exc)
        return ExtractionResult.failed("world", exc)

    raw = payload.get("world")
    world = WorldInfo.model_validate(raw if isinstance(raw, dict) else {})
    logger.info("world_extraction_complete | genre=%s | tokens=%d", world.genre or "unknown", tokens)
    return ExtractionResult(
        category="world",
        records=[world],
        tokens_used=tokens,
        extraction_notes=payload.get("extraction_notes"),
    )
