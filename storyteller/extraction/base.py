"""
Shared plumbing for the story bible extractors.

Each extractor builds its own prompts and then calls ``request_array`` (or
``request_object`` for single-record categories).  That helper owns the
retry loop, truncation-tolerant decoding and token accounting, so extractors
differ only in prompts, limits and normalization.
"""
from __future__ import annotations

import dataclasses
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError

from storyteller.services.llm import Completion, LLMClient
from storyteller.utils.json_recovery import parse_json_object, recover_json_array
from storyteller.utils.logging_config import get_logger
from storyteller.utils.retry import retry_async

logger = get_logger("storyteller.extraction")

M = TypeVar("M", bound=BaseModel)

CHUNK_SIZE = 30_000
CHUNK_OVERLAP = 2_000


@dataclasses.dataclass
class ExtractionResult:
    """Outcome of one extractor run. Failures are data, never exceptions."""
    category: str
    records: List[Any] = dataclasses.field(default_factory=list)
    tokens_used: int = 0
    success: bool = True
    error: Optional[str] = None
    extraction_notes: Optional[str] = None
    misplaced_entries: List[Dict[str, str]] = dataclasses.field(default_factory=list)

    @classmethod
    def failed(cls, category: str, error: BaseException | str, tokens_used: int = 0) -> "ExtractionResult":
        return cls(category=category, success=False, error=str(error), tokens_used=tokens_used)

    def to_dict(self) -> Dict[str, Any]:
        dumped = [r.model_dump() if isinstance(r, BaseModel) else r for r in self.records]
        payload: Dict[str, Any] = {
            "success": self.success,
            # world is a single record, every other category a list
            self.category: (dumped[0] if dumped else {}) if self.category == "world" else dumped,
            "tokens_used": self.tokens_used,
        }
        if self.error:
            payload["error"] = self.error
        if self.extraction_notes:
            payload["extraction_notes"] = self.extraction_notes
        if self.misplaced_entries:
            payload["misplaced_entries"] = list(self.misplaced_entries)
        return payload


# ---------------------------------------------------------------------------
# Text handling
# ---------------------------------------------------------------------------

def chunk_text(text: str, size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> List[str]:
    """Split *text* into overlapping windows; short text is a single chunk."""
    if len(text) <= size:
        return [text]
    step = size - overlap
    return [text[i:i + size] for i in range(0, len(text), step)]


def describe_document(analysis: Optional[Dict[str, Any]]) -> str:
    analysis = analysis or {}
    return (
        f"Document type: {analysis.get('document_type') or 'narrative'}\n"
        f"Genre: {analysis.get('genre') or 'unknown'}\n"
        f"Time period: {analysis.get('time_period') or 'unknown'}"
    )


# ---------------------------------------------------------------------------
# LLM calls
# ---------------------------------------------------------------------------

async def _complete(
    llm: LLMClient,
    agent: str,
    system_prompt: str,
    user_prompt: str,
    *,
    temperature: float,
    max_tokens: int,
    session_id: Optional[str],
) -> Completion:
    return await retry_async(
        lambda: llm.complete_json(
            agent,
            system_prompt,
            user_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            apply_budget=False,
            session_id=session_id,
        ),
        label=agent,
    )


async def request_array(
    llm: LLMClient,
    agent: str,
    system_prompt: str,
    user_prompt: str,
    *,
    key: str,
    temperature: float,
    max_tokens: int,
    required_field: str = "name",
    session_id: Optional[str] = None,
) -> tuple[dict, int]:
    """Returns the decoded payload (``payload[key]`` is always a list) and tokens used."""
    completion = await _complete(
        llm, agent, system_prompt, user_prompt,
        temperature=temperature, max_tokens=max_tokens, session_id=session_id,
    )
    payload = recover_json_array(completion.content, key, required_field=required_field)
    return payload, completion.total_tokens


async def request_object(
    llm: LLMClient,
    agent: str,
    system_prompt: str,
    user_prompt: str,
    *,
    temperature: float,
    max_tokens: int,
    session_id: Optional[str] = None,
) -> tuple[dict, int]:
    completion = await _complete(
        llm, agent, system_prompt, user_prompt,
        temperature=temperature, max_tokens=max_tokens, session_id=session_id,
    )
    return parse_json_object(completion.content) or {}, completion.total_tokens


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def normalize_records(
    model: Type[M],
    raw_records: Sequence[Any],
    *,
    category: str,
    chunk_index: Optional[int] = None,
) -> List[M]:
    """Validate raw dicts into *model*, dropping anything unusable."""
    out: List[M] = []
    dropped = 0
    for raw in raw_records:
        if not isinstance(raw, dict):
            dropped += 1
            continue
        data = dict(raw)
        if chunk_index is not None:
            data["source_chunk_index"] = chunk_index
        try:
            out.append(model.model_validate(data))
        except ValidationError as exc:
            dropped += 1
            logger.debug("record_dropped | category=%s | error=%s", category, exc.errors()[:1])
    if dropped:
        logger.info("records_dropped | category=%s | dropped=%d | kept=%d", category, dropped, len(out))
    return out
