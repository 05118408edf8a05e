"""
Token budget advisor for LLM calls.

Reasoning models spend hidden reasoning tokens before any visible output, so
an under-provisioned ``max_tokens`` on a creative agent silently yields an
empty completion.  Utility agents (classifiers, taggers) get the opposite
treatment and are capped to keep costs predictable.
"""
from __future__ import annotations

import dataclasses
import math
from typing import Iterable, Literal, Mapping

from storyteller.utils.logging_config import get_logger

logger = get_logger("storyteller.token_budget")

AgentCategory = Literal["reasoning-heavy", "utility", "default"]

REASONING_HEAVY_AGENTS = (
    "planner", "sceneGenerator", "voiceDirector", "beatArchitect", "writer",
    "storyGenerator", "proseWriter", "outliner", "characterCreator",
    "worldBuilder", "dialogueWriter", "narrator", "polish",
)

UTILITY_AGENTS = (
    "safety", "sfx", "emotion", "lore", "validator", "tagger", "formatter",
    "summarizer", "classifier",
)

# Ordered most-specific first; matched by substring on the lowercased model id.
MODEL_CONTEXT_LIMITS = (
    ("gpt-5.2", 128_000),
    ("gpt-5.1", 128_000),
    ("gpt-5-mini", 128_000),
    ("gpt-5-nano", 128_000),
    ("gpt-5", 128_000),
    ("gpt-4.1", 1_047_576),
    ("gpt-4o-mini", 128_000),
    ("gpt-4o", 128_000),
    ("gpt-4-turbo", 128_000),
    ("gpt-4", 8_192),
    ("gpt-3.5-turbo", 16_385),
)
DEFAULT_CONTEXT_LIMIT = 128_000

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 4


@dataclasses.dataclass(frozen=True)
class TokenBudget:
    budget: int
    reason: str
    original_tokens: int
    increase: int


@dataclasses.dataclass(frozen=True)
class UtilizationReport:
    valid: bool
    utilization_pct: int
    total: int
    limit: int
    warning: str | None = None


# ---------------------------------------------------------------------------
# Estimation
# ---------------------------------------------------------------------------

def estimate_tokens(text: str | None) -> int:
    """Approximate token count at four characters per token."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_input_tokens(messages: Iterable[Mapping[str, str]]) -> int:
    total = 0
    for message in messages:
        total += estimate_tokens(message.get("content") or "") + MESSAGE_OVERHEAD_TOKENS
    return total


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def _normalize_agent_name(name: str) -> str:
    normalized = name.lower()
    for sep in ("_", "-", " "):
        normalized = normalized.replace(sep, "")
    if normalized.endswith("agent"):
        normalized = normalized[: -len("agent")]
    return normalized


def classify_agent(name: str | None) -> AgentCategory:
    """Map an agent name onto its workload category."""
    if not name:
        return "default"
    normalized = _normalize_agent_name(name)
    if any(agent.lower() in normalized for agent in REASONING_HEAVY_AGENTS):
        return "reasoning-heavy"
    if any(agent.lower() in normalized for agent in UTILITY_AGENTS):
        return "utility"
    return "default"


def calculate_budget(requested_tokens: int, category: AgentCategory) -> TokenBudget:
    """Return a safe completion budget for *requested_tokens* in *category*."""
    requested = max(int(requested_tokens or 0), 0)

    if category == "reasoning-heavy":
        budget = max(requested + 20_000, 28_000)
        reason = "reasoning-heavy agent: headroom for hidden reasoning tokens"
    elif category == "utility":
        budget = min(requested + 2_000, 8_000)
        reason = "utility agent: capped for cost control"
    else:
        budget = max(requested + 8_000, 12_000)
        reason = "default agent: moderate headroom"

    return TokenBudget(
        budget=budget,
        reason=reason,
        original_tokens=requested,
        increase=budget - requested,
    )


def budget_for_agent(agent_name: str | None, requested_tokens: int) -> TokenBudget:
    return calculate_budget(requested_tokens, classify_agent(agent_name))


# ---------------------------------------------------------------------------
# Model capabilities
# ---------------------------------------------------------------------------

def get_context_limit(model: str | None) -> int:
    if not model:
        return DEFAULT_CONTEXT_LIMIT
    lowered = model.lower()
    for prefix, limit in MODEL_CONTEXT_LIMITS:
        if prefix in lowered:
            return limit
    return DEFAULT_CONTEXT_LIMIT


def _is_o_series(model: str) -> bool:
    return model.startswith("o1") or model.startswith("o3")


def is_reasoning_model(model: str | None) -> bool:
    if not model:
        return False
    lowered = model.lower()
    return "gpt-5.2" in lowered or _is_o_series(lowered)


def uses_completion_tokens_param(model: str | None) -> bool:
    """gpt-5 and o-series models reject ``max_tokens``."""
    if not model:
        return False
    lowered = model.lower()
    return lowered.startswith("gpt-5") or _is_o_series(lowered)


def supports_temperature(model: str | None) -> bool:
    if not model:
        return True
    lowered = model.lower()
    if _is_o_series(lowered):
        return False
    return not any(
        lowered.startswith(prefix)
        for prefix in ("gpt-5-mini", "gpt-5-nano", "gpt-5.2-pro")
    )


def supports_response_format(model: str | None) -> bool:
    if not model:
        return True
    lowered = model.lower()
    return not (lowered.startswith("gpt-5") or _is_o_series(lowered))


def build_token_params(model: str, budget: int) -> dict[str, int]:
    """Pick the right max-token parameter name for *model*."""
    if uses_completion_tokens_param(model):
        return {"max_completion_tokens": budget}
    return {"max_tokens": budget}


# ---------------------------------------------------------------------------
# Utilization
# ---------------------------------------------------------------------------

def validate_utilization(
    input_tokens: int,
    output_tokens: int,
    context_limit: int,
    *,
    label: str = "",
) -> UtilizationReport:
    """Check projected input+output against the context window.

    Only exceeding the limit marks the report invalid; the 80 % and 50 %
    thresholds are advisory.
    """
    total = input_tokens + output_tokens
    limit = context_limit or DEFAULT_CONTEXT_LIMIT
    utilization = round(input_tokens / limit * 100)

    if total > limit:
        warning = (
            f"TOKEN_LIMIT_EXCEEDED: {label or 'request'} needs {total} tokens "
            f"({input_tokens} in + {output_tokens} out) but the limit is {limit}"
        )
        logger.error("token_limit_exceeded | label=%s | total=%d | limit=%d",
                     label, total, limit)
        return UtilizationReport(False, utilization, total, limit, warning)

    if utilization >= 80:
        warning = f"HIGH_UTILIZATION: {label or 'request'} uses {utilization}% of context"
        logger.warning("token_high_utilization | label=%s | pct=%d | limit=%d",
                       label, utilization, limit)
        return UtilizationReport(True, utilization, total, limit, warning)

    if utilization >= 50:
        logger.info("token_utilization | label=%s | pct=%d | limit=%d",
                    label, utilization, limit)

    return UtilizationReport(True, utilization, total, limit)
