"""Thin async wrapper around the OpenAI chat completions API.

Every structured call goes through ``LLMClient.complete_json`` so model
parameter quirks, context checks and usage tracking live in one place.
"""
from __future__ import annotations

import dataclasses
import time
from typing import Any, Optional

from openai import AsyncOpenAI

from storyteller.config import Settings, get_settings
from storyteller.state.usage import UsageLedger
from storyteller.utils.json_recovery import detect_truncation
from storyteller.utils.logging_config import get_logger
from storyteller.utils.token_budget import (
    budget_for_agent,
    build_token_params,
    estimate_input_tokens,
    get_context_limit,
    is_reasoning_model,
    supports_response_format,
    supports_temperature,
    validate_utilization,
)

logger = get_logger("storyteller.llm")


class EmptyCompletionError(RuntimeError):
    """The provider answered without any content. Retryable."""


@dataclasses.dataclass(frozen=True)
class Completion:
    content: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: int = 0
    finish_reason: Optional[str] = None

    @property
    def truncated(self) -> bool:
        return self.finish_reason == "length"


class LLMClient:
    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        ledger: Optional[UsageLedger] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self._client = client
        self.ledger = ledger

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.openai_api_key or None,
                base_url=self.settings.openai_base_url,
            )
        return self._client

    async def complete_json(
        self,
        agent: str,
        system_prompt: str,
        user_prompt: str,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: int = 4000,
        apply_budget: bool = True,
        session_id: Optional[str] = None,
    ) -> Completion:
        """One JSON-object completion.

        With ``apply_budget`` a reasoning model gets the requested
        ``max_tokens`` widened or capped by the agent's category; other
        models are sent ``max_tokens`` as is. Extractors pass ``False`` to
        keep their tuned limits.  Raises whatever the SDK raises; callers wrap
        this in ``retry_async``.
        """
        model = model or self.settings.extraction_model
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        if apply_budget and is_reasoning_model(model):
            budget = budget_for_agent(agent, max_tokens).budget
        else:
            budget = max_tokens
        report = validate_utilization(
            estimate_input_tokens(messages), budget, get_context_limit(model), label=agent,
        )
        if not report.valid:
            logger.warning("llm_context_overflow | agent=%s | model=%s | warning=%s",
                           agent, model, report.warning)

        params: dict[str, Any] = {"model": model, "messages": messages}
        params.update(build_token_params(model, budget))
        if temperature is not None and supports_temperature(model):
            params["temperature"] = temperature
        if supports_response_format(model):
            params["response_format"] = {"type": "json_object"}

        started = time.monotonic()
        response = await self.client.chat.completions.create(**params)
        duration_ms = int((time.monotonic() - started) * 1000)

        choice = response.choices[0] if response.choices else None
        content = (choice.message.content if choice and choice.message else None) or ""
        finish_reason = choice.finish_reason if choice else None

        usage = response.usage
        prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
        completion_tokens = getattr(usage, "completion_tokens", 0) or 0
        total_tokens = getattr(usage, "total_tokens", 0) or prompt_tokens + completion_tokens
        details = getattr(usage, "prompt_tokens_details", None)
        cached_tokens = getattr(details, "cached_tokens", 0) or 0

        if self.ledger is not None and session_id:
            self.ledger.track_openai(session_id, model, prompt_tokens, completion_tokens, cached_tokens)

        logger.info(
            "llm_completion | agent=%s | model=%s | tokens=%d | finish=%s",
            agent, model, total_tokens, finish_reason,
            extra={"agent": agent, "duration_ms": duration_ms, "session_id": session_id},
        )

        if not content.strip():
            raise EmptyCompletionError(f"Empty response from {model} for {agent}")

        if finish_reason == "length":
            trunc = detect_truncation(content)
            logger.warning("llm_truncated | agent=%s | budget=%d | reason=%s",
                           agent, budget, trunc.reason)

        return Completion(
            content=content,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            cached_tokens=cached_tokens,
            finish_reason=finish_reason,
        )
