"""Tests for the chat-completions wrapper."""

from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock, MagicMock

from storyteller.services.llm import EmptyCompletionError, LLMClient
from storyteller.state.usage import UsageLedger


def chat_response(content='{"ok": true}', finish_reason="stop", prompt_tokens=120, completion_tokens=30,
                  cached_tokens=0):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason=finish_reason)],
        usage=SimpleNamespace(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            prompt_tokens_details=SimpleNamespace(cached_tokens=cached_tokens),
        ),
    )


@pytest.fixture
def openai_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=chat_response())
    return client


@pytest.fixture
def ledger(settings, clock):
    return UsageLedger(settings=settings, clock=clock)


class TestCompleteJson:
    async def test_parameters_for_chat_models(self, openai_client, settings):
        llm = LLMClient(openai_client, settings=settings)
        completion = await llm.complete_json("sfx_agent", "sys", "user", model="gpt-4o",
                                             temperature=0.3, max_tokens=1000)

        params = openai_client.chat.completions.create.call_args.kwargs
        assert params["model"] == "gpt-4o"
        assert params["max_tokens"] == 1000
        assert params["temperature"] == 0.3
        assert params["response_format"] == {"type": "json_object"}
        assert [m["role"] for m in params["messages"]] == ["system", "user"]
        assert completion.content == '{"ok": true}'
        assert completion.total_tokens == 150
        assert not completion.truncated

    async def test_non_reasoning_model_keeps_requested_limit(self, openai_client, settings):
        llm = LLMClient(openai_client, settings=settings)
        await llm.complete_json("cover_prompt", "sys", "user", model="gpt-4", max_tokens=1500)
        assert openai_client.chat.completions.create.call_args.kwargs["max_tokens"] == 1500

    async def test_reasoning_model_budget_follows_agent_category(self, openai_client, settings):
        llm = LLMClient(openai_client, settings=settings)
        await llm.complete_json("sfx_agent", "sys", "user", model="gpt-5.2", max_tokens=1000)
        params = openai_client.chat.completions.create.call_args.kwargs
        assert params["max_completion_tokens"] == 3000
        assert "max_tokens" not in params

        await llm.complete_json("planner", "sys", "user", model="gpt-5.2", max_tokens=1000)
        assert openai_client.chat.completions.create.call_args.kwargs["max_completion_tokens"] == 28_000

    async def test_parameters_for_reasoning_models(self, openai_client, settings):
        llm = LLMClient(openai_client, settings=settings)
        await llm.complete_json("lore_extraction", "sys", "user", model="o3-mini",
                                temperature=0.2, max_tokens=5000, apply_budget=False)

        params = openai_client.chat.completions.create.call_args.kwargs
        assert params["max_completion_tokens"] == 5000
        assert "temperature" not in params
        assert "response_format" not in params

    async def test_usage_is_tracked_per_session(self, openai_client, settings, ledger):
        openai_client.chat.completions.create.return_value = chat_response(cached_tokens=20)
        llm = LLMClient(openai_client, ledger=ledger, settings=settings)
        await llm.complete_json("planner", "sys", "user", model="gpt-4o", session_id="sess")
        await llm.complete_json("planner", "sys", "user", model="gpt-4o")

        openai = ledger.snapshot("sess")["openai"]
        assert openai["input_tokens"] == 120
        assert openai["cached_tokens"] == 20
        assert openai["requests"] == 1

    async def test_empty_content_raises(self, openai_client, settings):
        openai_client.chat.completions.create.return_value = chat_response(content="   ")
        llm = LLMClient(openai_client, settings=settings)
        with pytest.raises(EmptyCompletionError):
            await llm.complete_json("planner", "sys", "user")

    async def test_truncated_completion_is_returned(self, openai_client, settings):
        openai_client.chat.completions.create.return_value = chat_response(
            content='{"items": [{"name": "A"}, {"na', finish_reason="length",
        )
        llm = LLMClient(openai_client, settings=settings)
        completion = await llm.complete_json("item_extraction", "sys", "user", apply_budget=False)
        assert completion.truncated
        assert completion.model == settings.extraction_model
