"""Tests for the image prompt ladder."""

from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock, MagicMock

from storyteller.services.images import (
    COVER_SUFFIX,
    FALLBACK_PROMPTS,
    ImageGenerationError,
    ImageGenerator,
    image_type_for,
    is_content_policy_error,
    sanitize_prompt,
)
from storyteller.state.usage import UsageLedger
from tests.conftest import completion


def image_response(url="https://cdn.example/img.png", revised_prompt="revised"):
    return SimpleNamespace(data=[SimpleNamespace(url=url, revised_prompt=revised_prompt)])


@pytest.fixture
def http_client():
    response = MagicMock(content=b"\x89PNG")
    client = MagicMock()
    client.get = AsyncMock(return_value=response)
    return client


@pytest.fixture
def generator(fake_llm, settings, clock, http_client):
    fake_llm.client.images.generate = AsyncMock(return_value=image_response())
    ledger = UsageLedger(settings=settings, clock=clock)
    return ImageGenerator(fake_llm, ledger=ledger, settings=settings, http_client=http_client)


class TestHelpers:
    def test_sanitize_prompt(self):
        assert sanitize_prompt("A Bloody murder in the horror house") == \
            "A dramatic mystery in the gothic house"
        assert sanitize_prompt("") == ""

    def test_image_type(self):
        assert image_type_for("hd", "1792x1024") == "hd1792"
        assert image_type_for("hd", "1024x1024") == "hd1024"
        assert image_type_for("standard", "1024x1792") == "standard1792"

    def test_content_policy_detection(self):
        assert is_content_policy_error(RuntimeError("Your request was rejected: content_policy_violation"))
        coded = RuntimeError("400")
        coded.body = {"code": "content_policy_violation"}
        assert is_content_policy_error(coded)
        assert not is_content_policy_error(RuntimeError("timeout"))


class TestLadder:
    async def test_first_tier_success(self, generator, http_client, settings):
        image = await generator.generate_with_fallback(["p1", "p2", "p3"], session_id="sess")

        assert image.tier_used == 1
        assert image.tier_name == "detailed"
        assert image.image_url.startswith("/storyteller/portraits/cover_sess_")
        assert image.original_url == "https://cdn.example/img.png"
        assert image.revised_prompt == "revised"
        assert open(image.file_path, "rb").read() == b"\x89PNG"
        assert image.to_dict()["success"] is True
        assert generator.ledger.snapshot("sess")["images"]["by_type"] == {"hd1792": 1}

    async def test_policy_rejection_falls_through(self, generator, fake_llm):
        fake_llm.client.images.generate.side_effect = [
            RuntimeError("content_policy_violation"),
            RuntimeError("server exploded"),
            image_response(),
        ]
        image = await generator.generate_with_fallback(["p1", "p2", "p3"], session_id="sess")
        assert image.tier_used == 3
        assert image.tier_name == "symbolic"
        prompts = [c.kwargs["prompt"] for c in fake_llm.client.images.generate.call_args_list]
        assert prompts == ["p1", "p2", "p3"]

    async def test_all_tiers_failing_raises(self, generator, fake_llm):
        last = RuntimeError("content_policy_violation 3")
        fake_llm.client.images.generate.side_effect = [
            RuntimeError("content_policy_violation 1"),
            RuntimeError("content_policy_violation 2"),
            last,
        ]
        with pytest.raises(ImageGenerationError) as exc_info:
            await generator.generate_with_fallback(["p1", "p2", "p3"])
        assert exc_info.value.last_error is last
        assert "sess" not in generator.ledger


class TestCoverPrompts:
    async def test_prompts_are_sanitized_and_suffixed(self, generator, fake_llm):
        fake_llm.complete_json.return_value = completion({
            "prompt1": "a murder at dusk", "prompt2": "shadows", "prompt3": "a candle",
        })
        prompts = await generator.cover_prompts({"title": "Night", "genres": {"horror": 80}})
        assert prompts[0] == "a mystery at dusk" + COVER_SUFFIX
        assert len(prompts) == 3
        user_prompt = fake_llm.complete_json.call_args.args[2]
        assert "Genres: horror" in user_prompt

    async def test_fallback_prompts_when_generation_fails(self, generator, fake_llm):
        fake_llm.complete_json.side_effect = RuntimeError("invalid api key")
        assert await generator.cover_prompts({}) == list(FALLBACK_PROMPTS)

    async def test_generate_cover(self, generator, fake_llm):
        fake_llm.complete_json.side_effect = RuntimeError("invalid api key")
        image = await generator.generate_cover({}, session_id="sess", quality="standard", size="1024x1024")
        assert image.tier_used == 1
        assert fake_llm.client.images.generate.call_args.kwargs["prompt"] == FALLBACK_PROMPTS[0]
        assert generator.ledger.snapshot("sess")["images"]["by_type"] == {"standard1024": 1}
