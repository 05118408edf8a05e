"""Tests for sound-effect generation and its cache."""

import hashlib

import pytest
from unittest.mock import AsyncMock, MagicMock

from storyteller.config import Settings
from storyteller.models import SfxCacheEntry
from storyteller.services.sound_effects import SoundEffectError, SoundEffectService, cache_key
from storyteller.state.usage import UsageLedger


def audio_response(status_code=200, content=b"ID3-audio"):
    return MagicMock(status_code=status_code, content=content)


@pytest.fixture
def sfx_settings(settings):
    return settings.model_copy(update={"elevenlabs_api_key": "xi-test"})


@pytest.fixture
def http_client():
    client = MagicMock()
    client.post = AsyncMock(return_value=audio_response())
    return client


@pytest.fixture
def service(session_factory, sfx_settings, clock, http_client):
    ledger = UsageLedger(settings=sfx_settings, clock=clock)
    return SoundEffectService(session_factory, ledger=ledger, settings=sfx_settings, http_client=http_client)


class TestCacheKey:
    def test_key_covers_prompt_duration_and_loop(self):
        expected = hashlib.sha256(b"sfx:rain on tin:10:false").hexdigest()
        assert cache_key("rain on tin", 10, False) == expected
        assert cache_key("rain on tin", 10, True) != expected
        assert cache_key("rain on tin", 5, False) != expected


class TestGenerate:
    async def test_disabled_without_api_key(self, tmp_path):
        service = SoundEffectService(settings=Settings(sfx_cache_dir=str(tmp_path)))
        assert not service.enabled
        with pytest.raises(SoundEffectError, match="API key missing"):
            await service.generate("rain")

    async def test_generates_then_serves_from_cache(self, service, http_client, session_factory):
        first = await service.generate("thunder", duration=5, loop=True, session_id="sess")
        second = await service.generate("thunder", duration=5, loop=True, session_id="sess")

        assert first == second == b"ID3-audio"
        http_client.post.assert_awaited_once()
        body = http_client.post.call_args.kwargs["json"]
        assert body == {"text": "thunder", "duration_seconds": 5, "prompt_influence": 0.5, "loop": True}
        assert http_client.post.call_args.kwargs["headers"]["xi-api-key"] == "xi-test"

        async with session_factory() as db:
            row = await db.get(SfxCacheEntry, cache_key("thunder", 5, True))
        assert row.hit_count == 1
        assert row.size_bytes == len(b"ID3-audio")
        assert service.ledger.snapshot("sess")["elevenlabs"]["requests"] == 1

    async def test_stale_cache_row_regenerates(self, service, http_client):
        await service.generate("wind")
        for path in service.cache_dir.iterdir():
            path.unlink()
        await service.generate("wind")
        assert http_client.post.await_count == 2

    async def test_works_without_database(self, sfx_settings, http_client):
        service = SoundEffectService(settings=sfx_settings, http_client=http_client)
        assert await service.generate("drip") == b"ID3-audio"
        assert (service.cache_dir / f"{cache_key('drip', 10, False)}.mp3").exists()

    @pytest.mark.parametrize("status, message", [
        (401, "Invalid ElevenLabs API key"),
        (422, "Invalid input"),
    ])
    async def test_terminal_provider_errors(self, service, http_client, status, message):
        http_client.post.return_value = audio_response(status_code=status)
        with pytest.raises(SoundEffectError, match=message):
            await service.generate("scream")
        http_client.post.assert_awaited_once()
