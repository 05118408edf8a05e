"""Shared fixtures: small-capacity settings, an in-memory database and a scripted LLM."""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from storyteller.config import Settings
from storyteller.database import create_tables, make_session_factory
from storyteller.services.llm import Completion


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url="sqlite+aiosqlite://",
        max_active_sessions=3,
        warn_active_sessions=2,
        max_pending_audio=3,
        warn_pending_audio=2,
        max_launch_sequences=2,
        warn_launch_sequences=1,
        max_generation_progress=3,
        warn_generation_progress=2,
        max_usage_sessions=3,
        warn_usage_sessions=2,
        retry_base_delay=0,
        qa_log_path=str(tmp_path / "qa-errors.jsonl"),
        sfx_cache_dir=str(tmp_path / "sfx"),
        image_output_dir=str(tmp_path / "portraits"),
    )


@pytest.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await create_tables(engine)
    yield make_session_factory(engine)
    await engine.dispose()


def completion(payload, total_tokens=100, finish_reason="stop"):
    """A Completion whose content is *payload* (dicts are JSON-encoded)."""
    content = payload if isinstance(payload, str) else json.dumps(payload)
    return Completion(content=content, model="gpt-4.1-2025-04-14",
                      total_tokens=total_tokens, finish_reason=finish_reason)


@pytest.fixture
def fake_llm():
    """LLMClient stand-in; set ``fake_llm.complete_json`` return/side effects per test."""
    llm = MagicMock()
    llm.complete_json = AsyncMock(return_value=completion({}))
    llm.ledger = None
    return llm
