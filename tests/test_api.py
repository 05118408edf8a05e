"""HTTP endpoint tests over an in-process ASGI transport."""

import httpx
import pytest
from fastapi import FastAPI

from storyteller.routers import extraction, health, lorebook, prompts, usage
from storyteller.state.registry import SessionRegistry
from storyteller.state.usage import UsageLedger
from tests.conftest import completion


@pytest.fixture
async def api(settings, clock, session_factory, fake_llm):
    app = FastAPI()
    for module in (health, usage, lorebook, extraction, prompts):
        app.include_router(module.router)
    app.state.registry = SessionRegistry(settings=settings, clock=clock)
    app.state.ledger = UsageLedger(session_factory, settings=settings, clock=clock)
    app.state.session_factory = session_factory
    app.state.llm = fake_llm
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        client.app = app
        yield client


class TestHealthAndUsage:
    async def test_health(self, api):
        response = await api.get("/api/health")
        assert response.status_code == 200
        assert response.json()["registry"]["activeSessions"]["max"] == 3
        assert isinstance(response.json()["connections"], int)

    async def test_usage_endpoints(self, api):
        assert (await api.get("/api/usage/sess")).status_code == 404

        api.app.state.ledger.track_openai("sess", "gpt-4o", 1000, 1000)
        snapshot = (await api.get("/api/usage/sess")).json()
        assert snapshot["openai"]["input_tokens"] == 1000
        summary = (await api.get("/api/usage/sess/summary")).json()
        assert summary["total"] == "$0.0125"
        assert (await api.post("/api/usage/sess/persist")).json() == {"session_id": "sess", "persisted": True}


class TestLorebookApi:
    async def test_crud_and_trigger(self, api):
        created = await api.post("/api/lorebook/s1", json={"title": "Silver Tower", "content": "Home of Vel.",
                                                           "importance": 80})
        assert created.status_code == 201
        entry_id = created.json()["id"]

        listed = (await api.get("/api/lorebook/s1")).json()
        assert [e["title"] for e in listed] == ["Silver Tower"]

        triggered = (await api.post("/api/lorebook/s1/triggered", json={"text": "the tower"})).json()
        assert "[GENERAL] Silver Tower:" in triggered["injection"]

        patched = await api.patch(f"/api/lorebook/s1/{entry_id}", json={"importance": 10})
        assert patched.json()["importance"] == 10
        assert (await api.patch("/api/lorebook/s1/999", json={"title": "x"})).status_code == 404

        assert (await api.delete(f"/api/lorebook/s1/{entry_id}")).json() == {"deleted": entry_id}
        assert (await api.delete(f"/api/lorebook/s1/{entry_id}")).status_code == 404

    async def test_import_validation(self, api):
        assert (await api.post("/api/lorebook/s2/import", json={"rows": []})).status_code == 400
        response = await api.post("/api/lorebook/s2/import", json={"entries": [{"title": "Rite"}]})
        assert response.json() == {"imported": 1}


class TestPromptsApi:
    async def test_recommend_and_guidance(self, api):
        recommended = await api.post("/api/directors/recommend", json={"genres": {"thriller": 80}})
        assert recommended.json() == {"director": "hitchcock"}

        guidance = (await api.post("/api/directors/guidance", json={"director": "nolan"})).json()
        assert guidance["director"] == "nolan"
        assert "Christopher Nolan" in guidance["guidance"]

    async def test_intensity(self, api):
        response = await api.post("/api/intensity", json={"levels": {"violence": 81, "romance": 0}})
        body = response.json()
        assert list(body["instructions"]) == ["violence"]
        assert "=== CONTENT INTENSITY CONTRACT ===" in body["block"]
        bad = await api.post("/api/intensity", json={"levels": {"smell": 50}})
        assert bad.status_code == 400


class TestExtractionApi:
    async def test_single_category(self, api, fake_llm):
        fake_llm.complete_json.return_value = completion({"factions": [{"name": "Ashen Hand"}]})
        response = await api.post("/api/extraction/factions", json={"text": "story"})
        assert response.json()["factions"][0]["name"] == "Ashen Hand"
        assert (await api.post("/api/extraction/spells", json={"text": "story"})).status_code == 404
