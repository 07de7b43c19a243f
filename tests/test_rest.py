"""Tests for the REST endpoints.

Uses httpx AsyncClient with ASGITransport against an app wired to a
scripted FakeModelClient.
"""

from __future__ import annotations

import json

import pytest
import pytest_asyncio
from conftest import FakeModelClient, StreamingFakeClient, completion, make_settings
from httpx import ASGITransport, AsyncClient

from scribe.api.rest import create_app
from scribe.errors import ModelClientError
from scribe.main import build_app, create_components
from scribe.orchestration.engine import ResourceOrchestrator
from scribe.orchestration.sessions import SessionStore
from scribe.orchestration.usage import UsageLedger

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def ledger() -> UsageLedger:
    return UsageLedger()


def _app(client, settings, guide_loader, guide_catalog, ledger):
    orchestrator = ResourceOrchestrator(
        client,
        SessionStore(settings),
        settings,
        guide_registry=guide_catalog,
        guide_loader=guide_loader,
        usage_callback=ledger.record,
    )
    return create_app(orchestrator, settings, guide_registry=guide_catalog, usage_ledger=ledger)


@pytest_asyncio.fixture
async def http(client, settings, guide_loader, guide_catalog, ledger):
    app = _app(client, settings, guide_loader, guide_catalog, ledger)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


def _events(body: str) -> list[dict]:
    return [
        json.loads(line[6:])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


# ---------------------------------------------------------------------------
# Execution endpoints
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_analyze_with_guide_request(http, client):
    client.script = ['<guide-request path=["dialogue-tags.md"] />', "Tighten the dialogue."]

    response = await http.post("/analyze", json={"system_message": "sys", "user_message": "Review."})

    assert response.status_code == 200
    data = response.json()
    assert data["content"] == "Tighten the dialogue."
    assert data["used_ids"] == ["dialogue-tags.md"]
    assert data["calls"] == 2
    assert data["cancelled"] is False
    assert data["usage"]["total_tokens"] == 30


@pytest.mark.asyncio
async def test_analyze_rejects_missing_user_message(http):
    response = await http.post("/analyze", json={"system_message": "sys"})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request"


@pytest.mark.asyncio
async def test_analyze_rejects_bad_json(http):
    response = await http.post("/analyze", content=b"{not json", headers={"content-type": "application/json"})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_model_error_maps_to_502(http, client):
    client.script = [ModelClientError("OpenRouter API error: 503", status_code=503)]

    response = await http.post("/complete", json={"user_message": "Write."})

    assert response.status_code == 502
    assert "503" in response.json()["error"]


@pytest.mark.asyncio
async def test_complete_is_single_turn(http, client):
    client.script = [completion("Draft.", finish_reason="length")]

    response = await http.post("/complete", json={"user_message": "Write.", "max_tokens": 50})

    data = response.json()
    assert data["content"].startswith("Draft.")
    assert data["finish_reason"] == "length"
    assert client.options[0].max_tokens == 50


@pytest.mark.asyncio
async def test_context_endpoint_reads_project_files(client, guide_loader, guide_catalog, ledger, tmp_path):
    (tmp_path / "characters").mkdir()
    (tmp_path / "characters" / "mara.md").write_text("Mara is a point guard.", encoding="utf-8")
    settings = make_settings(context_root=str(tmp_path))
    app = _app(client, settings, guide_loader, guide_catalog, ledger)
    client.script = ['<context-request path=["characters/mara.md"] />', "Briefing."]

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        response = await http.post("/context", json={"user_message": "Brief me."})

    data = response.json()
    assert data["content"] == "Briefing."
    assert data["used_ids"] == ["characters/mara.md"]
    assert "Mara is a point guard." in client.requests[1][-1]["content"]


@pytest.mark.asyncio
async def test_analyze_stream_emits_tokens_then_done(settings, guide_loader, guide_catalog, ledger):
    client = StreamingFakeClient(['<guide-request path=["dialogue-tags.md"] />', "Cut the adverbs."])
    app = _app(client, settings, guide_loader, guide_catalog, ledger)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        response = await http.post("/analyze/stream", json={"user_message": "Review."})

    events = _events(response.text)
    tokens = [e["text"] for e in events if e["type"] == "token"]
    assert "".join(tokens) == "Cut the adverbs."
    assert events[-1]["type"] == "done"
    assert events[-1]["used_ids"] == ["dialogue-tags.md"]


# ---------------------------------------------------------------------------
# Read-only endpoints
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_guides_endpoint(http):
    response = await http.get("/guides")

    data = response.json()
    assert data["total"] == 2
    assert {"id": "dialogue-tags.md", "name": "Dialogue Tags", "category": "General"} in data["guides"]


@pytest.mark.asyncio
async def test_usage_endpoint_accumulates(http, client):
    client.script = ["One.", "Two."]
    await http.post("/complete", json={"user_message": "a"})
    await http.post("/complete", json={"user_message": "b"})

    data = (await http.get("/usage")).json()

    assert data["calls"] == 2
    assert data["total_tokens"] == 30


@pytest.mark.asyncio
async def test_health(http, settings):
    data = (await http.get("/health")).json()

    assert data == {"status": "healthy", "model": settings.model, "max_turns": 3}


# ---------------------------------------------------------------------------
# Application wiring
# ---------------------------------------------------------------------------


def test_create_components_wires_usage_ledger(settings):
    components = create_components(settings)

    assert set(components) == {
        "client", "sessions", "guide_registry", "guide_loader", "usage_ledger", "orchestrator",
    }
    assert components["orchestrator"].max_turns == settings.max_turns


@pytest.mark.asyncio
async def test_build_app_lifespan_starts_and_stops_components(settings):
    components = create_components(settings)
    app = build_app(settings, components)

    async with app.router.lifespan_context(app):
        assert components["client"]._http is not None
        assert components["sessions"]._task is not None

    assert components["client"]._http is None
    assert components["sessions"]._task is None
    assert isinstance(components["orchestrator"], ResourceOrchestrator)
    assert not isinstance(components["client"], FakeModelClient)


@pytest.mark.asyncio
async def test_lifespan_stops_components_when_serving_fails(settings):
    components = create_components(settings)
    app = build_app(settings, components)

    with pytest.raises(RuntimeError):
        async with app.router.lifespan_context(app):
            assert len(components["sessions"]) == 0
            raise RuntimeError("server crashed")

    assert components["sessions"]._task is None
    assert components["client"]._http is None
