"""Shared fixtures: scripted model clients and in-memory resource sources."""

from __future__ import annotations

import asyncio

import pytest

from scribe.config import Settings
from scribe.errors import GuideNotFoundError
from scribe.orchestration.engine import ResourceOrchestrator
from scribe.orchestration.model import Completion, CompletionOptions, StreamChunk
from scribe.orchestration.sessions import SessionStore
from scribe.orchestration.usage import TokenUsage
from scribe.resources.schemas import ContextResourceSummary, GuideMetadata, LoadedResource

# ---------------------------------------------------------------------------
# Scripted model clients
# ---------------------------------------------------------------------------


def completion(
    content: str,
    finish_reason: str | None = "stop",
    prompt_tokens: int = 10,
    completion_tokens: int = 5,
    cost: float | None = None,
) -> Completion:
    return Completion(
        content=content,
        finish_reason=finish_reason,
        usage=TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            cost_usd=cost,
        ),
    )


class FakeModelClient:
    """Returns scripted completions in order and records every request.

    Each entry in *script* is a Completion, a plain string (wrapped with
    finish_reason "stop"), or an exception instance to raise.
    """

    def __init__(self, script: list | None = None) -> None:
        self.script = list(script or [])
        self.requests: list[list[dict[str, str]]] = []
        self.options: list[CompletionOptions] = []
        self.block: asyncio.Event | None = None
        self.started = asyncio.Event()

    def _next(self) -> Completion:
        if not self.script:
            raise AssertionError("FakeModelClient ran out of scripted responses")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, str):
            return completion(item)
        return item

    async def complete(self, messages, options):
        self.requests.append([dict(m) for m in messages])
        self.options.append(options)
        self.started.set()
        if self.block is not None:
            await self.block.wait()
        return self._next()

    @property
    def call_count(self) -> int:
        return len(self.requests)


class StreamingFakeClient(FakeModelClient):
    """Streams each scripted completion word by word."""

    async def stream(self, messages, options):
        self.requests.append([dict(m) for m in messages])
        self.options.append(options)
        self.started.set()
        result = self._next()
        for index, word in enumerate(result.content.split(" ")):
            yield StreamChunk(token=word if index == 0 else " " + word)
        yield StreamChunk(done=True, finish_reason=result.finish_reason, usage=result.usage)


# ---------------------------------------------------------------------------
# Resource sources
# ---------------------------------------------------------------------------


class FakeGuideLoader:
    def __init__(self, guides: dict[str, str] | None = None) -> None:
        self.guides = dict(guides or {})
        self.loaded: list[str] = []

    async def load(self, guide_id: str) -> str:
        self.loaded.append(guide_id)
        if guide_id not in self.guides:
            raise GuideNotFoundError(guide_id)
        return self.guides[guide_id]


class FakeGuideCatalog:
    def __init__(self, guides: list[GuideMetadata] | None = None) -> None:
        self.guides = list(guides or [])

    async def list_guides(self) -> list[GuideMetadata]:
        return self.guides

    def format_for_prompt(self, guides: list[GuideMetadata]) -> str:
        return "## Available Craft Guides\n\n" + "\n".join(f"- `{g.guide_id}`" for g in guides)


class FakeContextProvider:
    def __init__(self, resources: dict[str, str] | None = None, group: str = "characters") -> None:
        self.resources = dict(resources or {})
        self.group = group
        self.requests: list[list[str]] = []

    def list_resources(self) -> list[ContextResourceSummary]:
        return [
            ContextResourceSummary(resource_id=rid, group=self.group, label=rid)
            for rid in self.resources
        ]

    async def load_many(self, resource_ids):
        self.requests.append(list(resource_ids))
        return [
            LoadedResource(resource_id=rid, content=self.resources[rid], group=self.group)
            for rid in resource_ids
            if rid in self.resources
        ]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    defaults = {"OPENROUTER_API_KEY": "test-key", "max_turns": 3}
    defaults.update(overrides)
    return Settings(**defaults)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def sessions(settings) -> SessionStore:
    return SessionStore(settings)


@pytest.fixture
def client() -> FakeModelClient:
    return FakeModelClient()


@pytest.fixture
def guide_loader() -> FakeGuideLoader:
    return FakeGuideLoader({
        "scene-guides/basketball-game.md": "Keep the score visible.",
        "dialogue-tags.md": "Prefer said.",
    })


@pytest.fixture
def guide_catalog() -> FakeGuideCatalog:
    return FakeGuideCatalog([
        GuideMetadata("dialogue-tags.md", "Dialogue Tags", "General"),
        GuideMetadata("scene-guides/basketball-game.md", "Basketball Game", "Scene Guides"),
    ])


@pytest.fixture
def orchestrator(client, sessions, settings, guide_loader, guide_catalog) -> ResourceOrchestrator:
    return ResourceOrchestrator(
        client,
        sessions,
        settings,
        guide_registry=guide_catalog,
        guide_loader=guide_loader,
    )
