"""Boundary types for the model client the orchestrator drives.

The orchestrator treats the provider call as opaque: it hands over an
ordered message list plus options and gets content, a finish reason and
usage back. Streaming is optional; clients that can stream expose
``stream()`` yielding StreamChunk values.

The resource-side protocols (guide catalog, guide source, context
provider) are defined here too so the orchestrator depends only on shapes.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from scribe.orchestration.termination import CancellationToken
from scribe.orchestration.usage import TokenUsage
from scribe.resources.schemas import ContextResourceSummary, GuideMetadata, LoadedResource

FINISH_REASON_LENGTH = "length"


@dataclass(frozen=True)
class CompletionOptions:
    temperature: float | None = None
    max_tokens: int | None = None
    cancellation: CancellationToken | None = None


@dataclass(frozen=True)
class Completion:
    """Response of one non-streaming model call."""

    content: str
    finish_reason: str | None = None
    usage: TokenUsage | None = None


@dataclass(frozen=True)
class StreamChunk:
    """One streamed event: a token, or the final ``done`` chunk."""

    token: str = ""
    done: bool = False
    finish_reason: str | None = None
    usage: TokenUsage | None = None


@runtime_checkable
class ModelClient(Protocol):
    async def complete(
        self, messages: list[dict[str, str]], options: CompletionOptions
    ) -> Completion: ...


@runtime_checkable
class StreamingModelClient(ModelClient, Protocol):
    def stream(
        self, messages: list[dict[str, str]], options: CompletionOptions
    ) -> AsyncIterator[StreamChunk]: ...


class GuideCatalog(Protocol):
    async def list_guides(self) -> list[GuideMetadata]: ...

    def format_for_prompt(self, guides: list[GuideMetadata]) -> str: ...


class GuideSource(Protocol):
    """Loads one guide by id. May raise per call."""

    async def load(self, guide_id: str) -> str: ...


class ContextResourceProvider(Protocol):
    """Never raises from load_many; unknown ids are simply absent."""

    def list_resources(self) -> list[ContextResourceSummary]: ...

    async def load_many(self, resource_ids: list[str] | tuple[str, ...]) -> list[LoadedResource]: ...
