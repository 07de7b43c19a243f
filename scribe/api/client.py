"""OpenRouter chat-completions client over httpx.

Implements the ModelClient protocol used by the orchestrator. Requests are
single-shot: failures surface as ModelClientError and are not retried here.
Cancellation is handled by the caller cancelling the awaiting task, which
closes the underlying connection so the provider stops generating.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from scribe.config import Settings
from scribe.errors import ModelClientError
from scribe.orchestration.model import Completion, CompletionOptions, StreamChunk
from scribe.orchestration.usage import TokenUsage

logger = logging.getLogger(__name__)


class OpenRouterClient:
    """Async OpenRouter client with streaming support."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @property
    def model(self) -> str:
        return self._settings.model

    async def start(self) -> None:
        """Initialize the httpx client with auth and timeout settings."""
        settings = self._settings
        headers = {
            "content-type": "application/json",
            "HTTP-Referer": settings.app_referer,
            "X-Title": settings.app_title,
        }
        if settings.openrouter_api_key:
            headers["authorization"] = f"Bearer {settings.openrouter_api_key}"
        else:
            logger.warning("OPENROUTER_API_KEY is not set -- API calls will fail")

        timeout = httpx.Timeout(
            connect=settings.api_timeout_connect,
            read=settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        )
        limits = httpx.Limits(max_connections=10, max_keepalive_connections=5)

        self._http = httpx.AsyncClient(
            base_url=settings.api_base_url,
            headers=headers,
            timeout=timeout,
            limits=limits,
            transport=self._transport,
        )
        logger.info("httpx client initialized (model: %s)", settings.model)

    async def close(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

    def _build_payload(
        self,
        messages: list[dict[str, str]],
        options: CompletionOptions,
        stream: bool = False,
    ) -> dict[str, Any]:
        """Shared by complete() and stream() to avoid divergence."""
        payload: dict[str, Any] = {
            "model": self._settings.model,
            "messages": messages,
            "temperature": (
                options.temperature if options.temperature is not None else self._settings.temperature
            ),
            "max_tokens": options.max_tokens or self._settings.max_tokens,
        }
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        else:
            payload["usage"] = {"include": True}
        return payload

    def _require_http(self) -> httpx.AsyncClient:
        if not self._http:
            raise RuntimeError("httpx client not initialized -- call start() first")
        return self._http

    async def complete(
        self, messages: list[dict[str, str]], options: CompletionOptions
    ) -> Completion:
        http = self._require_http()
        payload = self._build_payload(messages, options)

        try:
            response = await http.post("/chat/completions", json=payload)
        except httpx.TimeoutException as e:
            raise ModelClientError(f"API request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ModelClientError(f"HTTP error: {e}") from e

        if response.status_code != 200:
            raise ModelClientError(
                f"OpenRouter API error: {response.status_code} - {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ModelClientError(f"Invalid JSON from OpenRouter API: {response.text[:200]}") from e
        choices = data.get("choices") or []
        if not choices:
            raise ModelClientError("No response from OpenRouter API")

        choice = choices[0]
        return Completion(
            content=(choice.get("message") or {}).get("content") or "",
            finish_reason=choice.get("finish_reason"),
            usage=TokenUsage.from_api(data.get("usage")),
        )

    async def stream(
        self, messages: list[dict[str, str]], options: CompletionOptions
    ) -> AsyncIterator[StreamChunk]:
        """Stream a completion as SSE, yielding tokens then a final done chunk.

        Only ``data:`` lines are processed; malformed JSON chunks are skipped.
        """
        http = self._require_http()
        payload = self._build_payload(messages, options, stream=True)

        finish_reason: str | None = None
        usage: TokenUsage | None = None
        try:
            async with http.stream("POST", "/chat/completions", json=payload) as response:
                if response.status_code != 200:
                    body = await response.aread()
                    raise ModelClientError(
                        f"OpenRouter API error: {response.status_code} - {body.decode()[:500]}",
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data: "):
                        continue
                    data = line[6:]
                    if data == "[DONE]":
                        break
                    try:
                        parsed = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug("Skipping malformed stream chunk: %s", data[:200])
                        continue

                    choice = (parsed.get("choices") or [{}])[0]
                    token = (choice.get("delta") or {}).get("content") or ""
                    if token:
                        yield StreamChunk(token=token)
                    if choice.get("finish_reason"):
                        finish_reason = choice["finish_reason"]
                    if parsed.get("usage"):
                        usage = TokenUsage.from_api(parsed["usage"])
        except httpx.HTTPError as e:
            raise ModelClientError(f"HTTP error: {e}") from e

        yield StreamChunk(done=True, finish_reason=finish_reason, usage=usage)
