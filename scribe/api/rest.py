"""REST API for Scribe.

Endpoints:
  POST /analyze          - Guide-capable analysis (JSON result)
  POST /analyze/stream   - Same, streamed as SSE token events
  POST /context          - Context briefing with project resource requests
  POST /complete         - Single-turn request, no resource capability
  GET  /guides           - Craft guide catalog
  GET  /usage            - Running token usage across all calls
  GET  /health           - Health check
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from scribe.config import Settings
from scribe.errors import ModelClientError
from scribe.orchestration.engine import ExecutionResult, RequestOptions, ResourceOrchestrator
from scribe.orchestration.usage import UsageLedger
from scribe.resources.context import FileContextResourceProvider
from scribe.resources.guides import GuideRegistry

logger = logging.getLogger(__name__)


class ExecutionRequest(BaseModel):
    """Body shared by the execution endpoints."""

    tool_name: str = "analysis"
    system_message: str = ""
    user_message: str = Field(min_length=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)
    timeout_ms: int | None = Field(default=None, gt=0)


class AnalyzeRequest(ExecutionRequest):
    include_guides: bool = True


class ContextRequest(ExecutionRequest):
    tool_name: str = "context"
    groups: list[str] | None = None


def result_payload(result: ExecutionResult) -> dict[str, Any]:
    return {
        "content": result.content,
        "used_ids": list(result.used_ids),
        "usage": result.usage.to_dict() if result.usage else None,
        "finish_reason": result.finish_reason,
        "cancelled": result.cancelled,
        "cancel_reason": result.cancel_reason,
        "calls": result.calls,
        "turn_limit_reached": result.turn_limit_reached,
    }


def create_app(
    orchestrator: ResourceOrchestrator,
    settings: Settings,
    guide_registry: GuideRegistry | None = None,
    usage_ledger: UsageLedger | None = None,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    async def _parse(request: Request, model: type[BaseModel]) -> BaseModel | JSONResponse:
        try:
            body = await request.json()
        except Exception:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        try:
            return model.model_validate(body)
        except ValidationError as e:
            return JSONResponse({"error": "Invalid request", "details": e.errors(include_url=False, include_context=False)}, status_code=400)

    def _options(body: ExecutionRequest, **extra: Any) -> RequestOptions:
        return RequestOptions(
            temperature=body.temperature,
            max_tokens=body.max_tokens,
            timeout_ms=body.timeout_ms,
            **extra,
        )

    async def analyze(request: Request) -> JSONResponse:
        """POST /analyze - Guide-capable analysis."""
        body = await _parse(request, AnalyzeRequest)
        if isinstance(body, JSONResponse):
            return body
        try:
            result = await orchestrator.execute_with_guides(
                body.tool_name, body.system_message, body.user_message,
                _options(body, include_guides=body.include_guides),
            )
        except ModelClientError as e:
            logger.error("Analyze error: %s", e)
            return JSONResponse({"error": str(e)}, status_code=502)
        return JSONResponse(result_payload(result))

    async def analyze_stream(request: Request) -> StreamingResponse | JSONResponse:
        """POST /analyze/stream - SSE token stream, then a final done event."""
        body = await _parse(request, AnalyzeRequest)
        if isinstance(body, JSONResponse):
            return body

        queue: asyncio.Queue[str | None] = asyncio.Queue()

        async def run() -> ExecutionResult:
            try:
                return await orchestrator.execute_with_guides(
                    body.tool_name, body.system_message, body.user_message,
                    _options(body, include_guides=body.include_guides, on_token=queue.put_nowait),
                )
            finally:
                queue.put_nowait(None)

        async def event_generator():
            task = asyncio.create_task(run())
            try:
                while (token := await queue.get()) is not None:
                    yield f"data: {json.dumps({'type': 'token', 'text': token})}\n\n"
                result = await task
                yield f"data: {json.dumps({'type': 'done', **result_payload(result)})}\n\n"
            except Exception as e:
                logger.error("Stream error: %s", e)
                yield f"data: {json.dumps({'type': 'error', 'text': str(e)})}\n\n"
            finally:
                if not task.done():
                    task.cancel()

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    async def context(request: Request) -> JSONResponse:
        """POST /context - Context briefing over project resources."""
        body = await _parse(request, ContextRequest)
        if isinstance(body, JSONResponse):
            return body
        provider = FileContextResourceProvider(settings, groups=body.groups)
        try:
            result = await orchestrator.execute_with_context_resources(
                body.tool_name, body.system_message, body.user_message,
                provider, options=_options(body),
            )
        except ModelClientError as e:
            logger.error("Context error: %s", e)
            return JSONResponse({"error": str(e)}, status_code=502)
        return JSONResponse(result_payload(result))

    async def complete(request: Request) -> JSONResponse:
        """POST /complete - Single turn."""
        body = await _parse(request, ExecutionRequest)
        if isinstance(body, JSONResponse):
            return body
        try:
            result = await orchestrator.execute_single_turn(
                body.tool_name, body.system_message, body.user_message, _options(body),
            )
        except ModelClientError as e:
            logger.error("Complete error: %s", e)
            return JSONResponse({"error": str(e)}, status_code=502)
        return JSONResponse(result_payload(result))

    async def guides(request: Request) -> JSONResponse:
        """GET /guides - Guide catalog."""
        if guide_registry is None:
            return JSONResponse({"guides": [], "total": 0})
        catalog = await guide_registry.list_guides()
        return JSONResponse({
            "guides": [
                {"id": g.guide_id, "name": g.display_name, "category": g.category}
                for g in catalog
            ],
            "total": len(catalog),
        })

    async def usage(request: Request) -> JSONResponse:
        """GET /usage - Running usage totals."""
        if usage_ledger is None:
            return JSONResponse({"error": "Usage tracking not enabled"}, status_code=503)
        return JSONResponse(usage_ledger.snapshot())

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        return JSONResponse({
            "status": "healthy",
            "model": settings.model,
            "max_turns": orchestrator.max_turns,
        })

    routes = [
        Route("/analyze", analyze, methods=["POST"]),
        Route("/analyze/stream", analyze_stream, methods=["POST"]),
        Route("/context", context, methods=["POST"]),
        Route("/complete", complete, methods=["POST"]),
        Route("/guides", guides),
        Route("/usage", usage),
        Route("/health", health),
    ]

    kwargs: dict[str, Any] = {"routes": routes}
    if lifespan is not None:
        kwargs["lifespan"] = lifespan
    return Starlette(**kwargs)
