"""Turn-bounded orchestration of model calls that may request resources.

Three protocols share one execution discipline:

- execute_with_guides(): the model may ask for craft guides by id
- execute_with_context_resources(): the model may ask for project files,
  with a forced recovery turn if it is still asking at the ceiling
- execute_single_turn(): one call, no resource capability

Every call opens one conversation session and one termination context and
releases both on every exit path. Turns run strictly sequentially; each
model call is raced against the unified cancellation token so a caller
cancel or a timeout aborts the in-flight request.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from scribe.config import Settings
from scribe.errors import OperationCancelled
from scribe.orchestration.fulfillment import (
    FORCED_OUTPUT_MESSAGE,
    build_context_message,
    build_guide_message,
    guide_placeholder,
    truncation_note,
)
from scribe.orchestration.model import (
    Completion,
    CompletionOptions,
    ContextResourceProvider,
    GuideCatalog,
    GuideSource,
    ModelClient,
    StreamingModelClient,
)
from scribe.orchestration.parsers import (
    CONTEXT_REQUESTS,
    GUIDE_REQUESTS,
    format_names_for_status,
)
from scribe.orchestration.sessions import SessionStore
from scribe.orchestration.termination import (
    CancellationToken,
    compose_termination,
    run_cancellable,
)
from scribe.orchestration.usage import TokenUsage, accumulate_usage
from scribe.resources.schemas import ContextResourceSummary, LoadedResource

logger = logging.getLogger(__name__)

StatusCallback = Callable[..., None]  # (message, ticker=None)
UsageCallback = Callable[[TokenUsage], None]
TokenCallback = Callable[[str], None]


@dataclass(frozen=True)
class RequestOptions:
    """Per-call knobs supplied by the feature invoking the orchestrator."""

    include_guides: bool = True
    temperature: float | None = None
    max_tokens: int | None = None
    cancellation: CancellationToken | None = None
    timeout_ms: float | None = None
    on_token: TokenCallback | None = None  # Enables streaming when the client supports it


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one orchestrated call."""

    content: str
    used_ids: tuple[str, ...] = ()
    usage: TokenUsage | None = None
    finish_reason: str | None = None
    cancelled: bool = False
    cancel_reason: str | None = None
    calls: int = 0
    turn_limit_reached: bool = False

    @property
    def used_guides(self) -> list[str]:
        return list(self.used_ids)

    @property
    def requested_resources(self) -> list[str]:
        return list(self.used_ids)


@dataclass
class _Run:
    """Mutable bookkeeping for one in-flight orchestrated call."""

    options: RequestOptions
    session_id: str = ""
    token: CancellationToken | None = None
    usage: TokenUsage | None = None
    used_ids: list[str] = field(default_factory=list)
    calls: int = 0
    turn_limit_reached: bool = False

    def result(self, content: str, finish_reason: str | None) -> ExecutionResult:
        return ExecutionResult(
            content=content,
            used_ids=tuple(self.used_ids),
            usage=self.usage,
            finish_reason=finish_reason,
            calls=self.calls,
            turn_limit_reached=self.turn_limit_reached,
        )


class ResourceOrchestrator:
    """Drives multi-turn model conversations with resource fulfillment."""

    def __init__(
        self,
        client: ModelClient,
        sessions: SessionStore,
        settings: Settings,
        *,
        guide_registry: GuideCatalog | None = None,
        guide_loader: GuideSource | None = None,
        status_callback: StatusCallback | None = None,
        usage_callback: UsageCallback | None = None,
    ) -> None:
        self._client = client
        self._sessions = sessions
        self._settings = settings
        self._max_turns = settings.max_turns
        self._guide_registry = guide_registry
        self._guide_loader = guide_loader
        self._status_callback = status_callback
        self._usage_callback = usage_callback

    @property
    def max_turns(self) -> int:
        return self._max_turns

    def set_status_callback(self, callback: StatusCallback | None) -> None:
        self._status_callback = callback

    def set_usage_callback(self, callback: UsageCallback | None) -> None:
        self._usage_callback = callback

    # ------------------------------------------------------------------
    # Protocol A: guide fulfillment
    # ------------------------------------------------------------------

    async def execute_with_guides(
        self,
        tool_name: str,
        system_message: str,
        user_message: str,
        options: RequestOptions | None = None,
    ) -> ExecutionResult:
        """Run an analysis that may fetch craft guides mid-conversation.

        With ``include_guides=False`` (or no guide loader) this degrades to
        a single turn; guide directives are still stripped from the output.
        """
        options = options or RequestOptions()
        loader = self._guide_loader
        if not options.include_guides or loader is None:
            return await self._execute(
                tool_name, system_message, options,
                lambda run: self._single_turn(run, user_message, strip=GUIDE_REQUESTS.strip),
            )
        return await self._execute(
            tool_name, system_message, options,
            lambda run: self._guide_turns(run, loader, user_message),
        )

    async def _guide_turns(self, run: _Run, loader: GuideSource, user_message: str) -> ExecutionResult:
        first_message = user_message
        if self._guide_registry is not None:
            guides = await run_cancellable(self._guide_registry.list_guides(), run.token)
            first_message += "\n\n" + self._guide_registry.format_for_prompt(guides)
            logger.info("Added %d guides to prompt", len(guides))

        logger.info("Turn 1: sending initial request (%d chars)", len(first_message))
        self._sessions.append(run.session_id, "user", first_message)
        last = await self._call(run)

        turn = 1
        while turn < self._max_turns:
            request = GUIDE_REQUESTS.parse(last.content)
            if not request.wants_fetch:
                if request.present:
                    logger.info("Empty guide-request directive, treating response as final")
                else:
                    logger.info("No guide request found, conversation complete")
                break

            requested = list(request.requested_ids)
            logger.info("Model requested %d guide(s): %s", len(requested), ", ".join(requested))
            self._notify_status("Loading requested craft guides...", format_names_for_status(requested))

            turn += 1
            logger.info("Turn %d: fulfilling guide request", turn)
            loaded = await self._load_guides(loader, requested, run)
            run.used_ids.extend(requested)

            self._sessions.append(run.session_id, "assistant", last.content)
            self._sessions.append(
                run.session_id, "user",
                build_guide_message(loaded, self._budget(self._settings.guide_word_budget)),
            )
            last = await self._call(run)
        else:
            if GUIDE_REQUESTS.parse(last.content).wants_fetch:
                run.turn_limit_reached = True
                logger.warning("Conversation %s reached max turns (%d)", run.session_id, self._max_turns)

        logger.info("Conversation complete. Used %d guides total", len(run.used_ids))
        content = GUIDE_REQUESTS.strip(last.content) + truncation_note(last.finish_reason)
        return run.result(content, last.finish_reason)

    async def _load_guides(
        self, loader: GuideSource, guide_ids: list[str], run: _Run
    ) -> list[LoadedResource]:
        """Load each guide independently; failures become placeholders."""
        loaded = []
        for guide_id in guide_ids:
            try:
                content = await run_cancellable(loader.load(guide_id), run.token)
            except OperationCancelled:
                raise
            except Exception as e:
                logger.warning("Failed to load guide %s: %s", guide_id, e)
                loaded.append(LoadedResource(
                    resource_id=guide_id,
                    content=guide_placeholder(guide_id),
                    group="guide",
                    failed=True,
                ))
                continue
            logger.debug("Loaded guide %s (%d chars)", guide_id, len(content))
            loaded.append(LoadedResource(resource_id=guide_id, content=content, group="guide"))
        return loaded

    # ------------------------------------------------------------------
    # Protocol B: context resource fulfillment
    # ------------------------------------------------------------------

    async def execute_with_context_resources(
        self,
        tool_name: str,
        system_message: str,
        user_message: str,
        provider: ContextResourceProvider,
        catalog: list[ContextResourceSummary] | None = None,
        options: RequestOptions | None = None,
    ) -> ExecutionResult:
        """Generate a context briefing, loading project resources on request.

        The catalog is logged for diagnostics only; it is not injected into
        the prompt.
        """
        options = options or RequestOptions()
        if catalog is None:
            catalog = provider.list_resources()
        return await self._execute(
            tool_name, system_message, options,
            lambda run: self._context_turns(run, user_message, provider, catalog),
        )

    async def _context_turns(
        self,
        run: _Run,
        user_message: str,
        provider: ContextResourceProvider,
        catalog: list[ContextResourceSummary],
    ) -> ExecutionResult:
        self._log_catalog(catalog)

        self._sessions.append(run.session_id, "user", user_message)
        last = await self._call(run)

        turn = 1
        while turn < self._max_turns:
            request = CONTEXT_REQUESTS.parse(last.content)
            if not request.wants_fetch:
                logger.info("No resource request found in turn %d, conversation complete", turn)
                break

            requested = list(request.requested_ids)
            logger.info("Turn %d: model requested %d resource(s): %s", turn, len(requested), ", ".join(requested))
            self._sessions.append(run.session_id, "assistant", last.content)
            self._notify_status("Loading project reference files...")

            loaded = await run_cancellable(provider.load_many(requested), run.token)
            run.used_ids.extend(resource.resource_id for resource in loaded)
            if loaded:
                logger.info("Turn %d: loaded %d project resource(s)", turn, len(loaded))
            else:
                logger.info("Turn %d: no project resources matched the request", turn)

            self._sessions.append(
                run.session_id, "user",
                build_context_message(loaded, requested, self._budget(self._settings.context_word_budget)),
            )
            turn += 1
            last = await self._call(run)
        else:
            if CONTEXT_REQUESTS.parse(last.content).wants_fetch:
                run.turn_limit_reached = True
                logger.warning("Conversation %s reached max turns (%d)", run.session_id, self._max_turns)
                logger.info("Final turn was still a resource request, forcing output generation")
                self._sessions.append(run.session_id, "assistant", last.content)
                self._sessions.append(run.session_id, "user", FORCED_OUTPUT_MESSAGE)
                last = await self._call(run)

        content = CONTEXT_REQUESTS.strip(last.content) + truncation_note(last.finish_reason)
        return run.result(content, last.finish_reason)

    def _log_catalog(self, catalog: list[ContextResourceSummary]) -> None:
        if not catalog:
            logger.info("Context resource catalog is empty")
            return
        logger.info("Context resource catalog (%d entries)", len(catalog))
        for index, resource in enumerate(catalog, start=1):
            logger.debug("  %d. [%s] %s", index, resource.group, resource.resource_id)

    # ------------------------------------------------------------------
    # Protocol C: single turn
    # ------------------------------------------------------------------

    async def execute_single_turn(
        self,
        tool_name: str,
        system_message: str,
        user_message: str,
        options: RequestOptions | None = None,
    ) -> ExecutionResult:
        """One model call with no resource capability."""
        return await self._execute(
            tool_name, system_message, options or RequestOptions(),
            lambda run: self._single_turn(run, user_message),
        )

    async def _single_turn(
        self,
        run: _Run,
        user_message: str,
        strip: Callable[[str], str] | None = None,
    ) -> ExecutionResult:
        self._sessions.append(run.session_id, "user", user_message)
        response = await self._call(run)
        content = strip(response.content) if strip else response.content
        return run.result(content + truncation_note(response.finish_reason), response.finish_reason)

    # ------------------------------------------------------------------
    # Shared execution discipline
    # ------------------------------------------------------------------

    async def _execute(
        self,
        tool_name: str,
        system_message: str,
        options: RequestOptions,
        body: Callable[[_Run], Awaitable[ExecutionResult]],
    ) -> ExecutionResult:
        """Scope a run with its termination context and session.

        Both are released before returning, whether the body succeeds,
        raises or is cancelled.
        """
        timeout_ms = options.timeout_ms if options.timeout_ms is not None else self._settings.request_timeout_ms
        run = _Run(options=options)
        logger.info("Starting conversation for %s (max_turns=%d)", tool_name, self._max_turns)

        with (
            compose_termination(options.cancellation, timeout_ms) as termination,
            self._sessions.open(tool_name, system_message) as session,
        ):
            run.token = termination.token
            run.session_id = session.session_id
            try:
                return await body(run)
            except OperationCancelled as e:
                logger.info("Conversation %s cancelled: %s", run.session_id, e.reason)
                return ExecutionResult(
                    content="",
                    used_ids=tuple(run.used_ids),
                    usage=run.usage,
                    cancelled=True,
                    cancel_reason=e.reason,
                    calls=run.calls,
                    turn_limit_reached=run.turn_limit_reached,
                )

    async def _call(self, run: _Run) -> Completion:
        """Issue one model call against the session's current messages."""
        messages = [m.to_dict() for m in self._sessions.messages(run.session_id)]
        options = CompletionOptions(
            temperature=run.options.temperature,
            max_tokens=run.options.max_tokens,
            cancellation=run.token,
        )
        logger.info("Calling model (%d messages in context)", len(messages))

        on_token = run.options.on_token
        if on_token is not None and isinstance(self._client, StreamingModelClient):
            completion = await run_cancellable(
                self._stream(self._client, messages, options, on_token), run.token,
            )
        else:
            completion = await run_cancellable(self._client.complete(messages, options), run.token)

        run.calls += 1
        logger.info("Received response (%d chars, finish_reason=%s)", len(completion.content), completion.finish_reason)
        if completion.usage is not None:
            self._emit_usage(completion.usage)
            run.usage = accumulate_usage(run.usage, completion.usage)
        return completion

    async def _stream(
        self,
        client: StreamingModelClient,
        messages: list[dict[str, str]],
        options: CompletionOptions,
        on_token: TokenCallback,
    ) -> Completion:
        """Stream one turn, forwarding tokens only if it is not a directive.

        The first non-blank token decides: a turn opening with ``<`` is a
        resource request and stays silent.
        """
        parts: list[str] = []
        finish_reason = None
        usage = None
        is_directive: bool | None = None

        async for chunk in client.stream(messages, options):
            if chunk.done:
                finish_reason = chunk.finish_reason or finish_reason
                usage = chunk.usage or usage
                continue
            if not chunk.token:
                continue
            parts.append(chunk.token)
            if is_directive is None and chunk.token.strip():
                is_directive = chunk.token.lstrip().startswith("<")
                logger.debug("First token detection: %s", "directive" if is_directive else "text")
            if is_directive is False:
                self._safe_call(on_token, chunk.token)

        return Completion(content="".join(parts), finish_reason=finish_reason, usage=usage)

    def _budget(self, budget: int) -> int | None:
        return budget if self._settings.apply_context_window_trimming else None

    def _notify_status(self, message: str, ticker: str | None = None) -> None:
        if self._status_callback is not None:
            self._safe_call(self._status_callback, message, ticker)

    def _emit_usage(self, usage: TokenUsage) -> None:
        if self._usage_callback is not None:
            self._safe_call(self._usage_callback, usage)

    @staticmethod
    def _safe_call(callback: Callable[..., None], *args: object) -> None:
        """Run a fire-and-forget callback; its errors never affect the call."""
        try:
            callback(*args)
        except Exception:
            logger.exception("Callback %r failed", callback)
