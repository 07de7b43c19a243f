"""Turn-bounded orchestration of model conversations with resource requests."""

from scribe.orchestration.engine import ExecutionResult, RequestOptions, ResourceOrchestrator
from scribe.orchestration.model import Completion, CompletionOptions, StreamChunk
from scribe.orchestration.parsers import (
    CONTEXT_REQUESTS,
    GUIDE_REQUESTS,
    DirectiveParser,
    ResourceRequest,
)
from scribe.orchestration.sessions import ConversationSession, Message, SessionStore
from scribe.orchestration.termination import (
    CancellationToken,
    TerminationContext,
    compose_termination,
)
from scribe.orchestration.trimming import TrimResult, count_words, trim_to_word_limit
from scribe.orchestration.usage import TokenUsage, UsageLedger, accumulate_usage

__all__ = [
    "CONTEXT_REQUESTS",
    "GUIDE_REQUESTS",
    "CancellationToken",
    "Completion",
    "CompletionOptions",
    "ConversationSession",
    "DirectiveParser",
    "ExecutionResult",
    "Message",
    "RequestOptions",
    "ResourceOrchestrator",
    "ResourceRequest",
    "SessionStore",
    "StreamChunk",
    "TerminationContext",
    "TokenUsage",
    "TrimResult",
    "UsageLedger",
    "accumulate_usage",
    "compose_termination",
    "count_words",
    "trim_to_word_limit",
]
