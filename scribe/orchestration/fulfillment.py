"""Builders for the user turns that answer a resource request."""

from __future__ import annotations

import logging

from scribe.orchestration.model import FINISH_REASON_LENGTH
from scribe.orchestration.trimming import count_words, trim_to_word_limit
from scribe.resources.schemas import LoadedResource

logger = logging.getLogger(__name__)

TRUNCATION_NOTE = "\n\n---\n\n⚠️ Response truncated. Increase Max Tokens in settings."

GUIDE_TRIM_NOTE = "**Note**: Guide content was trimmed to fit context window limits."
CONTEXT_TRIM_NOTE = "**Note**: Context resources were trimmed to fit context window limits."

FORCED_OUTPUT_MESSAGE = (
    "You have reached the maximum number of resource requests. Please produce your "
    "context briefing NOW using only the resources you have already received. "
    "Do not request any more files."
)


def guide_placeholder(guide_id: str) -> str:
    return f"[Guide not found: {guide_id}]"


def truncation_note(finish_reason: str | None) -> str:
    return TRUNCATION_NOTE if finish_reason == FINISH_REASON_LENGTH else ""


def _fit_to_budget(contents: list[str], budget: int | None, label: str) -> tuple[list[str], bool]:
    """Trim each content in order so the combined word count stays within *budget*.

    Earlier entries keep their words first; entries past the budget come back
    empty. Content is returned untouched when the total already fits.
    """
    total = count_words("\n\n".join(contents))
    if budget is None or total <= budget:
        return contents, False

    fitted = []
    remaining = budget
    for content in contents:
        result = trim_to_word_limit(content, remaining)
        fitted.append(result.trimmed)
        remaining -= result.trimmed_word_count
    logger.info(
        "Trimmed %s from %d to %d words (budget %d)",
        label,
        total,
        budget - remaining,
        budget,
    )
    return fitted, True


def build_guide_message(guides: list[LoadedResource], word_budget: int | None) -> str:
    """Render loaded guides (placeholders included) as one user turn.

    Only guide content counts toward ``word_budget``; the ``## Guide:``
    headers are always kept. ``word_budget=None`` disables trimming.
    """
    contents, trimmed = _fit_to_budget([guide.content for guide in guides], word_budget, "guides")
    sections = [
        f"## Guide: {guide.resource_id}\n\n{content}" for guide, content in zip(guides, contents)
    ]

    lines = ["Here are the requested craft guides:", "", "\n\n---\n\n".join(sections), "", "---", ""]
    if trimmed:
        lines.append(GUIDE_TRIM_NOTE)
    return "\n".join(lines).rstrip() + "\n"


def build_context_message(
    resources: list[LoadedResource],
    requested_ids: list[str] | tuple[str, ...],
    word_budget: int | None,
) -> str:
    """Render delivered context resources, naming anything that was not found.

    Each resource is wrapped in its own ``markdown`` code block. Trimming
    applies to resource content before wrapping, so every block is closed.
    """
    if not resources:
        missing_list = ", ".join(requested_ids) if requested_ids else "unknown paths"
        return (
            f"No project resources were found for the requested paths ({missing_list}). "
            "Please continue without them."
        )

    delivered = {r.resource_id.lower() for r in resources}
    missing = [rid for rid in requested_ids if rid.strip().lower() not in delivered]

    contents, trimmed = _fit_to_budget(
        [r.content.strip() for r in resources], word_budget, "context resources"
    )
    sections = []
    for resource, content in zip(resources, contents):
        header = [f"### Resource: {resource.resource_id}", f"Group: {resource.group}"]
        if resource.origin:
            header.append(f"Origin: {resource.origin}")
        sections.append("\n".join(header) + f"\n\n```markdown\n{content}\n```")

    lines = ["Here are the requested project resources:", "", "\n\n".join(sections), ""]
    if trimmed:
        lines.extend([CONTEXT_TRIM_NOTE, ""])
    if missing:
        lines.append("The following requested paths could not be located:")
        lines.append("")
        lines.extend(f"- {rid}" for rid in missing)
        lines.append("")
    lines.append("Please incorporate these references into the context summary.")
    return "\n".join(lines)
