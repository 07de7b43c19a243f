"""Parse resource-request directives out of free-form model output.

The model asks for material by embedding a self-closing tag such as::

    <guide-request path=["scene-guides/basketball-game.md", "dialogue-tags.md"] />
    <context-request path=['characters/mara.md'] />

The grammar is permissive (version 1): tag names are
case-insensitive, ``path`` or ``paths`` is accepted, whitespace is free,
the trailing slash is optional and ids may use single or double quotes.
Anything that does not parse is treated as "no request", never an error.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

DIRECTIVE_GRAMMAR_VERSION = 1

_QUOTED_ID_RE = re.compile(r"""["']([^"']*)["']""")
_EXCESS_BLANK_LINES_RE = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class ResourceRequest:
    """Result of parsing one response.

    ``present`` is True whenever a directive tag was found, even if its id
    list was empty or malformed; ``wants_fetch`` is what drives the loop.
    """

    present: bool = False
    requested_ids: tuple[str, ...] = ()

    @property
    def wants_fetch(self) -> bool:
        return self.present and bool(self.requested_ids)


NO_REQUEST = ResourceRequest()


class DirectiveParser:
    """Parser and stripper for one directive family."""

    def __init__(self, tag: str) -> None:
        self.tag = tag
        self._pattern = re.compile(
            rf"<\s*{re.escape(tag)}\s+paths?\s*=\s*\[(.*?)\]\s*/?\s*>",
            re.IGNORECASE | re.DOTALL,
        )

    def __repr__(self) -> str:
        return f"DirectiveParser({self.tag!r})"

    def parse(self, text: str | None) -> ResourceRequest:
        """Return the first directive in *text*, or NO_REQUEST."""
        if not text:
            return NO_REQUEST
        match = self._pattern.search(text)
        if match is None:
            return NO_REQUEST
        ids = tuple(
            item.strip()
            for item in _QUOTED_ID_RE.findall(match.group(1))
            if item.strip()
        )
        return ResourceRequest(present=True, requested_ids=ids)

    def strip(self, text: str) -> str:
        """Remove every directive of this family from *text*.

        Text without a directive comes back unchanged (the same object).
        Removal repeats until nothing matches, so stripping is idempotent.
        """
        if not text or self._pattern.search(text) is None:
            return text
        cleaned = text
        while True:
            cleaned, count = self._pattern.subn("", cleaned)
            if count == 0:
                break
        cleaned = _EXCESS_BLANK_LINES_RE.sub("\n\n", cleaned)
        return cleaned.strip()


GUIDE_REQUESTS = DirectiveParser("guide-request")
CONTEXT_REQUESTS = DirectiveParser("context-request")


def display_name(resource_id: str) -> str:
    """``scene-guides/basketball-game.md`` -> ``Basketball Game``."""
    filename = resource_id.rsplit("/", 1)[-1] or resource_id
    stem = re.sub(r"\.md$", "", filename, flags=re.IGNORECASE)
    return " ".join(part[:1].upper() + part[1:] for part in stem.split("-"))


def format_names_for_status(resource_ids: list[str] | tuple[str, ...]) -> str:
    return ", ".join(display_name(rid) for rid in resource_ids)
