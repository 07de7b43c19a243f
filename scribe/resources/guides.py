"""Craft guide catalog and loader.

Guides are markdown files under ``settings.guides_dir``. The top-level
folder name is the guide's category; files at the root fall under
"General". A guide's id is its POSIX path relative to the guides dir.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from pathlib import Path

from scribe.config import Settings
from scribe.errors import GuideNotFoundError
from scribe.orchestration.parsers import display_name
from scribe.resources.schemas import GuideMetadata

logger = logging.getLogger(__name__)


def _title_case(slug: str) -> str:
    return " ".join(part[:1].upper() + part[1:] for part in slug.split("-"))


class GuideRegistry:
    """Discovers guides on disk with a short-lived listing cache."""

    def __init__(self, settings: Settings) -> None:
        self._root = Path(settings.guides_dir)
        self._ttl = settings.guide_cache_ttl
        self._cache: list[GuideMetadata] | None = None
        self._scanned_at = 0.0

    async def list_guides(self) -> list[GuideMetadata]:
        """Return all guides sorted by category then display name."""
        now = time.monotonic()
        if self._cache is not None and now - self._scanned_at < self._ttl:
            return self._cache

        self._cache = await asyncio.to_thread(self._scan)
        self._scanned_at = now
        logger.info("Found %d craft guides under %s", len(self._cache), self._root)
        return self._cache

    def clear_cache(self) -> None:
        self._cache = None
        self._scanned_at = 0.0

    def _scan(self) -> list[GuideMetadata]:
        if not self._root.is_dir():
            logger.warning("Guides directory %s does not exist", self._root)
            return []

        guides = []
        for path in self._root.rglob("*.md"):
            relative = path.relative_to(self._root)
            if any(part.startswith(".") for part in relative.parts):
                continue
            if path.name.lower() == "readme.md":
                continue
            category = _title_case(relative.parts[0]) if len(relative.parts) > 1 else "General"
            guides.append(GuideMetadata(
                guide_id=relative.as_posix(),
                display_name=display_name(path.name),
                category=category,
            ))

        guides.sort(key=lambda g: (g.category, g.display_name))
        return guides

    @staticmethod
    def format_for_prompt(guides: list[GuideMetadata]) -> str:
        """Render the catalog as a markdown block appended to the first user turn."""
        if not guides:
            return "## Available Craft Guides\n\nNo guides available."

        by_category: dict[str, list[GuideMetadata]] = defaultdict(list)
        for guide in guides:
            by_category[guide.category].append(guide)

        lines = ["## Available Craft Guides", ""]
        for category, entries in by_category.items():
            lines.append(f"### {category}")
            for guide in entries:
                lines.append(f"- `{guide.guide_id}` - {guide.display_name}")
            lines.append("")
        return "\n".join(lines)


class GuideLoader:
    """Reads guide text by id.

    Accepts full ids (``scene-guides/basketball-game.md``) and bare names
    (``dialogue-tags``), which resolve to a root-level ``.md`` file.
    """

    def __init__(self, settings: Settings) -> None:
        self._root = Path(settings.guides_dir).resolve()

    def _resolve(self, guide_id: str) -> Path:
        relative = guide_id if ("/" in guide_id or guide_id.endswith(".md")) else f"{guide_id}.md"
        path = (self._root / relative).resolve()
        if not path.is_relative_to(self._root):
            raise GuideNotFoundError(guide_id)
        return path

    async def load(self, guide_id: str) -> str:
        path = self._resolve(guide_id)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to load guide %s: %s", guide_id, e)
            raise GuideNotFoundError(guide_id) from e
