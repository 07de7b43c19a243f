"""Project context resources (character sheets, chapters, setting notes).

Resources are indexed from ``settings.context_root`` using per-group glob
patterns. Loading never fails as a whole: ids that are unknown or
unreadable are logged and left out of the result.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from scribe.config import Settings
from scribe.orchestration.parsers import display_name
from scribe.resources.schemas import ContextResourceSummary, LoadedResource

logger = logging.getLogger(__name__)


def _normalize_key(resource_id: str) -> str:
    return resource_id.strip().replace("\\", "/").removeprefix("./").lower()


@dataclass(frozen=True)
class _IndexedResource:
    summary: ContextResourceSummary
    path: Path


class FileContextResourceProvider:
    """Indexes and loads context resources from the filesystem."""

    def __init__(self, settings: Settings, groups: list[str] | None = None) -> None:
        self._root = Path(settings.context_root)
        patterns = settings.context_groups
        if groups is not None:
            patterns = {g: p for g, p in patterns.items() if g in groups}
        self._patterns = patterns
        self._index: dict[str, _IndexedResource] | None = None

    def refresh(self) -> None:
        """Rebuild the index on next access."""
        self._index = None

    def _build_index(self) -> dict[str, _IndexedResource]:
        index: dict[str, _IndexedResource] = {}
        origin = self._root.resolve().name or None
        for group, globs in self._patterns.items():
            for pattern in globs:
                for path in sorted(self._root.glob(pattern)):
                    if not path.is_file():
                        continue
                    resource_id = path.relative_to(self._root).as_posix()
                    key = _normalize_key(resource_id)
                    if key in index:
                        continue
                    index[key] = _IndexedResource(
                        summary=ContextResourceSummary(
                            resource_id=resource_id,
                            group=group,
                            label=display_name(path.name),
                            origin=origin,
                        ),
                        path=path,
                    )
        logger.info(
            "Indexed %d context resource(s) across %d group(s)",
            len(index),
            len(self._patterns),
        )
        return index

    def _entries(self) -> dict[str, _IndexedResource]:
        if self._index is None:
            self._index = self._build_index()
        return self._index

    def list_resources(self) -> list[ContextResourceSummary]:
        return [entry.summary for entry in self._entries().values()]

    async def load_many(self, resource_ids: list[str] | tuple[str, ...]) -> list[LoadedResource]:
        """Load the requested ids in order, omitting any that cannot be read."""
        entries = self._entries()
        loaded: list[LoadedResource] = []
        for resource_id in resource_ids:
            entry = entries.get(_normalize_key(resource_id))
            if entry is None:
                logger.info("Resource not found for request: %s", resource_id)
                continue
            try:
                content = await asyncio.to_thread(entry.path.read_text, encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Failed to read resource %s: %s", entry.summary.resource_id, e)
                continue
            loaded.append(LoadedResource(
                resource_id=entry.summary.resource_id,
                content=content,
                group=entry.summary.group,
                origin=entry.summary.origin,
            ))
        return loaded
