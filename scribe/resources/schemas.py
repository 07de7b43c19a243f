"""Data shapes for fetchable resources (craft guides and context files)."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class GuideMetadata:
    """A guide in the catalog. ``guide_id`` is its path relative to the guides dir."""

    guide_id: str
    display_name: str
    category: str


@dataclass(frozen=True)
class ContextResourceSummary:
    """Catalog entry for a project resource."""

    resource_id: str
    group: str
    label: str
    origin: str | None = None  # Root folder the resource was found under


@dataclass(frozen=True)
class LoadedResource:
    """Content delivered to the model for one requested id."""

    resource_id: str
    content: str
    group: str
    origin: str | None = None
    failed: bool = False
