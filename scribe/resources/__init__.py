"""Fetchable material: craft guides and project context resources."""

from scribe.resources.context import FileContextResourceProvider
from scribe.resources.guides import GuideLoader, GuideRegistry
from scribe.resources.schemas import ContextResourceSummary, GuideMetadata, LoadedResource

__all__ = [
    "ContextResourceSummary",
    "FileContextResourceProvider",
    "GuideLoader",
    "GuideMetadata",
    "GuideRegistry",
    "LoadedResource",
]
