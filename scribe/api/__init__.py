"""Model provider client and the HTTP surface."""

from scribe.api.client import OpenRouterClient
from scribe.api.rest import create_app

__all__ = ["OpenRouterClient", "create_app"]
