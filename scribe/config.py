"""Settings via pydantic-settings with SCRIBE_ env prefix.

The provider key reads from the unprefixed OPENROUTER_API_KEY so the same
.env file works for other OpenRouter tooling.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONTEXT_GROUPS: dict[str, list[str]] = {
    "characters": ["characters/**/*.md"],
    "locations": ["locations/**/*.md"],
    "themes": ["themes/**/*.md"],
    "things": ["things/**/*.md"],
    "chapters": ["chapters/**/*.md"],
    "manuscript": ["manuscript/**/*.md"],
    "projectBrief": ["brief/**/*.md"],
    "general": ["notes/**/*.md"],
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SCRIBE_", env_file=".env")

    log_level: str = "info"

    # LLM provider
    openrouter_api_key: str = Field("", validation_alias="OPENROUTER_API_KEY")
    model: str = "z-ai/glm-4.6"
    api_base_url: str = "https://openrouter.ai/api/v1"
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 120  # seconds
    app_referer: str = "https://github.com/scribe-tools/scribe"
    app_title: str = "Scribe"
    temperature: float = 0.7
    max_tokens: int = 10000

    # Orchestration
    max_turns: int = 3  # Request/fulfill round-trips per call, initial call included
    guide_word_budget: int = 50000
    context_word_budget: int = 50000
    apply_context_window_trimming: bool = True
    request_timeout_ms: int | None = None

    # Conversation store reaper
    session_max_age: float = 300.0  # seconds of inactivity before a leaked session is reaped
    session_sweep_interval: float = 300.0

    # Resources
    guides_dir: str = "resources/craft-guides"
    guide_cache_ttl: float = 60.0
    context_root: str = "."
    context_groups: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_CONTEXT_GROUPS.items()}
    )

    # Runtime
    host: str = "0.0.0.0"
    port: int = 8000

    @model_validator(mode="after")
    def _validate_limits(self) -> "Settings":
        if self.max_turns < 1:
            raise ValueError("max_turns must be >= 1")
        if self.guide_word_budget < 1 or self.context_word_budget < 1:
            raise ValueError("word budgets must be positive")
        if self.request_timeout_ms is not None and self.request_timeout_ms <= 0:
            raise ValueError("request_timeout_ms must be positive when set")
        return self
