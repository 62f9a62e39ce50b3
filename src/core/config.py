"""Service configuration read from the environment."""

import os

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic_ai.models import KnownModelName


def _env_secret(name: str) -> SecretStr | None:
    """Get environment variable as SecretStr, returning None if empty or unset."""
    v = os.getenv(name)
    if v is None or not v.strip():
        return None
    return SecretStr(v.strip())


def _env_flag(name: str, default: bool = False) -> bool:
    """Parse a boolean flag; "1" and any casing of "true" count as set."""
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true"}


def _env_float_default(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_int_default(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return int(v)
    except ValueError:
        return default


class ServiceConfig(BaseModel):
    """Process-wide settings for the research service."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True, extra="forbid")

    openai_api_key: SecretStr | None = Field(
        default_factory=lambda: _env_secret("OPENAI_API_KEY"),
        description="Key used by the embedding backend and text-generation agents",
    )
    default_model: KnownModelName | str = Field(
        default_factory=lambda: os.getenv("RESEARCH_DEFAULT_MODEL", "openai:gpt-4o-mini"),
        description="LLM used for synthesis and subtopic proposals",
    )
    embedding_model: str = Field(
        default_factory=lambda: os.getenv("RESEARCH_EMBEDDING_MODEL", "text-embedding-3-small"),
        description="Embedding model name",
    )
    max_concurrent_runs: int = Field(
        default_factory=lambda: _env_int_default("RESEARCH_MAX_CONCURRENT_RUNS", 3),
        ge=1,
        le=100,
        description="Research runs allowed to execute at once; the rest wait FIFO",
    )
    heartbeat_seconds: float = Field(
        default_factory=lambda: _env_float_default("RESEARCH_HEARTBEAT_SECONDS", 30.0),
        gt=0,
        description="Interval between heartbeat events on each stream",
    )
    embedding_cache_ttl_seconds: int = Field(
        default_factory=lambda: _env_int_default("RESEARCH_EMBEDDING_CACHE_TTL_SECONDS", 86400),
        ge=1,
        description="Lifetime of a cached embedding",
    )
    embedding_cache_max_entries: int = Field(
        default_factory=lambda: _env_int_default("RESEARCH_EMBEDDING_CACHE_MAX_ENTRIES", 10000),
        ge=1,
        description="Entries kept before LRU eviction",
    )
    searxng_url: str | None = Field(
        default_factory=lambda: os.getenv("SEARXNG_URL") or None,
        description="Base URL of the SearxNG instance the research agents query",
    )
    search_timeout_seconds: float = Field(
        default_factory=lambda: _env_float_default("RESEARCH_SEARCH_TIMEOUT_SECONDS", 20.0),
        gt=0,
        description="HTTP timeout for one search backend request",
    )
    enable_synthesis: bool = Field(
        default_factory=lambda: _env_flag("RESEARCH_ENABLE_SYNTHESIS", False),
        description="Run the LLM synthesizer on every completed node",
    )

    @property
    def openai_key(self) -> str | None:
        return self.openai_api_key.get_secret_value() if self.openai_api_key else None


# Global configuration instance
config = ServiceConfig()
