"""Pipeline configuration.

Centralised, typed configuration for the generation pipeline.  All settings
use Pydantic v2 models so they can be validated at construction time and
serialised to/from JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from .errors import ConfigurationError
from .ledger import DEFAULT_PRICING
from .retry import RetryPolicy

STAGES: tuple[str, ...] = ("intent", "architecture", "code", "context")

HAIKU = "claude-3-haiku-20240307"
SONNET = "claude-sonnet-4-20250514"

# Stage -> model per tier.  Haiku is cheap but drifts from the schema more
# often; Sonnet is reliable but costs roughly twelve times as much.
MODEL_TIERS: dict[str, dict[str, str]] = {
    "fast": {"intent": HAIKU, "architecture": HAIKU, "code": HAIKU, "context": HAIKU},
    "balanced": {"intent": HAIKU, "architecture": HAIKU, "code": SONNET, "context": HAIKU},
    "quality": {"intent": SONNET, "architecture": SONNET, "code": SONNET, "context": SONNET},
}

DEFAULT_MODEL_TIER = "balanced"


class ProviderConfig(BaseModel):
    """Connection settings for the Anthropic Messages API."""

    api_key: Optional[str] = Field(default=None, repr=False)
    base_url: str = Field(default="https://api.anthropic.com")
    api_version: str = Field(default="2023-06-01")
    timeout: float = Field(default=120.0, gt=0, description="Per-call deadline in seconds")
    stream_timeout: float = Field(
        default=300.0, gt=0, description="Per-call deadline for streamed calls in seconds"
    )

    def require_api_key(self, stage: str | None = None) -> str:
        """Return the API key or raise :class:`ConfigurationError`."""
        if not self.api_key:
            raise ConfigurationError(
                "ANTHROPIC_API_KEY environment variable is not set",
                code="missing_api_key",
                stage=stage,
            )
        return self.api_key


class RetryConfig(BaseModel):
    """Retry budgets for provider calls."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=10.0, ge=0)
    streaming_max_attempts: int = Field(default=2, ge=1)

    def policy(self, streaming: bool = False) -> RetryPolicy:
        """Return the :class:`RetryPolicy` for a call site."""
        if streaming:
            return RetryPolicy(
                max_attempts=self.streaming_max_attempts,
                base_delay=self.base_delay / 2,
                max_delay=self.max_delay / 2,
            )
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )


class BatchConfig(BaseModel):
    """Chunking knobs for the code stage."""

    max_files_per_batch: int = Field(default=5, ge=1)
    small_project_max_files: int = Field(
        default=6, ge=1, description="Estimates at or below this use a single batch"
    )


class StageLimits(BaseModel):
    """Max output tokens per stage."""

    intent: int = Field(default=2048, ge=1)
    architecture: int = Field(default=4096, ge=1)
    code: int = Field(default=4096, ge=1)
    context: int = Field(default=4096, ge=1)


class Config(BaseModel):
    """Global pipeline configuration.

    Instances are created once by the caller (or by :meth:`from_env`) and
    handed to every run.  A ``Config`` holds no per-run state.
    """

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    max_tokens: StageLimits = Field(default_factory=StageLimits)
    model_tier: str = Field(default=DEFAULT_MODEL_TIER)
    model_tiers: dict[str, dict[str, str]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in MODEL_TIERS.items()}
    )
    pricing: dict[str, tuple[float, float]] = Field(
        default_factory=lambda: dict(DEFAULT_PRICING),
        description="USD per 1M tokens: (input, output)",
    )
    temperature: float = Field(default=0.0, ge=0.0, le=1.0)
    prompts_dir: Optional[Path] = Field(default=None)
    templates_file: Optional[Path] = Field(default=None)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def models_for(self, tier: str | None = None) -> dict[str, str]:
        """Return the stage -> model mapping for *tier* (default: ``model_tier``).

        Raises:
            ConfigurationError: If the tier is unknown or lacks a stage.
        """
        name = tier or self.model_tier
        models = self.model_tiers.get(name)
        if models is None:
            raise ConfigurationError(
                f"Unknown model tier '{name}'. Known tiers: {', '.join(self.model_tiers)}"
            )
        missing = [s for s in STAGES if s not in models]
        if missing:
            raise ConfigurationError(
                f"Model tier '{name}' has no model for: {', '.join(missing)}"
            )
        return models

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration (without the API key) to a JSON file."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump_json(indent=2, exclude={"provider": {"api_key"}})
        target.write_text(data, encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            ANTHROPIC_API_KEY, AI_AGENT_BASE_URL, AI_AGENT_MODEL_TIER,
            AI_AGENT_TIMEOUT, AI_AGENT_MAX_ATTEMPTS,
            AI_AGENT_MAX_FILES_PER_BATCH, AI_AGENT_PROMPTS_DIR,
            AI_AGENT_TEMPLATES_FILE.
        """
        provider_kwargs: dict[str, Any] = {}
        if os.environ.get("ANTHROPIC_API_KEY"):
            provider_kwargs["api_key"] = os.environ["ANTHROPIC_API_KEY"]
        if os.environ.get("AI_AGENT_BASE_URL"):
            provider_kwargs["base_url"] = os.environ["AI_AGENT_BASE_URL"]
        if os.environ.get("AI_AGENT_TIMEOUT"):
            provider_kwargs["timeout"] = float(os.environ["AI_AGENT_TIMEOUT"])

        retry_kwargs: dict[str, Any] = {}
        if os.environ.get("AI_AGENT_MAX_ATTEMPTS"):
            retry_kwargs["max_attempts"] = int(os.environ["AI_AGENT_MAX_ATTEMPTS"])

        batch_kwargs: dict[str, Any] = {}
        if os.environ.get("AI_AGENT_MAX_FILES_PER_BATCH"):
            batch_kwargs["max_files_per_batch"] = int(os.environ["AI_AGENT_MAX_FILES_PER_BATCH"])

        kwargs: dict[str, Any] = {}
        if os.environ.get("AI_AGENT_PROMPTS_DIR"):
            kwargs["prompts_dir"] = Path(os.environ["AI_AGENT_PROMPTS_DIR"])
        if os.environ.get("AI_AGENT_TEMPLATES_FILE"):
            kwargs["templates_file"] = Path(os.environ["AI_AGENT_TEMPLATES_FILE"])

        return cls(
            provider=ProviderConfig(**provider_kwargs),
            retry=RetryConfig(**retry_kwargs),
            batch=BatchConfig(**batch_kwargs),
            model_tier=os.environ.get("AI_AGENT_MODEL_TIER", DEFAULT_MODEL_TIER),
            **kwargs,
        )
