"""Language-model service used by the Error Feedback Loop's generative repair.

Provider-agnostic: the feedback loop calls ``complete(prompt, system)`` and
gets text back, whichever provider is configured. The service is optional;
with REASONING_ENGINE unset (or "none") no engine is created and the
generative strategy is skipped.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("workflow_reliability.reasoning")

_MAX_TOKENS = 4096


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------


class LanguageModelService(ABC):
    """Abstract base class for any LLM provider."""

    @abstractmethod
    async def complete(self, prompt: str, system: str | None = None) -> str:
        """Send one prompt and return the reply text ("" when the model returns none)."""
        ...

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Provider/model string for logging, e.g. 'anthropic/claude-sonnet-4-6'."""
        ...


# ---------------------------------------------------------------------------
# Claude (Anthropic)
# ---------------------------------------------------------------------------


class ClaudeEngine(LanguageModelService):
    """Requires: pip install 'workflow-reliability[claude]'"""

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-6", temperature: float = 0.2) -> None:
        try:
            import anthropic as _anthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for ClaudeEngine. "
                "Install it with: pip install 'workflow-reliability[claude]'"
            )
        if not api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY is required for ClaudeEngine. "
                "Set it in your environment or .env file."
            )
        self._client = _anthropic.AsyncAnthropic(api_key=api_key)
        self._model = model
        self._temperature = temperature
        logger.info("ClaudeEngine initialized: %s", model)

    @property
    def model_id(self) -> str:
        return f"anthropic/{self._model}"

    async def complete(self, prompt: str, system: str | None = None) -> str:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": _MAX_TOKENS,
            "temperature": self._temperature,
        }
        if system:
            kwargs["system"] = system
        logger.info("ClaudeEngine.complete: ~%d prompt chars", len(prompt))
        response = await self._client.messages.create(**kwargs)
        return "".join(block.text for block in response.content if block.type == "text")


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------


class OpenAIEngine(LanguageModelService):
    """Requires: pip install 'workflow-reliability[openai]'"""

    def __init__(self, api_key: str, model: str = "gpt-4o", temperature: float = 0.2) -> None:
        try:
            import openai as _openai
        except ImportError:
            raise ImportError(
                "The 'openai' package is required for OpenAIEngine. "
                "Install it with: pip install 'workflow-reliability[openai]'"
            )
        if not api_key:
            raise ValueError(
                "OPENAI_API_KEY is required for OpenAIEngine. "
                "Set it in your environment or .env file."
            )
        self._client = _openai.AsyncOpenAI(api_key=api_key)
        self._model = model
        self._temperature = temperature
        logger.info("OpenAIEngine initialized: %s", model)

    @property
    def model_id(self) -> str:
        return f"openai/{self._model}"

    async def complete(self, prompt: str, system: str | None = None) -> str:
        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        logger.debug("OpenAIEngine.complete: ~%d prompt chars", len(prompt))
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=messages,
            temperature=self._temperature,
        )
        return response.choices[0].message.content or ""


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class ReasoningSettings(BaseSettings):
    """Settings for the optional language-model service.

    Environment variables:
      REASONING_ENGINE      — "none" | "claude" | "openai" (default: "none")
      REASONING_MODEL       — Model name override; leave unset for provider default
      ANTHROPIC_API_KEY     — Required when provider is "claude"
      OPENAI_API_KEY        — Required when provider is "openai"
      REASONING_TEMPERATURE — Sampling temperature 0.0–1.0 (default: 0.2)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    provider: str = Field(default="none", validation_alias="REASONING_ENGINE")
    model: str | None = Field(default=None, validation_alias="REASONING_MODEL")
    anthropic_api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="ANTHROPIC_API_KEY",
        repr=False,
    )
    openai_api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="OPENAI_API_KEY",
        repr=False,
    )
    temperature: float = Field(default=0.2, validation_alias="REASONING_TEMPERATURE")

    @field_validator("provider", mode="before")
    @classmethod
    def lowercase_provider(cls, v: object) -> str:
        return str(v or "none").lower()

    @field_validator("model", mode="before")
    @classmethod
    def empty_str_to_none(cls, v: object) -> str | None:
        """Treat empty string REASONING_MODEL as unset (use provider default)."""
        if not v:
            return None
        return str(v)

    @field_validator("temperature")
    @classmethod
    def clamp_temperature(cls, v: float) -> float:
        return max(0.0, min(1.0, v))

    @classmethod
    def from_env(cls) -> ReasoningSettings:
        return cls()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_engine(settings: ReasoningSettings) -> LanguageModelService | None:
    """Instantiate the configured engine, or None when the service is disabled."""
    match settings.provider:
        case "none" | "disabled" | "off":
            return None
        case "claude" | "anthropic":
            return ClaudeEngine(
                api_key=settings.anthropic_api_key.get_secret_value(),
                model=settings.model or "claude-sonnet-4-6",
                temperature=settings.temperature,
            )
        case "openai" | "gpt":
            return OpenAIEngine(
                api_key=settings.openai_api_key.get_secret_value(),
                model=settings.model or "gpt-4o",
                temperature=settings.temperature,
            )
        case _:
            raise ValueError(
                f"Unknown reasoning engine provider: {settings.provider!r}. "
                f"Valid options: 'none', 'claude', 'openai'"
            )
