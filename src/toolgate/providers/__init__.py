"""
LLM provider abstraction for toolgate.

Discovery needs exactly one thing from a language model: a single blocking,
non-streaming completion for a system prompt plus one user message. This
module defines that surface so the oracle does not depend on a specific
backend.

Usage:
    from toolgate.providers import Message, CompletionOptions
    from toolgate.providers.openai import OpenAICompatibleProvider

    provider = OpenAICompatibleProvider(config.oracle)
    response = await provider.complete(
        messages=[Message(role="user", content="Hello")],
        options=CompletionOptions(system_prompt="Answer with JSON."),
    )
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class Message:
    """A message in the conversation history."""

    role: str  # "user", "assistant", "system"
    content: str


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token usage for a completion request."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int | None = None

    def __post_init__(self) -> None:
        if self.total_tokens is None:
            object.__setattr__(
                self, "total_tokens", self.prompt_tokens + self.completion_tokens
            )


@dataclass(slots=True)
class CompletionResponse:
    """Response from an LLM completion request."""

    content: str
    model: str
    finish_reason: str | None = None
    usage: TokenUsage | None = None
    raw_response: Any = None  # Provider-specific response object


@dataclass(frozen=True, slots=True)
class CompletionOptions:
    """Options for completion requests.

    Each provider maps these onto its own request parameters.
    """

    temperature: float | None = None
    max_tokens: int | None = None
    json_mode: bool = False  # Request JSON output
    system_prompt: str | None = None


class ProviderError(Exception):
    """Base exception for provider errors."""


class AuthenticationError(ProviderError):
    """Raised when authentication fails."""


class RateLimitError(ProviderError):
    """Raised when rate limit is exceeded."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ModelNotFoundError(ProviderError):
    """Raised when the requested model is not available."""


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol for chat completion backends."""

    @property
    def default_model(self) -> str:
        """Return the default model ID for this provider."""
        ...

    async def complete(
        self,
        messages: list[Message],
        model: str | None = None,
        options: CompletionOptions | None = None,
    ) -> CompletionResponse:
        """Send a completion request and return the full response.

        Raises:
            ProviderError: On API errors
        """
        ...


class BaseLLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Return the default model ID."""
        ...

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        model: str | None = None,
        options: CompletionOptions | None = None,
    ) -> CompletionResponse:
        """Send a completion request."""
        ...


__all__ = [
    "AuthenticationError",
    "BaseLLMProvider",
    "CompletionOptions",
    "CompletionResponse",
    "LLMProvider",
    "Message",
    "ModelNotFoundError",
    "ProviderError",
    "RateLimitError",
    "TokenUsage",
]
