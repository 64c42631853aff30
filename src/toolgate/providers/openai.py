"""
OpenAI-compatible chat completion provider.

Works against any endpoint that speaks the OpenAI chat completions API. The
default configuration targets a local Ollama server (``/v1``), which accepts
any API key.

Usage:
    from toolgate.providers.openai import OpenAICompatibleProvider

    provider = OpenAICompatibleProvider(config.oracle)
    response = await provider.complete([Message(role="user", content="Hello")])
"""

from __future__ import annotations

import os
import re
from typing import TYPE_CHECKING, Protocol, cast

from toolgate.providers import (
    AuthenticationError,
    BaseLLMProvider,
    CompletionOptions,
    CompletionResponse,
    Message,
    ModelNotFoundError,
    ProviderError,
    RateLimitError,
    TokenUsage,
)

if TYPE_CHECKING:
    from toolgate.core.config import OracleConfig

# Local servers ignore the key but the client requires one.
_PLACEHOLDER_API_KEY = "ollama"

# Pattern to match potential API keys in error messages
_API_KEY_PATTERN = re.compile(
    r"""
    # OpenAI key pattern: sk-[base64 chars]
    sk-[A-Za-z0-9]{20,}|
    # Generic API key patterns that might appear in error messages
    (?:api[_-]?key|secret|token|password|credential)
    \s*[=:]\s*
    ['"]?[A-Za-z0-9_\-]{16,}['"]?
    """,
    re.IGNORECASE | re.VERBOSE,
)


def _redact_api_key(message: str, api_key: str | None) -> str:
    """Remove potential API keys from error messages to prevent leaking secrets."""
    if api_key and api_key in message:
        message = message.replace(api_key, "[REDACTED]")
    return _API_KEY_PATTERN.sub("[REDACTED]", message)


class _CompletionMessage(Protocol):
    content: str | None


class _CompletionChoice(Protocol):
    message: _CompletionMessage
    finish_reason: str | None


class _Usage(Protocol):
    prompt_tokens: int
    completion_tokens: int


class _CompletionResponse(Protocol):
    choices: list[_CompletionChoice]
    usage: _Usage | None
    model: str


class _CompletionsAPI(Protocol):
    async def create(self, **kwargs: object) -> object: ...


class _ChatAPI(Protocol):
    completions: _CompletionsAPI


class OpenAIClientProtocol(Protocol):
    chat: _ChatAPI


def _convert_messages(
    messages: list[Message], system_prompt: str | None
) -> list[dict[str, object]]:
    converted: list[dict[str, object]] = []
    if system_prompt:
        converted.append({"role": "system", "content": system_prompt})
    for msg in messages:
        converted.append({"role": msg.role, "content": msg.content})
    return converted


def _build_completion_params(
    model_id: str,
    messages: list[dict[str, object]],
    opts: CompletionOptions,
) -> dict[str, object]:
    params: dict[str, object] = {
        "model": model_id,
        "messages": messages,
    }
    if opts.max_tokens:
        params["max_tokens"] = opts.max_tokens
    if opts.temperature is not None:
        params["temperature"] = opts.temperature
    if opts.json_mode:
        params["response_format"] = {"type": "json_object"}
    return params


class OpenAICompatibleProvider(BaseLLMProvider):
    """Provider for OpenAI-compatible endpoints (Ollama, vLLM, OpenAI).

    The API key is read from the environment variable named in the oracle
    config; endpoints that do not need one get a placeholder.
    """

    def __init__(
        self,
        config: OracleConfig,
        *,
        client: OpenAIClientProtocol | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._api_key = os.environ.get(config.api_key_env) or None

    def _get_client(self) -> OpenAIClientProtocol:
        """Lazy-initialize the OpenAI client."""
        if self._client is not None:
            return self._client

        try:
            import openai
        except ImportError as exc:
            raise ProviderError(
                "openai package not installed. Install with: pip install openai"
            ) from exc

        client = openai.AsyncOpenAI(
            base_url=self._config.base_url,
            api_key=self._api_key or _PLACEHOLDER_API_KEY,
        )
        self._client = cast(OpenAIClientProtocol, client)
        return self._client

    @property
    def default_model(self) -> str:
        return self._config.model

    async def complete(
        self,
        messages: list[Message],
        model: str | None = None,
        options: CompletionOptions | None = None,
    ) -> CompletionResponse:
        """Send a non-streaming completion request."""
        client = self._get_client()
        opts = options or CompletionOptions()
        model_id = model or self.default_model
        params = _build_completion_params(
            model_id, _convert_messages(messages, opts.system_prompt), opts
        )

        try:
            response_obj = await client.chat.completions.create(**params)
        except Exception as exc:
            self._handle_api_error(exc)
            raise AssertionError("unreachable")

        response = cast(_CompletionResponse, response_obj)
        choice = response.choices[0] if response.choices else None
        usage = None
        if response.usage:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
            )

        return CompletionResponse(
            content=(choice.message.content or "") if choice else "",
            model=response.model,
            finish_reason=choice.finish_reason if choice else None,
            usage=usage,
            raw_response=response,
        )

    def _handle_api_error(self, exc: Exception) -> None:
        """Convert OpenAI exceptions to our error types.

        All error messages are redacted to prevent API key leakage.
        """
        safe_msg = _redact_api_key(str(exc), self._api_key)

        try:
            import openai
        except ImportError:
            raise ProviderError(safe_msg) from exc

        if isinstance(exc, openai.AuthenticationError):
            raise AuthenticationError(safe_msg) from exc
        if isinstance(exc, openai.RateLimitError):
            raise RateLimitError(safe_msg) from exc
        if isinstance(exc, openai.NotFoundError):
            raise ModelNotFoundError(safe_msg) from exc
        raise ProviderError(safe_msg) from exc


__all__ = ["OpenAICompatibleProvider", "OpenAIClientProtocol"]
