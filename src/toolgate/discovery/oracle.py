"""Reasoning oracle consumed by the discovery loop.

The oracle answers one question per call: given a system prompt and a user
message, return the raw response text. ``ProviderOracle`` adapts any
``LLMProvider`` to that shape.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from toolgate.core.config import OracleConfig
from toolgate.core.result import OracleFailure
from toolgate.providers import CompletionOptions, LLMProvider, Message, ProviderError


@runtime_checkable
class Oracle(Protocol):
    async def ask(self, system_prompt: str, user_message: str) -> str:
        """Return the raw response text.

        Raises:
            OracleFailure: When the backing model cannot answer.
        """
        ...


class ProviderOracle:
    """Oracle backed by a chat completion provider.

    Each call is a single non-streaming completion with JSON mode requested
    and low temperature, since the loop only understands JSON records.
    """

    def __init__(self, provider: LLMProvider, model: str | None = None) -> None:
        self.provider = provider
        self.model = model

    async def ask(self, system_prompt: str, user_message: str) -> str:
        options = CompletionOptions(temperature=0.1, json_mode=True, system_prompt=system_prompt)
        try:
            response = await self.provider.complete(
                [Message(role="user", content=user_message)],
                model=self.model,
                options=options,
            )
        except ProviderError as exc:
            raise OracleFailure(f"LLM call failed: {exc}") from exc
        except (AttributeError, IndexError, TypeError) as exc:
            # Malformed completion payload from an OpenAI-compatible server.
            raise OracleFailure(f"LLM call failed: malformed response: {exc}") from exc
        return response.content


def build_oracle(config: OracleConfig) -> Oracle | None:
    """Create the configured oracle, or None when it is disabled."""
    if not config.enabled:
        return None
    from toolgate.providers.openai import OpenAICompatibleProvider

    return ProviderOracle(OpenAICompatibleProvider(config), model=config.model)


__all__ = ["Oracle", "ProviderOracle", "build_oracle"]
