"""Model provider backed by the Anthropic Messages API.

Adapts the provider-neutral chat interface used by the agent loop:
- "system" messages are folded into the `system` parameter
- empty messages are dropped and consecutive same-role messages merged,
  since the API requires alternating user/assistant turns
- tool_use blocks become ToolCall records, text blocks are concatenated

Transient errors (429, 5xx, network) are retried by the SDK (max_retries);
whatever is left is raised as ModelError.

Usage:
    provider = AnthropicModelProvider.from_config(config.anthropic)
    result = await provider.chat(model="claude-sonnet-4-5", messages=messages)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import anthropic

from envoy.agent.collaborators import ChatResult, ToolCall
from envoy.agent.types import TokenUsage
from envoy.core.errors import ModelError
from envoy.core.logging import get_logger

if TYPE_CHECKING:
    from envoy.config_schema import AnthropicConfig

logger = get_logger(__name__)


def split_system_messages(
    messages: list[dict[str, Any]],
) -> tuple[str, list[dict[str, Any]]]:
    """Separate system content from the conversational turns."""
    system_parts: list[str] = []
    turns: list[dict[str, Any]] = []

    for message in messages:
        content = message.get("content") or ""
        if not content.strip():
            continue
        if message["role"] == "system":
            system_parts.append(content)
            continue
        if turns and turns[-1]["role"] == message["role"]:
            turns[-1] = {"role": message["role"], "content": f"{turns[-1]['content']}\n\n{content}"}
        else:
            turns.append({"role": message["role"], "content": content})

    return "\n\n".join(system_parts), turns


def _extract_text(response: anthropic.types.Message) -> str:
    """Concatenate all text blocks of a response."""
    return "".join(block.text for block in response.content if block.type == "text")


def _extract_tool_calls(response: anthropic.types.Message) -> list[ToolCall]:
    return [
        ToolCall(name=block.name, arguments=dict(block.input or {}), id=block.id)
        for block in response.content
        if block.type == "tool_use"
    ]


class AnthropicModelProvider:
    """ModelProvider implementation over anthropic.AsyncAnthropic."""

    def __init__(self, client: anthropic.AsyncAnthropic, max_tokens: int = 2048) -> None:
        self._client = client
        self._max_tokens = max_tokens

    @classmethod
    def from_config(cls, config: AnthropicConfig) -> AnthropicModelProvider:
        """Build a provider; the API key comes from ANTHROPIC_API_KEY."""
        client = anthropic.AsyncAnthropic(
            max_retries=config.max_retries,
            timeout=config.timeout_seconds,
        )
        return cls(client, max_tokens=config.max_tokens)

    async def chat(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.7,
    ) -> ChatResult:
        system, turns = split_system_messages(messages)
        if not turns:
            raise ModelError("No user or assistant content to send", model=model)

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": turns,
            "max_tokens": self._max_tokens,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = {"type": "auto"}

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.RateLimitError as e:
            logger.error("model_rate_limited", model=model, error=str(e))
            raise ModelError(
                "The model service is temporarily busy", status_code=429, model=model
            ) from e
        except anthropic.APIConnectionError as e:
            logger.error("model_connection_error", model=model, error=str(e))
            raise ModelError("Could not connect to the model service", model=model) from e
        except anthropic.APIStatusError as e:
            logger.error("model_api_error", model=model, status_code=e.status_code, error=str(e))
            raise ModelError(
                f"Model service error (status {e.status_code})",
                status_code=e.status_code,
                model=model,
            ) from e
        except anthropic.APIError as e:
            logger.error("model_unexpected_error", model=model, error=str(e))
            raise ModelError(f"Model service error: {e}", model=model) from e

        tokens = TokenUsage(
            prompt=response.usage.input_tokens,
            completion=response.usage.output_tokens,
        )
        tool_calls = _extract_tool_calls(response)

        logger.debug(
            "model_call_complete",
            model=model,
            stop_reason=response.stop_reason,
            tool_calls=len(tool_calls),
            input_tokens=tokens.prompt,
            output_tokens=tokens.completion,
        )

        return ChatResult(message=_extract_text(response), tool_calls=tool_calls, tokens_used=tokens)
