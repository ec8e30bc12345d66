"""Interfaces of the services the agent loop depends on.

The orchestrator and refiner only talk to these protocols. Concrete
implementations live in envoy.llm (model backend) and envoy.gateway
(action execution and knowledge search); tests use AsyncMock stand-ins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from envoy.agent.types import ActionResponse, TokenUsage

if TYPE_CHECKING:
    from envoy.style.profile import StyleProfile


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation requested by the model."""

    name: str
    arguments: dict[str, Any]
    id: str | None = None


@dataclass(frozen=True, slots=True)
class ChatResult:
    """A single model reply."""

    message: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tokens_used: TokenUsage = field(default_factory=TokenUsage)


@dataclass(frozen=True, slots=True)
class SearchResult:
    """A knowledge-graph hit: the parent document plus the matching chunk."""

    document: dict[str, Any]
    chunk: dict[str, Any]
    score: float = 0.0

    @property
    def title(self) -> str:
        return str(self.document.get("title") or "Untitled")

    @property
    def source(self) -> str:
        return str(self.document.get("source") or "unknown")

    @property
    def content(self) -> str:
        return str(self.chunk.get("content") or "")


class ModelProvider(Protocol):
    async def chat(
        self,
        *,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.7,
    ) -> ChatResult:
        """Send messages to the model. Raises ModelError on failure."""
        ...


class KnowledgeSearch(Protocol):
    async def search(
        self,
        query: str,
        limit: int = 10,
        source: str | None = None,
    ) -> list[SearchResult]: ...


class ActionExecutor(Protocol):
    async def send_action(self, action_type: str, payload: dict[str, Any]) -> ActionResponse: ...


class StyleProfileSource(Protocol):
    async def get_active_profile(self) -> StyleProfile | None: ...
