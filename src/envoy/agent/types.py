"""Shared record types for the agent loop.

Action types, statuses and decisions are closed sets expressed as Literal
aliases; the tuple constants next to them are used for runtime validation.

Usage:
    from envoy.agent.types import AgentAction, ActionResponse, ACTION_TYPES

    if action_type not in ACTION_TYPES:
        raise ValueError(action_type)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, get_args

ActionType = Literal[
    "email.fetch",
    "email.send",
    "email.draft",
    "email.archive",
    "email.move",
    "email.markRead",
    "calendar.fetch",
    "calendar.create",
    "calendar.update",
    "calendar.delete",
    "reminder.create",
    "reminder.update",
    "reminder.list",
    "reminder.delete",
    "web.search",
    "web.fetch",
    "messaging.draft",
    "messaging.send",
    "location.weather_query",
]
ACTION_TYPES: tuple[str, ...] = get_args(ActionType)

RiskClass = Literal["read", "write", "execute", "communicate"]

# Action type -> (autonomy domain, risk class)
ACTION_POLICY: dict[str, tuple[str, RiskClass]] = {
    "email.fetch": ("email", "read"),
    "email.send": ("email", "communicate"),
    "email.draft": ("email", "write"),
    "email.archive": ("email", "write"),
    "email.move": ("email", "write"),
    "email.markRead": ("email", "write"),
    "calendar.fetch": ("calendar", "read"),
    "calendar.create": ("calendar", "execute"),
    "calendar.update": ("calendar", "execute"),
    "calendar.delete": ("calendar", "execute"),
    "reminder.create": ("reminders", "write"),
    "reminder.update": ("reminders", "write"),
    "reminder.list": ("reminders", "read"),
    "reminder.delete": ("reminders", "execute"),
    "web.search": ("web", "read"),
    "web.fetch": ("web", "read"),
    "messaging.draft": ("messaging", "write"),
    "messaging.send": ("messaging", "communicate"),
    "location.weather_query": ("location", "read"),
}


def domain_for_action(action_type: str) -> str:
    """Autonomy domain of an action; unknown types use their prefix before the dot."""
    policy = ACTION_POLICY.get(action_type)
    if policy is not None:
        return policy[0]
    return action_type.split(".", 1)[0]


ActionStatus = Literal["pending_approval", "executed", "failed", "rejected"]
Decision = Literal["auto_approve", "require_approval"]
Role = Literal["user", "assistant"]
ResponseStatus = Literal["success", "failure"]


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Prompt/completion token counts for one or more model calls."""

    prompt: int = 0
    completion: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt=self.prompt + other.prompt,
            completion=self.completion + other.completion,
        )

    @property
    def total(self) -> int:
        return self.prompt + self.completion

    def to_dict(self) -> dict[str, int]:
        return {"prompt": self.prompt, "completion": self.completion}


@dataclass(frozen=True, slots=True)
class ActionResponse:
    """Outcome reported by the action executor."""

    status: ResponseStatus
    data: dict[str, Any] | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "data": self.data, "error": self.error}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionResponse:
        status = "success" if data.get("status") == "success" else "failure"
        return cls(status=status, data=data.get("data"), error=data.get("error"))

    @classmethod
    def failure(cls, error: str) -> ActionResponse:
        return cls(status="failure", error=error)


@dataclass
class AgentAction:
    """An action the model asked for, with its autonomy outcome."""

    id: str
    action_type: str
    payload: dict[str, Any]
    reasoning: str
    domain: str
    tier: str
    status: ActionStatus
    created_at: datetime
    executed_at: datetime | None = None
    response: ActionResponse | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action_type": self.action_type,
            "payload": self.payload,
            "reasoning": self.reasoning,
            "domain": self.domain,
            "tier": self.tier,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "response": self.response.to_dict() if self.response else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentAction:
        executed_at = data.get("executed_at")
        response = data.get("response")
        return cls(
            id=data["id"],
            action_type=data["action_type"],
            payload=data.get("payload") or {},
            reasoning=data.get("reasoning", ""),
            domain=data.get("domain", ""),
            tier=data.get("tier", ""),
            status=data["status"],
            created_at=datetime.fromisoformat(data["created_at"]),
            executed_at=datetime.fromisoformat(executed_at) if executed_at else None,
            response=ActionResponse.from_dict(response) if response else None,
        )


@dataclass
class ConversationTurn:
    """One persisted message in a conversation. Immutable once written."""

    id: str
    conversation_id: str
    role: Role
    content: str
    timestamp: datetime
    context: list[dict[str, Any]] | None = None
    actions: list[AgentAction] = field(default_factory=list)
    tokens_used: TokenUsage | None = None
