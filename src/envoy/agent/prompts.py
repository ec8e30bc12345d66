"""Prompt construction for the agent loop.

Builds the message list sent to the model: system prompt, retrieved
knowledge context, recent conversation history and the new user message.
Also formats the synthetic follow-up turn that feeds tool results back.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from envoy.agent.collaborators import SearchResult
    from envoy.agent.types import ConversationTurn


# ---------------------------------------------------------------------------
# System prompt template
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You are {assistant_name}, the user's personal assistant. You have access to
their files, documents, emails, calendar and reminders through tools.

Core principles:
- Be helpful, warm, proactive and concise
- Search the user's knowledge base and indexed emails before asking them
- When taking actions (sending emails, creating events), say what you plan
  to do and why
- Be transparent about what data you access and which actions you take
- Some actions need the user's approval first; when an action is queued,
  tell the user it is waiting for them

Available tools:
{tool_summary}

Use tools when the request involves the user's data or an external action.
Respond conversationally when the user just wants to chat."""

_VOICE_MODE_CONTEXT = """\
The user is in voice conversation mode. Keep responses short and
conversational, they will be spoken aloud. Avoid lists, code blocks and
complex formatting."""


def build_system_prompt(
    assistant_name: str,
    tools: list[dict[str, Any]],
    voice_mode: bool = False,
) -> str:
    tool_summary = "\n".join(f"- {t['name']}: {t['description']}" for t in tools)
    prompt = _SYSTEM_PROMPT.format(assistant_name=assistant_name, tool_summary=tool_summary)
    if voice_mode:
        prompt = f"{prompt}\n\n{_VOICE_MODE_CONTEXT}"
    return prompt


def build_context_block(context: list[SearchResult], max_chars: int = 500) -> str | None:
    """Format retrieved snippets as "[i] title (source): content", or None if empty."""
    if not context:
        return None
    entries = [
        f"[{i}] {r.title} ({r.source}): {r.content[:max_chars]}"
        for i, r in enumerate(context, start=1)
    ]
    return "Relevant context from the user's knowledge base:\n" + "\n\n".join(entries)


def build_messages(
    *,
    system_prompt: str,
    message: str,
    context: list[SearchResult],
    history: list[ConversationTurn],
    history_turns: int = 10,
    context_chars: int = 500,
) -> list[dict[str, Any]]:
    """Assemble the model input for one user message."""
    messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]

    context_block = build_context_block(context, context_chars)
    if context_block:
        messages.append({"role": "system", "content": context_block})

    recent = history[-history_turns:] if history_turns > 0 else []
    messages.extend({"role": turn.role, "content": turn.content} for turn in recent)

    messages.append({"role": "user", "content": message})
    return messages


def format_tool_results(results: list[tuple[str, Any]]) -> str:
    """Synthetic user turn that hands tool outputs back to the model."""
    lines = [f"{tool}: {json.dumps(result, default=str)}" for tool, result in results]
    return "Tool results:\n" + "\n".join(lines)


def pending_approval_note(count: int) -> str:
    if count <= 0:
        return ""
    return f"\n\n[{count} action(s) awaiting your approval]"
