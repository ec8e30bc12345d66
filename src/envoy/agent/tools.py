"""Tool catalog and routing for the agent loop.

Every tool the model can call is described once (Anthropic tool format) and
routed through TOOL_ROUTES:

- LocalTool: answered in-process from the knowledge index (search, conflict
  checks, categorization); always runs, no approval involved
- GatedTool: maps to an action type, goes through the autonomy decision and
  is executed by the action executor or queued for approval

Local tool errors are caught and returned as {"error": ...} results so the
model can relay them instead of failing the whole message.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from envoy.core.logging import get_logger

if TYPE_CHECKING:
    from envoy.agent.collaborators import KnowledgeSearch

logger = get_logger(__name__)

LocalHandler = Callable[[dict[str, Any], "KnowledgeSearch"], Awaitable[Any]]


# ---------------------------------------------------------------------------
# Tool schemas (Anthropic API format)
# ---------------------------------------------------------------------------

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

AGENT_TOOLS: list[dict[str, Any]] = [
    {
        "name": "search_files",
        "description": "Search the user's local files and documents for relevant information.",
        "input_schema": {
            "type": "object",
            "properties": {"query": {"type": "string", "description": "The search query"}},
            "required": ["query"],
        },
    },
    {
        "name": "fetch_inbox",
        "description": (
            "Fetch recent emails from the user's inbox with sender, subject, date and priority."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "limit": {"type": "integer", "description": "Max messages (default 20)"},
                "unreadOnly": {"type": "boolean", "description": "Only unread messages"},
                "folder": {"type": "string", "description": "Mail folder (default INBOX)"},
            },
        },
    },
    {
        "name": "search_emails",
        "description": "Search the user's indexed emails by keyword, sender or meaning.",
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Natural language or keyword query"},
                "from": {"type": "string", "description": "Filter by sender email or name"},
                "dateAfter": {"type": "string", "description": "ISO date lower bound"},
                "dateBefore": {"type": "string", "description": "ISO date upper bound"},
            },
            "required": ["query"],
        },
    },
    {
        "name": "send_email",
        "description": (
            "Send an email on the user's behalf. Depending on the user's autonomy settings "
            "this either sends immediately or waits for their approval."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "to": {**_STRING_LIST, "description": "Recipient email addresses"},
                "cc": {**_STRING_LIST, "description": "CC recipients"},
                "subject": {"type": "string"},
                "body": {"type": "string", "description": "Email body (plain text)"},
                "replyToMessageId": {
                    "type": "string",
                    "description": "Message-ID being replied to (for threading)",
                },
            },
            "required": ["to", "subject", "body"],
        },
    },
    {
        "name": "draft_email",
        "description": "Save an email draft without sending it.",
        "input_schema": {
            "type": "object",
            "properties": {
                "to": _STRING_LIST,
                "cc": _STRING_LIST,
                "subject": {"type": "string"},
                "body": {"type": "string"},
                "replyToMessageId": {"type": "string"},
            },
            "required": ["to", "subject", "body"],
        },
    },
    {
        "name": "archive_email",
        "description": "Archive one or more emails (move them out of the inbox).",
        "input_schema": {
            "type": "object",
            "properties": {
                "messageIds": {**_STRING_LIST, "description": "Message IDs to archive"},
            },
            "required": ["messageIds"],
        },
    },
    {
        "name": "categorize_email",
        "description": "Record categories and a priority for an email. Informational only.",
        "input_schema": {
            "type": "object",
            "properties": {
                "messageId": {"type": "string"},
                "categories": {**_STRING_LIST, "description": "Category labels"},
                "priority": {"type": "string", "enum": ["high", "normal", "low"]},
            },
            "required": ["messageId", "categories", "priority"],
        },
    },
    {
        "name": "fetch_calendar",
        "description": "Fetch upcoming calendar events.",
        "input_schema": {
            "type": "object",
            "properties": {
                "daysAhead": {"type": "integer", "description": "Days ahead (default 7)"},
                "includeAllDay": {"type": "boolean", "description": "Include all-day events"},
            },
        },
    },
    {
        "name": "create_calendar_event",
        "description": "Create a calendar event. Check for conflicts first.",
        "input_schema": {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "startTime": {"type": "string", "description": "ISO 8601 start time"},
                "endTime": {"type": "string", "description": "ISO 8601 end time"},
                "description": {"type": "string"},
                "location": {"type": "string"},
                "attendees": {**_STRING_LIST, "description": "Attendee email addresses"},
            },
            "required": ["title", "startTime", "endTime"],
        },
    },
    {
        "name": "detect_calendar_conflicts",
        "description": "Check a time range for conflicting calendar events.",
        "input_schema": {
            "type": "object",
            "properties": {
                "startTime": {"type": "string"},
                "endTime": {"type": "string"},
            },
            "required": ["startTime", "endTime"],
        },
    },
    {
        "name": "create_reminder",
        "description": "Create a reminder from natural language or structured input.",
        "input_schema": {
            "type": "object",
            "properties": {
                "text": {"type": "string", "description": "What to be reminded about"},
                "dueAt": {"type": "string", "description": "ISO 8601 due date/time"},
                "recurrence": {
                    "type": "string",
                    "enum": ["none", "daily", "weekly", "monthly"],
                },
            },
            "required": ["text"],
        },
    },
    {
        "name": "list_reminders",
        "description": "List the user's reminders.",
        "input_schema": {
            "type": "object",
            "properties": {
                "status": {
                    "type": "string",
                    "enum": ["pending", "fired", "dismissed", "snoozed", "all"],
                },
            },
        },
    },
    {
        "name": "snooze_reminder",
        "description": "Snooze a reminder for a fixed duration.",
        "input_schema": {
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Reminder ID"},
                "duration": {"type": "string", "enum": ["15min", "1hr", "3hr", "tomorrow"]},
            },
            "required": ["id", "duration"],
        },
    },
    {
        "name": "dismiss_reminder",
        "description": "Dismiss a reminder.",
        "input_schema": {
            "type": "object",
            "properties": {"id": {"type": "string", "description": "Reminder ID"}},
            "required": ["id"],
        },
    },
    {
        "name": "search_web",
        "description": (
            "Search the web for current information the user's own data cannot answer "
            "(news, prices, general knowledge)."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "count": {"type": "integer", "description": "Results (default 5, max 20)"},
                "freshness": {"type": "string", "enum": ["day", "week", "month"]},
            },
            "required": ["query"],
        },
    },
    {
        "name": "fetch_url",
        "description": "Fetch a URL and extract its readable content.",
        "input_schema": {
            "type": "object",
            "properties": {
                "url": {"type": "string"},
                "maxContentLength": {"type": "integer", "description": "Max characters"},
            },
            "required": ["url"],
        },
    },
    {
        "name": "send_text",
        "description": "Send a text message to one of the user's contacts.",
        "input_schema": {
            "type": "object",
            "properties": {
                "recipientName": {"type": "string", "description": "Who to text"},
                "intent": {"type": "string", "description": "What the user wants to say"},
            },
            "required": ["recipientName", "intent"],
        },
    },
    {
        "name": "get_weather",
        "description": "Get current weather and forecast for a location.",
        "input_schema": {
            "type": "object",
            "properties": {
                "location": {"type": "string", "description": "City or place (optional)"},
                "hours": {"type": "integer", "description": "Forecast hours (default 24)"},
            },
        },
    },
    {
        "name": "search_cloud_files",
        "description": "Search cloud-synced files (Drive, Dropbox, ...) in the local index.",
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "provider": {"type": "string", "description": "Cloud provider filter"},
            },
            "required": ["query"],
        },
    },
]


# ---------------------------------------------------------------------------
# Local tool handlers
# ---------------------------------------------------------------------------


async def search_files(args: dict[str, Any], knowledge: KnowledgeSearch) -> Any:
    results = await knowledge.search(str(args["query"]), limit=5)
    return [{"title": r.title, "content": r.content[:500], "score": r.score} for r in results]


async def search_emails(args: dict[str, Any], knowledge: KnowledgeSearch) -> Any:
    results = await knowledge.search(str(args["query"]), limit=10, source="email")
    return [
        {
            "title": r.title,
            "content": r.content[:300],
            "score": r.score,
            "metadata": r.document.get("metadata"),
        }
        for r in results
    ]


async def categorize_email(args: dict[str, Any], knowledge: KnowledgeSearch) -> Any:
    return {
        "messageId": args.get("messageId"),
        "categories": args.get("categories", []),
        "priority": args.get("priority"),
    }


async def detect_calendar_conflicts(args: dict[str, Any], knowledge: KnowledgeSearch) -> Any:
    query = f"calendar event {args.get('startTime', '')} {args.get('endTime', '')}"
    conflicts = await knowledge.search(query, limit=10, source="calendar")
    return {
        "conflicts": [
            {"title": c.title, "metadata": c.document.get("metadata")} for c in conflicts
        ],
        "hasConflicts": bool(conflicts),
    }


async def search_cloud_files(args: dict[str, Any], knowledge: KnowledgeSearch) -> Any:
    results = await knowledge.search(str(args["query"]), limit=10, source="cloud_storage")
    return [
        {
            "title": r.title,
            "content": r.content[:500],
            "score": r.score,
            "metadata": r.document.get("metadata"),
        }
        for r in results
    ]


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LocalTool:
    handler: LocalHandler


@dataclass(frozen=True, slots=True)
class GatedTool:
    action_type: str


ToolRoute = LocalTool | GatedTool

TOOL_ROUTES: dict[str, ToolRoute] = {
    "search_files": LocalTool(search_files),
    "search_emails": LocalTool(search_emails),
    "categorize_email": LocalTool(categorize_email),
    "detect_calendar_conflicts": LocalTool(detect_calendar_conflicts),
    "search_cloud_files": LocalTool(search_cloud_files),
    "fetch_inbox": GatedTool("email.fetch"),
    "send_email": GatedTool("email.send"),
    "draft_email": GatedTool("email.draft"),
    "archive_email": GatedTool("email.archive"),
    "fetch_calendar": GatedTool("calendar.fetch"),
    "create_calendar_event": GatedTool("calendar.create"),
    "create_reminder": GatedTool("reminder.create"),
    "list_reminders": GatedTool("reminder.list"),
    "snooze_reminder": GatedTool("reminder.update"),
    "dismiss_reminder": GatedTool("reminder.update"),
    "search_web": GatedTool("web.search"),
    "fetch_url": GatedTool("web.fetch"),
    "get_weather": GatedTool("location.weather_query"),
    "send_text": GatedTool("messaging.send"),
}

# Gated tools whose body is rewritten in the user's style before the payload is final
STYLED_DRAFT_TOOLS = frozenset({"send_email", "draft_email"})


def get_route(tool_name: str) -> ToolRoute | None:
    return TOOL_ROUTES.get(tool_name)


async def execute_local_tool(
    tool_name: str,
    handler: LocalHandler,
    args: dict[str, Any],
    knowledge: KnowledgeSearch,
) -> Any:
    """Run a local tool, converting failures into an error result for the model."""
    try:
        return await handler(args, knowledge)
    except Exception as e:
        logger.error("local_tool_execution_failed", tool=tool_name, error=str(e))
        return {"error": f"Tool execution failed: {e}"}
