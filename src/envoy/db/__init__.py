"""Database layer for the Envoy agent.

SQLite access with async operations via aiosqlite.

Usage:
    from envoy.db import DatabaseStore

    store = DatabaseStore("data/envoy.db")
    await store.initialize()

    conversation_id = await store.create_conversation()
    pending = await store.get_pending_actions()
"""

from envoy.db.models import (
    SCHEMA_VERSION,
    init_database,
    verify_schema,
)
from envoy.db.store import (
    ApprovalPattern,
    Conversation,
    DatabaseStore,
    EscalationPrompt,
    StoredStyleProfile,
)

__all__ = [
    # Models
    "SCHEMA_VERSION",
    "init_database",
    "verify_schema",
    # Store
    "DatabaseStore",
    # Dataclasses
    "ApprovalPattern",
    "Conversation",
    "EscalationPrompt",
    "StoredStyleProfile",
]
