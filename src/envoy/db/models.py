"""SQLite database schema and initialization for the Envoy agent.

Tables:
- conversations: One row per conversation, updated_at bumped on every turn
- conversation_turns: Append-only message log
- pending_actions: Actions awaiting approval and their outcome
- approval_patterns: Approval/rejection counters keyed by fingerprint
- escalation_prompts: Offers to raise a domain's autonomy tier
- style_profiles: Versioned writing-style profiles (JSON)
- agent_state: Key-value state persistence (tier overrides, etc.)

Usage:
    from envoy.db.models import init_database

    await init_database("data/envoy.db")
"""

import stat
from pathlib import Path

import aiosqlite

from envoy.core.errors import DatabaseError
from envoy.core.logging import get_logger

logger = get_logger(__name__)

# Schema version for migrations (increment when schema changes)
SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    title TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS conversation_turns (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    context_json TEXT,
    actions_json TEXT,
    tokens_prompt INTEGER,
    tokens_completion INTEGER
);

CREATE INDEX IF NOT EXISTS idx_turns_conversation
    ON conversation_turns(conversation_id, timestamp);

CREATE TABLE IF NOT EXISTS pending_actions (
    id TEXT PRIMARY KEY,
    action TEXT NOT NULL,
    payload TEXT NOT NULL,
    reasoning TEXT,
    domain TEXT NOT NULL,
    tier TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending_approval'
        CHECK (status IN ('pending_approval', 'executed', 'failed', 'rejected')),
    created_at TEXT NOT NULL,
    claimed_at TEXT,
    executed_at TEXT,
    response_json TEXT
);

CREATE INDEX IF NOT EXISTS idx_pending_actions_status
    ON pending_actions(status, created_at);

CREATE TABLE IF NOT EXISTS approval_patterns (
    fingerprint TEXT PRIMARY KEY,
    action_type TEXT NOT NULL,
    descriptor_json TEXT NOT NULL,
    consecutive_approvals INTEGER NOT NULL DEFAULT 0,
    consecutive_rejections INTEGER NOT NULL DEFAULT 0,
    total_approvals INTEGER NOT NULL DEFAULT 0,
    total_rejections INTEGER NOT NULL DEFAULT 0,
    auto_execute_threshold INTEGER NOT NULL DEFAULT 3,
    last_approval_at TEXT,
    last_rejection_at TEXT,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_approval_patterns_type
    ON approval_patterns(action_type);

CREATE TABLE IF NOT EXISTS escalation_prompts (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL CHECK (type IN ('guardian_to_partner', 'partner_to_alter_ego')),
    domain TEXT NOT NULL,
    action_type TEXT NOT NULL,
    consecutive_approvals INTEGER NOT NULL,
    message TEXT NOT NULL,
    preview_json TEXT,
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'accepted', 'dismissed', 'expired')),
    responded_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_escalation_prompts_domain
    ON escalation_prompts(domain, type, status);

CREATE TABLE IF NOT EXISTS style_profiles (
    id TEXT PRIMARY KEY,
    version INTEGER NOT NULL,
    profile_json TEXT NOT NULL,
    emails_analyzed INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS agent_state (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at TEXT NOT NULL
);
"""

REQUIRED_TABLES = (
    "conversations",
    "conversation_turns",
    "pending_actions",
    "approval_patterns",
    "escalation_prompts",
    "style_profiles",
    "agent_state",
)

# Columns added after the first release: (table, column, SQL type)
ADDED_COLUMNS = (("pending_actions", "claimed_at", "TEXT"),)


async def _add_missing_columns(db: aiosqlite.Connection) -> None:
    """Bring tables created by an older release up to the current columns."""
    for table, column, column_type in ADDED_COLUMNS:
        cursor = await db.execute(f"PRAGMA table_info({table})")
        existing = {row[1] for row in await cursor.fetchall()}
        if column not in existing:
            await db.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
            logger.info("database_column_added", table=table, column=column)


async def init_database(db_path: str | Path) -> None:
    """Initialize the SQLite database with schema and WAL mode.

    Creates the database file if it doesn't exist, enables WAL mode for
    concurrent access, and creates all tables and indexes.

    Raises:
        DatabaseError: If database initialization fails
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            cursor = await db.execute("PRAGMA journal_mode")
            mode = await cursor.fetchone()
            if mode and mode[0].lower() != "wal":
                logger.warning(
                    "wal_mode_not_enabled",
                    requested="wal",
                    actual=mode[0],
                    db_path=str(db_path),
                )

            await db.executescript(SCHEMA_SQL)
            await _add_missing_columns(db)
            await db.commit()

        # Conversations and style samples are personal data: owner read/write only
        db_path.chmod(stat.S_IRUSR | stat.S_IWUSR)
        for suffix in ["-wal", "-shm"]:
            wal_file = db_path.with_suffix(db_path.suffix + suffix)
            if wal_file.exists():
                wal_file.chmod(stat.S_IRUSR | stat.S_IWUSR)

        logger.info(
            "database_initialized",
            db_path=str(db_path),
            schema_version=SCHEMA_VERSION,
        )

    except aiosqlite.Error as e:
        logger.error("database_init_failed", db_path=str(db_path), error=str(e))
        raise DatabaseError(f"Failed to initialize database at {db_path}: {e}") from e


async def verify_schema(db_path: str | Path) -> list[str]:
    """Return the names of required tables missing from the database."""
    try:
        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
            existing = {row[0] for row in await cursor.fetchall()}
    except aiosqlite.Error as e:
        raise DatabaseError(f"Failed to inspect schema at {db_path}: {e}") from e

    return [table for table in REQUIRED_TABLES if table not in existing]
