"""Database store with CRUD operations for all tables.

DatabaseStore wraps every table behind async methods built on aiosqlite.
Each write is a single statement on a fresh connection; lifecycle
transitions (approve/reject, prompt responses) are guarded in the WHERE
clause so a lost race is reported as "nothing changed" rather than
overwriting someone else's outcome.

Usage:
    from envoy.db.store import DatabaseStore

    store = DatabaseStore("data/envoy.db")
    await store.initialize()

    await store.ensure_conversation("conv-1")
    await store.append_turn(turn)
    turns = await store.get_turns("conv-1")

    await store.insert_pending_action(action)
    resolved = await store.resolve_action(action.id, "executed", response)
"""

from __future__ import annotations

import json
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

import aiosqlite

from envoy.agent.types import (
    ActionResponse,
    ActionStatus,
    AgentAction,
    ConversationTurn,
    TokenUsage,
)
from envoy.core.errors import DatabaseError
from envoy.core.logging import get_logger
from envoy.db.models import init_database

logger = get_logger(__name__)

EscalationType = Literal["guardian_to_partner", "partner_to_alter_ego"]
EscalationStatus = Literal["pending", "accepted", "dismissed", "expired"]


def _now() -> datetime:
    return datetime.now(UTC)


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Conversation:
    """Conversation header record."""

    id: str
    created_at: datetime
    updated_at: datetime
    title: str | None = None


@dataclass
class ApprovalPattern:
    """Approval history for one fingerprint."""

    fingerprint: str
    action_type: str
    descriptor: dict[str, Any]
    consecutive_approvals: int = 0
    consecutive_rejections: int = 0
    total_approvals: int = 0
    total_rejections: int = 0
    auto_execute_threshold: int = 3
    last_approval_at: datetime | None = None
    last_rejection_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_routine(self) -> bool:
        return self.consecutive_approvals >= self.auto_execute_threshold


@dataclass
class EscalationPrompt:
    """An offer to raise a domain's autonomy tier."""

    id: str
    type: EscalationType
    domain: str
    action_type: str
    consecutive_approvals: int
    message: str
    created_at: datetime
    expires_at: datetime
    preview_actions: list[str] = field(default_factory=list)
    status: EscalationStatus = "pending"
    responded_at: datetime | None = None


@dataclass
class StoredStyleProfile:
    """Raw style profile row; parsed by envoy.style.profile."""

    id: str
    version: int
    profile: dict[str, Any]
    emails_analyzed: int
    is_active: bool
    created_at: datetime


class DatabaseStore:
    """Async CRUD operations for all Envoy tables.

    Attributes:
        db_path: Path to the SQLite database file
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the database, creating tables if needed.

        This must be called before any other operations.
        """
        await init_database(self.db_path)
        self._initialized = True

    @asynccontextmanager
    async def _db(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get a configured database connection.

        Sets busy_timeout so the API server and the CLI can share the file,
        enforces foreign keys, and returns rows as aiosqlite.Row.
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout = 10000")
            await db.execute("PRAGMA foreign_keys = ON")
            await db.execute("PRAGMA synchronous = NORMAL")
            await db.execute("PRAGMA temp_store = MEMORY")

            db.row_factory = aiosqlite.Row
            yield db

    async def checkpoint_wal(self) -> None:
        """Run a WAL checkpoint to keep WAL file size bounded."""
        try:
            async with self._db() as db:
                await db.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            logger.debug("wal_checkpoint_complete")
        except aiosqlite.Error as e:
            logger.warning("wal_checkpoint_failed", error=str(e))

    # =========================================================================
    # Conversation Operations
    # =========================================================================

    async def create_conversation(self, title: str | None = None) -> str:
        """Create a new conversation and return its ID."""
        conversation_id = str(uuid.uuid4())
        await self.ensure_conversation(conversation_id, title=title)
        return conversation_id

    async def ensure_conversation(self, conversation_id: str, title: str | None = None) -> None:
        """Create the conversation row if it does not exist yet."""
        now = _now().isoformat()
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT OR IGNORE INTO conversations (id, title, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (conversation_id, title, now, now),
                )
                await db.commit()
        except aiosqlite.Error as e:
            logger.error(
                "conversation_create_failed", conversation_id=conversation_id, error=str(e)
            )
            raise DatabaseError(f"Failed to create conversation {conversation_id}: {e}") from e

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Get a conversation header by ID."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error("conversation_get_failed", conversation_id=conversation_id, error=str(e))
            raise DatabaseError(f"Failed to get conversation {conversation_id}: {e}") from e

        if row is None:
            return None
        return Conversation(
            id=row["id"],
            title=row["title"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def list_conversations(self, limit: int = 50) -> list[Conversation]:
        """List conversations, most recently updated first."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM conversations ORDER BY updated_at DESC LIMIT ?", (limit,)
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.error("conversation_list_failed", error=str(e))
            raise DatabaseError(f"Failed to list conversations: {e}") from e

        return [
            Conversation(
                id=row["id"],
                title=row["title"],
                created_at=datetime.fromisoformat(row["created_at"]),
                updated_at=datetime.fromisoformat(row["updated_at"]),
            )
            for row in rows
        ]

    async def append_turn(self, turn: ConversationTurn) -> None:
        """Insert a turn and bump the parent conversation's updated_at.

        Turns are never updated after this call.
        """
        context_json = json.dumps(turn.context) if turn.context is not None else None
        actions_json = json.dumps([a.to_dict() for a in turn.actions]) if turn.actions else None
        tokens = turn.tokens_used
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO conversation_turns (
                        id, conversation_id, role, content, timestamp,
                        context_json, actions_json, tokens_prompt, tokens_completion
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        turn.id,
                        turn.conversation_id,
                        turn.role,
                        turn.content,
                        turn.timestamp.isoformat(),
                        context_json,
                        actions_json,
                        tokens.prompt if tokens else None,
                        tokens.completion if tokens else None,
                    ),
                )
                await db.execute(
                    "UPDATE conversations SET updated_at = ? WHERE id = ?",
                    (turn.timestamp.isoformat(), turn.conversation_id),
                )
                await db.commit()
        except aiosqlite.Error as e:
            logger.error(
                "turn_append_failed",
                conversation_id=turn.conversation_id,
                role=turn.role,
                error=str(e),
            )
            raise DatabaseError(
                f"Failed to append turn to conversation {turn.conversation_id}: {e}"
            ) from e

    async def get_turns(
        self, conversation_id: str, limit: int | None = None
    ) -> list[ConversationTurn]:
        """Get turns for a conversation in ascending timestamp order.

        Args:
            conversation_id: The conversation
            limit: If set, only the most recent `limit` turns (still ascending)
        """
        try:
            async with self._db() as db:
                if limit is None:
                    cursor = await db.execute(
                        """
                        SELECT * FROM conversation_turns
                        WHERE conversation_id = ?
                        ORDER BY timestamp ASC, rowid ASC
                        """,
                        (conversation_id,),
                    )
                    rows = list(await cursor.fetchall())
                else:
                    cursor = await db.execute(
                        """
                        SELECT * FROM conversation_turns
                        WHERE conversation_id = ?
                        ORDER BY timestamp DESC, rowid DESC
                        LIMIT ?
                        """,
                        (conversation_id, limit),
                    )
                    rows = list(reversed(await cursor.fetchall()))
        except aiosqlite.Error as e:
            logger.error("turns_get_failed", conversation_id=conversation_id, error=str(e))
            raise DatabaseError(f"Failed to get turns for {conversation_id}: {e}") from e

        return [self._row_to_turn(row) for row in rows]

    def _row_to_turn(self, row: aiosqlite.Row) -> ConversationTurn:
        tokens = None
        if row["tokens_prompt"] is not None or row["tokens_completion"] is not None:
            tokens = TokenUsage(
                prompt=row["tokens_prompt"] or 0,
                completion=row["tokens_completion"] or 0,
            )
        actions_raw = json.loads(row["actions_json"]) if row["actions_json"] else []
        return ConversationTurn(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            content=row["content"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            context=json.loads(row["context_json"]) if row["context_json"] else None,
            actions=[AgentAction.from_dict(a) for a in actions_raw],
            tokens_used=tokens,
        )

    # =========================================================================
    # Pending Action Operations
    # =========================================================================

    async def insert_pending_action(self, action: AgentAction) -> None:
        """Persist an action awaiting approval."""
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO pending_actions (
                        id, action, payload, reasoning, domain, tier,
                        status, created_at, executed_at, response_json
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        action.id,
                        action.action_type,
                        json.dumps(action.payload),
                        action.reasoning,
                        action.domain,
                        action.tier,
                        action.status,
                        action.created_at.isoformat(),
                        action.executed_at.isoformat() if action.executed_at else None,
                        json.dumps(action.response.to_dict()) if action.response else None,
                    ),
                )
                await db.commit()
        except aiosqlite.Error as e:
            logger.error("pending_action_insert_failed", action_id=action.id, error=str(e))
            raise DatabaseError(f"Failed to insert pending action {action.id}: {e}") from e

    async def get_pending_actions(self) -> list[AgentAction]:
        """Get all actions still awaiting approval, oldest first.

        Actions claimed by an approval that is still executing are left out.
        """
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT * FROM pending_actions
                    WHERE status = 'pending_approval' AND claimed_at IS NULL
                    ORDER BY created_at ASC, rowid ASC
                    """
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.error("pending_actions_get_failed", error=str(e))
            raise DatabaseError(f"Failed to get pending actions: {e}") from e

        return [self._row_to_action(row) for row in rows]

    async def get_action(self, action_id: str) -> AgentAction | None:
        """Get a queued action by ID regardless of status."""
        return await self._fetch_action(action_id, pending_only=False)

    async def get_pending_action(self, action_id: str) -> AgentAction | None:
        """Get a queued action only if it is awaiting approval and unclaimed."""
        return await self._fetch_action(action_id, pending_only=True)

    async def _fetch_action(self, action_id: str, *, pending_only: bool) -> AgentAction | None:
        query = "SELECT * FROM pending_actions WHERE id = ?"
        if pending_only:
            query += " AND status = 'pending_approval' AND claimed_at IS NULL"
        try:
            async with self._db() as db:
                cursor = await db.execute(query, (action_id,))
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error("pending_action_get_failed", action_id=action_id, error=str(e))
            raise DatabaseError(f"Failed to get action {action_id}: {e}") from e

        return self._row_to_action(row) if row else None

    async def claim_action(self, action_id: str) -> bool:
        """Mark a pending action as being executed by one approver.

        The conditional UPDATE lets exactly one caller win, across processes
        sharing the database file. A claimed action no longer shows as pending
        and can no longer be rejected.

        Returns:
            True if this call claimed the action
        """
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE pending_actions SET claimed_at = ?
                    WHERE id = ? AND status = 'pending_approval' AND claimed_at IS NULL
                    """,
                    (_now().isoformat(), action_id),
                )
                await db.commit()
                claimed = cursor.rowcount > 0
        except aiosqlite.Error as e:
            logger.error("pending_action_claim_failed", action_id=action_id, error=str(e))
            raise DatabaseError(f"Failed to claim action {action_id}: {e}") from e

        logger.debug("pending_action_claim", action_id=action_id, claimed=claimed)
        return claimed

    async def resolve_action(
        self,
        action_id: str,
        status: ActionStatus,
        response: ActionResponse | None = None,
    ) -> bool:
        """Move a pending action to a terminal status.

        Returns:
            True if the action was pending and is now resolved, False if it was
            unknown or already resolved
        """
        if status == "pending_approval":
            raise ValueError("Actions cannot be moved back to pending_approval")

        executed_at = _now().isoformat() if status != "rejected" else None
        query = """
            UPDATE pending_actions
            SET status = ?, executed_at = ?, response_json = ?
            WHERE id = ? AND status = 'pending_approval'
        """
        if status == "rejected":
            query += " AND claimed_at IS NULL"
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    query,
                    (
                        status,
                        executed_at,
                        json.dumps(response.to_dict()) if response else None,
                        action_id,
                    ),
                )
                await db.commit()
                updated = cursor.rowcount > 0
        except aiosqlite.Error as e:
            logger.error(
                "pending_action_resolve_failed", action_id=action_id, status=status, error=str(e)
            )
            raise DatabaseError(f"Failed to resolve action {action_id}: {e}") from e

        if updated:
            logger.info("pending_action_resolved", action_id=action_id, status=status)
        else:
            logger.debug("pending_action_not_pending", action_id=action_id, status=status)
        return updated

    def _row_to_action(self, row: aiosqlite.Row) -> AgentAction:
        response = json.loads(row["response_json"]) if row["response_json"] else None
        return AgentAction(
            id=row["id"],
            action_type=row["action"],
            payload=json.loads(row["payload"]),
            reasoning=row["reasoning"] or "",
            domain=row["domain"],
            tier=row["tier"],
            status=row["status"],
            created_at=datetime.fromisoformat(row["created_at"]),
            executed_at=_parse_dt(row["executed_at"]),
            response=ActionResponse.from_dict(response) if response else None,
        )

    # =========================================================================
    # Approval Pattern Operations
    # =========================================================================

    async def get_approval_pattern(self, fingerprint: str) -> ApprovalPattern | None:
        """Get the approval pattern for a fingerprint."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM approval_patterns WHERE fingerprint = ?", (fingerprint,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error("approval_pattern_get_failed", fingerprint=fingerprint, error=str(e))
            raise DatabaseError(f"Failed to get approval pattern: {e}") from e

        return self._row_to_pattern(row) if row else None

    async def list_approval_patterns(self) -> list[ApprovalPattern]:
        """Get all approval patterns, most recently updated first."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM approval_patterns ORDER BY updated_at DESC, fingerprint ASC"
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.error("approval_patterns_list_failed", error=str(e))
            raise DatabaseError(f"Failed to list approval patterns: {e}") from e

        return [self._row_to_pattern(row) for row in rows]

    async def record_pattern_approval(
        self,
        fingerprint: str,
        action_type: str,
        descriptor: dict[str, Any],
        threshold: int,
    ) -> None:
        """Increment approval counters and clear the rejection streak (upsert)."""
        now = _now().isoformat()
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO approval_patterns (
                        fingerprint, action_type, descriptor_json,
                        consecutive_approvals, consecutive_rejections,
                        total_approvals, total_rejections,
                        auto_execute_threshold, last_approval_at, updated_at
                    ) VALUES (?, ?, ?, 1, 0, 1, 0, ?, ?, ?)
                    ON CONFLICT(fingerprint) DO UPDATE SET
                        consecutive_approvals = consecutive_approvals + 1,
                        consecutive_rejections = 0,
                        total_approvals = total_approvals + 1,
                        last_approval_at = excluded.last_approval_at,
                        updated_at = excluded.updated_at
                    """,
                    (fingerprint, action_type, json.dumps(descriptor), threshold, now, now),
                )
                await db.commit()
        except aiosqlite.Error as e:
            logger.error("approval_record_failed", fingerprint=fingerprint, error=str(e))
            raise DatabaseError(f"Failed to record approval: {e}") from e

    async def record_pattern_rejection(
        self,
        fingerprint: str,
        action_type: str,
        descriptor: dict[str, Any],
        threshold: int,
    ) -> None:
        """Increment rejection counters and reset the approval streak (upsert)."""
        now = _now().isoformat()
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO approval_patterns (
                        fingerprint, action_type, descriptor_json,
                        consecutive_approvals, consecutive_rejections,
                        total_approvals, total_rejections,
                        auto_execute_threshold, last_rejection_at, updated_at
                    ) VALUES (?, ?, ?, 0, 1, 0, 1, ?, ?, ?)
                    ON CONFLICT(fingerprint) DO UPDATE SET
                        consecutive_approvals = 0,
                        consecutive_rejections = consecutive_rejections + 1,
                        total_rejections = total_rejections + 1,
                        last_rejection_at = excluded.last_rejection_at,
                        updated_at = excluded.updated_at
                    """,
                    (fingerprint, action_type, json.dumps(descriptor), threshold, now, now),
                )
                await db.commit()
        except aiosqlite.Error as e:
            logger.error("rejection_record_failed", fingerprint=fingerprint, error=str(e))
            raise DatabaseError(f"Failed to record rejection: {e}") from e

    async def raise_pattern_threshold(self, fingerprint: str, threshold: int) -> bool:
        """Raise a pattern's threshold. Lower values leave it unchanged.

        Returns:
            True if the threshold changed
        """
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE approval_patterns
                    SET auto_execute_threshold = ?, updated_at = ?
                    WHERE fingerprint = ? AND auto_execute_threshold < ?
                    """,
                    (threshold, _now().isoformat(), fingerprint, threshold),
                )
                await db.commit()
                return cursor.rowcount > 0
        except aiosqlite.Error as e:
            logger.error("threshold_update_failed", fingerprint=fingerprint, error=str(e))
            raise DatabaseError(f"Failed to update threshold: {e}") from e

    async def reset_pattern(self, fingerprint: str, threshold: int) -> bool:
        """Clear a pattern's streaks and set its threshold to `threshold`."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE approval_patterns
                    SET consecutive_approvals = 0,
                        consecutive_rejections = 0,
                        auto_execute_threshold = ?,
                        updated_at = ?
                    WHERE fingerprint = ?
                    """,
                    (threshold, _now().isoformat(), fingerprint),
                )
                await db.commit()
                return cursor.rowcount > 0
        except aiosqlite.Error as e:
            logger.error("pattern_reset_failed", fingerprint=fingerprint, error=str(e))
            raise DatabaseError(f"Failed to reset approval pattern: {e}") from e

    def _row_to_pattern(self, row: aiosqlite.Row) -> ApprovalPattern:
        return ApprovalPattern(
            fingerprint=row["fingerprint"],
            action_type=row["action_type"],
            descriptor=json.loads(row["descriptor_json"]),
            consecutive_approvals=row["consecutive_approvals"],
            consecutive_rejections=row["consecutive_rejections"],
            total_approvals=row["total_approvals"],
            total_rejections=row["total_rejections"],
            auto_execute_threshold=row["auto_execute_threshold"],
            last_approval_at=_parse_dt(row["last_approval_at"]),
            last_rejection_at=_parse_dt(row["last_rejection_at"]),
            updated_at=_parse_dt(row["updated_at"]),
        )

    # =========================================================================
    # Escalation Prompt Operations
    # =========================================================================

    async def create_escalation_prompt(self, prompt: EscalationPrompt) -> None:
        """Persist a new escalation prompt."""
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO escalation_prompts (
                        id, type, domain, action_type, consecutive_approvals,
                        message, preview_json, created_at, expires_at, status
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        prompt.id,
                        prompt.type,
                        prompt.domain,
                        prompt.action_type,
                        prompt.consecutive_approvals,
                        prompt.message,
                        json.dumps(prompt.preview_actions),
                        prompt.created_at.isoformat(),
                        prompt.expires_at.isoformat(),
                        prompt.status,
                    ),
                )
                await db.commit()
        except aiosqlite.Error as e:
            logger.error("escalation_prompt_create_failed", domain=prompt.domain, error=str(e))
            raise DatabaseError(f"Failed to create escalation prompt: {e}") from e

    async def get_escalation_prompt(self, prompt_id: str) -> EscalationPrompt | None:
        """Get an escalation prompt by ID."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM escalation_prompts WHERE id = ?", (prompt_id,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error("escalation_prompt_get_failed", prompt_id=prompt_id, error=str(e))
            raise DatabaseError(f"Failed to get escalation prompt {prompt_id}: {e}") from e

        return self._row_to_prompt(row) if row else None

    async def get_escalation_prompts(
        self, status: EscalationStatus = "pending"
    ) -> list[EscalationPrompt]:
        """Get escalation prompts with the given status, newest first."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT * FROM escalation_prompts
                    WHERE status = ?
                    ORDER BY created_at DESC
                    """,
                    (status,),
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.error("escalation_prompts_get_failed", status=status, error=str(e))
            raise DatabaseError(f"Failed to get escalation prompts: {e}") from e

        return [self._row_to_prompt(row) for row in rows]

    async def get_latest_escalation_prompt(
        self, domain: str, prompt_type: EscalationType
    ) -> EscalationPrompt | None:
        """Get the most recent prompt of a type for a domain, any status."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT * FROM escalation_prompts
                    WHERE domain = ? AND type = ?
                    ORDER BY created_at DESC
                    LIMIT 1
                    """,
                    (domain, prompt_type),
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error("escalation_prompt_latest_failed", domain=domain, error=str(e))
            raise DatabaseError(f"Failed to get latest escalation prompt: {e}") from e

        return self._row_to_prompt(row) if row else None

    async def resolve_escalation_prompt(self, prompt_id: str, status: EscalationStatus) -> bool:
        """Move a pending prompt to accepted/dismissed/expired.

        Returns:
            True if the prompt was pending and is now resolved
        """
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE escalation_prompts
                    SET status = ?, responded_at = ?
                    WHERE id = ? AND status = 'pending'
                    """,
                    (status, _now().isoformat(), prompt_id),
                )
                await db.commit()
                return cursor.rowcount > 0
        except aiosqlite.Error as e:
            logger.error("escalation_prompt_resolve_failed", prompt_id=prompt_id, error=str(e))
            raise DatabaseError(f"Failed to resolve escalation prompt: {e}") from e

    async def expire_escalation_prompts(self, now: datetime | None = None) -> int:
        """Mark pending prompts past their expiry as expired.

        Returns:
            Number of prompts expired
        """
        now = now or _now()
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    UPDATE escalation_prompts
                    SET status = 'expired'
                    WHERE status = 'pending' AND expires_at <= ?
                    """,
                    (now.isoformat(),),
                )
                await db.commit()
                return cursor.rowcount
        except aiosqlite.Error as e:
            logger.error("escalation_prompts_expire_failed", error=str(e))
            raise DatabaseError(f"Failed to expire escalation prompts: {e}") from e

    def _row_to_prompt(self, row: aiosqlite.Row) -> EscalationPrompt:
        return EscalationPrompt(
            id=row["id"],
            type=row["type"],
            domain=row["domain"],
            action_type=row["action_type"],
            consecutive_approvals=row["consecutive_approvals"],
            message=row["message"],
            preview_actions=json.loads(row["preview_json"]) if row["preview_json"] else [],
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            status=row["status"],
            responded_at=_parse_dt(row["responded_at"]),
        )

    # =========================================================================
    # Style Profile Operations
    # =========================================================================

    async def save_style_profile(
        self,
        profile: dict[str, Any],
        emails_analyzed: int,
        is_active: bool,
        profile_id: str | None = None,
    ) -> StoredStyleProfile:
        """Store a new profile version. Versions increase monotonically."""
        profile_id = profile_id or str(uuid.uuid4())
        created_at = _now()
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    INSERT INTO style_profiles (
                        id, version, profile_json, emails_analyzed, is_active, created_at
                    )
                    SELECT ?, COALESCE(MAX(version), 0) + 1, ?, ?, ?, ?
                    FROM style_profiles
                    RETURNING version
                    """,
                    (
                        profile_id,
                        json.dumps(profile),
                        emails_analyzed,
                        1 if is_active else 0,
                        created_at.isoformat(),
                    ),
                )
                row = await cursor.fetchone()
                await db.commit()
        except aiosqlite.Error as e:
            logger.error("style_profile_save_failed", error=str(e))
            raise DatabaseError(f"Failed to save style profile: {e}") from e

        return StoredStyleProfile(
            id=profile_id,
            version=row["version"],
            profile=profile,
            emails_analyzed=emails_analyzed,
            is_active=is_active,
            created_at=created_at,
        )

    async def get_latest_style_profile(self) -> StoredStyleProfile | None:
        """Get the highest-version style profile."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM style_profiles ORDER BY version DESC LIMIT 1"
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error("style_profile_get_failed", error=str(e))
            raise DatabaseError(f"Failed to get style profile: {e}") from e

        if row is None:
            return None
        return StoredStyleProfile(
            id=row["id"],
            version=row["version"],
            profile=json.loads(row["profile_json"]),
            emails_analyzed=row["emails_analyzed"],
            is_active=bool(row["is_active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # =========================================================================
    # Agent State Operations
    # =========================================================================

    async def get_state(self, key: str) -> str | None:
        """Get an agent state value, or None if not set."""
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT value FROM agent_state WHERE key = ?", (key,))
                row = await cursor.fetchone()
                return row["value"] if row else None
        except aiosqlite.Error as e:
            logger.error("state_get_failed", key=key, error=str(e))
            raise DatabaseError(f"Failed to get state: {e}") from e

    async def get_states_with_prefix(self, prefix: str) -> dict[str, str]:
        """Get all agent state entries whose key starts with `prefix`."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT key, value FROM agent_state WHERE substr(key, 1, ?) = ?",
                    (len(prefix), prefix),
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.error("state_prefix_get_failed", prefix=prefix, error=str(e))
            raise DatabaseError(f"Failed to get state: {e}") from e

        return {row["key"]: row["value"] for row in rows}

    async def set_state(self, key: str, value: str) -> None:
        """Set an agent state value."""
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO agent_state (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, value, _now().isoformat()),
                )
                await db.commit()
        except aiosqlite.Error as e:
            logger.error("state_set_failed", key=key, error=str(e))
            raise DatabaseError(f"Failed to set state: {e}") from e
