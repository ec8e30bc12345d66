"""Tests for the database layer.

Covers schema setup plus CRUD operations for conversations and turns,
pending actions, approval patterns, escalation prompts, style profiles
and agent state.
"""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiosqlite
import pytest

from envoy.agent.types import ActionResponse, AgentAction, ConversationTurn, TokenUsage
from envoy.db import DatabaseStore, EscalationPrompt, init_database, verify_schema
from envoy.db.models import REQUIRED_TABLES


def _action(action_id: str, created_at: datetime | None = None) -> AgentAction:
    return AgentAction(
        id=action_id,
        action_type="email.send",
        payload={"to": ["ana@example.com"], "subject": "Hi", "body": "Hello"},
        reasoning="Model requested send_email based on conversation context",
        domain="email",
        tier="guardian",
        status="pending_approval",
        created_at=created_at or datetime.now(UTC),
    )


def _turn(
    conversation_id: str,
    role: str,
    content: str,
    timestamp: datetime,
    **kwargs,
) -> ConversationTurn:
    return ConversationTurn(
        id=f"{conversation_id}-{content}",
        conversation_id=conversation_id,
        role=role,
        content=content,
        timestamp=timestamp,
        **kwargs,
    )


class TestDatabaseInitialization:
    """Tests for database initialization."""

    async def test_init_database_creates_file(self, data_dir: Path) -> None:
        db_path = data_dir / "fresh.db"
        assert not db_path.exists()
        await init_database(db_path)
        assert db_path.exists()

    async def test_init_database_enables_wal_mode(self, data_dir: Path) -> None:
        db_path = data_dir / "wal.db"
        await init_database(db_path)

        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("PRAGMA journal_mode")
            row = await cursor.fetchone()
            assert row[0].lower() == "wal"

    async def test_verify_schema_reports_nothing_missing(self, data_dir: Path) -> None:
        db_path = data_dir / "schema.db"
        await init_database(db_path)
        assert await verify_schema(db_path) == []

    async def test_verify_schema_lists_missing_tables(self, data_dir: Path) -> None:
        db_path = data_dir / "empty.db"
        async with aiosqlite.connect(db_path) as db:
            await db.execute("CREATE TABLE unrelated (id INTEGER)")
            await db.commit()

        assert set(await verify_schema(db_path)) == set(REQUIRED_TABLES)

    async def test_older_pending_actions_table_gains_claim_column(self, data_dir: Path) -> None:
        db_path = data_dir / "old.db"
        async with aiosqlite.connect(db_path) as db:
            await db.execute(
                "CREATE TABLE pending_actions (id TEXT PRIMARY KEY, action TEXT NOT NULL, "
                "payload TEXT NOT NULL, reasoning TEXT, domain TEXT NOT NULL, "
                "tier TEXT NOT NULL, status TEXT NOT NULL DEFAULT 'pending_approval', "
                "created_at TEXT NOT NULL, executed_at TEXT, response_json TEXT)"
            )
            await db.commit()

        await init_database(db_path)

        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("PRAGMA table_info(pending_actions)")
            columns = {row[1] for row in await cursor.fetchall()}
        assert "claimed_at" in columns

    async def test_initialize_is_idempotent(self, store: DatabaseStore) -> None:
        await store.initialize()
        await store.initialize()


class TestConversations:
    """Tests for conversation and turn storage."""

    async def test_ensure_conversation_is_idempotent(self, store: DatabaseStore) -> None:
        await store.ensure_conversation("conv-1")
        await store.ensure_conversation("conv-1")

        conversations = await store.list_conversations()
        assert [c.id for c in conversations] == ["conv-1"]

    async def test_create_conversation_returns_new_id(self, store: DatabaseStore) -> None:
        conversation_id = await store.create_conversation(title="Planning")
        conversation = await store.get_conversation(conversation_id)
        assert conversation is not None
        assert conversation.title == "Planning"

    async def test_get_unknown_conversation(self, store: DatabaseStore) -> None:
        assert await store.get_conversation("missing") is None

    async def test_turns_returned_in_timestamp_order(self, store: DatabaseStore) -> None:
        await store.ensure_conversation("conv-1")
        base = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
        # Inserted out of order on purpose
        await store.append_turn(_turn("conv-1", "assistant", "b", base + timedelta(seconds=2)))
        await store.append_turn(_turn("conv-1", "user", "a", base))
        await store.append_turn(_turn("conv-1", "user", "c", base + timedelta(seconds=5)))

        turns = await store.get_turns("conv-1")
        assert [t.content for t in turns] == ["a", "b", "c"]

    async def test_identical_timestamps_keep_insert_order(self, store: DatabaseStore) -> None:
        await store.ensure_conversation("conv-1")
        ts = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
        await store.append_turn(_turn("conv-1", "user", "first", ts))
        await store.append_turn(_turn("conv-1", "assistant", "second", ts))

        turns = await store.get_turns("conv-1")
        assert [t.content for t in turns] == ["first", "second"]

    async def test_limit_returns_most_recent_ascending(self, store: DatabaseStore) -> None:
        await store.ensure_conversation("conv-1")
        base = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
        for i in range(5):
            await store.append_turn(_turn("conv-1", "user", f"m{i}", base + timedelta(seconds=i)))

        turns = await store.get_turns("conv-1", limit=2)
        assert [t.content for t in turns] == ["m3", "m4"]

    async def test_turn_round_trips_actions_and_tokens(self, store: DatabaseStore) -> None:
        await store.ensure_conversation("conv-1")
        action = _action("act-1")
        await store.append_turn(
            _turn(
                "conv-1",
                "assistant",
                "done",
                datetime.now(UTC),
                context=[{"document": {"title": "Notes"}, "chunk": {}, "score": 0.5}],
                actions=[action],
                tokens_used=TokenUsage(prompt=30, completion=12),
            )
        )

        [turn] = await store.get_turns("conv-1")
        assert turn.tokens_used == TokenUsage(prompt=30, completion=12)
        assert turn.actions[0].id == "act-1"
        assert turn.actions[0].payload == action.payload
        assert turn.context[0]["document"]["title"] == "Notes"

    async def test_append_turn_updates_conversation(self, store: DatabaseStore) -> None:
        await store.ensure_conversation("conv-1")
        before = await store.get_conversation("conv-1")
        later = before.updated_at + timedelta(minutes=5)

        await store.append_turn(_turn("conv-1", "user", "hello", later))

        after = await store.get_conversation("conv-1")
        assert after.updated_at == later
        assert after.created_at == before.created_at


class TestPendingActions:
    """Tests for the pending action queue."""

    async def test_pending_actions_fifo(self, store: DatabaseStore) -> None:
        base = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
        await store.insert_pending_action(_action("second", base + timedelta(seconds=1)))
        await store.insert_pending_action(_action("first", base))
        await store.insert_pending_action(_action("third", base + timedelta(seconds=2)))

        pending = await store.get_pending_actions()
        assert [a.id for a in pending] == ["first", "second", "third"]

    async def test_resolve_action_once(self, store: DatabaseStore) -> None:
        await store.insert_pending_action(_action("act-1"))
        response = ActionResponse(status="success", data={"messageId": "m-1"})

        assert await store.resolve_action("act-1", "executed", response) is True
        assert await store.resolve_action("act-1", "rejected") is False

        action = await store.get_action("act-1")
        assert action.status == "executed"
        assert action.executed_at is not None
        assert action.response == response

    async def test_resolved_action_leaves_queue(self, store: DatabaseStore) -> None:
        await store.insert_pending_action(_action("act-1"))
        await store.resolve_action("act-1", "rejected")

        assert await store.get_pending_actions() == []
        assert await store.get_pending_action("act-1") is None

        rejected = await store.get_action("act-1")
        assert rejected.status == "rejected"
        assert rejected.executed_at is None

    async def test_resolve_unknown_action(self, store: DatabaseStore) -> None:
        assert await store.resolve_action("missing", "executed") is False

    async def test_claim_is_exclusive(self, store: DatabaseStore) -> None:
        await store.insert_pending_action(_action("act-1"))
        other = DatabaseStore(store.db_path)

        assert await store.claim_action("act-1") is True
        assert await other.claim_action("act-1") is False
        assert await store.claim_action("missing") is False

        assert await store.get_pending_action("act-1") is None
        assert await store.resolve_action("act-1", "rejected") is False
        assert await store.resolve_action("act-1", "executed") is True

    async def test_cannot_resolve_back_to_pending(self, store: DatabaseStore) -> None:
        await store.insert_pending_action(_action("act-1"))
        with pytest.raises(ValueError):
            await store.resolve_action("act-1", "pending_approval")


class TestApprovalPatternStore:
    """Tests for approval pattern counters."""

    async def test_approval_creates_pattern(self, store: DatabaseStore) -> None:
        await store.record_pattern_approval("fp", "email.send", {"to": "example.com"}, 3)

        pattern = await store.get_approval_pattern("fp")
        assert pattern.consecutive_approvals == 1
        assert pattern.total_approvals == 1
        assert pattern.auto_execute_threshold == 3
        assert pattern.descriptor == {"to": "example.com"}
        assert pattern.last_approval_at is not None

    async def test_rejection_resets_approval_streak(self, store: DatabaseStore) -> None:
        for _ in range(2):
            await store.record_pattern_approval("fp", "email.send", {}, 3)
        await store.record_pattern_rejection("fp", "email.send", {}, 3)

        pattern = await store.get_approval_pattern("fp")
        assert pattern.consecutive_approvals == 0
        assert pattern.consecutive_rejections == 1
        assert pattern.total_approvals == 2
        assert pattern.total_rejections == 1

    async def test_approval_resets_rejection_streak(self, store: DatabaseStore) -> None:
        await store.record_pattern_rejection("fp", "email.send", {}, 3)
        await store.record_pattern_approval("fp", "email.send", {}, 3)

        pattern = await store.get_approval_pattern("fp")
        assert pattern.consecutive_rejections == 0
        assert pattern.consecutive_approvals == 1

    async def test_threshold_only_raises(self, store: DatabaseStore) -> None:
        await store.record_pattern_approval("fp", "email.send", {}, 3)

        assert await store.raise_pattern_threshold("fp", 5) is True
        assert await store.raise_pattern_threshold("fp", 2) is False
        assert (await store.get_approval_pattern("fp")).auto_execute_threshold == 5

    async def test_reset_pattern(self, store: DatabaseStore) -> None:
        for _ in range(4):
            await store.record_pattern_approval("fp", "email.send", {}, 3)
        await store.raise_pattern_threshold("fp", 8)

        assert await store.reset_pattern("fp", 3) is True
        pattern = await store.get_approval_pattern("fp")
        assert pattern.consecutive_approvals == 0
        assert pattern.auto_execute_threshold == 3
        assert pattern.total_approvals == 4


class TestEscalationPromptStore:
    """Tests for escalation prompt persistence."""

    def _prompt(self, prompt_id: str, expires_in: timedelta) -> EscalationPrompt:
        now = datetime.now(UTC)
        return EscalationPrompt(
            id=prompt_id,
            type="guardian_to_partner",
            domain="email",
            action_type="email.archive",
            consecutive_approvals=10,
            message="Want Envoy to handle these automatically?",
            preview_actions=["Archive routine emails automatically"],
            created_at=now,
            expires_at=now + expires_in,
        )

    async def test_create_and_get(self, store: DatabaseStore) -> None:
        await store.create_escalation_prompt(self._prompt("p-1", timedelta(days=7)))

        prompt = await store.get_escalation_prompt("p-1")
        assert prompt.status == "pending"
        assert prompt.preview_actions == ["Archive routine emails automatically"]

    async def test_resolve_only_pending(self, store: DatabaseStore) -> None:
        await store.create_escalation_prompt(self._prompt("p-1", timedelta(days=7)))

        assert await store.resolve_escalation_prompt("p-1", "dismissed") is True
        assert await store.resolve_escalation_prompt("p-1", "accepted") is False
        assert (await store.get_escalation_prompt("p-1")).status == "dismissed"

    async def test_expire_old_prompts(self, store: DatabaseStore) -> None:
        await store.create_escalation_prompt(self._prompt("old", timedelta(seconds=-1)))
        await store.create_escalation_prompt(self._prompt("fresh", timedelta(days=7)))

        assert await store.expire_escalation_prompts() == 1
        pending = await store.get_escalation_prompts("pending")
        assert [p.id for p in pending] == ["fresh"]


class TestStyleProfileStore:
    """Tests for versioned style profiles."""

    async def test_versions_increase(self, store: DatabaseStore) -> None:
        first = await store.save_style_profile({"tone": {}}, emails_analyzed=5, is_active=False)
        second = await store.save_style_profile({"tone": {}}, emails_analyzed=25, is_active=True)

        assert (first.version, second.version) == (1, 2)
        latest = await store.get_latest_style_profile()
        assert latest.id == second.id
        assert latest.is_active is True

    async def test_no_profile(self, store: DatabaseStore) -> None:
        assert await store.get_latest_style_profile() is None


class TestAgentState:
    """Tests for key-value agent state."""

    async def test_set_and_get(self, store: DatabaseStore) -> None:
        await store.set_state("autonomy.tier.email", "partner")
        await store.set_state("autonomy.tier.email", "alter_ego")
        assert await store.get_state("autonomy.tier.email") == "alter_ego"

    async def test_prefix_lookup(self, store: DatabaseStore) -> None:
        await store.set_state("autonomy.tier.email", "partner")
        await store.set_state("autonomy.tier.calendar", "guardian")
        await store.set_state("other", "x")

        states = await store.get_states_with_prefix("autonomy.tier.")
        assert states == {"autonomy.tier.email": "partner", "autonomy.tier.calendar": "guardian"}

    async def test_missing_key(self, store: DatabaseStore) -> None:
        assert await store.get_state("missing") is None
