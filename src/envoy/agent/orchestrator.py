"""Agent loop: turns a user message into a reply plus executed or queued actions.

One call to process_message:
1. Retrieves knowledge context for the message
2. Builds the prompt (system prompt, context, recent history, message)
3. Calls the model with the tool catalog
4. Routes each tool call: local tools answer immediately; gated tools go
   through the autonomy decision and are executed or queued for approval
   (email drafts are restyled first)
5. If any tool produced a result, asks the model for a final reply that
   folds the results in
6. Persists the user turn and the assistant turn

Calls for the same conversation are serialized; different conversations run
concurrently. A model failure in the main loop propagates as ModelError; a
failing action only marks that action failed. Approvals claim the pending row
in the database before executing, so an action runs at most once even when
the CLI and the API server approve it together.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from envoy.agent.prompts import (
    build_messages,
    build_system_prompt,
    format_tool_results,
    pending_approval_note,
)
from envoy.agent.tools import (
    AGENT_TOOLS,
    STYLED_DRAFT_TOOLS,
    GatedTool,
    LocalTool,
    execute_local_tool,
    get_route,
)
from envoy.agent.types import ActionResponse, AgentAction, ConversationTurn, TokenUsage
from envoy.core.errors import ActionNotPendingError
from envoy.core.logging import conversation_scope, get_logger
from envoy.style.refiner import StyleDraftArgs

if TYPE_CHECKING:
    from envoy.agent.approval_patterns import ApprovalPatternTracker
    from envoy.agent.autonomy import AutonomyManager
    from envoy.agent.collaborators import (
        ActionExecutor,
        KnowledgeSearch,
        ModelProvider,
        SearchResult,
        ToolCall,
    )
    from envoy.config_schema import AppConfig
    from envoy.db.store import ApprovalPattern, DatabaseStore
    from envoy.style.refiner import StyleDraftRefiner
    from envoy.style.scorer import StyleScore

logger = get_logger(__name__)


@dataclass
class OrchestratorResponse:
    """Result of processing one user message."""

    message: str
    conversation_id: str
    actions: list[AgentAction] = field(default_factory=list)
    context: list[SearchResult] = field(default_factory=list)
    tokens_used: TokenUsage = field(default_factory=TokenUsage)
    style_score: StyleScore | None = None

    @property
    def pending_count(self) -> int:
        return sum(1 for a in self.actions if a.status == "pending_approval")


@dataclass
class _ToolOutcome:
    actions: list[AgentAction] = field(default_factory=list)
    results: list[tuple[str, Any]] = field(default_factory=list)
    style_score: StyleScore | None = None


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLocks:
    """One asyncio.Lock per key, dropped once no task holds or waits on it."""

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.setdefault(key, _LockEntry())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    return [str(value)]


class Orchestrator:
    """Runs the reasoning loop and owns the approval surface."""

    def __init__(
        self,
        *,
        config: AppConfig,
        store: DatabaseStore,
        model_provider: ModelProvider,
        knowledge: KnowledgeSearch,
        executor: ActionExecutor,
        autonomy: AutonomyManager,
        tracker: ApprovalPatternTracker,
        refiner: StyleDraftRefiner | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._provider = model_provider
        self._knowledge = knowledge
        self._executor = executor
        self.autonomy = autonomy
        self._tracker = tracker
        self._refiner = refiner
        self._voice_mode = False
        self._conversation_locks = KeyedLocks()

    def set_voice_mode(self, active: bool) -> None:
        self._voice_mode = active

    def update_config(self, config: AppConfig) -> None:
        """Use a reloaded config for the assistant name, models and agent settings."""
        self._config = config
        logger.info("orchestrator_config_updated", agent_model=config.models.agent)

    # =========================================================================
    # Message processing
    # =========================================================================

    async def process_message(
        self, message: str, conversation_id: str | None = None
    ) -> OrchestratorResponse:
        """Process a user message within a conversation (new one if None)."""
        if not message or not message.strip():
            raise ValueError("message must not be empty")

        conversation_id = conversation_id or str(uuid.uuid4())
        async with self._conversation_locks.hold(conversation_id):
            with conversation_scope(conversation_id):
                return await self._process(message, conversation_id)

    async def _process(self, message: str, conversation_id: str) -> OrchestratorResponse:
        agent_config = self._config.agent
        await self._store.ensure_conversation(conversation_id)
        user_timestamp = datetime.now(UTC)

        context = await self._retrieve_context(message)
        history = await self._store.get_turns(conversation_id, limit=agent_config.history_turns)

        messages = build_messages(
            system_prompt=build_system_prompt(
                self._config.assistant_name, AGENT_TOOLS, voice_mode=self._voice_mode
            ),
            message=message,
            context=context,
            history=history,
            history_turns=agent_config.history_turns,
            context_chars=agent_config.context_chars,
        )

        response = await self._provider.chat(
            model=self._config.models.agent,
            messages=messages,
            tools=AGENT_TOOLS,
            temperature=agent_config.temperature,
        )
        tokens = response.tokens_used
        final_message = response.message

        outcome = _ToolOutcome()
        if response.tool_calls:
            outcome = await self._process_tool_calls(response.tool_calls)

            if outcome.results:
                follow_up = await self._provider.chat(
                    model=self._config.models.agent,
                    messages=[
                        *messages,
                        {"role": "assistant", "content": response.message},
                        {"role": "user", "content": format_tool_results(outcome.results)},
                    ],
                    temperature=agent_config.temperature,
                )
                tokens = tokens + follow_up.tokens_used
                final_message = follow_up.message

        pending_count = sum(1 for a in outcome.actions if a.status == "pending_approval")
        final_message += pending_approval_note(pending_count)

        await self._store.append_turn(
            ConversationTurn(
                id=str(uuid.uuid4()),
                conversation_id=conversation_id,
                role="user",
                content=message,
                timestamp=user_timestamp,
                context=[asdict(r) for r in context],
            )
        )
        await self._store.append_turn(
            ConversationTurn(
                id=str(uuid.uuid4()),
                conversation_id=conversation_id,
                role="assistant",
                content=final_message,
                timestamp=datetime.now(UTC),
                actions=outcome.actions,
                tokens_used=tokens,
            )
        )

        logger.info(
            "message_processed",
            tool_calls=len(response.tool_calls),
            actions=len(outcome.actions),
            pending=pending_count,
            prompt_tokens=tokens.prompt,
            completion_tokens=tokens.completion,
        )

        return OrchestratorResponse(
            message=final_message,
            conversation_id=conversation_id,
            actions=outcome.actions,
            context=context,
            tokens_used=tokens,
            style_score=outcome.style_score,
        )

    async def _retrieve_context(self, message: str) -> list[SearchResult]:
        limit = self._config.agent.context_limit
        if limit == 0:
            return []
        try:
            return await self._knowledge.search(message, limit=limit)
        except Exception as e:
            logger.warning("context_retrieval_failed", error=str(e))
            return []

    async def _process_tool_calls(self, tool_calls: list[ToolCall]) -> _ToolOutcome:
        outcome = _ToolOutcome()

        for call in tool_calls:
            route = get_route(call.name)

            if route is None:
                logger.warning("unknown_tool_requested", tool=call.name)
                continue

            if isinstance(route, LocalTool):
                result = await execute_local_tool(
                    call.name, route.handler, call.arguments, self._knowledge
                )
                outcome.results.append((call.name, result))
                logger.debug("local_tool_executed", tool=call.name)
                continue

            action, result = await self._handle_gated_tool(call, route, outcome)
            outcome.actions.append(action)
            if result is not None:
                outcome.results.append((call.name, result))

        return outcome

    async def _handle_gated_tool(
        self, call: ToolCall, route: GatedTool, outcome: _ToolOutcome
    ) -> tuple[AgentAction, Any | None]:
        action_type = route.action_type
        payload = dict(call.arguments)

        if call.name in STYLED_DRAFT_TOOLS and payload.get("body") and self._refiner:
            styled = await self._refiner.apply_style_to_draft(
                StyleDraftArgs(
                    body=str(payload["body"]),
                    to=_as_list(payload.get("to")),
                    subject=str(payload.get("subject") or ""),
                    is_reply=bool(payload.get("replyToMessageId")),
                )
            )
            payload["body"] = styled.body
            if styled.score is not None:
                outcome.style_score = styled.score

        domain = self.autonomy.get_domain_for_action(action_type)
        tier = self.autonomy.get_domain_tier(domain)
        decision = await self.autonomy.decide(action_type, payload)

        action = AgentAction(
            id=uuid.uuid4().hex,
            action_type=action_type,
            payload=payload,
            reasoning=f"Model requested {call.name} based on conversation context",
            domain=domain,
            tier=tier,
            status="pending_approval",
            created_at=datetime.now(UTC),
        )

        logger.info(
            "tool_call_routed",
            tool=call.name,
            action_type=action_type,
            domain=domain,
            tier=tier,
            decision=decision,
        )

        if decision == "require_approval":
            await self._store.insert_pending_action(action)
            logger.info("action_queued", action_id=action.id, action_type=action_type)
            return action, None

        response = await self._execute(action_type, payload)
        action.status = "executed" if response.ok else "failed"
        action.executed_at = datetime.now(UTC)
        action.response = response
        result = response.data if response.ok else {"error": response.error}
        return action, result

    async def _execute(self, action_type: str, payload: dict[str, Any]) -> ActionResponse:
        """Run an action through the executor; exceptions become failure responses."""
        try:
            response = await self._executor.send_action(action_type, payload)
        except Exception as e:
            logger.error("action_execution_failed", action_type=action_type, error=str(e))
            return ActionResponse.failure(str(e))

        if not response.ok:
            logger.warning(
                "action_execution_unsuccessful", action_type=action_type, error=response.error
            )
        return response

    # =========================================================================
    # Conversation and approval surface
    # =========================================================================

    async def get_conversation(self, conversation_id: str) -> list[ConversationTurn]:
        return await self._store.get_turns(conversation_id)

    async def get_pending_actions(self) -> list[AgentAction]:
        return await self._store.get_pending_actions()

    async def approve_action(self, action_id: str) -> ActionResponse:
        """Execute a pending action and record the approval.

        The row is claimed in the database before the executor runs, so an
        action approved from the CLI and the API at once is executed once.

        Raises:
            ActionNotPendingError: If the action is unknown, already resolved
                or claimed by another approval
        """
        action = await self._store.get_pending_action(action_id)
        if action is None or not await self._store.claim_action(action_id):
            raise ActionNotPendingError(action_id)

        response = await self._execute(action.action_type, action.payload)
        status = "executed" if response.ok else "failed"

        if not await self._store.resolve_action(action_id, status, response):
            logger.warning("action_resolved_elsewhere", action_id=action_id)
            return response

        # Only a successful run counts toward the approval streak
        if response.ok:
            await self._tracker.record_approval(action.action_type, action.payload)

        logger.info(
            "action_approved",
            action_id=action_id,
            action_type=action.action_type,
            status=status,
        )
        return response

    async def reject_action(self, action_id: str) -> bool:
        """Reject a pending action. Unknown, resolved or claimed IDs are a no-op.

        Returns:
            True if the action was pending and is now rejected
        """
        action = await self._store.get_pending_action(action_id)
        if action is None or not await self._store.resolve_action(action_id, "rejected"):
            logger.debug("reject_ignored", action_id=action_id)
            return False

        await self._tracker.record_rejection(action.action_type, action.payload)
        logger.info("action_rejected", action_id=action_id, action_type=action.action_type)
        return True

    async def get_approval_count(self, action_type: str, payload: dict[str, Any]) -> int:
        return await self._tracker.get_consecutive_approvals(action_type, payload)

    async def get_approval_threshold(self, action_type: str, payload: dict[str, Any]) -> int:
        return await self._tracker.get_threshold(action_type, payload)

    async def get_approval_patterns(self) -> list[ApprovalPattern]:
        return await self._tracker.get_all_patterns()
