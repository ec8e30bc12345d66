"""JSON API routes for the Envoy agent.

All routes live on api_router (prefix /api) and reach the agent through
FastAPI dependencies on app.state.

Error mapping:
- ActionNotPendingError -> 409
- ModelError -> 502 (the model backend failed; nothing was persisted)
- unknown conversation / escalation prompt -> 404
- agent not initialized -> 503
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from envoy.agent.escalation import EscalationEngine
from envoy.agent.orchestrator import Orchestrator, OrchestratorResponse
from envoy.agent.types import ConversationTurn
from envoy.config import get_config, reload_config_if_changed
from envoy.core.errors import ActionNotPendingError, DatabaseError, ModelError
from envoy.core.logging import get_logger
from envoy.db.store import ApprovalPattern, DatabaseStore, EscalationPrompt
from envoy.web.dependencies import get_escalation_engine, get_orchestrator, get_store

logger = get_logger(__name__)

api_router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Pydantic models for API input validation
# ---------------------------------------------------------------------------


class MessageRequest(BaseModel):
    """Request body for sending a message to the agent."""

    message: str = Field(min_length=1)
    conversation_id: str | None = None


class EscalationResponseRequest(BaseModel):
    """Request body for answering an escalation prompt."""

    accepted: bool


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _response_to_dict(response: OrchestratorResponse) -> dict[str, Any]:
    return {
        "message": response.message,
        "conversation_id": response.conversation_id,
        "actions": [a.to_dict() for a in response.actions],
        "context": [
            {"title": r.title, "source": r.source, "score": r.score} for r in response.context
        ],
        "tokens_used": response.tokens_used.to_dict(),
        "style_score": response.style_score.to_dict() if response.style_score else None,
    }


def _turn_to_dict(turn: ConversationTurn) -> dict[str, Any]:
    return {
        "id": turn.id,
        "role": turn.role,
        "content": turn.content,
        "timestamp": turn.timestamp.isoformat(),
        "context": turn.context,
        "actions": [a.to_dict() for a in turn.actions],
        "tokens_used": turn.tokens_used.to_dict() if turn.tokens_used else None,
    }


def _pattern_to_dict(pattern: ApprovalPattern) -> dict[str, Any]:
    return {
        "fingerprint": pattern.fingerprint,
        "action_type": pattern.action_type,
        "descriptor": pattern.descriptor,
        "consecutive_approvals": pattern.consecutive_approvals,
        "consecutive_rejections": pattern.consecutive_rejections,
        "total_approvals": pattern.total_approvals,
        "total_rejections": pattern.total_rejections,
        "auto_execute_threshold": pattern.auto_execute_threshold,
        "is_routine": pattern.is_routine,
    }


def _prompt_to_dict(prompt: EscalationPrompt) -> dict[str, Any]:
    return {
        "id": prompt.id,
        "type": prompt.type,
        "domain": prompt.domain,
        "action_type": prompt.action_type,
        "consecutive_approvals": prompt.consecutive_approvals,
        "message": prompt.message,
        "preview_actions": prompt.preview_actions,
        "created_at": prompt.created_at.isoformat(),
        "expires_at": prompt.expires_at.isoformat(),
        "status": prompt.status,
    }


# ---------------------------------------------------------------------------
# Conversation routes
# ---------------------------------------------------------------------------


@api_router.post("/messages")
async def send_message(
    body: MessageRequest,
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Process a user message; starts a new conversation when no ID is given.

    Edits to the config file are picked up before the message is handled.
    """
    if reload_config_if_changed():
        request.app.state.config = get_config()
        orchestrator.update_config(request.app.state.config)

    try:
        response = await orchestrator.process_message(body.message, body.conversation_id)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from None
    except ModelError as e:
        logger.error("message_model_error", status_code=e.status_code, error=str(e))
        raise HTTPException(status_code=502, detail=str(e)) from None

    return _response_to_dict(response)


@api_router.get("/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    store: DatabaseStore | None = Depends(get_store),
):
    """All turns of a conversation in chronological order."""
    if store is None or await store.get_conversation(conversation_id) is None:
        raise HTTPException(status_code=404, detail="Conversation not found")

    turns = await orchestrator.get_conversation(conversation_id)
    return {
        "conversation_id": conversation_id,
        "turns": [_turn_to_dict(t) for t in turns],
    }


# ---------------------------------------------------------------------------
# Approval routes
# ---------------------------------------------------------------------------


@api_router.get("/actions/pending")
async def list_pending_actions(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Pending actions, oldest first."""
    actions = await orchestrator.get_pending_actions()
    return {"actions": [a.to_dict() for a in actions]}


@api_router.post("/actions/{action_id}/approve")
async def approve_action(
    action_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Execute a pending action."""
    try:
        response = await orchestrator.approve_action(action_id)
    except ActionNotPendingError as e:
        raise HTTPException(status_code=409, detail=str(e)) from None

    return {
        "status": "executed" if response.ok else "failed",
        "action_id": action_id,
        "response": response.to_dict(),
    }


@api_router.post("/actions/{action_id}/reject")
async def reject_action(
    action_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Reject a pending action. Nothing is executed."""
    if not await orchestrator.reject_action(action_id):
        raise HTTPException(status_code=409, detail=f"Action {action_id} not found or not pending")
    return {"status": "rejected", "action_id": action_id}


@api_router.get("/approval-patterns")
async def list_approval_patterns(orchestrator: Orchestrator = Depends(get_orchestrator)):
    patterns = await orchestrator.get_approval_patterns()
    return {"patterns": [_pattern_to_dict(p) for p in patterns]}


# ---------------------------------------------------------------------------
# Escalation routes
# ---------------------------------------------------------------------------


@api_router.get("/escalations")
async def list_escalations(escalation: EscalationEngine = Depends(get_escalation_engine)):
    """Check approval history for new escalations, then list pending prompts."""
    await escalation.check_for_escalations()
    prompts = await escalation.get_active_prompts()
    return {"prompts": [_prompt_to_dict(p) for p in prompts]}


@api_router.post("/escalations/{prompt_id}/respond")
async def respond_to_escalation(
    prompt_id: str,
    body: EscalationResponseRequest,
    escalation: EscalationEngine = Depends(get_escalation_engine),
):
    """Accept (raise the domain tier) or dismiss an escalation prompt."""
    prompt = await escalation.get_prompt(prompt_id)
    if prompt is None:
        raise HTTPException(status_code=404, detail="Escalation prompt not found")

    if not await escalation.record_response(prompt_id, body.accepted):
        raise HTTPException(status_code=409, detail="Escalation prompt already resolved")

    return {
        "status": "accepted" if body.accepted else "dismissed",
        "prompt_id": prompt_id,
        "domain": prompt.domain,
    }


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@api_router.get("/health")
async def health_check(request: Request):
    """Health check endpoint for monitoring."""
    from envoy.web.app import APP_VERSION

    store: DatabaseStore | None = request.app.state.store
    if store is None:
        return {"status": "degraded", "pending_actions": None, "version": APP_VERSION}

    try:
        pending = await store.get_pending_actions()
    except DatabaseError as e:
        logger.error("health_check_db_failed", error=str(e))
        return {"status": "degraded", "pending_actions": None, "version": APP_VERSION}

    return {"status": "healthy", "pending_actions": len(pending), "version": APP_VERSION}
