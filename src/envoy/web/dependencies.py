"""FastAPI dependency injection helpers.

Extracts shared components from app.state for use in route handlers. All of
them are created during the FastAPI lifespan. Agent dependencies raise 503
when startup could not build them (for example, invalid config).

Usage:
    from envoy.web.dependencies import get_orchestrator

    @router.get("/actions/pending")
    async def pending(orchestrator: Orchestrator = Depends(get_orchestrator)):
        return await orchestrator.get_pending_actions()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import HTTPException, Request

if TYPE_CHECKING:
    from envoy.agent.escalation import EscalationEngine
    from envoy.agent.orchestrator import Orchestrator
    from envoy.config_schema import AppConfig
    from envoy.db.store import DatabaseStore


def get_store(request: Request) -> DatabaseStore | None:
    """Get the shared DatabaseStore from app state (None if startup failed)."""
    return request.app.state.store


def get_config(request: Request) -> AppConfig | None:
    """Get the AppConfig loaded at startup (None if it failed to load)."""
    return request.app.state.config


def get_orchestrator(request: Request) -> Orchestrator:
    orchestrator = request.app.state.orchestrator
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Agent not available; check config and logs")
    return orchestrator


def get_escalation_engine(request: Request) -> EscalationEngine:
    escalation = request.app.state.escalation
    if escalation is None:
        raise HTTPException(status_code=503, detail="Agent not available; check config and logs")
    return escalation
