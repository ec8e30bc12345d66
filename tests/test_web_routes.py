"""Tests for web routes and API endpoints.

Tests the FastAPI application routes using httpx AsyncClient, covering
message processing, conversation history, action approval/rejection,
escalation prompts and the health endpoint.
"""

import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from envoy.agent.collaborators import ChatResult, ToolCall
from envoy.agent.types import TokenUsage
from envoy.config import get_config
from envoy.config_schema import AppConfig
from envoy.core.errors import ModelError
from envoy.services import EnvoyServices, build_services
from envoy.style.refiner import StyledDraft
from envoy.style.scorer import StyleScore
from envoy.web.app import APP_VERSION, create_app

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _reply(message: str = "", tool_calls: list[ToolCall] | None = None) -> ChatResult:
    return ChatResult(message=message, tool_calls=tool_calls or [], tokens_used=TokenUsage(8, 4))


def _send_email() -> ToolCall:
    return ToolCall(
        name="send_email",
        arguments={"to": ["ana@example.com"], "subject": "Lunch", "body": "1pm?"},
    )


@pytest.fixture
def web_config(sample_config_dict: dict[str, Any], data_dir: Path) -> AppConfig:
    """Return a config whose database lives in the temp data dir."""
    return AppConfig(**sample_config_dict, database={"path": str(data_dir / "web.db")})


@pytest.fixture
async def services(
    web_config: AppConfig,
    model_provider: AsyncMock,
    knowledge: AsyncMock,
    executor: AsyncMock,
) -> EnvoyServices:
    """Build real services around mocked collaborators."""
    built = await build_services(
        web_config, model_provider=model_provider, knowledge=knowledge, executor=executor
    )
    yield built
    await built.aclose()


@pytest.fixture
def app(services: EnvoyServices) -> FastAPI:
    """Create a FastAPI app with test dependencies."""
    test_app = create_app()

    # Override app state with test dependencies
    test_app.state.config = services.config
    test_app.state.services = services
    test_app.state.store = services.store
    test_app.state.orchestrator = services.orchestrator
    test_app.state.escalation = services.escalation

    return test_app


@pytest.fixture
async def client(app: FastAPI) -> AsyncClient:
    """Return an httpx AsyncClient for the test app."""
    # Override lifespan to avoid real initialization
    app.router.lifespan_context = _noop_lifespan
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@asynccontextmanager
async def _noop_lifespan(app: FastAPI):
    """No-op lifespan that preserves existing app.state."""
    yield


async def _queue_action(client: AsyncClient, model_provider: AsyncMock) -> str:
    model_provider.chat.return_value = _reply("Queued.", [_send_email()])
    response = await client.post("/api/messages", json={"message": "Email Ana"})
    assert response.status_code == 200
    return response.json()["actions"][0]["id"]


# ---------------------------------------------------------------------------
# Messages and conversations
# ---------------------------------------------------------------------------


class TestMessages:
    """Tests for POST /api/messages and GET /api/conversations/{id}."""

    async def test_send_message(self, client: AsyncClient) -> None:
        response = await client.post("/api/messages", json={"message": "hello"})

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Hello!"
        assert data["conversation_id"]
        assert data["actions"] == []
        assert data["tokens_used"] == {"prompt": 10, "completion": 5}
        assert data["style_score"] is None

    async def test_style_score_includes_breakdown(
        self, client: AsyncClient, services: EnvoyServices, model_provider: AsyncMock
    ) -> None:
        score = StyleScore(
            overall=81, greeting=100, signoff=75, sentence_length=60, formality=80, vocabulary=90
        )
        refiner = AsyncMock()
        refiner.apply_style_to_draft.return_value = StyledDraft(body="Hey Ana", score=score)
        services.orchestrator._refiner = refiner
        model_provider.chat.return_value = _reply("Drafted.", [_send_email()])

        response = await client.post("/api/messages", json={"message": "Email Ana"})

        assert response.json()["style_score"] == {
            "overall": 81,
            "breakdown": {
                "greeting": 100,
                "signoff": 75,
                "sentence_length": 60,
                "formality": 80,
                "vocabulary": 90,
            },
        }

    async def test_empty_message_rejected(self, client: AsyncClient) -> None:
        response = await client.post("/api/messages", json={"message": ""})
        assert response.status_code == 422

    async def test_model_failure_is_502(
        self, client: AsyncClient, model_provider: AsyncMock
    ) -> None:
        model_provider.chat.side_effect = ModelError("overloaded", status_code=529)

        response = await client.post("/api/messages", json={"message": "hello"})

        assert response.status_code == 502

    async def test_conversation_history(
        self, client: AsyncClient, model_provider: AsyncMock
    ) -> None:
        model_provider.chat.side_effect = [_reply("one"), _reply("two")]
        first = await client.post("/api/messages", json={"message": "a"})
        conversation_id = first.json()["conversation_id"]
        await client.post(
            "/api/messages", json={"message": "b", "conversation_id": conversation_id}
        )

        response = await client.get(f"/api/conversations/{conversation_id}")

        assert response.status_code == 200
        turns = response.json()["turns"]
        assert [(t["role"], t["content"]) for t in turns] == [
            ("user", "a"),
            ("assistant", "one"),
            ("user", "b"),
            ("assistant", "two"),
        ]

    async def test_config_edit_applied_before_next_message(
        self,
        client: AsyncClient,
        app: FastAPI,
        model_provider: AsyncMock,
        set_config_env: None,
        config_file: Path,
    ) -> None:
        get_config()
        config_file.write_text('assistant_name: "Jeeves"\n')
        future = time.time() + 5
        os.utime(config_file, (future, future))

        response = await client.post("/api/messages", json={"message": "hello"})

        assert response.status_code == 200
        assert app.state.config.assistant_name == "Jeeves"
        system_prompt = model_provider.chat.await_args.kwargs["messages"][0]["content"]
        assert "Jeeves" in system_prompt

    async def test_unknown_conversation_404(self, client: AsyncClient) -> None:
        response = await client.get("/api/conversations/nope")
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------


class TestActions:
    """Tests for pending action endpoints."""

    async def test_pending_listed(self, client: AsyncClient, model_provider: AsyncMock) -> None:
        action_id = await _queue_action(client, model_provider)

        response = await client.get("/api/actions/pending")

        assert response.status_code == 200
        [action] = response.json()["actions"]
        assert action["id"] == action_id
        assert action["status"] == "pending_approval"
        assert action["action_type"] == "email.send"

    async def test_approve(
        self, client: AsyncClient, model_provider: AsyncMock, executor: AsyncMock
    ) -> None:
        action_id = await _queue_action(client, model_provider)

        response = await client.post(f"/api/actions/{action_id}/approve")

        assert response.status_code == 200
        assert response.json()["status"] == "executed"
        assert response.json()["response"]["data"] == {"ok": True}
        executor.send_action.assert_awaited_once()

        again = await client.post(f"/api/actions/{action_id}/approve")
        assert again.status_code == 409

    async def test_reject(
        self, client: AsyncClient, model_provider: AsyncMock, executor: AsyncMock
    ) -> None:
        action_id = await _queue_action(client, model_provider)

        response = await client.post(f"/api/actions/{action_id}/reject")

        assert response.status_code == 200
        assert response.json() == {"status": "rejected", "action_id": action_id}
        executor.send_action.assert_not_called()

        pending = await client.get("/api/actions/pending")
        assert pending.json()["actions"] == []

    async def test_reject_unknown_409(self, client: AsyncClient) -> None:
        response = await client.post("/api/actions/missing/reject")
        assert response.status_code == 409

    async def test_approval_patterns(
        self, client: AsyncClient, model_provider: AsyncMock
    ) -> None:
        action_id = await _queue_action(client, model_provider)
        await client.post(f"/api/actions/{action_id}/approve")

        response = await client.get("/api/approval-patterns")

        [pattern] = response.json()["patterns"]
        assert pattern["fingerprint"] == "email.send|replyToMessageId=false;to=example.com"
        assert pattern["consecutive_approvals"] == 1
        assert pattern["is_routine"] is False


# ---------------------------------------------------------------------------
# Escalations
# ---------------------------------------------------------------------------


class TestEscalations:
    """Tests for escalation endpoints."""

    async def _seed_streak(self, services: EnvoyServices) -> None:
        for _ in range(10):
            await services.store.record_pattern_approval("email.archive", "email.archive", {}, 3)

    async def test_list_creates_and_returns_prompts(
        self, client: AsyncClient, services: EnvoyServices
    ) -> None:
        await self._seed_streak(services)

        response = await client.get("/api/escalations")

        assert response.status_code == 200
        [prompt] = response.json()["prompts"]
        assert prompt["type"] == "guardian_to_partner"
        assert prompt["domain"] == "email"

    async def test_accept(self, client: AsyncClient, services: EnvoyServices) -> None:
        await self._seed_streak(services)
        prompt_id = (await client.get("/api/escalations")).json()["prompts"][0]["id"]

        response = await client.post(
            f"/api/escalations/{prompt_id}/respond", json={"accepted": True}
        )

        assert response.status_code == 200
        assert response.json() == {
            "status": "accepted",
            "prompt_id": prompt_id,
            "domain": "email",
        }
        assert services.autonomy.get_domain_tier("email") == "partner"

        again = await client.post(
            f"/api/escalations/{prompt_id}/respond", json={"accepted": False}
        )
        assert again.status_code == 409

    async def test_unknown_prompt_404(self, client: AsyncClient) -> None:
        response = await client.post("/api/escalations/missing/respond", json={"accepted": True})
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Health and degraded startup
# ---------------------------------------------------------------------------


class TestHealth:
    """Tests for GET /api/health."""

    async def test_healthy(self, client: AsyncClient) -> None:
        response = await client.get("/api/health")
        assert response.json() == {
            "status": "healthy",
            "pending_actions": 0,
            "version": APP_VERSION,
        }

    async def test_degraded_without_services(self) -> None:
        app = create_app()
        app.state.config = None
        app.state.store = None
        app.state.orchestrator = None
        app.state.escalation = None
        app.router.lifespan_context = _noop_lifespan

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            health = await c.get("/api/health")
            pending = await c.get("/api/actions/pending")

        assert health.json()["status"] == "degraded"
        assert pending.status_code == 503
