"""Wiring of the agent's runtime components.

Both the CLI and the web app build the same object graph from config:
store -> approval tracker -> autonomy manager -> style refiner ->
orchestrator -> escalation engine, with the Anthropic provider as the model
backend and the gateway client as knowledge search and action executor.

Usage:
    services = await build_services(get_config())
    try:
        response = await services.orchestrator.process_message("Hi")
    finally:
        await services.aclose()
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from envoy.agent.approval_patterns import ApprovalPatternTracker
from envoy.agent.autonomy import AutonomyManager
from envoy.agent.escalation import EscalationEngine
from envoy.agent.orchestrator import Orchestrator
from envoy.core.logging import get_logger
from envoy.db.store import DatabaseStore
from envoy.style.profile import StyleProfileStore
from envoy.style.refiner import StyleDraftRefiner

if TYPE_CHECKING:
    from envoy.agent.collaborators import ActionExecutor, KnowledgeSearch, ModelProvider
    from envoy.config_schema import AppConfig
    from envoy.gateway.client import GatewayClient

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class EnvoyServices:
    """Initialized components shared by the CLI and web app."""

    config: AppConfig
    store: DatabaseStore
    tracker: ApprovalPatternTracker
    autonomy: AutonomyManager
    profiles: StyleProfileStore
    orchestrator: Orchestrator
    escalation: EscalationEngine
    gateway: GatewayClient | None = None

    async def aclose(self) -> None:
        if self.gateway is not None:
            await self.gateway.aclose()
        await self.store.checkpoint_wal()


async def build_services(
    config: AppConfig,
    *,
    model_provider: ModelProvider | None = None,
    knowledge: KnowledgeSearch | None = None,
    executor: ActionExecutor | None = None,
) -> EnvoyServices:
    """Initialize the database and build every component from config.

    Collaborators not passed in are created from config: an
    AnthropicModelProvider and a GatewayClient serving as both knowledge
    search and action executor.
    """
    db_path = Path(config.database.path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    store = DatabaseStore(db_path)
    await store.initialize()

    if model_provider is None:
        from envoy.llm.anthropic_provider import AnthropicModelProvider

        model_provider = AnthropicModelProvider.from_config(config.anthropic)

    gateway = None
    if knowledge is None or executor is None:
        from envoy.gateway.client import GatewayClient

        gateway = GatewayClient.from_config(config.gateway)
        knowledge = knowledge or gateway
        executor = executor or gateway

    tracker = ApprovalPatternTracker(store, config.approval)
    autonomy = AutonomyManager(config.autonomy, tracker, store)
    await autonomy.load_persisted_tiers()

    profiles = StyleProfileStore(store, min_samples=config.style.min_samples)
    refiner = StyleDraftRefiner(
        model_provider,
        profiles,
        config.style,
        model=config.models.style,
        temperature=config.agent.temperature,
    )

    orchestrator = Orchestrator(
        config=config,
        store=store,
        model_provider=model_provider,
        knowledge=knowledge,
        executor=executor,
        autonomy=autonomy,
        tracker=tracker,
        refiner=refiner,
    )
    escalation = EscalationEngine(
        store, autonomy, config.escalation, assistant_name=config.assistant_name
    )

    logger.info(
        "services_initialized",
        db_path=str(db_path),
        agent_model=config.models.agent,
        default_tier=config.autonomy.default_tier,
    )

    return EnvoyServices(
        config=config,
        store=store,
        tracker=tracker,
        autonomy=autonomy,
        profiles=profiles,
        orchestrator=orchestrator,
        escalation=escalation,
        gateway=gateway,
    )
