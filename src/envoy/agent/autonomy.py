"""Autonomy decisions: auto-approve an action or ask the user first.

Every action type belongs to a domain (email, calendar, reminders, ...) and a
risk class (read, write, execute, communicate). Each domain runs at a tier:

- guardian: nothing is auto-approved by tier
- partner: reads and writes are auto-approved
- alter_ego: everything except outbound communication is auto-approved

Which risk classes a tier covers comes from autonomy.tier_permissions.
Actions a tier does not cover can still be auto-approved once the user has
approved the same kind of request enough times in a row (see
envoy.agent.approval_patterns).

Usage:
    manager = AutonomyManager(config.autonomy, tracker, store)
    await manager.load_persisted_tiers()

    decision = await manager.decide("email.send", payload)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, get_args

from envoy.agent.types import ACTION_POLICY, Decision, RiskClass, domain_for_action
from envoy.config_schema import Tier
from envoy.core.logging import get_logger

if TYPE_CHECKING:
    from envoy.agent.approval_patterns import ApprovalPatternTracker
    from envoy.config_schema import AutonomyConfig
    from envoy.db.store import DatabaseStore

logger = get_logger(__name__)

TIERS: tuple[str, ...] = get_args(Tier)
TIER_STATE_PREFIX = "autonomy.tier."


class AutonomyManager:
    """Maps actions to domains and tiers and decides whether they need approval."""

    def __init__(
        self,
        config: AutonomyConfig,
        tracker: ApprovalPatternTracker,
        store: DatabaseStore | None = None,
    ) -> None:
        self._config = config
        self._tracker = tracker
        self._store = store
        # Tiers changed at runtime (escalation accepted, user setting) win over config
        self._tier_overrides: dict[str, Tier] = {}

    def get_domain_for_action(self, action_type: str) -> str:
        return domain_for_action(action_type)

    def get_risk_class(self, action_type: str) -> RiskClass:
        policy = ACTION_POLICY.get(action_type)
        # Unknown action types are treated as side-effecting
        return policy[1] if policy is not None else "execute"

    def get_domain_tier(self, domain: str) -> Tier:
        if domain in self._tier_overrides:
            return self._tier_overrides[domain]
        return self._config.domain_overrides.get(domain, self._config.default_tier)

    def get_tier_for_action(self, action_type: str) -> Tier:
        return self.get_domain_tier(self.get_domain_for_action(action_type))

    def get_config(self) -> dict[str, Any]:
        """Effective autonomy settings, for display."""
        domains = {domain for domain, _ in ACTION_POLICY.values()}
        domains |= set(self._config.domain_overrides) | set(self._tier_overrides)
        return {
            "default_tier": self._config.default_tier,
            "domains": {domain: self.get_domain_tier(domain) for domain in sorted(domains)},
            "tier_permissions": self._config.tier_permissions.model_dump(),
        }

    async def set_domain_tier(self, domain: str, tier: Tier) -> None:
        """Change a domain's tier, persisting it when a store is attached."""
        if tier not in TIERS:
            raise ValueError(f"Unknown tier '{tier}'. Use one of: {', '.join(TIERS)}")
        previous = self.get_domain_tier(domain)
        self._tier_overrides[domain] = tier
        if self._store is not None:
            await self._store.set_state(f"{TIER_STATE_PREFIX}{domain}", tier)
        logger.info("domain_tier_changed", domain=domain, previous=previous, tier=tier)

    async def load_persisted_tiers(self) -> None:
        """Load tiers saved by set_domain_tier in an earlier run."""
        if self._store is None:
            return
        saved = await self._store.get_states_with_prefix(TIER_STATE_PREFIX)
        for key, value in saved.items():
            if value not in TIERS:
                logger.warning("persisted_tier_invalid", key=key, value=value)
                continue
            self._tier_overrides[key[len(TIER_STATE_PREFIX) :]] = value
        logger.debug("persisted_tiers_loaded", count=len(self._tier_overrides))

    async def decide(self, action_type: str, payload: dict[str, Any] | None = None) -> Decision:
        """Decide whether an action may run without asking.

        Read-only: consults configuration and approval history only.
        """
        tier = self.get_tier_for_action(action_type)
        risk = self.get_risk_class(action_type)

        if risk in self._config.tier_permissions.for_tier(tier):
            return "auto_approve"

        if payload is not None and await self._tracker.is_routine(action_type, payload):
            logger.debug("action_routine_auto_approved", action_type=action_type, tier=tier)
            return "auto_approve"

        return "require_approval"
