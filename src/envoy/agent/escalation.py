"""Tier escalation prompts.

Watches approval patterns and offers to raise a domain's autonomy tier once
the user keeps approving the same kind of action:

- guardian -> partner: a pattern reaches escalation.guardian_to_partner_approvals
  consecutive approvals
- partner -> alter_ego: a pattern with no rejections ever reaches
  escalation.partner_to_alter_ego_approvals total approvals and
  escalation.partner_to_alter_ego_consecutive in a row

At most one prompt per domain and type is pending at a time, and a dismissed
prompt is not repeated until its cooldown has passed. Unanswered prompts
expire after escalation.prompt_expiry_days.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from envoy.core.logging import get_logger
from envoy.db.store import EscalationPrompt, EscalationType

if TYPE_CHECKING:
    from envoy.agent.autonomy import AutonomyManager
    from envoy.config_schema import EscalationConfig, Tier
    from envoy.db.store import ApprovalPattern, DatabaseStore

logger = get_logger(__name__)

_NEXT_TIER: dict[EscalationType, Tier] = {
    "guardian_to_partner": "partner",
    "partner_to_alter_ego": "alter_ego",
}

# Action type -> what changes once the tier is raised
_PREVIEWS: dict[str, str] = {
    "email.archive": "Archive routine emails automatically and list them in the digest",
    "email.send": "Send routine replies automatically instead of waiting for approval",
    "email.draft": "Save reply drafts automatically",
    "calendar.create": "Create calendar events automatically and list them in the digest",
    "reminder.create": "Create reminders without asking first",
    "messaging.send": "Send routine text messages automatically",
}


def _preview_for(pattern: ApprovalPattern) -> str:
    preview = _PREVIEWS.get(pattern.action_type)
    if preview:
        return preview
    return f"Handle {pattern.action_type} automatically instead of asking for approval"


class EscalationEngine:
    """Creates, lists and resolves tier escalation prompts."""

    def __init__(
        self,
        store: DatabaseStore,
        autonomy: AutonomyManager,
        config: EscalationConfig,
        assistant_name: str = "Envoy",
    ) -> None:
        self._store = store
        self._autonomy = autonomy
        self._config = config
        self._assistant_name = assistant_name

    async def check_for_escalations(
        self, patterns: list[ApprovalPattern] | None = None
    ) -> list[EscalationPrompt]:
        """Create prompts for patterns that crossed an escalation threshold.

        Args:
            patterns: Patterns to check (all stored patterns when None)

        Returns:
            Prompts created by this call
        """
        if not self._config.enabled:
            return []

        await self._store.expire_escalation_prompts()
        if patterns is None:
            patterns = await self._store.list_approval_patterns()

        created: list[EscalationPrompt] = []
        for pattern in patterns:
            prompt_type = self._qualifies(pattern)
            if prompt_type is None:
                continue
            prompt = await self._maybe_create_prompt(prompt_type, pattern)
            if prompt is not None:
                created.append(prompt)

        return created

    def _qualifies(self, pattern: ApprovalPattern) -> EscalationType | None:
        domain = self._autonomy.get_domain_for_action(pattern.action_type)
        tier = self._autonomy.get_domain_tier(domain)
        cfg = self._config

        if tier == "guardian":
            if pattern.consecutive_approvals >= cfg.guardian_to_partner_approvals:
                return "guardian_to_partner"
        elif tier == "partner":
            if (
                pattern.total_rejections == 0
                and pattern.total_approvals >= cfg.partner_to_alter_ego_approvals
                and pattern.consecutive_approvals >= cfg.partner_to_alter_ego_consecutive
            ):
                return "partner_to_alter_ego"
        return None

    async def _maybe_create_prompt(
        self, prompt_type: EscalationType, pattern: ApprovalPattern
    ) -> EscalationPrompt | None:
        domain = self._autonomy.get_domain_for_action(pattern.action_type)
        now = datetime.now(UTC)

        latest = await self._store.get_latest_escalation_prompt(domain, prompt_type)
        if latest is not None:
            if latest.status == "pending":
                return None
            if latest.status == "dismissed" and latest.responded_at is not None:
                cooldown_days = (
                    self._config.guardian_cooldown_days
                    if prompt_type == "guardian_to_partner"
                    else self._config.partner_cooldown_days
                )
                if now - latest.responded_at < timedelta(days=cooldown_days):
                    logger.debug("escalation_in_cooldown", domain=domain, type=prompt_type)
                    return None

        prompt = EscalationPrompt(
            id=uuid.uuid4().hex,
            type=prompt_type,
            domain=domain,
            action_type=pattern.action_type,
            consecutive_approvals=pattern.consecutive_approvals,
            message=self._message(prompt_type, domain, pattern),
            preview_actions=[_preview_for(pattern)],
            created_at=now,
            expires_at=now + timedelta(days=self._config.prompt_expiry_days),
        )
        await self._store.create_escalation_prompt(prompt)
        logger.info(
            "escalation_prompt_created",
            prompt_id=prompt.id,
            type=prompt_type,
            domain=domain,
            action_type=pattern.action_type,
        )
        return prompt

    def _message(
        self, prompt_type: EscalationType, domain: str, pattern: ApprovalPattern
    ) -> str:
        name = self._assistant_name
        if prompt_type == "guardian_to_partner":
            return (
                f"You've approved all {pattern.consecutive_approvals} of {name}'s recent "
                f"{pattern.action_type} actions. Want {name} to handle these automatically?"
            )
        return (
            f"{name} has handled your {domain} actions with no corrections. "
            f"Ready to let {name} take on more in Alter Ego mode?"
        )

    async def record_response(self, prompt_id: str, accepted: bool) -> bool:
        """Accept or dismiss a pending prompt. Accepting raises the domain tier.

        Returns:
            True if the prompt was pending and is now resolved
        """
        prompt = await self._store.get_escalation_prompt(prompt_id)
        if prompt is None:
            return False

        status = "accepted" if accepted else "dismissed"
        if not await self._store.resolve_escalation_prompt(prompt_id, status):
            logger.debug("escalation_response_ignored", prompt_id=prompt_id, status=prompt.status)
            return False

        if accepted:
            await self._autonomy.set_domain_tier(prompt.domain, _NEXT_TIER[prompt.type])

        logger.info(
            "escalation_prompt_resolved",
            prompt_id=prompt_id,
            domain=prompt.domain,
            status=status,
        )
        return True

    async def get_active_prompts(self) -> list[EscalationPrompt]:
        await self._store.expire_escalation_prompts()
        return await self._store.get_escalation_prompts("pending")

    async def get_prompt(self, prompt_id: str) -> EscalationPrompt | None:
        return await self._store.get_escalation_prompt(prompt_id)
