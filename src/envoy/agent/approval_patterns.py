"""Approval pattern tracking keyed by action fingerprint.

A fingerprint identifies "the same kind of request": the action type plus a
configured subset of payload fields, each optionally normalized. Free-text
fields (bodies, subjects) are not part of the default field table, so small
wording changes do not split one habit into many patterns.

Field specs come from approval.fingerprint_fields in config.yaml:

    email.send: ["replyToMessageId:present", "to:domain"]

Transforms:
- value (default): the field value as-is (lists are sorted)
- lower: lowercased string
- domain: email domain(s) of a string or list of addresses, sorted and deduplicated
- present: "true"/"false" depending on whether the field is set

Usage:
    tracker = ApprovalPatternTracker(store, config.approval)

    await tracker.record_approval("email.send", payload)
    if await tracker.is_routine("email.send", payload):
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from envoy.agent.types import domain_for_action
from envoy.core.logging import get_logger

if TYPE_CHECKING:
    from envoy.config_schema import ApprovalConfig
    from envoy.db.store import ApprovalPattern, DatabaseStore

logger = get_logger(__name__)


def _email_domain(address: Any) -> str:
    text = str(address).strip().lower()
    # "Name <user@host>" -> "user@host"
    if "<" in text and text.endswith(">"):
        text = text[text.rindex("<") + 1 : -1]
    return text.rsplit("@", 1)[-1] if "@" in text else text


def _normalize(value: Any, transform: str) -> str:
    if transform == "present":
        return "true" if value not in (None, "", [], {}) else "false"
    if value is None:
        return ""
    if transform == "domain":
        items = value if isinstance(value, list) else [value]
        return ",".join(sorted({_email_domain(item) for item in items if item}))
    if isinstance(value, list):
        parts = sorted(str(item) for item in value)
        if transform == "lower":
            parts = [p.lower() for p in parts]
        return ",".join(parts)
    text = str(value).strip()
    return text.lower() if transform == "lower" else text


def describe_payload(
    action_type: str,
    payload: dict[str, Any] | None,
    fingerprint_fields: dict[str, list[str]],
) -> dict[str, str]:
    """Reduce a payload to the normalized fields that identify its pattern."""
    payload = payload or {}
    descriptor: dict[str, str] = {}
    for spec in fingerprint_fields.get(action_type, []):
        field_name, _, transform = spec.partition(":")
        descriptor[field_name] = _normalize(payload.get(field_name), transform or "value")
    return descriptor


def compute_fingerprint(
    action_type: str,
    payload: dict[str, Any] | None,
    fingerprint_fields: dict[str, list[str]],
) -> str:
    """Build the stable fingerprint string for an action.

    Example: "email.send|replyToMessageId=true;to=example.com"
    """
    descriptor = describe_payload(action_type, payload, fingerprint_fields)
    if not descriptor:
        return action_type
    body = ";".join(f"{key}={descriptor[key]}" for key in sorted(descriptor))
    return f"{action_type}|{body}"


class ApprovalPatternTracker:
    """Durable approve/reject counters per fingerprint.

    An approval extends the approval streak and clears the rejection streak;
    a rejection does the opposite. A pattern is routine once its approval
    streak reaches its threshold.
    """

    def __init__(self, store: DatabaseStore, config: ApprovalConfig) -> None:
        self._store = store
        self._config = config

    def fingerprint(self, action_type: str, payload: dict[str, Any] | None) -> str:
        return compute_fingerprint(action_type, payload, self._config.fingerprint_fields)

    def default_threshold(self, action_type: str) -> int:
        """Threshold assigned to a fingerprint the first time it is seen."""
        return self._config.domain_thresholds.get(
            domain_for_action(action_type), self._config.default_threshold
        )

    async def record_approval(self, action_type: str, payload: dict[str, Any] | None) -> None:
        fingerprint = self.fingerprint(action_type, payload)
        await self._store.record_pattern_approval(
            fingerprint,
            action_type,
            describe_payload(action_type, payload, self._config.fingerprint_fields),
            self.default_threshold(action_type),
        )
        logger.info("approval_recorded", action_type=action_type, fingerprint=fingerprint)

    async def record_rejection(self, action_type: str, payload: dict[str, Any] | None) -> None:
        fingerprint = self.fingerprint(action_type, payload)
        await self._store.record_pattern_rejection(
            fingerprint,
            action_type,
            describe_payload(action_type, payload, self._config.fingerprint_fields),
            self.default_threshold(action_type),
        )
        logger.info("rejection_recorded", action_type=action_type, fingerprint=fingerprint)

    async def get_pattern(
        self, action_type: str, payload: dict[str, Any] | None
    ) -> ApprovalPattern | None:
        return await self._store.get_approval_pattern(self.fingerprint(action_type, payload))

    async def get_consecutive_approvals(
        self, action_type: str, payload: dict[str, Any] | None
    ) -> int:
        pattern = await self.get_pattern(action_type, payload)
        return pattern.consecutive_approvals if pattern else 0

    async def get_threshold(self, action_type: str, payload: dict[str, Any] | None) -> int:
        pattern = await self.get_pattern(action_type, payload)
        return pattern.auto_execute_threshold if pattern else self.default_threshold(action_type)

    async def is_routine(self, action_type: str, payload: dict[str, Any] | None) -> bool:
        pattern = await self.get_pattern(action_type, payload)
        return pattern is not None and pattern.is_routine

    async def get_all_patterns(self) -> list[ApprovalPattern]:
        return await self._store.list_approval_patterns()

    async def raise_threshold(
        self, action_type: str, payload: dict[str, Any] | None, threshold: int
    ) -> bool:
        """Raise a pattern's threshold; a lower value is ignored.

        Returns:
            True if the stored threshold changed
        """
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        changed = await self._store.raise_pattern_threshold(
            self.fingerprint(action_type, payload), threshold
        )
        if not changed:
            logger.debug(
                "threshold_unchanged",
                action_type=action_type,
                requested=threshold,
            )
        return changed

    async def reset_pattern(self, action_type: str, payload: dict[str, Any] | None) -> bool:
        """Clear both streaks and restore the default threshold."""
        fingerprint = self.fingerprint(action_type, payload)
        reset = await self._store.reset_pattern(fingerprint, self.default_threshold(action_type))
        if reset:
            logger.info("approval_pattern_reset", fingerprint=fingerprint)
        return reset
