"""Pydantic configuration schema for the Envoy agent.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models on startup and hot-reload.

Usage:
    from envoy.config_schema import AppConfig

    # Validate a config dict
    config = AppConfig(**yaml_data)
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from envoy.agent.types import RiskClass

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

Tier = Literal["guardian", "partner", "alter_ego"]

FINGERPRINT_TRANSFORMS = ("value", "lower", "domain", "present")

DEFAULT_FINGERPRINT_FIELDS: dict[str, list[str]] = {
    "email.send": ["replyToMessageId:present", "to:domain"],
    "email.draft": ["replyToMessageId:present", "to:domain"],
    "email.move": ["toFolder"],
    "email.markRead": ["read"],
    "calendar.create": ["attendees:domain"],
    "reminder.create": ["recurrence"],
    "reminder.update": ["duration:present"],
    "messaging.send": ["recipientName:lower"],
}


class ModelsConfig(BaseModel):
    """Model assignments per call site."""

    agent: str = Field(
        default="claude-sonnet-4-5",
        description="Model for the main reasoning loop",
    )
    style: str = Field(
        default="claude-sonnet-4-5",
        description="Model for style-conformant draft generation",
    )


class AnthropicConfig(BaseModel):
    """Anthropic client settings. The API key is read from ANTHROPIC_API_KEY."""

    max_retries: int = Field(default=3, ge=0, le=10)
    timeout_seconds: float = Field(default=60.0, gt=0)
    max_tokens: int = Field(
        default=2048,
        ge=64,
        le=16384,
        description="max_tokens sent with every Messages API request",
    )


class AgentConfig(BaseModel):
    """Reasoning loop configuration."""

    context_limit: int = Field(
        default=5,
        ge=0,
        le=50,
        description="Knowledge snippets retrieved as context per message",
    )
    context_chars: int = Field(
        default=500,
        ge=50,
        description="Characters of each retrieved snippet included in the prompt",
    )
    history_turns: int = Field(
        default=10,
        ge=0,
        le=100,
        description="Most recent conversation turns sent to the model",
    )
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)


class TierPermissions(BaseModel):
    """Risk classes each tier may auto-approve without consulting history."""

    guardian: list[RiskClass] = Field(default_factory=list)
    partner: list[RiskClass] = Field(default_factory=lambda: ["read", "write"])
    alter_ego: list[RiskClass] = Field(default_factory=lambda: ["read", "write", "execute"])

    @field_validator("guardian", "partner", "alter_ego")
    @classmethod
    def validate_no_communicate(cls, v: list[RiskClass]) -> list[RiskClass]:
        """Outbound messages always need approval or an established pattern."""
        if "communicate" in v:
            raise ValueError("'communicate' actions cannot be auto-approved by tier alone")
        return v

    def for_tier(self, tier: Tier) -> list[RiskClass]:
        return getattr(self, tier)


class AutonomyConfig(BaseModel):
    """Per-domain autonomy tiers."""

    default_tier: Tier = Field(
        default="guardian",
        description="Tier for domains without an override",
    )
    domain_overrides: dict[str, Tier] = Field(
        default_factory=dict,
        description="Domain -> tier (e.g., {'reminders': 'partner'})",
    )
    tier_permissions: TierPermissions = Field(default_factory=TierPermissions)


class ApprovalConfig(BaseModel):
    """Approval pattern tracking configuration."""

    default_threshold: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Consecutive approvals before a pattern auto-approves",
    )
    domain_thresholds: dict[str, int] = Field(
        default_factory=dict,
        description="Per-domain threshold for newly seen patterns",
    )
    fingerprint_fields: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_FINGERPRINT_FIELDS.items()},
        description="Action type -> payload fields ('field' or 'field:transform')",
    )

    @field_validator("domain_thresholds")
    @classmethod
    def validate_thresholds(cls, v: dict[str, int]) -> dict[str, int]:
        """Ensure thresholds are positive."""
        for domain, threshold in v.items():
            if threshold < 1:
                raise ValueError(f"Threshold for domain '{domain}' must be >= 1")
        return v

    @field_validator("fingerprint_fields")
    @classmethod
    def validate_fingerprint_fields(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        """Ensure every field spec names a known transform."""
        for action_type, specs in v.items():
            for spec in specs:
                _, _, transform = spec.partition(":")
                if transform and transform not in FINGERPRINT_TRANSFORMS:
                    raise ValueError(
                        f"Unknown fingerprint transform '{transform}' for {action_type}. "
                        f"Use one of: {', '.join(FINGERPRINT_TRANSFORMS)}"
                    )
        return v


# Hard ceiling on model calls per draft: the first attempt plus two retries
MAX_STYLE_ATTEMPTS = 3


class StyleConfig(BaseModel):
    """Style draft refinement configuration."""

    max_attempts: int = Field(
        default=MAX_STYLE_ATTEMPTS,
        ge=1,
        le=MAX_STYLE_ATTEMPTS,
        description="Model calls per draft (first attempt plus retries)",
    )
    score_threshold: int = Field(
        default=70,
        ge=0,
        le=100,
        description="Overall score at which a draft is accepted",
    )
    min_samples: int = Field(
        default=20,
        ge=1,
        description="Analyzed emails required before a profile is active",
    )
    draft_without_profile: bool = Field(
        default=False,
        description="Generate one generic draft when the profile is not active yet",
    )


class EscalationConfig(BaseModel):
    """Tier escalation prompt configuration."""

    enabled: bool = True
    guardian_to_partner_approvals: int = Field(default=10, ge=1)
    partner_to_alter_ego_approvals: int = Field(default=14, ge=1)
    partner_to_alter_ego_consecutive: int = Field(default=5, ge=1)
    guardian_cooldown_days: int = Field(default=7, ge=0)
    partner_cooldown_days: int = Field(default=14, ge=0)
    prompt_expiry_days: int = Field(default=7, ge=1)


class GatewayConfig(BaseModel):
    """HTTP gateway used to execute actions and search the knowledge graph."""

    base_url: str = Field(
        default="http://127.0.0.1:8765",
        description="Base URL of the action/search gateway",
    )
    timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Gateway base_url must start with http:// or https://")
        return v.rstrip("/")


class DatabaseConfig(BaseModel):
    """SQLite database location."""

    path: str = Field(default="data/envoy.db")

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Ensure database path doesn't contain path traversal."""
        if not v or not v.strip():
            raise ValueError("Database path cannot be empty")
        if ".." in v:
            raise ValueError("Database path cannot contain '..' (path traversal)")
        return v


class AppConfig(BaseModel):
    """Root configuration schema for the Envoy agent.

    If validation fails on startup, the application exits with a clear error.
    If validation fails on hot-reload, the previous valid config is kept.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )
    assistant_name: str = Field(default="Envoy", min_length=1)

    models: ModelsConfig = Field(default_factory=ModelsConfig)
    anthropic: AnthropicConfig = Field(default_factory=AnthropicConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    autonomy: AutonomyConfig = Field(default_factory=AutonomyConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    style: StyleConfig = Field(default_factory=StyleConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @model_validator(mode="after")
    def validate_escalation_thresholds(self) -> "AppConfig":
        """Partner escalation needs at least as many approvals as its streak."""
        esc = self.escalation
        if esc.partner_to_alter_ego_consecutive > esc.partner_to_alter_ego_approvals:
            raise ValueError(
                "escalation.partner_to_alter_ego_consecutive cannot exceed "
                "escalation.partner_to_alter_ego_approvals"
            )
        return self
