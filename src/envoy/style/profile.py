"""Writing-style profile model and its persistence.

A profile summarizes how the user writes email: greetings, sign-offs, tone,
sentence structure and vocabulary habits. Profiles are versioned; the
newest version is the one in effect. A profile only shapes drafts once it
was built from enough sent emails to be trusted (is_active).

Usage:
    from envoy.style.profile import StyleProfile, StyleProfileStore

    profiles = StyleProfileStore(store, min_samples=20)
    await profiles.save_profile(profile)
    active = await profiles.get_active_profile()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

from envoy.core.logging import get_logger

if TYPE_CHECKING:
    from envoy.db.store import DatabaseStore

logger = get_logger(__name__)


class PhrasePattern(BaseModel):
    """A greeting or sign-off and how often the user uses it (0-1)."""

    text: str
    frequency: float = Field(default=0.0, ge=0.0, le=1.0)
    contexts: list[str] = Field(default_factory=list)


class GreetingStyle(BaseModel):
    patterns: list[PhrasePattern] = Field(default_factory=list)
    uses_recipient_name: bool = False
    uses_name_variant: Literal["first", "full", "none", "mixed"] = "none"


class SignoffStyle(BaseModel):
    patterns: list[PhrasePattern] = Field(default_factory=list)
    includes_name: bool = False


class ToneStyle(BaseModel):
    formality_score: int = Field(default=50, ge=0, le=100)
    directness_score: int = Field(default=50, ge=0, le=100)
    warmth_score: int = Field(default=50, ge=0, le=100)


class StructureStyle(BaseModel):
    avg_sentence_length: float = Field(default=0.0, ge=0.0)
    avg_paragraph_length: float = Field(default=0.0, ge=0.0)
    avg_email_length: float = Field(default=0.0, ge=0.0)
    uses_lists_or_bullets: bool = False
    list_frequency: float = Field(default=0.0, ge=0.0, le=1.0)


class VocabularyStyle(BaseModel):
    common_phrases: list[str] = Field(default_factory=list)
    avoided_words: list[str] = Field(default_factory=list)
    uses_contractions: bool = False
    contraction_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    uses_emoji: bool = False
    emoji_frequency: float = Field(default=0.0, ge=0.0, le=1.0)
    common_emoji: list[str] = Field(default_factory=list)
    uses_exclamation: bool = False
    exclamation_rate: float = Field(default=0.0, ge=0.0, le=1.0)


class ContextVariation(BaseModel):
    """How the user's tone shifts for a kind of recipient (client, friend, ...)."""

    context: str
    formality_delta: int = 0
    tone_notes: str = ""


class StyleProfile(BaseModel):
    """The user's learned email writing style."""

    id: str | None = None
    version: int = 0
    emails_analyzed: int = Field(default=0, ge=0)
    is_active: bool = False

    greetings: GreetingStyle = Field(default_factory=GreetingStyle)
    signoffs: SignoffStyle = Field(default_factory=SignoffStyle)
    tone: ToneStyle = Field(default_factory=ToneStyle)
    structure: StructureStyle = Field(default_factory=StructureStyle)
    vocabulary: VocabularyStyle = Field(default_factory=VocabularyStyle)
    context_variations: list[ContextVariation] = Field(default_factory=list)

    def variation_for(self, context: str | None) -> ContextVariation | None:
        if not context:
            return None
        return next((v for v in self.context_variations if v.context == context), None)


# Keys owned by the style_profiles row rather than the JSON body
_ROW_FIELDS = {"id", "version", "emails_analyzed", "is_active"}


class StyleProfileStore:
    """Saves and loads StyleProfile versions through DatabaseStore."""

    def __init__(self, store: DatabaseStore, min_samples: int = 20) -> None:
        self._store = store
        self._min_samples = min_samples

    async def save_profile(self, profile: StyleProfile) -> StyleProfile:
        """Store a new version; activation follows the sample count."""
        is_active = profile.emails_analyzed >= self._min_samples
        stored = await self._store.save_style_profile(
            profile.model_dump(exclude=_ROW_FIELDS),
            emails_analyzed=profile.emails_analyzed,
            is_active=is_active,
        )
        logger.info(
            "style_profile_saved",
            profile_id=stored.id,
            version=stored.version,
            emails_analyzed=stored.emails_analyzed,
            is_active=is_active,
        )
        return profile.model_copy(
            update={"id": stored.id, "version": stored.version, "is_active": is_active}
        )

    async def get_latest_profile(self) -> StyleProfile | None:
        stored = await self._store.get_latest_style_profile()
        if stored is None:
            return None
        return StyleProfile.model_validate(
            {
                **stored.profile,
                "id": stored.id,
                "version": stored.version,
                "emails_analyzed": stored.emails_analyzed,
                "is_active": stored.is_active,
            }
        )

    async def get_active_profile(self) -> StyleProfile | None:
        """Latest profile, which may still be inactive; None if none exists."""
        return await self.get_latest_profile()
