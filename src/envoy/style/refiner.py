"""Best-of-N rewriting of email drafts in the user's writing style.

The refiner asks the model for a styled version of a draft, scores it with
the heuristic scorer and, while the score stays under the threshold, asks
again with notes on the weakest dimensions. The best-scoring candidate is
kept across attempts; a later attempt only replaces it when it scores
strictly higher.

Model failures never escape: the refiner falls back to the best candidate so
far, or the caller's original body.

Usage:
    refiner = StyleDraftRefiner(model_provider, profile_store, config.style, model="...")
    styled = await refiner.apply_style_to_draft(
        StyleDraftArgs(to=["ana@example.com"], subject="Lunch", body="Can we move lunch?")
    )
    styled.body, styled.score.overall
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from envoy.config_schema import MAX_STYLE_ATTEMPTS
from envoy.core.errors import ModelError
from envoy.core.logging import get_logger
from envoy.style.injector import (
    DraftContext,
    build_inactive_style_prompt,
    build_retry_prompt,
    build_style_prompt,
)
from envoy.style.scorer import StyleScore, score_draft

if TYPE_CHECKING:
    from envoy.agent.collaborators import ModelProvider, StyleProfileSource
    from envoy.config_schema import StyleConfig
    from envoy.style.profile import StyleProfile

logger = get_logger(__name__)

DRAFTING_SYSTEM_PROMPT = "You are drafting an email. Output ONLY the email body text, nothing else."


@dataclass(frozen=True, slots=True)
class StyleDraftArgs:
    """The draft to restyle."""

    body: str
    to: list[str] = field(default_factory=list)
    subject: str = ""
    is_reply: bool = False
    recipient_name: str | None = None
    recipient_context: str | None = None


@dataclass(frozen=True, slots=True)
class StyledDraft:
    """Refinement result. score is None when no scoring happened."""

    body: str
    score: StyleScore | None = None
    attempts: int = 0

    @property
    def style_score(self) -> int | None:
        return self.score.overall if self.score else None


class StyleDraftRefiner:
    """Rewrites drafts to match the active style profile."""

    def __init__(
        self,
        model_provider: ModelProvider,
        profiles: StyleProfileSource,
        config: StyleConfig,
        model: str,
        temperature: float = 0.7,
    ) -> None:
        self._provider = model_provider
        self._profiles = profiles
        self._config = config
        self._model = model
        self._temperature = temperature

    async def apply_style_to_draft(self, args: StyleDraftArgs) -> StyledDraft:
        profile = await self._profiles.get_active_profile()

        if profile is None or not profile.is_active:
            if profile is not None and self._config.draft_without_profile:
                return await self._draft_generic(args)
            logger.debug(
                "style_refinement_skipped",
                reason="no_profile" if profile is None else "profile_inactive",
            )
            return StyledDraft(body=args.body)

        return await self._refine(args, profile)

    async def _draft_generic(self, args: StyleDraftArgs) -> StyledDraft:
        """Single unscored attempt with neutral instructions."""
        body = await self._generate(build_inactive_style_prompt(), args)
        if body is None:
            return StyledDraft(body=args.body, attempts=1)
        return StyledDraft(body=body, attempts=1)

    async def _refine(self, args: StyleDraftArgs, profile: StyleProfile) -> StyledDraft:
        context = DraftContext(
            subject=args.subject,
            is_reply=args.is_reply,
            recipient_name=args.recipient_name,
            recipient_context=args.recipient_context,
        )
        style_prompt = build_style_prompt(profile, context)

        best_body: str | None = None
        best_score: StyleScore | None = None
        attempts = 0

        for attempt in range(min(self._config.max_attempts, MAX_STYLE_ATTEMPTS)):
            retry_note = ""
            if best_score is not None:
                retry_note = build_retry_prompt(best_score.weakest_dimensions(), profile)

            attempts += 1
            candidate = await self._generate(style_prompt, args, retry_note)
            if candidate is None:
                break

            score = score_draft(candidate, profile)
            logger.debug(
                "style_attempt_scored",
                attempt=attempt,
                overall=score.overall,
                breakdown=score.breakdown,
            )

            if best_score is None or score.overall > best_score.overall:
                best_body, best_score = candidate, score

            if best_score.overall >= self._config.score_threshold:
                break

        if best_body is None or best_score is None:
            logger.warning("style_refinement_failed", attempts=attempts)
            return StyledDraft(body=args.body, attempts=attempts)

        logger.info(
            "style_refinement_complete",
            attempts=attempts,
            style_score=best_score.overall,
            threshold=self._config.score_threshold,
        )
        return StyledDraft(body=best_body, score=best_score, attempts=attempts)

    async def _generate(
        self, instructions: str, args: StyleDraftArgs, retry_note: str = ""
    ) -> str | None:
        """One model call. Returns None on failure or an empty reply."""
        user_prompt = (
            f"{instructions}\n\n"
            "Draft this email:\n"
            f"To: {', '.join(args.to)}\n"
            f"Subject: {args.subject}\n\n"
            f"Original draft intent:\n{args.body}"
        )
        if retry_note:
            user_prompt += f"\n\n{retry_note}"
        try:
            result = await self._provider.chat(
                model=self._model,
                messages=[
                    {"role": "system", "content": DRAFTING_SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self._temperature,
            )
        except ModelError as e:
            logger.warning("style_generation_failed", error=str(e), status_code=e.status_code)
            return None

        body = result.message.strip()
        if not body:
            logger.warning("style_generation_empty")
            return None
        return body
