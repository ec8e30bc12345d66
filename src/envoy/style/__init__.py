"""Writing-style matching for drafted emails.

This module provides:
- StyleProfile / StyleProfileStore: learned style data and its persistence
- score_draft: heuristic 0-100 style match with per-dimension breakdown
- StyleDraftRefiner: bounded best-of-N regeneration toward the profile
"""

from envoy.style.profile import StyleProfile, StyleProfileStore
from envoy.style.refiner import StyleDraftArgs, StyledDraft, StyleDraftRefiner
from envoy.style.scorer import StyleScore, score_draft

__all__ = [
    "StyleProfile",
    "StyleProfileStore",
    "StyleDraftArgs",
    "StyledDraft",
    "StyleDraftRefiner",
    "StyleScore",
    "score_draft",
]
