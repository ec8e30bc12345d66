"""Heuristic scoring of a draft against a StyleProfile.

Pure text heuristics, no model calls. Produces an overall 0-100 score and a
per-dimension breakdown used to steer regeneration.

All regex operations use the `regex` library with a timeout so a
pathological draft cannot stall the request.

Weights:
- greeting 0.25, signoff 0.25, sentence_length 0.15, formality 0.20, vocabulary 0.15
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import regex

from envoy.core.logging import get_logger

if TYPE_CHECKING:
    from envoy.style.profile import StyleProfile

logger = get_logger(__name__)

REGEX_TIMEOUT = 1.0

WEIGHTS: dict[str, float] = {
    "greeting": 0.25,
    "signoff": 0.25,
    "sentence_length": 0.15,
    "formality": 0.20,
    "vocabulary": 0.15,
}

# Score when the profile has nothing to compare against
NEUTRAL_SCORE = 80

COMMON_GREETINGS = ("hi", "hey", "hello", "dear", "good morning", "good afternoon")
COMMON_SIGNOFFS = (
    "best",
    "thanks",
    "thank you",
    "cheers",
    "regards",
    "sincerely",
    "best regards",
    "kind regards",
    "warm regards",
    "take care",
)

_APOS = "['’]"
CONTRACTIONS_PATTERN = regex.compile(
    r"\b(?:I{a}m|I{a}ve|I{a}ll|I{a}d|don{a}t|doesn{a}t|didn{a}t|can{a}t|couldn{a}t|"
    r"wouldn{a}t|shouldn{a}t|won{a}t|isn{a}t|aren{a}t|wasn{a}t|weren{a}t|hasn{a}t|"
    r"haven{a}t|hadn{a}t|we{a}re|we{a}ve|we{a}ll|we{a}d|they{a}re|they{a}ve|they{a}ll|"
    r"they{a}d|you{a}re|you{a}ve|you{a}ll|you{a}d|that{a}s|there{a}s|here{a}s|what{a}s|"
    r"who{a}s|let{a}s|it{a}s)\b".format(a=_APOS),
    regex.IGNORECASE,
)
EXPANDED_PATTERN = regex.compile(
    r"\b(?:I am|I have|I will|I would|do not|does not|did not|can not|cannot|could not|"
    r"would not|should not|will not|is not|are not|was not|were not|has not|have not|"
    r"had not|we are|we have|we will|we would|they are|they have|they will|they would|"
    r"you are|you have|you will|you would|that is|there is|here is|what is|who is|"
    r"let us|it is)\b",
    regex.IGNORECASE,
)
EMOJI_PATTERN = regex.compile(r"\p{Extended_Pictographic}")
SENTENCE_SPLIT_PATTERN = regex.compile(r"(?<=[.!?])\s+")
TRAILING_COMMA_PATTERN = regex.compile(r",\s*$")


@dataclass(frozen=True, slots=True)
class StyleScore:
    """Overall style match (0-100) and per-dimension scores."""

    overall: int
    greeting: int
    signoff: int
    sentence_length: int
    formality: int
    vocabulary: int

    @property
    def breakdown(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in WEIGHTS}

    def to_dict(self) -> dict[str, Any]:
        return {"overall": self.overall, "breakdown": self.breakdown}

    def weakest_dimensions(self) -> list[tuple[str, int]]:
        """Dimensions ordered from lowest to highest score."""
        return sorted(self.breakdown.items(), key=lambda item: item[1])


def _count(pattern: regex.Pattern, text: str) -> int:
    try:
        return len(pattern.findall(text, timeout=REGEX_TIMEOUT))
    except TimeoutError:
        logger.warning("style_regex_timeout", pattern=pattern.pattern[:40])
        return 0


def _sentences(text: str) -> list[str]:
    try:
        parts = SENTENCE_SPLIT_PATTERN.split(text, timeout=REGEX_TIMEOUT)
    except TimeoutError:
        logger.warning("style_regex_timeout", pattern="sentence_split")
        parts = [text]
    return [p.strip() for p in parts if p.strip()]


def _strip_trailing_comma(line: str) -> str:
    return TRAILING_COMMA_PATTERN.sub("", line.lower(), timeout=REGEX_TIMEOUT)


def score_greeting(draft: str, profile: StyleProfile) -> int:
    """100 for one of the user's greetings, 60 for a generic one, 20 otherwise."""
    if not profile.greetings.patterns:
        return NEUTRAL_SCORE

    lines = [line.strip() for line in draft.splitlines() if line.strip()]
    if not lines:
        return 20

    first_line = lines[0].lower()
    if any(first_line.startswith(p.text.lower()) for p in profile.greetings.patterns):
        return 100
    if any(first_line.startswith(g) for g in COMMON_GREETINGS):
        return 60
    return 20


def score_signoff(draft: str, profile: StyleProfile) -> int:
    """Same scale as greetings, checked against the last four non-empty lines."""
    if not profile.signoffs.patterns:
        return NEUTRAL_SCORE

    lines = [line.strip() for line in draft.splitlines() if line.strip()]
    if len(lines) < 2:
        return 20

    tail = [_strip_trailing_comma(line) for line in lines[-4:]]
    signoffs = [p.text.lower() for p in profile.signoffs.patterns]

    if any(line.startswith(s) for line in tail for s in signoffs):
        return 100
    if any(line.startswith(s) for line in tail for s in COMMON_SIGNOFFS):
        return 60
    return 20


def score_sentence_length(draft: str, profile: StyleProfile) -> int:
    """100 within 20% of the user's average sentence length, 70 within 40%, else 40."""
    target = profile.structure.avg_sentence_length
    if target == 0:
        return NEUTRAL_SCORE

    sentences = [s for s in _sentences(draft) if len(s.split()) >= 2]
    if not sentences:
        return 40

    avg_length = sum(len(s.split()) for s in sentences) / len(sentences)
    deviation = abs(avg_length - target) / target
    if deviation <= 0.2:
        return 100
    if deviation <= 0.4:
        return 70
    return 40


def score_formality(draft: str, profile: StyleProfile) -> int:
    """Compare contraction and exclamation rates with the profile."""
    contractions = _count(CONTRACTIONS_PATTERN, draft)
    expanded = _count(EXPANDED_PATTERN, draft)
    total = contractions + expanded
    contraction_rate = contractions / total if total > 0 else 0.5

    sentences = _sentences(draft)
    exclamations = sum(1 for s in sentences if s.endswith("!"))
    exclamation_rate = exclamations / len(sentences) if sentences else 0.0

    contraction_diff = abs(contraction_rate - profile.vocabulary.contraction_rate)
    if contraction_diff < 0.2:
        contraction_score = 100
    elif contraction_diff < 0.4:
        contraction_score = 70
    else:
        contraction_score = 40

    exclamation_diff = abs(exclamation_rate - profile.vocabulary.exclamation_rate)
    if exclamation_diff < 0.15:
        exclamation_score = 100
    elif exclamation_diff < 0.3:
        exclamation_score = 70
    else:
        exclamation_score = 40

    return round((contraction_score + exclamation_score) / 2)


def score_vocabulary(draft: str, profile: StyleProfile) -> int:
    """Presence checks: contractions, emoji and exclamation marks."""
    vocab = profile.vocabulary
    scores = [
        100 if vocab.uses_contractions == (_count(CONTRACTIONS_PATTERN, draft) > 0) else 40,
        100 if vocab.uses_emoji == (_count(EMOJI_PATTERN, draft) > 0) else 40,
        100 if vocab.uses_exclamation == ("!" in draft) else 50,
    ]
    return round(sum(scores) / len(scores))


def score_draft(draft: str, profile: StyleProfile) -> StyleScore:
    """Score a draft against a profile."""
    breakdown = {
        "greeting": score_greeting(draft, profile),
        "signoff": score_signoff(draft, profile),
        "sentence_length": score_sentence_length(draft, profile),
        "formality": score_formality(draft, profile),
        "vocabulary": score_vocabulary(draft, profile),
    }
    overall = round(sum(breakdown[name] * weight for name, weight in WEIGHTS.items()))
    return StyleScore(overall=overall, **breakdown)
