"""Prompt fragments that steer draft generation toward the user's style.

- build_style_prompt: describes an active profile as drafting instructions
- build_inactive_style_prompt: neutral professional instructions
- build_retry_prompt: corrective notes for the dimensions a draft missed
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from envoy.style.profile import PhrasePattern, StyleProfile

# Dimensions scoring below this get a corrective note on retry
RETRY_NOTE_THRESHOLD = 70


@dataclass(frozen=True, slots=True)
class DraftContext:
    """What the drafting prompt knows about the email being written."""

    subject: str = ""
    is_reply: bool = False
    recipient_name: str | None = None
    recipient_context: str | None = None  # colleague, client, friend, manager, ...


def describe_formality(score: float) -> str:
    if score >= 80:
        return "very formal"
    if score >= 60:
        return "moderately formal"
    if score >= 40:
        return "balanced/neutral"
    if score >= 20:
        return "moderately casual"
    return "very casual"


def describe_directness(score: float) -> str:
    if score >= 70:
        return "direct"
    if score >= 40:
        return "balanced"
    return "indirect/hedging"


def describe_email_length(avg_words: float) -> str:
    if avg_words == 0:
        return ""
    if avg_words < 50:
        return "They write concise, short emails."
    if avg_words < 150:
        return "They write moderate-length emails."
    return "They write detailed, longer emails."


def _top_patterns(patterns: list[PhrasePattern]) -> str:
    return " or ".join(f'"{p.text}" ({round(p.frequency * 100)}%)' for p in patterns[:3])


def build_style_prompt(profile: StyleProfile, context: DraftContext | None = None) -> str:
    """Describe an active profile as instructions for the drafting model."""
    context = context or DraftContext()
    variation = profile.variation_for(context.recipient_context)
    lines = [
        "Write this email in the user's personal writing style.",
        "",
        "Their style characteristics:",
    ]

    greetings = profile.greetings
    if greetings.patterns:
        name_note = ""
        if greetings.uses_recipient_name:
            which = "first name" if greetings.uses_name_variant == "first" else "name"
            name_note = f", followed by the recipient's {which}"
        line = f"- They typically open with {_top_patterns(greetings.patterns)}{name_note}"
        if variation and variation.tone_notes:
            line += f". {variation.tone_notes}"
        lines.append(line)

    signoffs = profile.signoffs
    if signoffs.patterns:
        name_note = " followed by their name" if signoffs.includes_name else ""
        lines.append(f"- They sign off with {_top_patterns(signoffs.patterns)}{name_note}")

    tone = profile.tone
    lines.append(
        f"- Their tone is {describe_formality(tone.formality_score)} "
        f"({tone.formality_score}/100) and {describe_directness(tone.directness_score)} "
        f"({tone.directness_score}/100)"
    )

    if variation and variation.formality_delta != 0:
        adjusted = max(0, min(100, tone.formality_score + variation.formality_delta))
        lines.append(
            f"- For {variation.context}s specifically, they tend to be "
            f"{describe_formality(adjusted)}"
        )

    structure = profile.structure
    if structure.avg_sentence_length > 0:
        length_note = describe_email_length(structure.avg_email_length)
        lines.append(
            f"- Average sentence length: {structure.avg_sentence_length:g} words. {length_note}".rstrip()
        )

    vocab = profile.vocabulary
    if vocab.contraction_rate > 0:
        if vocab.contraction_rate > 0.7:
            desc = "They frequently use contractions (I'm, don't, we'll)"
        elif vocab.contraction_rate > 0.3:
            desc = "They sometimes use contractions"
        else:
            desc = "They rarely use contractions"
        lines.append(f"- {desc} (contraction rate: {vocab.contraction_rate:g})")

    if vocab.exclamation_rate > 0:
        if vocab.exclamation_rate > 0.3:
            desc = "They use exclamation marks frequently"
        elif vocab.exclamation_rate > 0.1:
            desc = (
                f"They occasionally use exclamation marks (rate: {vocab.exclamation_rate:g}), "
                "don't overuse them"
            )
        else:
            desc = (
                f"They rarely use exclamation marks (rate: {vocab.exclamation_rate:g}), "
                "avoid them"
            )
        lines.append(f"- {desc}")

    if vocab.common_phrases:
        phrases = ", ".join(f'"{p}"' for p in vocab.common_phrases[:5])
        lines.append(f"- Common phrases they use: {phrases}")

    if vocab.uses_emoji:
        if vocab.emoji_frequency > 0.5:
            lines.append("- They frequently use emoji")
        else:
            lines.append("- They occasionally use emoji")
    else:
        lines.append("- They do not use emoji in emails")

    if structure.uses_lists_or_bullets and structure.list_frequency > 0.1:
        lines.append("- They often use bullet points or numbered lists to organize information")

    lines.append("")
    lines.append(
        "The email should read as if the user wrote it naturally, not as if an AI is "
        "mimicking them. Match the rhythm and vocabulary, not just the format."
    )
    return "\n".join(lines)


def build_inactive_style_prompt() -> str:
    """Neutral instructions for users without an active profile."""
    return (
        "Write this email in a natural, professional tone.\n"
        "\n"
        "Guidelines:\n"
        '- Use a friendly but professional greeting (e.g., "Hi [name],")\n'
        "- Keep sentences concise and clear\n"
        "- Be direct but polite\n"
        '- Close with a standard professional sign-off (e.g., "Best," or "Thanks,")\n'
        "- Avoid overly formal language or corporate jargon\n"
        "- Sound like a real person, not a template"
    )


def _retry_note(dimension: str, profile: StyleProfile) -> str:
    if dimension == "greeting":
        if profile.greetings.patterns:
            top = profile.greetings.patterns[0].text
            return f'Use "{top}" as the greeting (the user\'s most common)'
        return "Match the user's greeting style"
    if dimension == "signoff":
        if profile.signoffs.patterns:
            top = profile.signoffs.patterns[0].text
            return f'Use "{top}" as the sign-off (the user\'s most common)'
        return "Match the user's sign-off style"
    if dimension == "sentence_length":
        return (
            f"Keep sentences around {profile.structure.avg_sentence_length:g} words on average"
        )
    if dimension == "formality":
        return (
            "Adjust formality level, the user's style is "
            f"{describe_formality(profile.tone.formality_score)}"
        )
    if dimension == "vocabulary":
        if profile.vocabulary.uses_contractions:
            return "Use more contractions to match the user's casual writing style"
        return "Use fewer contractions to match the user's formal writing style"
    return ""


def build_retry_prompt(weak_dimensions: list[tuple[str, int]], profile: StyleProfile) -> str:
    """Corrective instructions for dimensions below RETRY_NOTE_THRESHOLD.

    Args:
        weak_dimensions: (dimension, score) pairs, weakest first

    Returns:
        The prompt, or an empty string if nothing scored low
    """
    notes = [
        note
        for name, score in weak_dimensions
        if score < RETRY_NOTE_THRESHOLD
        for note in [_retry_note(name, profile)]
        if note
    ]
    if not notes:
        return ""
    bullet_list = "\n".join(f"- {note}" for note in notes)
    return (
        "The previous draft didn't match the user's style closely enough. "
        f"Pay special attention to:\n{bullet_list}"
    )
