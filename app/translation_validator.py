#!/usr/bin/env python3
"""
Translation validation and retry policy.

A candidate translation is only accepted when every protection token survived,
no prompt text leaked into the output and the output length is sane. Candidates
are requested following an ordered list of attempt policies; the first one that
passes wins, and when none passes no translation is returned at all.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from llm_provider import TranslationResult
from placeholder_utils import all_tokens_present
from xliff_tokenizer import tag_token, tag_tokens_in_order

logger = logging.getLogger(__name__)

# Instruction phrases that should never appear in real output. The first one
# opens the prompt sent by llm_provider; the rest are common model preambles.
DEFAULT_LEAKAGE_MARKERS = (
    "Translate the following text",
    "Translate ONLY",
    "Output ONLY",
    "You translate",
    "Here is the translation",
)

SHORT_SOURCE_LENGTH = 20
SHORT_SOURCE_MAX_OUTPUT = 80


@dataclass(frozen=True)
class AttemptPolicy:
    """Settings for one translation attempt."""

    max_tokens: int


DEFAULT_ATTEMPT_POLICIES = (AttemptPolicy(max_tokens=256), AttemptPolicy(max_tokens=64))


def looks_bad(
    source: str,
    candidate: Optional[str],
    ph_token_count: int,
    tag_token_count: int,
    leakage_markers: Sequence[str] = DEFAULT_LEAKAGE_MARKERS,
    target_language: Optional[str] = None,
) -> bool:
    """
    Decide whether a candidate translation must be rejected.

    Args:
        source: The protected text that was sent for translation
        candidate: The text returned by the model
        ph_token_count: Number of placeholder tokens in ``source``
        tag_token_count: Number of inline tag tokens in ``source``
        leakage_markers: Case-insensitive phrases that betray prompt leakage
        target_language: When given, output opening with the prompt's
            "<target_language>:" answer cue is rejected as an echo

    Returns:
        True if the candidate is unusable
    """
    if not candidate or not candidate.strip():
        return True

    value = candidate.strip()

    if not all_tokens_present(value, ph_token_count):
        logger.debug("Rejecting candidate: placeholder token missing")
        return True

    for index in range(tag_token_count):
        if tag_token(index) not in value:
            logger.debug(f"Rejecting candidate: {tag_token(index)} missing")
            return True

    # Inline nodes can only be put back when their tokens keep source order.
    if not tag_tokens_in_order(value, tag_token_count):
        logger.debug("Rejecting candidate: inline tokens reordered")
        return True

    lowered = value.lower()
    for marker in leakage_markers:
        if marker.lower() in lowered:
            logger.debug(f"Rejecting candidate: prompt leakage '{marker}'")
            return True

    if target_language and lowered.startswith(f"{target_language.lower()}:"):
        logger.debug("Rejecting candidate: prompt answer cue echoed")
        return True

    if len(source) <= SHORT_SOURCE_LENGTH and len(value) > SHORT_SOURCE_MAX_OUTPUT:
        logger.debug("Rejecting candidate: output too long for short source")
        return True

    return False


def _safe_translate(client, text: str, target_language: str, max_tokens: int, **kwargs):
    try:
        result = client.translate(
            text, target_language, max_tokens=max_tokens, **kwargs
        )
    except Exception as e:
        logger.warning(f"Translation attempt raised an error: {e}")
        return None

    if result is None or not result.ok:
        reason = result.error if result is not None else "no result"
        logger.debug(f"Translation attempt produced no candidate: {reason}")
        return None

    return result.text


def translate_with_validation(
    client,
    protected_text: str,
    target_language: str,
    ph_token_count: int,
    tag_token_count: int,
    attempt_policies: Sequence[AttemptPolicy] = DEFAULT_ATTEMPT_POLICIES,
    leakage_markers: Sequence[str] = DEFAULT_LEAKAGE_MARKERS,
    **translate_kwargs,
) -> TranslationResult:
    """
    Translate ``protected_text`` and return the first candidate that validates.

    Args:
        client: Object with a ``translate(text, target_language, max_tokens=...)``
            method returning a TranslationResult (usually an LLMClient)
        protected_text: Text with all markup and placeholders tokenized
        target_language: Display name of the target language
        ph_token_count: Number of placeholder tokens in ``protected_text``
        tag_token_count: Number of inline tag tokens in ``protected_text``
        attempt_policies: Attempts to make, in order
        leakage_markers: Phrases that disqualify a candidate
        **translate_kwargs: Extra arguments passed to ``client.translate``

    Returns:
        TranslationResult holding the accepted (stripped) candidate, or a
        failure once every attempt has been rejected.
    """
    for attempt, policy in enumerate(attempt_policies, start=1):
        candidate = _safe_translate(
            client,
            protected_text,
            target_language,
            policy.max_tokens,
            **translate_kwargs,
        )
        if not looks_bad(
            protected_text,
            candidate,
            ph_token_count,
            tag_token_count,
            leakage_markers,
            target_language=target_language,
        ):
            return TranslationResult.success(candidate.strip())

        logger.warning(
            f"Attempt {attempt}/{len(attempt_policies)} "
            f"(max_tokens={policy.max_tokens}) rejected for: {protected_text[:60]!r}"
        )

    return TranslationResult.failure(
        f"no valid translation after {len(attempt_policies)} attempts"
    )
