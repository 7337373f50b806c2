#!/usr/bin/env python3
"""Helpers for shielding inline format placeholders from the translation model."""

from typing import List, Optional, Sequence, Tuple
import re

__all__ = [
    "PLACEHOLDER_TOKEN_TEMPLATE",
    "placeholder_token",
    "protect_placeholders",
    "restore_placeholders",
    "all_tokens_present",
]

PLACEHOLDER_TOKEN_TEMPLATE = "__XLF_PH_{index}__"

# Applied in this order; each pass only sees text left over by the previous ones.
_PLACEHOLDER_PATTERNS = (
    re.compile(r"#\[[^\]]+\]"),  # #[Shared.Filters]
    re.compile(r"\{\d+\}"),  # {0}
    re.compile(r"\{[A-Za-z_][A-Za-z0-9_]*\}"),  # {User}
    re.compile(r"%(\d+\$)?[sdif]"),  # %s %1$s %d
    re.compile(r"\$\{[^\}]+\}"),  # ${VAR}
)


def placeholder_token(index: int) -> str:
    """Return the opaque token standing in for the placeholder at ``index``."""
    return PLACEHOLDER_TOKEN_TEMPLATE.format(index=index)


def protect_placeholders(text: Optional[str]) -> Tuple[str, List[str]]:
    """
    Replace every recognised placeholder with a numbered token.

    Tokens are numbered with a single running counter across all patterns, so
    ``originals[i]`` is the text that ``placeholder_token(i)`` replaced.

    Args:
        text: The string to protect. ``None`` is treated as an empty string.

    Returns:
        A tuple of (text with tokens, list of original placeholder strings)
    """
    originals: List[str] = []
    value = text or ""

    def _substitute(match: "re.Match[str]") -> str:
        token = placeholder_token(len(originals))
        originals.append(match.group(0))
        return token

    for pattern in _PLACEHOLDER_PATTERNS:
        value = pattern.sub(_substitute, value)

    return value, originals


def restore_placeholders(text: Optional[str], originals: Sequence[str]) -> str:
    """Put the original placeholders back in place of their tokens."""
    value = text or ""
    for index, original in enumerate(originals):
        value = value.replace(placeholder_token(index), original)
    return value


def all_tokens_present(text: Optional[str], count: int) -> bool:
    """Return True only if tokens 0..count-1 all occur in ``text``."""
    value = text or ""
    for index in range(count):
        if placeholder_token(index) not in value:
            return False
    return True
