"""
Canonical symbols shared by the language model, the lattice and the
transcription views.
"""

from __future__ import annotations

import unicodedata

HYPHEN = "-"
SPACE = " "

# Rendered on top of a glyph that marks elided characters after it
COMBINING_TILDE = "\u0303"

# Alternate hyphen code points found in transcriptions of older prints
HYPHEN_VARIANTS = frozenset({"-", "\u2010", "\u2011", "\u00ad", "\u2e17", "\u2e40"})


def normalize_char(char: str) -> str:
    """Map a transcription character onto its canonical alphabet symbol."""
    if char in HYPHEN_VARIANTS:
        return HYPHEN
    return unicodedata.normalize("NFC", char)


def is_hyphen(token: str | None) -> bool:
    return token == HYPHEN


def render_glyph(char: str, has_tilde: bool = False) -> str:
    """
    Produce the visible string for a glyph.

    Args:
        char: Template character.
        has_tilde: Whether the glyph carries an elision tilde.

    Returns:
        NFC-normalized string, with a combining tilde when requested.
    """
    if not has_tilde:
        return char
    return unicodedata.normalize("NFC", char + COMBINING_TILDE)

