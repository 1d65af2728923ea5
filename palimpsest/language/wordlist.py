"""
Seed corpora from pyspellchecker word-frequency lists.

When no transcribed text exists for a language, a character n-gram can
still be trained on the language's frequency list: each word becomes one
training line weighted by the log of its corpus count.
"""

from __future__ import annotations

import logging
import math
import re

from spellchecker import SpellChecker

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_WORD_LIMIT = 20000
MIN_WORD_LENGTH = 1

# Letters only; frequency lists contain digits and stray punctuation
WORD_PATTERN = re.compile(r"^[^\W\d_]+$")


def word_frequency_corpus(
    language: str = "en",
    limit: int = DEFAULT_WORD_LIMIT,
    spell: SpellChecker | None = None,
) -> list[tuple[str, float]]:
    """
    Build weighted training lines from a frequency list.

    Args:
        language: pyspellchecker language code ("en", "es", "fr", "pt", "de", ...).
        limit: Number of most frequent words to use.
        spell: Pre-built SpellChecker (the ``language`` argument is then ignored).

    Returns:
        (word, weight) pairs, most frequent first, weight = 1 + log(count).

    Example:
        >>> lines = word_frequency_corpus("es", limit=3)
        >>> len(lines)
        3
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    if spell is None:
        spell = SpellChecker(language=language)
        logger.debug("Initialized %s word frequency list", language)

    lines: list[tuple[str, float]] = []
    for word, count in spell.word_frequency.dictionary.most_common():
        if len(lines) >= limit:
            break
        if len(word) < MIN_WORD_LENGTH or not WORD_PATTERN.match(word) or count <= 0:
            continue
        lines.append((word, 1.0 + math.log(count)))

    logger.info("Seed corpus for %s: %d words", language, len(lines))
    return lines
