"""
Language model interface consumed by the lattice.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from palimpsest.indexer import Indexer


class LanguageModel(ABC):
    """
    Abstract base for P(next LM char, language | context).

    Implementations must return a finite log-probability for every
    character of the alphabet in every language the lattice may visit
    (the lattice treats -inf as a forbidden transition, e.g. a language
    switch in mid-word).
    """

    char_indexer: Indexer[str]
    lang_indexer: Indexer[str]

    @property
    @abstractmethod
    def order(self) -> int:
        """N-gram order; the lattice keeps order - 1 characters of context."""

    @property
    def alphabet(self) -> list[str]:
        """Characters in indexer order."""
        return self.char_indexer.objects()

    @property
    def languages(self) -> list[str]:
        return self.lang_indexer.objects()

    @abstractmethod
    def score_next(
        self,
        context: Sequence[int],
        lm_char: int,
        language: int,
        prev_language: int,
    ) -> float:
        """
        Log-probability of emitting ``lm_char`` in ``language``.

        Args:
            context: Preceding LM char ids on the line, oldest first
                (empty at line start).
            lm_char: Candidate LM character id.
            language: Language of the candidate.
            prev_language: Language of the previous state (-1 at line start).

        Returns:
            Log-probability; -inf for disallowed transitions.
        """
