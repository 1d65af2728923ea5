"""
Noisy-channel glyph substitution model.

P(glyph | language, previous glyph type, previous LM char, LM char) is
kept as one dense probability vector per conditioning context, over a
fixed outcome space:

    outcome k in [0, V)        plain glyph with template k
    outcome V + k              glyph with template k and an elision tilde
    outcome 2V                 elided glyph (prints nothing)

The tilde and elided outcomes exist only when elision is enabled, so the
space has V or 2V + 1 outcomes. Contexts never seen in training fall back
to the prior before the first M-step and to the uniform smoothed
distribution afterwards.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from typing import NamedTuple

import numpy as np

from palimpsest.config import SubstitutionConfig
from palimpsest.exceptions import InvalidDistributionError
from palimpsest.indexer import Indexer
from palimpsest.models import NO_LANGUAGE, GlyphChar, GlyphType

logger = logging.getLogger(__name__)


class GlyphContext(NamedTuple):
    """Conditioning tuple of the substitution distribution."""

    language: int
    prev_glyph_type: GlyphType
    prev_lm_char: int
    lm_char: int

    def sort_key(self) -> tuple[int, str, int, int]:
        return (self.language, self.prev_glyph_type.value, self.prev_lm_char, self.lm_char)


# =============================================================================
# SUFFICIENT STATISTICS
# =============================================================================


class GlyphStatistics:
    """
    Expected glyph counts per context.

    Workers fill private instances during the E-step; the trainer merges
    them in document order before normalization.

    Example:
        >>> stats = GlyphStatistics(num_outcomes=3)
        >>> stats.add(GlyphContext(0, GlyphType.NORMAL_CHAR, -1, 0), 0, 0.75)
        >>> stats.total()
        0.75
    """

    def __init__(self, num_outcomes: int):
        self.num_outcomes = num_outcomes
        self._counts: dict[GlyphContext, np.ndarray] = {}

    def add(self, context: GlyphContext, outcome: int, weight: float) -> None:
        """Add an expected count for one (context, outcome) pair."""
        if not math.isfinite(weight) or weight < 0.0:
            raise ValueError(f"weight must be a finite non-negative number, got {weight}")
        counts = self._counts.get(context)
        if counts is None:
            counts = np.zeros(self.num_outcomes, dtype=np.float64)
            self._counts[context] = counts
        counts[outcome] += weight

    def merge(self, other: GlyphStatistics) -> None:
        """Add another accumulator's counts into this one."""
        if other.num_outcomes != self.num_outcomes:
            raise ValueError(
                f"cannot merge statistics over {other.num_outcomes} outcomes "
                f"into statistics over {self.num_outcomes}"
            )
        for context in sorted(other._counts, key=GlyphContext.sort_key):
            counts = self._counts.get(context)
            if counts is None:
                self._counts[context] = other._counts[context].copy()
            else:
                counts += other._counts[context]

    def counts(self, context: GlyphContext) -> np.ndarray:
        counts = self._counts.get(context)
        if counts is None:
            return np.zeros(self.num_outcomes, dtype=np.float64)
        return counts.copy()

    def contexts(self) -> list[GlyphContext]:
        return sorted(self._counts, key=GlyphContext.sort_key)

    def total(self) -> float:
        return float(sum(counts.sum() for counts in self._counts.values()))

    def clear(self) -> None:
        self._counts.clear()

    def __len__(self) -> int:
        return len(self._counts)

    def __bool__(self) -> bool:
        return bool(self._counts)


# =============================================================================
# MODEL
# =============================================================================


class GlyphSubstitutionModel:
    """
    Conditional distribution over rendered glyphs for each LM character.

    Building a model freezes both indexers: ids are permanent from here on.

    Attributes:
        char_indexer: Characters of the LM alphabet (also the template ids).
        lang_indexer: Language names; may be empty (language id -1).
        config: Smoothing, prior and switches.
        statistics: Accumulator filled by accumulate()/merge_statistics().

    Example:
        >>> chars = Indexer(["a", "b", "-"], name="characters")
        >>> langs = Indexer(["latin"], name="languages")
        >>> gsm = GlyphSubstitutionModel(chars, langs)
        >>> gsm.glyph_prob(0, GlyphType.NORMAL_CHAR, -1, 0, GlyphChar(0))
        0.9
    """

    def __init__(
        self,
        char_indexer: Indexer[str],
        lang_indexer: Indexer[str],
        config: SubstitutionConfig | None = None,
    ):
        self.char_indexer = char_indexer
        self.lang_indexer = lang_indexer
        self.config = config or SubstitutionConfig()
        char_indexer.freeze()
        lang_indexer.freeze()

        self.num_chars = len(char_indexer)
        if self.num_chars == 0:
            raise ValueError("character indexer is empty")
        self.num_outcomes = (
            2 * self.num_chars + 1 if self.config.allow_elision else self.num_chars
        )

        self.statistics = GlyphStatistics(self.num_outcomes)
        self._table: dict[GlyphContext, np.ndarray] = {}
        self._normalized = False
        self._fallback_cache: dict[int, np.ndarray] = {}
        self._candidate_cache: dict[tuple[int, float], tuple[GlyphChar, ...]] = {}

    # -------------------------------------------------------------------------
    # Outcome space
    # -------------------------------------------------------------------------

    @property
    def allow_substitution(self) -> bool:
        return self.config.allow_glyph_substitution

    @property
    def is_normalized(self) -> bool:
        """True once normalize() has replaced the prior."""
        return self._normalized

    @property
    def elided_outcome(self) -> int | None:
        return 2 * self.num_chars if self.config.allow_elision else None

    def outcome_index(self, glyph: GlyphChar) -> int | None:
        """Position of a glyph in the outcome space, or None if it is not representable."""
        template = glyph.template_char_index
        if glyph.is_elided:
            return self.elided_outcome
        if not 0 <= template < self.num_chars:
            return None
        if glyph.has_elision_tilde:
            return self.num_chars + template if self.config.allow_elision else None
        return template

    def outcome_glyph(self, outcome: int, lm_char: int) -> GlyphChar:
        """
        Glyph for an outcome index.

        Elided glyphs keep the LM character as their template id so that
        reports can show what was elided.
        """
        if outcome < self.num_chars:
            return GlyphChar(outcome)
        if outcome == self.elided_outcome:
            return GlyphChar(lm_char, is_elided=True)
        return GlyphChar(outcome - self.num_chars, has_elision_tilde=True)

    def context(
        self, language: int, prev_glyph_type: GlyphType, prev_lm_char: int, lm_char: int
    ) -> GlyphContext:
        """Canonical context key, folding glyph types the scheme does not separate."""
        if prev_glyph_type not in self.config.glyph_type_scheme.types():
            prev_glyph_type = GlyphType.ELIDED
        return GlyphContext(language, prev_glyph_type, prev_lm_char, lm_char)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def glyph_prob(
        self,
        language: int,
        prev_glyph_type: GlyphType,
        prev_lm_char: int,
        lm_char: int,
        glyph: GlyphChar,
    ) -> float:
        """
        P(glyph | language, previous glyph type, previous LM char, LM char).

        Returns:
            Probability in [0, 1]; exactly 0 for glyphs outside the
            outcome space and, with substitution disabled, for every
            non-identity glyph.
        """
        if not self.allow_substitution:
            return 1.0 if _is_identity(glyph, lm_char) else 0.0
        outcome = self.outcome_index(glyph)
        if outcome is None:
            return 0.0
        context = self.context(language, prev_glyph_type, prev_lm_char, lm_char)
        return float(self.distribution(context)[outcome])

    def log_glyph_prob(
        self,
        language: int,
        prev_glyph_type: GlyphType,
        prev_lm_char: int,
        lm_char: int,
        glyph: GlyphChar,
    ) -> float:
        prob = self.glyph_prob(language, prev_glyph_type, prev_lm_char, lm_char, glyph)
        return math.log(prob) if prob > 0.0 else -math.inf

    def distribution(self, context: GlyphContext) -> np.ndarray:
        """
        Probability vector over the outcome space for one context.

        The returned array is shared; callers must not modify it.
        """
        probs = self._table.get(context)
        if probs is not None:
            return probs
        return self._fallback(context.lm_char)

    def _fallback(self, lm_char: int) -> np.ndarray:
        key = lm_char if (not self._normalized and self.config.prior == "identity") else -1
        cached = self._fallback_cache.get(key)
        if cached is not None:
            return cached
        if key == -1:
            probs = np.full(self.num_outcomes, 1.0 / self.num_outcomes, dtype=np.float64)
        else:
            weight = self.config.identity_weight
            rest = (1.0 - weight) / (self.num_outcomes - 1) if self.num_outcomes > 1 else 0.0
            probs = np.full(self.num_outcomes, rest, dtype=np.float64)
            probs[lm_char] = weight if self.num_outcomes > 1 else 1.0
        probs.setflags(write=False)
        self._fallback_cache[key] = probs
        return probs

    def candidate_glyphs(self, lm_char: int, min_prob: float = 0.0) -> tuple[GlyphChar, ...]:
        """
        Glyphs the lattice may propose for an LM character.

        The identity glyph always comes first. With substitution disabled it
        is the only candidate. Otherwise a non-identity glyph is proposed if
        some context for this LM char (or the fallback distribution) gives it
        at least ``min_prob``.
        """
        key = (lm_char, min_prob)
        cached = self._candidate_cache.get(key)
        if cached is not None:
            return cached

        identity = GlyphChar(lm_char)
        if not self.allow_substitution:
            candidates: tuple[GlyphChar, ...] = (identity,)
        else:
            best = self._fallback(lm_char).copy()
            for context, probs in self._table.items():
                if context.lm_char == lm_char:
                    np.maximum(best, probs, out=best)
            outcomes = [k for k in range(self.num_outcomes) if k != lm_char and best[k] >= min_prob]
            candidates = (identity,) + tuple(self.outcome_glyph(k, lm_char) for k in outcomes)

        self._candidate_cache[key] = candidates
        return candidates

    def contexts(self) -> list[GlyphContext]:
        """Contexts with an explicitly estimated distribution, in canonical order."""
        return sorted(self._table, key=GlyphContext.sort_key)

    def languages(self) -> list[int]:
        """Language ids the lattice iterates over (NO_LANGUAGE if none are configured)."""
        if len(self.lang_indexer) == 0:
            return [NO_LANGUAGE]
        return list(range(len(self.lang_indexer)))

    # -------------------------------------------------------------------------
    # Estimation
    # -------------------------------------------------------------------------

    def accumulate(
        self,
        language: int,
        prev_glyph_type: GlyphType,
        prev_lm_char: int,
        lm_char: int,
        glyph: GlyphChar,
        weight: float,
    ) -> None:
        """Add an expected count for one glyph event to this model's statistics."""
        outcome = self.outcome_index(glyph)
        if outcome is None:
            raise ValueError(f"{glyph} is outside the outcome space of this model")
        context = self.context(language, prev_glyph_type, prev_lm_char, lm_char)
        self.statistics.add(context, outcome, weight)

    def new_statistics(self) -> GlyphStatistics:
        """Empty accumulator with this model's outcome space, for one worker."""
        return GlyphStatistics(self.num_outcomes)

    def merge_statistics(self, statistics: GlyphStatistics) -> None:
        self.statistics.merge(statistics)

    def normalize(self) -> None:
        """
        M-step: turn accumulated counts into smoothed distributions.

        Every context with counts gets (counts + alpha) / (total + K * alpha).
        Contexts without counts become uniform. The accumulator is reset.

        Raises:
            InvalidDistributionError: If a context's counts are negative or
                non-finite, or its normalized mass is not 1 within tolerance.
        """
        if not self.allow_substitution:
            logger.debug("Glyph substitution disabled; discarding %d contexts", len(self.statistics))
            self.statistics.clear()
            return

        alpha = self.config.smoothing
        tolerance = self.config.distribution_tolerance
        table: dict[GlyphContext, np.ndarray] = {}
        for context in self.statistics.contexts():
            counts = self.statistics.counts(context)
            if not np.all(np.isfinite(counts)) or np.any(counts < 0.0):
                raise InvalidDistributionError(f"invalid counts for context {context}")
            smoothed = counts + alpha
            probs = smoothed / smoothed.sum()
            mass = float(probs.sum())
            if abs(mass - 1.0) > tolerance or np.any(probs <= 0.0):
                raise InvalidDistributionError(
                    f"context {context} normalized to total mass {mass!r}"
                )
            probs.setflags(write=False)
            table[context] = probs

        logger.info(
            "Normalized %d glyph contexts from %.3f expected counts",
            len(table),
            self.statistics.total(),
        )
        self._table = table
        self._normalized = True
        self._fallback_cache.clear()
        self._candidate_cache.clear()
        self.statistics.clear()

    def _restore(self, table: dict[GlyphContext, np.ndarray], normalized: bool) -> None:
        for probs in table.values():
            probs.setflags(write=False)
        self._table = table
        self._normalized = normalized
        self._fallback_cache.clear()
        self._candidate_cache.clear()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save(self) -> bytes:
        """Serialize to a versioned, compressed blob."""
        from palimpsest.substitution.persistence import dumps

        return dumps(self)

    @classmethod
    def load(cls, data: bytes) -> GlyphSubstitutionModel:
        """Restore a model from save() output."""
        from palimpsest.substitution.persistence import loads

        return loads(data)

    def __iter__(self) -> Iterator[tuple[GlyphContext, np.ndarray]]:
        for context in self.contexts():
            yield context, self._table[context]

    def __repr__(self) -> str:
        return (
            f"GlyphSubstitutionModel(chars={self.num_chars}, "
            f"languages={len(self.lang_indexer)}, contexts={len(self._table)}, "
            f"outcomes={self.num_outcomes})"
        )


def _is_identity(glyph: GlyphChar, lm_char: int) -> bool:
    return glyph.template_char_index == lm_char and not glyph.is_elided and not glyph.has_elision_tilde
