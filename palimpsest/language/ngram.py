"""
Character n-gram language models with per-word language switching.

Each language gets an interpolated character n-gram: the estimate for a
context of length k is smoothed towards the estimate for its length k-1
suffix, down to a uniform distribution over the alphabet, so every
character keeps a strictly positive probability.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence

from palimpsest.charset import HYPHEN, SPACE, normalize_char
from palimpsest.indexer import Indexer
from palimpsest.language.base import LanguageModel
from palimpsest.models import NO_LANGUAGE

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_ORDER = 3
DEFAULT_SMOOTHING = 1.0  # Pseudo-count mass given to the lower-order estimate
DEFAULT_SWITCH_PROB = 1e-4

TrainingLine = str | tuple[str, float]


# =============================================================================
# SINGLE-LANGUAGE MODEL
# =============================================================================


class CharacterNgramModel:
    """
    Interpolated character n-gram over integer ids.

    P(c | h) = (count(h, c) + s * P(c | h[1:])) / (count(h) + s)

    with P(c | ()) smoothed towards 1 / alphabet_size.

    Example:
        >>> model = CharacterNgramModel(order=2, alphabet_size=3)
        >>> model.add_sequence([0, 1, 0, 1])
        >>> model.log_prob([0], 1) > model.log_prob([0], 2)
        True
    """

    def __init__(self, order: int, alphabet_size: int, smoothing: float = DEFAULT_SMOOTHING):
        if order < 1:
            raise ValueError(f"order must be >= 1, got {order}")
        if alphabet_size < 1:
            raise ValueError(f"alphabet_size must be >= 1, got {alphabet_size}")
        if smoothing <= 0:
            raise ValueError(f"smoothing must be > 0, got {smoothing}")
        self.order = order
        self.alphabet_size = alphabet_size
        self.smoothing = smoothing
        self._counts: dict[tuple[int, ...], dict[int, float]] = {}
        self._totals: dict[tuple[int, ...], float] = {}
        self._cache: dict[tuple[tuple[int, ...], int], float] = {}

    def add_sequence(self, ids: Sequence[int], weight: float = 1.0) -> None:
        """Count every n-gram (and lower-order suffix) of one line."""
        for i, c in enumerate(ids):
            if not 0 <= c < self.alphabet_size:
                raise ValueError(f"character id {c} outside alphabet of size {self.alphabet_size}")
            start = max(0, i - self.order + 1)
            history = tuple(ids[start:i])
            for k in range(len(history) + 1):
                context = history[len(history) - k :]
                row = self._counts.setdefault(context, {})
                row[c] = row.get(c, 0.0) + weight
                self._totals[context] = self._totals.get(context, 0.0) + weight
        self._cache.clear()

    def prob(self, context: Sequence[int], c: int) -> float:
        history = tuple(context[-(self.order - 1) :]) if self.order > 1 else ()
        return self._prob(history, c)

    def _prob(self, history: tuple[int, ...], c: int) -> float:
        key = (history, c)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        if history:
            lower = self._prob(history[1:], c)
        else:
            lower = 1.0 / self.alphabet_size
        total = self._totals.get(history, 0.0)
        count = self._counts.get(history, {}).get(c, 0.0)
        value = (count + self.smoothing * lower) / (total + self.smoothing)
        self._cache[key] = value
        return value

    def log_prob(self, context: Sequence[int], c: int) -> float:
        return math.log(self.prob(context, c))


# =============================================================================
# CODE-SWITCHING MODEL
# =============================================================================


class CodeSwitchLanguageModel(LanguageModel):
    """
    One character n-gram per language, with language switches between words.

    The language may change only at line start or right after a SPACE.
    A switch costs ``switch_prob`` (spread evenly over the other
    languages); at line start every language is equally likely.

    Attributes:
        char_indexer: Alphabet shared by all languages.
        lang_indexer: Language names (may be empty for single-language use).
        models: N-gram per language id (NO_LANGUAGE when none are named).
        switch_prob: Probability of changing language at a word boundary.

    Example:
        >>> lm = CodeSwitchLanguageModel.from_texts(
        ...     {"latin": ["arma uirumque cano"], "spanish": ["en un lugar de la mancha"]}
        ... )
        >>> lm.lang_indexer.objects()
        ['latin', 'spanish']
    """

    def __init__(
        self,
        char_indexer: Indexer[str],
        lang_indexer: Indexer[str],
        models: Mapping[int, CharacterNgramModel],
        switch_prob: float = DEFAULT_SWITCH_PROB,
    ):
        if not 0.0 <= switch_prob < 1.0:
            raise ValueError(f"switch_prob must be in [0.0, 1.0), got {switch_prob}")
        expected = list(range(len(lang_indexer))) or [NO_LANGUAGE]
        if sorted(models) != expected:
            raise ValueError(f"models must be keyed by language ids {expected}, got {sorted(models)}")
        self.char_indexer = char_indexer
        self.lang_indexer = lang_indexer
        self.models = dict(models)
        self.switch_prob = switch_prob
        self._order = max(model.order for model in self.models.values())
        self._space = char_indexer.get(SPACE)

    @property
    def order(self) -> int:
        return self._order

    @classmethod
    def from_texts(
        cls,
        texts: Mapping[str | None, Iterable[TrainingLine]],
        order: int = DEFAULT_ORDER,
        smoothing: float = DEFAULT_SMOOTHING,
        switch_prob: float = DEFAULT_SWITCH_PROB,
        extra_chars: Iterable[str] = (),
    ) -> CodeSwitchLanguageModel:
        """
        Train a model and build both indexers from raw text.

        Args:
            texts: Training lines per language name. A single ``None`` key
                trains a language-agnostic model (language id -1). Lines may
                be (text, weight) pairs.
            order: N-gram order.
            smoothing: Interpolation pseudo-count.
            switch_prob: Probability of a language switch at a word boundary.
            extra_chars: Characters to include in the alphabet even if unseen.

        Returns:
            A trained model; its indexers are still open until a
            substitution model is built on them.
        """
        if not texts:
            raise ValueError("texts must name at least one language")
        names = list(texts)
        if None in names and len(names) > 1:
            raise ValueError("a language-agnostic corpus (key None) cannot be mixed with named languages")

        char_indexer: Indexer[str] = Indexer([SPACE, HYPHEN], name="characters")
        lang_indexer: Indexer[str] = Indexer(
            [name for name in names if name is not None], name="languages"
        )

        encoded: dict[int, list[tuple[list[int], float]]] = {}
        for name in names:
            language = NO_LANGUAGE if name is None else lang_indexer.index_of(name)
            lines = encoded.setdefault(language, [])
            for line in texts[name]:
                text, weight = (line, 1.0) if isinstance(line, str) else line
                ids = [char_indexer.index_of(normalize_char(ch)) for ch in _clean(text)]
                if ids:
                    lines.append((ids, weight))
        for ch in extra_chars:
            char_indexer.index_of(normalize_char(ch))

        models = {}
        for language, lines in encoded.items():
            model = CharacterNgramModel(order, len(char_indexer), smoothing)
            for ids, weight in lines:
                model.add_sequence(ids, weight)
            models[language] = model
            logger.info(
                "Trained %d-gram model for %s on %d lines",
                order,
                "all text" if language == NO_LANGUAGE else lang_indexer.object_of(language),
                len(lines),
            )
        return cls(char_indexer, lang_indexer, models, switch_prob)

    def encode(self, text: str) -> list[int]:
        """Map text onto char ids (raises UnknownSymbolError once frozen)."""
        return [self.char_indexer.index_of(normalize_char(ch)) for ch in _clean(text)]

    def language_log_prob(self, context: Sequence[int], language: int, prev_language: int) -> float:
        """Log-probability of being in ``language`` given the previous state."""
        num_languages = len(self.lang_indexer)
        if num_languages == 0:
            return 0.0 if language == NO_LANGUAGE else -math.inf
        if language == NO_LANGUAGE:
            return -math.inf
        if prev_language == NO_LANGUAGE:
            return -math.log(num_languages)
        at_boundary = not context or context[-1] == self._space
        if num_languages == 1 or not at_boundary:
            return 0.0 if language == prev_language else -math.inf
        if language == prev_language:
            return math.log1p(-self.switch_prob)
        if self.switch_prob == 0.0:
            return -math.inf
        return math.log(self.switch_prob / (num_languages - 1))

    def score_next(
        self,
        context: Sequence[int],
        lm_char: int,
        language: int,
        prev_language: int,
    ) -> float:
        lang_score = self.language_log_prob(context, language, prev_language)
        if lang_score == -math.inf:
            return lang_score
        return lang_score + self.models[language].log_prob(context, lm_char)


def _clean(text: str) -> str:
    # Collapse runs of whitespace into single spaces and trim the ends
    return " ".join(text.split())
