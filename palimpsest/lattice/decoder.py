"""
Sparse transition lattice over one text line.

Nodes live at pixel columns. A node's key is what the next transition
needs to be scored: current language, the last few LM characters, the
conditioning type of the last glyph, how many elided glyphs in a row
led here, and whether the last visible glyph was a plain hyphen.

A plain hyphen rendering an LM hyphen right after a visible plain hyphen
is the same logical character printed twice. It is collapsed: it costs
only its emission score, keeps the LM context, and may repeat. These are
exactly the states LineConsolidator drops from the transcription.

An edge consumes exactly one LM character and renders one glyph:

    visible glyph  advances the column by its width (nominal +/- slack)
    elided glyph   stays in the same column (bounded run length)

Edge score = log P_lm(char, language | context)
           + log P_gsm(glyph | language, prev glyph type, prev LM char, LM char)
           + log P_emission(image columns | glyph)

A line is decoded by visiting columns left to right and, inside a column,
elided-run levels in increasing order, which is a topological order of
the lattice. The concrete glyph on each edge is kept for output even
though node keys only carry its type.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Hashable, Iterator
from typing import NamedTuple

from palimpsest.charset import HYPHEN
from palimpsest.config import DecoderConfig
from palimpsest.emission.base import EmissionModel, EmissionStatistics, LineImage
from palimpsest.exceptions import ConfigurationError, NoViablePathError
from palimpsest.language.base import LanguageModel
from palimpsest.models import (
    NO_CHAR,
    NO_LANGUAGE,
    GlyphChar,
    GlyphType,
    LineDecode,
    TransitionState,
)
from palimpsest.substitution.model import GlyphStatistics, GlyphSubstitutionModel

logger = logging.getLogger(__name__)

NEG_INF = -math.inf

# Posteriors below this are not worth accumulating
MIN_POSTERIOR = 1e-12


# =============================================================================
# DATA STRUCTURES
# =============================================================================


class NodeKey(NamedTuple):
    """Lattice node identity within one column."""

    language: int
    context: tuple[int, ...]
    glyph_type: GlyphType
    elided_run: int
    after_hyphen: bool

    def order(self) -> tuple:
        return (
            self.language,
            self.context,
            self.glyph_type.value,
            self.elided_run,
            self.after_hyphen,
        )


START = NodeKey(NO_LANGUAGE, (), GlyphType.NORMAL_CHAR, 0, False)


class Edge(NamedTuple):
    """What one transition consumed and rendered."""

    language: int
    lm_char: int
    glyph: GlyphChar
    glyph_type: GlyphType
    prev_glyph_type: GlyphType
    prev_lm_char: int
    position: int
    width: int
    # False for a hyphen collapsed into the visible hyphen before it
    counted: bool


class _Budget:
    def __init__(self, config: DecoderConfig, line_id: Hashable | None):
        self.max_steps = config.max_steps_per_line
        self.deadline = (
            time.monotonic() + config.line_timeout_seconds
            if config.line_timeout_seconds is not None
            else None
        )
        self.line_id = line_id
        self.steps = 0

    def step(self) -> None:
        self.steps += 1
        if self.max_steps is not None and self.steps > self.max_steps:
            raise NoViablePathError(
                f"step budget of {self.max_steps} transitions exceeded", self.line_id
            )

    def check_time(self) -> None:
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise NoViablePathError("decode time budget exceeded", self.line_id)


def log_add(a: float, b: float) -> float:
    """log(exp(a) + exp(b)) without overflow."""
    if a == NEG_INF:
        return b
    if b == NEG_INF:
        return a
    if a < b:
        a, b = b, a
    return a + math.log1p(math.exp(b - a))


# =============================================================================
# LATTICE
# =============================================================================


class SparseTransitionLattice:
    """
    Builds and searches the per-line lattice.

    The lattice holds no per-line state between calls; one instance can
    decode many lines, from several threads, as long as the models are
    not being re-estimated at the same time.

    Attributes:
        substitution_model: Glyph substitution probabilities (read only here).
        language_model: Source of LM character scores.
        emission_model: Source of glyph appearance scores and widths.
        config: Beam, widths, elision and budget settings.

    Example:
        >>> lattice = SparseTransitionLattice(gsm, lm, font)
        >>> result = lattice.decode(LineImage.from_path("017-04.png", height=30))
        >>> [s.lm_char_index for s in result.states]
        [0, 4, 1, 0]
    """

    def __init__(
        self,
        substitution_model: GlyphSubstitutionModel,
        language_model: LanguageModel,
        emission_model: EmissionModel,
        config: DecoderConfig | None = None,
    ):
        if language_model.char_indexer.objects() != substitution_model.char_indexer.objects():
            raise ConfigurationError(
                "language model and substitution model use different character indexers"
            )
        if language_model.lang_indexer.objects() != substitution_model.lang_indexer.objects():
            raise ConfigurationError(
                "language model and substitution model use different language indexers"
            )
        self.substitution_model = substitution_model
        self.language_model = language_model
        self.emission_model = emission_model
        self.config = config or DecoderConfig()

        self.num_chars = len(substitution_model.char_indexer)
        self.languages = substitution_model.languages()
        self.hyphen = substitution_model.char_indexer.get(HYPHEN)
        self.plain_hyphen = GlyphChar(self.hyphen) if self.hyphen >= 0 else None
        self.context_size = max(1, language_model.order - 1)
        self.scheme = substitution_model.config.glyph_type_scheme

    # -------------------------------------------------------------------------
    # Expansion
    # -------------------------------------------------------------------------

    def _expand(
        self,
        key: NodeKey,
        column: int,
        image: LineImage,
        emission_cache: dict[tuple[GlyphChar, int, int], float],
        budget: _Budget,
    ) -> Iterator[tuple[NodeKey, int, float, Edge]]:
        """Yield (target key, target column, edge score, edge) for every viable transition."""
        gsm = self.substitution_model
        config = self.config
        line_width = image.width
        context = key.context
        prev_lm = context[-1] if context else NO_CHAR
        prev_type = key.glyph_type

        for language in self.languages:
            for lm_char in range(self.num_chars):
                repeat_hyphen = key.after_hyphen and lm_char == self.hyphen
                lm_score = self.language_model.score_next(context, lm_char, language, key.language)
                if lm_score == NEG_INF and not (repeat_hyphen and language == key.language):
                    continue
                extended = (context + (lm_char,))[-self.context_size :]

                for glyph in gsm.candidate_glyphs(lm_char, config.min_substitution_prob):
                    collapsed = repeat_hyphen and glyph == self.plain_hyphen
                    if collapsed:
                        # Same logical character as the visible hyphen before it
                        if language != key.language:
                            continue
                        score = 0.0
                        target_context = context
                    else:
                        if lm_score == NEG_INF:
                            continue
                        glyph_score = gsm.log_glyph_prob(
                            language, prev_type, prev_lm, lm_char, glyph
                        )
                        if glyph_score == NEG_INF:
                            continue
                        score = lm_score + glyph_score
                        target_context = extended

                    glyph_type = self.scheme.classify(glyph, prev_type)
                    if glyph.is_elided:
                        if key.elided_run >= config.max_consecutive_elisions:
                            continue
                        widths: range = range(0, 1)
                        elided_run = key.elided_run + 1
                        after_hyphen = key.after_hyphen
                    else:
                        nominal = self.emission_model.width_of(glyph)
                        low = max(1, nominal - config.width_slack)
                        high = min(nominal + config.width_slack, line_width - column)
                        widths = range(low, high + 1)
                        elided_run = 0
                        after_hyphen = (
                            glyph.template_char_index == self.hyphen
                            and not glyph.has_elision_tilde
                        )

                    target_key = NodeKey(
                        language, target_context, glyph_type, elided_run, after_hyphen
                    )
                    for width in widths:
                        budget.step()
                        cache_key = (glyph, column, width)
                        emission = emission_cache.get(cache_key)
                        if emission is None:
                            emission = self.emission_model.emission_score(
                                glyph, image, column, width
                            )
                            emission_cache[cache_key] = emission
                        if emission == NEG_INF:
                            continue
                        edge = Edge(
                            language,
                            lm_char,
                            glyph,
                            glyph_type,
                            prev_type,
                            prev_lm,
                            column,
                            width,
                            not collapsed,
                        )
                        yield target_key, column + width, score + emission, edge

    def _prune(self, level: dict[NodeKey, float]) -> list[NodeKey]:
        """Keys of one (column, elided-run) level in expansion order, cut to the beam."""
        keys = sorted(level, key=lambda k: (-level[k], k.order()))
        if self.config.beam_size is not None:
            keys = keys[: self.config.beam_size]
        return sorted(keys, key=NodeKey.order)

    # -------------------------------------------------------------------------
    # Best path
    # -------------------------------------------------------------------------

    def decode(self, image: LineImage, line_id: Hashable | None = None) -> LineDecode:
        """
        Viterbi decode of one line.

        Ties between equally scored incoming paths go to the path that
        keeps the previous state's language, then to the lower LM char id,
        then to the path found first in the lattice's fixed visiting order.

        Returns:
            The best path; empty if the line has no width or no glyph fits.

        Raises:
            NoViablePathError: If no path reaches the end of the line, or a
                step/time budget is exceeded.
        """
        line_width = image.width
        if line_width == 0:
            return LineDecode(line_id=line_id)

        budget = _Budget(self.config, line_id)
        emission_cache: dict[tuple[GlyphChar, int, int], float] = {}
        # column -> key -> (score, back pointer)
        columns: list[dict[NodeKey, tuple[float, tuple[int, NodeKey, Edge] | None]]] = [
            {} for _ in range(line_width + 1)
        ]
        columns[0][START] = (0.0, None)
        expanded_any = False

        for column in range(line_width):
            budget.check_time()
            nodes = columns[column]
            run = 0
            while True:
                level = {k: v[0] for k, v in nodes.items() if k.elided_run == run}
                if not level:
                    break
                for key in self._prune(level):
                    base = level[key]
                    for target, target_column, score, edge in self._expand(
                        key, column, image, emission_cache, budget
                    ):
                        expanded_any = expanded_any or edge.width > 0
                        candidate = base + score
                        targets = columns[target_column]
                        current = targets.get(target)
                        if current is None or self._prefer(candidate, key, edge, current):
                            targets[target] = (candidate, (column, key, edge))
                run += 1

        if not expanded_any:
            logger.debug("Line %s: no glyph fits in %d columns", line_id, line_width)
            return LineDecode(line_id=line_id)

        finals = columns[line_width]
        if not finals:
            raise NoViablePathError("no path reaches the end of the line", line_id)
        # Same tie-break as inside the lattice, on each end node's last edge
        end_key: NodeKey | None = None
        for key in sorted(finals, key=NodeKey.order):
            score, (_, source, edge) = finals[key]
            if end_key is None or self._prefer(score, source, edge, finals[end_key]):
                end_key = key
        best_score = finals[end_key][0]
        if best_score == NEG_INF:
            raise NoViablePathError("every path has zero probability", line_id)

        states: list[TransitionState] = []
        widths: list[int] = []
        column, key = line_width, end_key
        pointer = columns[column][key][1]
        while pointer is not None:
            prev_column, prev_key, edge = pointer
            states.append(
                TransitionState(edge.language, edge.lm_char, edge.glyph, edge.position, edge.glyph_type)
            )
            widths.append(edge.width)
            column, key = prev_column, prev_key
            pointer = columns[column][key][1]
        states.reverse()
        widths.reverse()

        logger.debug(
            "Line %s: %d states, log-likelihood %.3f, %d transitions",
            line_id,
            len(states),
            best_score,
            budget.steps,
        )
        return LineDecode(tuple(states), tuple(widths), best_score, line_id)

    @staticmethod
    def _prefer(
        candidate: float,
        key: NodeKey,
        edge: Edge,
        current: tuple[float, tuple[int, NodeKey, Edge] | None],
    ) -> bool:
        current_score, pointer = current
        if candidate != current_score:
            return candidate > current_score
        if pointer is None:
            return False
        _, current_key, current_edge = pointer
        keeps = edge.language == key.language
        current_keeps = current_edge.language == current_key.language
        if keeps != current_keeps:
            return keeps
        return edge.lm_char < current_edge.lm_char

    # -------------------------------------------------------------------------
    # Posterior
    # -------------------------------------------------------------------------

    def posterior(
        self,
        image: LineImage,
        glyph_statistics: GlyphStatistics | None = None,
        emission_statistics: EmissionStatistics | None = None,
        line_id: Hashable | None = None,
    ) -> float:
        """
        Forward-backward over the line, accumulating expected counts.

        Every edge's posterior probability is added to ``glyph_statistics``
        under its (language, previous glyph type, previous LM char, LM char)
        context, and visible glyphs are reported to ``emission_statistics``.
        Collapsed hyphens count towards the emission statistics only.

        Returns:
            Log of the total probability of all paths (0.0 for an empty line).

        Raises:
            NoViablePathError: If no path reaches the end of the line, or a
                step/time budget is exceeded.
        """
        line_width = image.width
        if line_width == 0:
            return 0.0

        budget = _Budget(self.config, line_id)
        emission_cache: dict[tuple[GlyphChar, int, int], float] = {}
        alpha: list[dict[NodeKey, float]] = [{} for _ in range(line_width + 1)]
        incoming: list[dict[NodeKey, list[tuple[int, NodeKey, float, Edge]]]] = [
            {} for _ in range(line_width + 1)
        ]
        alpha[0][START] = 0.0
        order: list[tuple[int, NodeKey]] = []
        expanded_any = False

        for column in range(line_width):
            budget.check_time()
            run = 0
            while True:
                level = {k: v for k, v in alpha[column].items() if k.elided_run == run}
                if not level:
                    break
                for key in self._prune(level):
                    order.append((column, key))
                    base = level[key]
                    for target, target_column, score, edge in self._expand(
                        key, column, image, emission_cache, budget
                    ):
                        expanded_any = expanded_any or edge.width > 0
                        targets = alpha[target_column]
                        targets[target] = log_add(targets.get(target, NEG_INF), base + score)
                        incoming[target_column].setdefault(target, []).append(
                            (column, key, score, edge)
                        )
                run += 1

        if not expanded_any:
            logger.debug("Line %s: no glyph fits in %d columns", line_id, line_width)
            return 0.0

        finals = alpha[line_width]
        if not finals:
            raise NoViablePathError("no path reaches the end of the line", line_id)

        beta: list[dict[NodeKey, float]] = [{} for _ in range(line_width + 1)]
        for key in finals:
            beta[line_width][key] = 0.0
        # Targets before sources: final column first, then expanded nodes in reverse
        for column, key in [(line_width, k) for k in sorted(finals, key=NodeKey.order)] + order[::-1]:
            node_beta = beta[column].get(key, NEG_INF)
            if node_beta == NEG_INF:
                continue
            for prev_column, prev_key, score, _ in incoming[column].get(key, ()):
                prev = beta[prev_column]
                prev[prev_key] = log_add(prev.get(prev_key, NEG_INF), score + node_beta)

        log_z = beta[0].get(START, NEG_INF)
        if log_z == NEG_INF:
            raise NoViablePathError("every path has zero probability", line_id)

        gsm = self.substitution_model
        for column in range(line_width + 1):
            for key in sorted(incoming[column], key=NodeKey.order):
                node_beta = beta[column].get(key, NEG_INF)
                if node_beta == NEG_INF:
                    continue
                for prev_column, prev_key, score, edge in incoming[column][key]:
                    prev_alpha = alpha[prev_column].get(prev_key, NEG_INF)
                    weight = math.exp(prev_alpha + score + node_beta - log_z)
                    if weight < MIN_POSTERIOR:
                        continue
                    self._accumulate(gsm, edge, weight, image, glyph_statistics, emission_statistics)

        logger.debug(
            "Line %s: log Z %.3f over %d expanded nodes, %d transitions",
            line_id,
            log_z,
            len(order),
            budget.steps,
        )
        return log_z

    @staticmethod
    def _accumulate(
        gsm: GlyphSubstitutionModel,
        edge: Edge,
        weight: float,
        image: LineImage,
        glyph_statistics: GlyphStatistics | None,
        emission_statistics: EmissionStatistics | None,
    ) -> None:
        if glyph_statistics is not None and edge.counted and gsm.allow_substitution:
            context = gsm.context(edge.language, edge.prev_glyph_type, edge.prev_lm_char, edge.lm_char)
            glyph_statistics.add(context, gsm.outcome_index(edge.glyph), weight)
        if emission_statistics is not None and not edge.glyph.is_elided:
            emission_statistics.add(edge.glyph, image, edge.position, edge.width, weight)
