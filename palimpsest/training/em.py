"""
EM trainer for the glyph substitution and emission models.

Each iteration:
1. E-step: forward-backward over every line of every document with the
   current parameters, collecting expected glyph counts and
   posterior-weighted glyph observations
2. M-step: normalize the substitution model and re-estimate the
   emission model from those statistics
3. Optionally a best-path pass whose output goes to a callback

Documents are independent given frozen parameters, so the E-step maps
over documents on a thread pool; per-document statistics are merged in
document order, which keeps the M-step input identical for any worker
count.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, TypeVar

from palimpsest.config import TrainerConfig
from palimpsest.emission.base import EmissionModel, EmissionStatistics
from palimpsest.emission.templates import TemplateEmissionModel
from palimpsest.exceptions import NoViablePathError, TrainingError
from palimpsest.language.base import LanguageModel
from palimpsest.lattice.decoder import SparseTransitionLattice
from palimpsest.models import Document, DocumentDecode
from palimpsest.substitution.model import GlyphStatistics, GlyphSubstitutionModel

logger = logging.getLogger(__name__)

R = TypeVar("R")

# Log-likelihood drops smaller than this are rounding noise, not regressions
REGRESSION_TOLERANCE = 1e-9


# =============================================================================
# DATA STRUCTURES
# =============================================================================


@dataclass
class EStepResult:
    """Statistics gathered by one E-step (or one document of it)."""

    glyph_statistics: GlyphStatistics
    emission_statistics: EmissionStatistics
    log_likelihood: float = 0.0
    lines_succeeded: int = 0
    lines_failed: int = 0
    failed_lines: list[Any] = field(default_factory=list)

    def merge(self, other: EStepResult) -> None:
        self.glyph_statistics.merge(other.glyph_statistics)
        self.emission_statistics.merge(other.emission_statistics)
        self.log_likelihood += other.log_likelihood
        self.lines_succeeded += other.lines_succeeded
        self.lines_failed += other.lines_failed
        self.failed_lines.extend(other.failed_lines)

    @property
    def failure_fraction(self) -> float:
        total = self.lines_succeeded + self.lines_failed
        return self.lines_failed / total if total else 0.0


@dataclass
class IterationSummary:
    """Per-iteration report, produced whether or not lines failed."""

    iteration: int
    lines_succeeded: int
    lines_failed: int
    log_likelihood: float
    processing_time_ms: float
    converged: bool = False


@dataclass
class TrainingResult:
    """Outcome of EMTrainer.train()."""

    iterations: list[IterationSummary] = field(default_factory=list)
    decodes: dict[int, list[DocumentDecode]] = field(default_factory=dict)

    @property
    def converged(self) -> bool:
        return bool(self.iterations) and self.iterations[-1].converged

    @property
    def final_log_likelihood(self) -> float:
        return self.iterations[-1].log_likelihood if self.iterations else -math.inf


# =============================================================================
# TRAINER
# =============================================================================


class EMTrainer:
    """
    Alternates lattice posteriors and parameter re-estimation.

    The trainer owns the substitution model while training; decoding
    threads only read it.

    Attributes:
        substitution_model: Model re-estimated in every M-step.
        language_model: Fixed character language model.
        emission_model: Font model, re-estimated when config.learn_font is set.
        config: Iterations, convergence, workers and failure tolerance.

    Example:
        >>> trainer = EMTrainer(gsm, lm, font, TrainerConfig(num_iterations=3))
        >>> result = trainer.train(documents)
        >>> [s.lines_failed for s in result.iterations]
        [0, 0, 0]
    """

    def __init__(
        self,
        substitution_model: GlyphSubstitutionModel,
        language_model: LanguageModel,
        emission_model: EmissionModel,
        config: TrainerConfig | None = None,
    ):
        self.substitution_model = substitution_model
        self.language_model = language_model
        self.emission_model = emission_model
        self.config = config or TrainerConfig()
        language_model.char_indexer.freeze()
        language_model.lang_indexer.freeze()
        # Fail on indexer mismatches before any document is touched
        self.lattice()

    def lattice(self) -> SparseTransitionLattice:
        return SparseTransitionLattice(
            self.substitution_model,
            self.language_model,
            self.emission_model,
            self.config.decoder,
        )

    def _map_documents(
        self, fn: Callable[[Document], R], documents: Sequence[Document]
    ) -> list[R]:
        if self.config.max_workers == 1 or len(documents) <= 1:
            return [fn(document) for document in documents]
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            return list(executor.map(fn, documents))

    # -------------------------------------------------------------------------
    # E-step
    # -------------------------------------------------------------------------

    def run_e_step(self, documents: Sequence[Document]) -> EStepResult:
        """Posterior pass over all documents; statistics merged in document order."""
        lattice = self.lattice()
        partials = self._map_documents(lambda doc: self._process_document(lattice, doc), documents)

        total = EStepResult(
            self.substitution_model.new_statistics(), self.emission_model.new_statistics()
        )
        for partial in partials:
            total.merge(partial)
        return total

    def _process_document(
        self, lattice: SparseTransitionLattice, document: Document
    ) -> EStepResult:
        result = EStepResult(
            self.substitution_model.new_statistics(), self.emission_model.new_statistics()
        )
        for line_id, image in zip(document.line_ids(), document.lines):
            # Lines accumulate into scratch statistics so a failure leaves no trace
            glyph_stats = self.substitution_model.new_statistics()
            emission_stats = self.emission_model.new_statistics()
            try:
                log_z = lattice.posterior(image, glyph_stats, emission_stats, line_id)
            except NoViablePathError as e:
                logger.warning("Skipping line %s of %s: %s", line_id[1], document.name, e)
                result.lines_failed += 1
                result.failed_lines.append(line_id)
                continue
            result.glyph_statistics.merge(glyph_stats)
            result.emission_statistics.merge(emission_stats)
            result.log_likelihood += log_z
            result.lines_succeeded += 1
        return result

    # -------------------------------------------------------------------------
    # M-step
    # -------------------------------------------------------------------------

    def run_m_step(self, statistics: EStepResult) -> None:
        """Re-estimate both models from merged E-step statistics."""
        self.substitution_model.merge_statistics(statistics.glyph_statistics)
        self.substitution_model.normalize()
        if self.config.learn_font:
            self.emission_model.reestimate(statistics.emission_statistics)

    # -------------------------------------------------------------------------
    # Best path
    # -------------------------------------------------------------------------

    def decode_documents(self, documents: Sequence[Document]) -> list[DocumentDecode]:
        """Viterbi-decode every line; failed lines are recorded, not raised."""
        lattice = self.lattice()
        return self._map_documents(lambda doc: self._decode_document(lattice, doc), documents)

    def _decode_document(
        self, lattice: SparseTransitionLattice, document: Document
    ) -> DocumentDecode:
        decoded = DocumentDecode(document.name)
        for line_id, image in zip(document.line_ids(), document.lines):
            try:
                decoded.lines.append(lattice.decode(image, line_id))
            except NoViablePathError as e:
                logger.warning("Skipping line %s of %s: %s", line_id[1], document.name, e)
                decoded.failed_lines.append(line_id)
        return decoded

    # -------------------------------------------------------------------------
    # Training loop
    # -------------------------------------------------------------------------

    def train(
        self,
        documents: Sequence[Document],
        on_decode: Callable[[int, list[DocumentDecode]], None] | None = None,
    ) -> TrainingResult:
        """
        Run EM until the iteration budget or convergence.

        Args:
            documents: Training documents, in a fixed order.
            on_decode: Called with (iteration, decodes) after each best-path pass.

        Returns:
            TrainingResult with one summary per iteration and any best-path decodes.

        Raises:
            TrainingError: If an iteration loses more than
                config.max_failed_line_fraction of its lines.
        """
        config = self.config
        result = TrainingResult()
        previous: float | None = None

        for iteration in range(1, config.num_iterations + 1):
            start_time = time.time()
            statistics = self.run_e_step(documents)

            if statistics.failure_fraction > config.max_failed_line_fraction:
                raise TrainingError(
                    f"iteration {iteration}: {statistics.lines_failed} of "
                    f"{statistics.lines_succeeded + statistics.lines_failed} lines failed "
                    f"(limit {config.max_failed_line_fraction:.0%})"
                )

            log_likelihood = statistics.log_likelihood
            if previous is not None and log_likelihood < previous - REGRESSION_TOLERANCE:
                logger.warning(
                    "Iteration %d: log-likelihood fell from %.6f to %.6f; "
                    "check smoothing and beam settings",
                    iteration,
                    previous,
                    log_likelihood,
                )

            self.run_m_step(statistics)

            converged = (
                previous is not None
                and config.convergence_threshold is not None
                and _relative_gain(previous, log_likelihood) < config.convergence_threshold
            )
            summary = IterationSummary(
                iteration=iteration,
                lines_succeeded=statistics.lines_succeeded,
                lines_failed=statistics.lines_failed,
                log_likelihood=log_likelihood,
                processing_time_ms=(time.time() - start_time) * 1000,
                converged=converged,
            )
            result.iterations.append(summary)
            logger.info(
                "Iteration %d: %d lines ok, %d failed, log-likelihood %.6f",
                iteration,
                summary.lines_succeeded,
                summary.lines_failed,
                log_likelihood,
            )

            last = converged or iteration == config.num_iterations
            if config.decode_every is not None and (iteration % config.decode_every == 0 or last):
                decodes = self.decode_documents(documents)
                result.decodes[iteration] = decodes
                if on_decode is not None:
                    on_decode(iteration, decodes)

            if converged:
                logger.info("Converged after %d iterations", iteration)
                break
            previous = log_likelihood

        return result


def _relative_gain(previous: float, current: float) -> float:
    if previous == 0.0:
        return abs(current - previous)
    return (current - previous) / abs(previous)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================


def create_trainer(
    language_model: LanguageModel,
    line_height: int,
    config: TrainerConfig | None = None,
    emission_model: EmissionModel | None = None,
) -> EMTrainer:
    """
    Create a trainer with a fresh substitution model.

    Args:
        language_model: Trained language model; its indexers become frozen.
        line_height: Pixel height of line images (for the default font).
        config: Trainer configuration.
        emission_model: Font model; flat templates when omitted.

    Returns:
        Configured EMTrainer instance.
    """
    config = config or TrainerConfig()
    gsm = GlyphSubstitutionModel(
        language_model.char_indexer, language_model.lang_indexer, config.substitution
    )
    if emission_model is None:
        emission_model = TemplateEmissionModel.uniform(language_model.char_indexer, line_height)
    return EMTrainer(gsm, language_model, emission_model, config)
