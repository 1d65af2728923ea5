"""
Transcription views of decoded lines.

Turns Viterbi state sequences into the text a reader sees. Line-wrap
hyphenation is transcribed once: a plain hyphen rendering an LM hyphen
that follows a visible plain hyphen (on the same line, or across the
wrap point from the end of the previous line) is dropped together with
its LM character and width, so the consolidated sequences stay parallel.
Within a line these are the states the lattice scored as collapsed.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from palimpsest.charset import HYPHEN, is_hyphen, render_glyph
from palimpsest.indexer import Indexer
from palimpsest.models import DocumentDecode, LineDecode, TransitionState

logger = logging.getLogger(__name__)


# =============================================================================
# DATA STRUCTURES
# =============================================================================


@dataclass
class ConsolidatedLine:
    """A decoded line after hyphen consolidation."""

    chars: list[str] = field(default_factory=list)  # Visible glyphs only
    lm_chars: list[str] = field(default_factory=list)
    states: list[TransitionState] = field(default_factory=list)
    widths: list[int] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.chars)

    @property
    def lm_text(self) -> str:
        return "".join(self.lm_chars)


@dataclass
class ConsolidationStats:
    """Statistics for hyphen consolidation."""

    lines_processed: int = 0
    states_kept: int = 0
    hyphens_collapsed: int = 0
    wrap_hyphens_collapsed: int = 0  # Subset collapsed across a line boundary


# =============================================================================
# CONSOLIDATION
# =============================================================================


class LineConsolidator:
    """
    Builds consolidated transcriptions from decode results.

    Attributes:
        char_indexer: Maps template and LM char ids back to characters.

    Example:
        >>> consolidator = LineConsolidator(chars)
        >>> lines, stats = consolidator.consolidate_document(doc_decode)
        >>> [line.text for line in lines]
        ['arma uirum-', 'que cano']
        >>> stats.wrap_hyphens_collapsed
        1
    """

    def __init__(self, char_indexer: Indexer[str]):
        self.char_indexer = char_indexer

    def consolidate_line(
        self,
        line: LineDecode,
        previous_char: str | None = None,
        stats: ConsolidationStats | None = None,
    ) -> ConsolidatedLine:
        """
        Consolidate one line.

        Args:
            line: Decode result.
            previous_char: Last visible glyph of the preceding line, as
                rendered, if the line continues one.
            stats: Optional accumulator to update.

        Returns:
            ConsolidatedLine with parallel chars/LM chars/states/widths.
        """
        stats = stats if stats is not None else ConsolidationStats()
        result = ConsolidatedLine()
        last_char = previous_char
        for state, width in zip(line.states, line.widths):
            glyph = state.glyph_char
            char = self.char_indexer.object_of(glyph.template_char_index)
            if is_hyphen(last_char) and self._is_plain_hyphen(state):
                stats.hyphens_collapsed += 1
                if not result.chars:
                    stats.wrap_hyphens_collapsed += 1
                continue
            if not glyph.is_elided:
                visible = render_glyph(char, glyph.has_elision_tilde)
                result.chars.append(visible)
                last_char = visible
            result.lm_chars.append(self.char_indexer.object_of(state.lm_char_index))
            result.states.append(state)
            result.widths.append(width)
        stats.lines_processed += 1
        stats.states_kept += len(result.states)
        return result

    def consolidate_document(
        self, document: DocumentDecode | Sequence[LineDecode]
    ) -> tuple[list[ConsolidatedLine], ConsolidationStats]:
        """
        Consolidate consecutive lines, carrying the last visible glyph across wraps.

        The lattice scores every line on its own, so the leading hyphen of
        a continuation line was scored in full when it was decoded. Its
        collapse into the previous line's trailing hyphen happens here, in
        the transcription only.

        Returns:
            Tuple of (consolidated lines, statistics).
        """
        lines = document.lines if isinstance(document, DocumentDecode) else document
        stats = ConsolidationStats()
        results = []
        previous_char: str | None = None
        for line in lines:
            consolidated = self.consolidate_line(line, previous_char, stats)
            if consolidated.chars:
                previous_char = consolidated.chars[-1]
            results.append(consolidated)
        if stats.hyphens_collapsed:
            logger.debug(
                "Collapsed %d repeated hyphens (%d at line wraps)",
                stats.hyphens_collapsed,
                stats.wrap_hyphens_collapsed,
            )
        return results, stats

    def _is_plain_hyphen(self, state: TransitionState) -> bool:
        return not state.is_substitution() and self.char_indexer.object_of(
            state.lm_char_index
        ) == HYPHEN

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def with_substitutions(self, states: Sequence[TransitionState]) -> str:
        """
        Render states showing the noisy channel.

        Plain renderings appear as-is; substitutions, elisions and tildes
        appear as ``[lm/glyph]`` (empty glyph side for elisions).
        """
        parts = []
        for state in states:
            glyph = state.glyph_char
            rendered = render_glyph(
                self.char_indexer.object_of(glyph.template_char_index), glyph.has_elision_tilde
            )
            if state.is_substitution():
                lm_char = self.char_indexer.object_of(state.lm_char_index)
                parts.append(f"[{lm_char}/{'' if glyph.is_elided else rendered}]")
            else:
                parts.append(rendered)
        return "".join(parts)

    def with_widths(self, states: Sequence[TransitionState], widths: Sequence[int]) -> str:
        """One ``glyph[width]`` entry per state, newline separated."""
        lines = []
        for state, width in zip(states, widths):
            char = self.char_indexer.object_of(state.glyph_char.template_char_index)
            lines.append(f"{char}[{width}]")
        return "\n".join(lines)
