"""Tests for hyphen consolidation and transcription views."""

import pytest

from palimpsest import (
    DocumentDecode,
    GlyphChar,
    Indexer,
    LineConsolidator,
    LineDecode,
    TransitionState,
)

CHARS = ["a", "b", "-"]
A, B, HYPHEN = 0, 1, 2


def line(*glyphs, line_id=None):
    """Identity states for LM ids, or (lm, GlyphChar) pairs for substitutions."""
    states = []
    widths = []
    position = 0
    for item in glyphs:
        lm_char, glyph = item if isinstance(item, tuple) else (item, GlyphChar(item))
        width = 0 if glyph.is_elided else 3
        states.append(TransitionState(0, lm_char, glyph, position))
        widths.append(width)
        position += width
    return LineDecode(tuple(states), tuple(widths), line_id=line_id)


@pytest.fixture
def consolidator():
    return LineConsolidator(Indexer(CHARS, name="characters"))


class TestConsolidateLine:
    """Tests for single-line consolidation."""

    def test_plain_line(self, consolidator):
        result = consolidator.consolidate_line(line(A, B, A))
        assert result.text == "aba"
        assert result.lm_text == "aba"
        assert result.widths == [3, 3, 3]

    def test_repeated_hyphen_within_line(self, consolidator):
        result = consolidator.consolidate_line(line(A, HYPHEN, HYPHEN, B))
        assert result.text == "a-b"
        assert len(result.states) == len(result.widths) == len(result.lm_chars) == 3

    def test_elided_glyph_keeps_lm_char(self, consolidator):
        result = consolidator.consolidate_line(line(A, (B, GlyphChar(B, is_elided=True)), A))
        assert result.text == "aa"
        assert result.lm_text == "aba"
        assert result.widths == [3, 0, 3]

    def test_tilde_rendering(self, consolidator):
        result = consolidator.consolidate_line(line((A, GlyphChar(A, has_elision_tilde=True))))
        assert result.text == "\u00e3"

    def test_hyphen_run_collapses_to_one(self, consolidator):
        result = consolidator.consolidate_line(line(HYPHEN, HYPHEN, HYPHEN, A))
        assert result.text == "-a"
        assert result.lm_text == "-a"

    def test_substituted_hyphen_is_kept(self, consolidator):
        # An LM "b" printed as a hyphen is a different character
        result = consolidator.consolidate_line(line(HYPHEN, (B, GlyphChar(HYPHEN))))
        assert result.text == "--"
        assert result.lm_text == "-b"

    def test_hyphen_after_other_glyph_is_kept(self, consolidator):
        # LM hyphen printed as "a", then a plain hyphen
        result = consolidator.consolidate_line(line((HYPHEN, GlyphChar(A)), HYPHEN))
        assert result.text == "a-"

    def test_tilde_hyphen_does_not_collapse_next(self, consolidator):
        result = consolidator.consolidate_line(
            line((HYPHEN, GlyphChar(HYPHEN, has_elision_tilde=True)), HYPHEN)
        )
        assert result.text == "-\u0303-"

    def test_collapse_looks_through_elided_glyphs(self, consolidator):
        result = consolidator.consolidate_line(
            line(HYPHEN, (B, GlyphChar(B, is_elided=True)), HYPHEN)
        )
        assert result.text == "-"
        assert result.lm_text == "-b"

    def test_previous_hyphen_collapses_leading_hyphen(self, consolidator):
        result = consolidator.consolidate_line(line(HYPHEN, A), previous_char="-")
        assert result.text == "a"


class TestConsolidateDocument:
    """Tests for consolidation across line wraps."""

    def test_wrap_hyphen_transcribed_once(self, consolidator):
        decode = DocumentDecode(
            "doc", [line(A, B, HYPHEN, line_id=("doc", 0)), line(HYPHEN, B, A, line_id=("doc", 1))]
        )
        lines, stats = consolidator.consolidate_document(decode)

        assert [c.text for c in lines] == ["ab-", "ba"]
        assert stats.lines_processed == 2
        assert stats.hyphens_collapsed == 1
        assert stats.wrap_hyphens_collapsed == 1
        assert stats.states_kept == 5

    def test_no_collapse_without_trailing_hyphen(self, consolidator):
        lines, stats = consolidator.consolidate_document([line(A, B), line(HYPHEN, A)])
        assert [c.text for c in lines] == ["ab", "-a"]
        assert stats.hyphens_collapsed == 0

    def test_elided_tail_does_not_hide_hyphen(self, consolidator):
        first = line(A, HYPHEN, (B, GlyphChar(B, is_elided=True)))
        lines, stats = consolidator.consolidate_document([first, line(HYPHEN, A)])
        assert lines[1].text == "a"
        assert stats.wrap_hyphens_collapsed == 1

    def test_empty_line_between_wrap(self, consolidator):
        lines, _ = consolidator.consolidate_document([line(A, HYPHEN), line(), line(HYPHEN, B)])
        assert [c.text for c in lines] == ["a-", "", "b"]


class TestViews:
    """Tests for the substitution and width views."""

    def test_with_substitutions(self, consolidator):
        decoded = line(
            A,
            (B, GlyphChar(A)),
            (B, GlyphChar(B, is_elided=True)),
            (A, GlyphChar(A, has_elision_tilde=True)),
        )
        assert consolidator.with_substitutions(decoded.states) == "a[b/a][b/][a/\u00e3]"

    def test_with_widths(self, consolidator):
        decoded = line(A, (B, GlyphChar(B, is_elided=True)), HYPHEN)
        assert consolidator.with_widths(decoded.states, decoded.widths) == "a[3]\nb[0]\n-[3]"
