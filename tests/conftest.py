"""
Pytest configuration and fixtures for Palimpsest tests.

Line images are synthetic: every character is a 4-pixel-high, 3-column
block pattern, so a line of n characters is exactly 3n columns wide and
each pattern is far from every other one under the Bernoulli templates.
"""

import numpy as np
import pytest

from palimpsest import (
    CodeSwitchLanguageModel,
    DecoderConfig,
    Document,
    GlyphSubstitutionModel,
    Indexer,
    LineImage,
    SubstitutionConfig,
    TemplateEmissionModel,
)
from palimpsest.language import CharacterNgramModel

GLYPH_HEIGHT = 4
GLYPH_WIDTH = 3

# Ink per row; each row is constant across the glyph's columns
PATTERNS = {
    "a": (1, 1, 0, 0),
    "b": (0, 0, 1, 1),
    "-": (0, 1, 1, 0),
    " ": (0, 0, 0, 0),
}


def glyph_pixels(char: str) -> np.ndarray:
    rows = np.array(PATTERNS[char], dtype=np.float64)
    return np.repeat(rows[:, None], GLYPH_WIDTH, axis=1)


def render_line(text: str) -> LineImage:
    """Binary line image of ``text`` built from the block patterns."""
    if not text:
        return LineImage(np.zeros((GLYPH_HEIGHT, 0)))
    return LineImage(np.hstack([glyph_pixels(ch) for ch in text]))


def make_font(char_indexer: Indexer) -> TemplateEmissionModel:
    """Templates at 0.9 ink where the pattern has ink, 0.1 elsewhere."""
    templates = {
        i: 0.1 + 0.8 * glyph_pixels(ch) for i, ch in enumerate(char_indexer)
    }
    return TemplateEmissionModel(char_indexer, templates)


def make_flat_lm(chars: list[str], languages: list[str] = ("latin",), order: int = 2):
    """Untrained (uniform) language model over an explicit alphabet."""
    char_indexer = Indexer(chars, name="characters")
    lang_indexer = Indexer(list(languages), name="languages")
    models = {
        i: CharacterNgramModel(order, len(char_indexer)) for i in range(len(lang_indexer))
    }
    return CodeSwitchLanguageModel(char_indexer, lang_indexer, models)


@pytest.fixture
def abh_lm():
    """Single-language LM over {a: 0, b: 1, -: 2}."""
    return make_flat_lm(["a", "b", "-"])


@pytest.fixture
def abh_font(abh_lm):
    return make_font(abh_lm.char_indexer)


@pytest.fixture
def abh_gsm(abh_lm):
    return GlyphSubstitutionModel(abh_lm.char_indexer, abh_lm.lang_indexer)


@pytest.fixture
def exact_widths():
    """Decoder settings where every visible glyph is exactly 3 columns."""
    return DecoderConfig(beam_size=None, width_slack=0)


@pytest.fixture
def trained_lm():
    """Trained single-language LM over {space, -, a, b}."""
    return CodeSwitchLanguageModel.from_texts(
        {"latin": ["ab ab ba", "aab bba", "ab-", "ba ab"]}, order=2
    )


@pytest.fixture
def documents():
    """Two small synthetic documents, one with a line-wrap hyphen."""
    return [
        Document("doc-1", [render_line("ab ab"), render_line("ba-")]),
        Document("doc-2", [render_line("-ab"), render_line("aab"), render_line("b a")]),
    ]


@pytest.fixture
def no_elision():
    return SubstitutionConfig(allow_elision=False)
