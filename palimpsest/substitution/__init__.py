"""
Glyph substitution model: the noisy channel from LM characters to glyphs.

Example:
    >>> from palimpsest.substitution import GlyphSubstitutionModel, save_model
    >>> gsm = GlyphSubstitutionModel(char_indexer, lang_indexer)
    >>> gsm.accumulate(0, GlyphType.NORMAL_CHAR, -1, 0, GlyphChar(0), 1.0)
    >>> gsm.normalize()
    >>> save_model(gsm, "out/model.gsm.gz")
"""

from palimpsest.substitution.model import (
    GlyphContext,
    GlyphStatistics,
    GlyphSubstitutionModel,
)
from palimpsest.substitution.persistence import (
    FORMAT_VERSION,
    dumps,
    load_model,
    loads,
    save_model,
)

__all__ = [
    # Model
    "GlyphSubstitutionModel",
    "GlyphContext",
    "GlyphStatistics",
    # Persistence
    "FORMAT_VERSION",
    "dumps",
    "loads",
    "save_model",
    "load_model",
]
