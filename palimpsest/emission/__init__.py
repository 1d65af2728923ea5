"""
Glyph appearance models and line images.

Example:
    >>> from palimpsest.emission import LineImage, TemplateEmissionModel
    >>> font = TemplateEmissionModel.uniform(lm.char_indexer, height=30)
    >>> line = LineImage.from_path("scans/017-04.png", height=30)
"""

from palimpsest.emission.base import EmissionModel, EmissionStatistics, LineImage
from palimpsest.emission.templates import (
    TemplateEmissionModel,
    TemplateStatistics,
    resample_columns,
)

__all__ = [
    "EmissionModel",
    "EmissionStatistics",
    "LineImage",
    "TemplateEmissionModel",
    "TemplateStatistics",
    "resample_columns",
]
