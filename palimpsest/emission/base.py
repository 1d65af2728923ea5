"""
Emission (font/appearance) model interface consumed by the lattice.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

import numpy as np
from PIL import Image

from palimpsest.models import GlyphChar


class LineImage:
    """
    A text line as an ink-intensity array.

    Attributes:
        pixels: Array of shape (height, width), values in [0, 1], 1 = ink.

    Example:
        >>> line = LineImage.from_path("scans/017-04.png", height=30)
        >>> line.width
        812
    """

    def __init__(self, pixels: np.ndarray):
        pixels = np.asarray(pixels, dtype=np.float64)
        if pixels.ndim != 2:
            raise ValueError(f"line image must be 2-dimensional, got shape {pixels.shape}")
        if pixels.size and (pixels.min() < 0.0 or pixels.max() > 1.0):
            raise ValueError("line image values must lie in [0, 1]")
        pixels.setflags(write=False)
        self.pixels = pixels

    @classmethod
    def from_pil(cls, image: Image.Image, height: int | None = None) -> LineImage:
        """
        Convert a PIL image to ink intensities, optionally rescaling to a height.

        Dark pixels become high ink values; the aspect ratio is preserved.
        """
        gray = image.convert("L")
        if height is not None and gray.height != height:
            if height < 1:
                raise ValueError(f"height must be >= 1, got {height}")
            new_width = max(1, round(gray.width * height / gray.height))
            gray = gray.resize((new_width, height), Image.Resampling.BILINEAR)
        ink = 1.0 - np.asarray(gray, dtype=np.float64) / 255.0
        return cls(ink)

    @classmethod
    def from_path(cls, path: str | Path, height: int | None = None) -> LineImage:
        with Image.open(path) as image:
            return cls.from_pil(image, height)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    def region(self, position: int, width: int) -> np.ndarray:
        return self.pixels[:, position : position + width]

    def __repr__(self) -> str:
        return f"LineImage(height={self.height}, width={self.width})"


class EmissionStatistics(ABC):
    """Posterior-weighted glyph observations collected during the E-step."""

    @abstractmethod
    def add(
        self,
        glyph: GlyphChar,
        image: LineImage,
        position: int,
        width: int,
        weight: float,
    ) -> None:
        """Record that ``glyph`` covers columns [position, position + width) with ``weight``."""

    @abstractmethod
    def merge(self, other: EmissionStatistics) -> None:
        """Add another worker's observations into this one."""


class EmissionModel(ABC):
    """
    Abstract base for glyph appearance scoring.

    Implementations must be safe to query from several threads at once;
    only reestimate() mutates them, and the trainer calls it between
    E-steps.
    """

    @abstractmethod
    def width_of(self, glyph: GlyphChar) -> int:
        """Nominal rendered width in pixels (0 for elided glyphs)."""

    @abstractmethod
    def emission_score(
        self,
        glyph: GlyphChar,
        image: LineImage,
        position: int,
        width: int,
    ) -> float:
        """Log-probability of the image columns [position, position + width) given the glyph."""

    @abstractmethod
    def new_statistics(self) -> EmissionStatistics:
        """Empty accumulator for one worker."""

    @abstractmethod
    def reestimate(self, statistics: EmissionStatistics) -> None:
        """M-step for the appearance parameters."""
