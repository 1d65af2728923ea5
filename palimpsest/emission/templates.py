"""
Bernoulli ink templates, one per character.

A template is a (height, width) array of ink probabilities. A glyph
rendered over a region of a different width is compared against its
template resampled column-wise to that width.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from pathlib import Path

import numpy as np
from PIL import Image

from palimpsest.charset import SPACE
from palimpsest.emission.base import EmissionModel, EmissionStatistics, LineImage
from palimpsest.indexer import Indexer
from palimpsest.models import GlyphChar

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_WIDTH = 8
DEFAULT_INK = 0.3
SPACE_INK = 0.02

# Ink probabilities are kept away from 0 and 1 so log-likelihoods stay finite
MIN_INK_PROB = 0.01

# Log-penalty for drawing an elision tilde on top of a template
DEFAULT_TILDE_LOG_PENALTY = -2.0

# Pseudo-count pulling re-estimated templates towards 0.5
DEFAULT_TEMPLATE_SMOOTHING = 1.0

# Minimum expected count before a template's width is re-estimated
MIN_WEIGHT_FOR_WIDTH = 1.0


def resample_columns(array: np.ndarray, width: int) -> np.ndarray:
    """Nearest-neighbour column resampling of a (height, w) array to (height, width)."""
    source = array.shape[1]
    if source == width:
        return array
    columns = np.floor((np.arange(width) + 0.5) * source / width).astype(np.int64)
    return array[:, np.minimum(columns, source - 1)]


# =============================================================================
# STATISTICS
# =============================================================================


class TemplateStatistics(EmissionStatistics):
    """Per-template weighted patch sums, in each template's nominal width."""

    def __init__(self, nominal_widths: Mapping[int, int], height: int):
        self.nominal_widths = dict(nominal_widths)
        self.height = height
        self.patch_sums: dict[int, np.ndarray] = {}
        self.weights: dict[int, float] = {}
        self.width_sums: dict[int, float] = {}

    def add(
        self,
        glyph: GlyphChar,
        image: LineImage,
        position: int,
        width: int,
        weight: float,
    ) -> None:
        if glyph.is_elided or width <= 0 or weight <= 0.0:
            return
        template = glyph.template_char_index
        patch = resample_columns(image.region(position, width), self.nominal_widths[template])
        sums = self.patch_sums.get(template)
        if sums is None:
            self.patch_sums[template] = weight * patch
        else:
            sums += weight * patch
        self.weights[template] = self.weights.get(template, 0.0) + weight
        self.width_sums[template] = self.width_sums.get(template, 0.0) + weight * width

    def merge(self, other: EmissionStatistics) -> None:
        if not isinstance(other, TemplateStatistics):
            raise TypeError(f"cannot merge {type(other).__name__} into TemplateStatistics")
        for template in sorted(other.patch_sums):
            sums = self.patch_sums.get(template)
            if sums is None:
                self.patch_sums[template] = other.patch_sums[template].copy()
            else:
                sums += other.patch_sums[template]
            self.weights[template] = self.weights.get(template, 0.0) + other.weights[template]
            self.width_sums[template] = (
                self.width_sums.get(template, 0.0) + other.width_sums[template]
            )


# =============================================================================
# MODEL
# =============================================================================


class TemplateEmissionModel(EmissionModel):
    """
    Emission model scoring glyph regions against ink templates.

    Attributes:
        char_indexer: Characters whose ids index the templates.
        templates: Ink-probability array per character id.
        tilde_log_penalty: Added to the score of tilde-marked glyphs.
        smoothing: Pseudo-count used by reestimate().

    Example:
        >>> font = TemplateEmissionModel.uniform(chars, height=20)
        >>> font.width_of(GlyphChar(0))
        8
    """

    def __init__(
        self,
        char_indexer: Indexer[str],
        templates: Mapping[int, np.ndarray],
        tilde_log_penalty: float = DEFAULT_TILDE_LOG_PENALTY,
        smoothing: float = DEFAULT_TEMPLATE_SMOOTHING,
    ):
        missing = [i for i in range(len(char_indexer)) if i not in templates]
        if missing:
            raise ValueError(f"no template for character ids {missing}")
        heights = {np.asarray(t).shape[0] for t in templates.values()}
        if len(heights) != 1:
            raise ValueError(f"templates must share one height, got {sorted(heights)}")
        self.char_indexer = char_indexer
        self.height = heights.pop()
        self.tilde_log_penalty = tilde_log_penalty
        self.smoothing = smoothing
        self.templates: dict[int, np.ndarray] = {}
        self._log_cache: dict[tuple[int, int], tuple[np.ndarray, np.ndarray]] = {}
        for index, template in templates.items():
            self._set_template(index, np.asarray(template, dtype=np.float64))

    @classmethod
    def uniform(
        cls,
        char_indexer: Indexer[str],
        height: int,
        widths: Mapping[str, int] | None = None,
        default_width: int = DEFAULT_WIDTH,
        **kwargs,
    ) -> TemplateEmissionModel:
        """Flat templates: faint for SPACE, uniformly grey for everything else."""
        widths = widths or {}
        templates = {}
        for index, char in enumerate(char_indexer):
            ink = SPACE_INK if char == SPACE else DEFAULT_INK
            templates[index] = np.full((height, widths.get(char, default_width)), ink)
        return cls(char_indexer, templates, **kwargs)

    @classmethod
    def from_images(
        cls,
        char_indexer: Indexer[str],
        images: Mapping[str, Image.Image],
        height: int,
        **kwargs,
    ) -> TemplateEmissionModel:
        """
        Templates from glyph images (e.g. crops of a rendered font).

        Characters without an image get a uniform template of the
        average width of the supplied ones.
        """
        arrays = {char: LineImage.from_pil(image, height).pixels for char, image in images.items()}
        default_width = (
            round(sum(a.shape[1] for a in arrays.values()) / len(arrays)) if arrays else DEFAULT_WIDTH
        )
        templates = {}
        for index, char in enumerate(char_indexer):
            if char in arrays:
                templates[index] = arrays[char]
            else:
                ink = SPACE_INK if char == SPACE else DEFAULT_INK
                templates[index] = np.full((height, default_width), ink)
        return cls(char_indexer, templates, **kwargs)

    def _set_template(self, index: int, template: np.ndarray) -> None:
        if template.ndim != 2 or template.shape[1] < 1:
            raise ValueError(f"template {index} must be a non-empty 2-d array")
        template = np.clip(template, MIN_INK_PROB, 1.0 - MIN_INK_PROB)
        template.setflags(write=False)
        self.templates[index] = template
        for key in [k for k in self._log_cache if k[0] == index]:
            del self._log_cache[key]

    def _log_templates(self, index: int, width: int) -> tuple[np.ndarray, np.ndarray]:
        key = (index, width)
        cached = self._log_cache.get(key)
        if cached is None:
            resampled = resample_columns(self.templates[index], width)
            cached = (np.log(resampled), np.log1p(-resampled))
            self._log_cache[key] = cached
        return cached

    # -------------------------------------------------------------------------
    # EmissionModel
    # -------------------------------------------------------------------------

    def width_of(self, glyph: GlyphChar) -> int:
        if glyph.is_elided:
            return 0
        return int(self.templates[glyph.template_char_index].shape[1])

    def emission_score(
        self,
        glyph: GlyphChar,
        image: LineImage,
        position: int,
        width: int,
    ) -> float:
        if glyph.is_elided:
            return 0.0 if width == 0 else -math.inf
        if width <= 0 or position < 0 or position + width > image.width:
            return -math.inf
        if image.height != self.height:
            raise ValueError(f"line height {image.height} does not match template height {self.height}")
        log_on, log_off = self._log_templates(glyph.template_char_index, width)
        patch = image.region(position, width)
        score = float(np.sum(patch * log_on + (1.0 - patch) * log_off))
        if glyph.has_elision_tilde:
            score += self.tilde_log_penalty
        return score

    def new_statistics(self) -> TemplateStatistics:
        return TemplateStatistics(
            {index: t.shape[1] for index, t in self.templates.items()}, self.height
        )

    def reestimate(self, statistics: EmissionStatistics) -> None:
        """
        Replace templates by smoothed posterior-weighted patch means.

        Templates with no observations are left unchanged. A template's
        width moves to the rounded mean observed width once it has at
        least MIN_WEIGHT_FOR_WIDTH expected observations.
        """
        if not isinstance(statistics, TemplateStatistics):
            raise TypeError(f"expected TemplateStatistics, got {type(statistics).__name__}")
        updated = 0
        for index in sorted(statistics.patch_sums):
            weight = statistics.weights[index]
            if weight <= 0.0:
                continue
            mean = (statistics.patch_sums[index] + 0.5 * self.smoothing) / (weight + self.smoothing)
            if weight >= MIN_WEIGHT_FOR_WIDTH:
                new_width = max(1, round(statistics.width_sums[index] / weight))
                mean = resample_columns(mean, new_width)
            self._set_template(index, mean)
            updated += 1
        logger.info("Re-estimated %d of %d glyph templates", updated, len(self.templates))

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save(self, path: str | Path) -> Path:
        """Write templates and alphabet to a numpy .npz archive."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        arrays = {f"template_{i}": self.templates[i] for i in range(len(self.char_indexer))}
        with open(path, "wb") as f:
            np.savez_compressed(
                f,
                characters=np.array(self.char_indexer.objects(), dtype=np.str_),
                tilde_log_penalty=np.array(self.tilde_log_penalty),
                smoothing=np.array(self.smoothing),
                **arrays,
            )
        logger.info("Saved %d glyph templates to %s", len(self.templates), path)
        return path

    @classmethod
    def load(cls, path: str | Path, char_indexer: Indexer[str] | None = None) -> TemplateEmissionModel:
        """
        Read templates written by save().

        Args:
            path: Archive path.
            char_indexer: Indexer to bind to; must list the same characters
                in the same order. A new one is built when omitted.
        """
        with np.load(Path(path), allow_pickle=False) as data:
            characters = [str(c) for c in data["characters"]]
            if char_indexer is None:
                char_indexer = Indexer(characters, name="characters")
            elif char_indexer.objects() != characters:
                raise ValueError(f"{path} was saved for a different character set")
            templates = {i: data[f"template_{i}"] for i in range(len(characters))}
            return cls(
                char_indexer,
                templates,
                tilde_log_penalty=float(data["tilde_log_penalty"]),
                smoothing=float(data["smoothing"]),
            )
