"""
Data models for Palimpsest.

These are the value types that flow between the substitution model,
the lattice decoder and the trainer. Decode results are plain ordered
sequences of frozen states; nothing here holds a reference to a model.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from palimpsest.emission import LineImage

# Language id of the line-start sentinel, and of every state when no
# languages are configured.
NO_LANGUAGE = -1

# Previous-LM-character id at line start.
NO_CHAR = -1


# =============================================================================
# GLYPHS
# =============================================================================


class GlyphType(Enum):
    """Conditioning category of a glyph for the substitution model."""

    NORMAL_CHAR = "normal"
    ELISION_TILDE = "elision_tilde"
    TILDE_ELIDED = "tilde_elided"
    ELIDED = "elided"

    @property
    def is_elided(self) -> bool:
        return self in (GlyphType.ELIDED, GlyphType.TILDE_ELIDED)


class GlyphTypeScheme(Enum):
    """How finely previous-glyph types are distinguished."""

    COARSE = "coarse"  # normal / tilde / elided
    EXTENDED = "extended"  # also separates elisions that follow a tilde

    def types(self) -> tuple[GlyphType, ...]:
        if self is GlyphTypeScheme.COARSE:
            return (GlyphType.NORMAL_CHAR, GlyphType.ELISION_TILDE, GlyphType.ELIDED)
        return tuple(GlyphType)

    def classify(self, glyph: GlyphChar, prev_type: GlyphType) -> GlyphType:
        """
        Collapse a glyph descriptor to its conditioning category.

        Args:
            glyph: The glyph being classified.
            prev_type: Category of the glyph before it on the line.

        Returns:
            The category used as the next step's previous-glyph type.
        """
        if not glyph.is_elided:
            return GlyphType.ELISION_TILDE if glyph.has_elision_tilde else GlyphType.NORMAL_CHAR
        if self is GlyphTypeScheme.EXTENDED and prev_type in (
            GlyphType.ELISION_TILDE,
            GlyphType.TILDE_ELIDED,
        ):
            return GlyphType.TILDE_ELIDED
        return GlyphType.ELIDED


@dataclass(frozen=True, order=True)
class GlyphChar:
    """
    One rendered output unit.

    Attributes:
        template_char_index: Character-indexer id of the visual template.
        is_elided: Consumes its LM character but prints nothing.
        has_elision_tilde: Printed with a tilde marking an elision.
    """

    template_char_index: int
    is_elided: bool = False
    has_elision_tilde: bool = False

    def __post_init__(self) -> None:
        if self.is_elided and self.has_elision_tilde:
            raise ValueError("an elided glyph cannot carry an elision tilde")

    @property
    def is_visible(self) -> bool:
        return not self.is_elided


# =============================================================================
# DECODE OUTPUT
# =============================================================================


@dataclass(frozen=True)
class TransitionState:
    """
    A node on a decoded line path.

    Attributes:
        language_index: Language id, or NO_LANGUAGE.
        lm_char_index: The language-model character consumed.
        glyph_char: The glyph rendered for it.
        position: First pixel column of the glyph.
        glyph_type: Conditioning category the glyph was scored under.
    """

    language_index: int
    lm_char_index: int
    glyph_char: GlyphChar
    position: int
    glyph_type: GlyphType = GlyphType.NORMAL_CHAR

    def is_substitution(self) -> bool:
        """True if the glyph differs from a plain rendering of the LM char."""
        glyph = self.glyph_char
        return (
            glyph.template_char_index != self.lm_char_index
            or glyph.is_elided
            or glyph.has_elision_tilde
        )


@dataclass(frozen=True)
class LineDecode:
    """Best path through one line: states plus the pixel width of each."""

    states: tuple[TransitionState, ...] = ()
    widths: tuple[int, ...] = ()
    log_likelihood: float = 0.0
    line_id: Any = None

    def __post_init__(self) -> None:
        if len(self.states) != len(self.widths):
            raise ValueError(
                f"states and widths must be parallel, got {len(self.states)} and {len(self.widths)}"
            )

    def __len__(self) -> int:
        return len(self.states)

    @property
    def is_empty(self) -> bool:
        return not self.states


@dataclass
class DocumentDecode:
    """Decoded lines of one document in reading order."""

    name: str
    lines: list[LineDecode] = field(default_factory=list)
    failed_lines: list[Any] = field(default_factory=list)

    @property
    def log_likelihood(self) -> float:
        return sum(line.log_likelihood for line in self.lines)


# =============================================================================
# INPUT
# =============================================================================


@dataclass
class Document:
    """
    A document to train on or decode: an ordered list of line images.

    Example:
        >>> doc = Document("page-017", [LineImage.from_path("017-01.png", height=30)])
        >>> doc.line_ids()
        [('page-017', 0)]
    """

    name: str
    lines: Sequence[LineImage] = field(default_factory=list)

    def line_ids(self) -> list[tuple[str, int]]:
        return [(self.name, i) for i in range(len(self.lines))]
