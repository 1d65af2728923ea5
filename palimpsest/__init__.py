"""
Palimpsest: noisy-channel text recognition for historical print.

This library decodes line images into character sequences while learning,
by Expectation-Maximization, how abstract language-model characters turn
into printed glyphs: substitutions, elisions marked by tildes, line-wrap
hyphenation and switches between languages.

Example:
    >>> import palimpsest
    >>> lm = palimpsest.CodeSwitchLanguageModel.from_texts({"latin": latin_lines})
    >>> trainer = palimpsest.create_trainer(lm, line_height=30)
    >>> result = trainer.train(documents)
    >>> palimpsest.save_model(trainer.substitution_model, "out/latin.gsm.gz")

    >>> # Best path for one line
    >>> best = trainer.lattice().decode(documents[0].lines[0])
    >>> palimpsest.LineConsolidator(lm.char_indexer).with_substitutions(best.states)
"""

from palimpsest.config import DecoderConfig, SubstitutionConfig, TrainerConfig
from palimpsest.emission import EmissionModel, LineImage, TemplateEmissionModel
from palimpsest.exceptions import (
    ConfigurationError,
    IncompatibleModelVersionError,
    InvalidDistributionError,
    ModelFormatError,
    NoViablePathError,
    OutOfRangeError,
    PalimpsestError,
    TrainingError,
    UnknownSymbolError,
)
from palimpsest.indexer import Indexer
from palimpsest.language import CodeSwitchLanguageModel, LanguageModel, word_frequency_corpus
from palimpsest.lattice import SparseTransitionLattice
from palimpsest.models import (
    NO_LANGUAGE,
    Document,
    DocumentDecode,
    GlyphChar,
    GlyphType,
    GlyphTypeScheme,
    LineDecode,
    TransitionState,
)
from palimpsest.substitution import (
    GlyphStatistics,
    GlyphSubstitutionModel,
    load_model,
    save_model,
)
from palimpsest.training import EMTrainer, TrainingResult, create_trainer
from palimpsest.transcription import ConsolidatedLine, LineConsolidator

__version__ = "0.1.0"
__all__ = [
    # Main API
    "create_trainer",
    "EMTrainer",
    "TrainingResult",
    "SparseTransitionLattice",
    # Configuration
    "SubstitutionConfig",
    "DecoderConfig",
    "TrainerConfig",
    # Models
    "Indexer",
    "GlyphSubstitutionModel",
    "GlyphStatistics",
    "LanguageModel",
    "CodeSwitchLanguageModel",
    "word_frequency_corpus",
    "EmissionModel",
    "TemplateEmissionModel",
    "LineImage",
    # Data
    "NO_LANGUAGE",
    "GlyphType",
    "GlyphTypeScheme",
    "GlyphChar",
    "TransitionState",
    "LineDecode",
    "Document",
    "DocumentDecode",
    # Output
    "LineConsolidator",
    "ConsolidatedLine",
    # Persistence
    "save_model",
    "load_model",
    # Exceptions
    "PalimpsestError",
    "ConfigurationError",
    "UnknownSymbolError",
    "OutOfRangeError",
    "NoViablePathError",
    "ModelFormatError",
    "IncompatibleModelVersionError",
    "InvalidDistributionError",
    "TrainingError",
]
