"""
Exception classes for Palimpsest.

All Palimpsest exceptions inherit from PalimpsestError,
making it easy to catch all library errors.

Example:
    >>> try:
    ...     model = palimpsest.load_model("model.gsm.gz")
    ... except palimpsest.IncompatibleModelVersionError as e:
    ...     print(f"Model written by another release: {e}")
    ... except palimpsest.PalimpsestError as e:
    ...     print(f"Palimpsest error: {e}")
"""

from __future__ import annotations

from typing import Hashable


class PalimpsestError(Exception):
    """
    Base exception for all Palimpsest errors.

    Catch this to handle any Palimpsest-specific error.
    """

    pass


class ConfigurationError(PalimpsestError, ValueError):
    """
    Raised for invalid configuration.

    Example:
        >>> SubstitutionConfig(smoothing=0.0)
        ConfigurationError: smoothing must be > 0, got 0.0
    """

    pass


class UnknownSymbolError(PalimpsestError, KeyError):
    """
    Raised when a frozen indexer is asked for a symbol it has never seen.

    This signals a mismatch between the alphabet a model was trained with
    and the data it is applied to. It is never recovered from.
    """

    def __init__(self, symbol: Hashable, indexer_name: str = "indexer"):
        self.symbol = symbol
        self.indexer_name = indexer_name
        super().__init__(f"{indexer_name} is frozen and has no id for {symbol!r}")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


class OutOfRangeError(PalimpsestError, IndexError):
    """Raised when an id lookup falls outside the assigned range."""

    pass


class NoViablePathError(PalimpsestError):
    """
    Raised when a line's lattice contains no finite-scoring path.

    Also raised when a line exceeds its step or time budget. The trainer
    catches this at the line boundary and skips the line.
    """

    def __init__(self, message: str, line_id: Hashable | None = None):
        self.line_id = line_id
        super().__init__(message if line_id is None else f"{message} (line {line_id})")


class ModelFormatError(PalimpsestError):
    """Raised when bytes handed to the loader are not a model blob."""

    pass


class IncompatibleModelVersionError(ModelFormatError):
    """
    Raised when a persisted model carries an unsupported schema version.

    Example:
        >>> palimpsest.load_model("old.gsm.gz")
        IncompatibleModelVersionError: model blob version 7 is not supported (expected 1)
    """

    def __init__(self, found: object, expected: int):
        self.found = found
        self.expected = expected
        super().__init__(f"model blob version {found} is not supported (expected {expected})")


class InvalidDistributionError(PalimpsestError):
    """
    Raised when normalization leaves a context that does not sum to one.

    Indicates a smoothing or accumulation bug (negative or non-finite counts).
    """

    pass


class TrainingError(PalimpsestError):
    """Raised when an EM iteration loses more lines than the configured bound."""

    pass
