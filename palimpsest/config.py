"""
Configuration for glyph-substitution training and lattice decoding.

All options have sensible defaults. Configs can also be read from YAML:

    substitution:
      smoothing: 0.01
      glyph_type_scheme: coarse
    decoder:
      beam_size: 32
    num_iterations: 8
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml

from palimpsest.exceptions import ConfigurationError
from palimpsest.models import GlyphTypeScheme


@dataclass
class SubstitutionConfig:
    """
    Configuration for the glyph substitution model.

    Example:
        >>> config = SubstitutionConfig(allow_elision=False, smoothing=0.05)
    """

    # Master switch; disabled means every glyph renders its own LM char
    allow_glyph_substitution: bool = True
    allow_elision: bool = True

    # Additive pseudo-count applied per (context, glyph) in normalize()
    smoothing: float = 0.01

    # Distribution used for contexts before the first M-step
    prior: Literal["uniform", "identity"] = "identity"
    identity_weight: float = 0.9

    glyph_type_scheme: GlyphTypeScheme = GlyphTypeScheme.EXTENDED

    # Allowed deviation of a normalized context's sum from 1.0
    distribution_tolerance: float = 1e-6

    def __post_init__(self):
        """Validate configuration."""
        if isinstance(self.glyph_type_scheme, str):
            try:
                self.glyph_type_scheme = GlyphTypeScheme(self.glyph_type_scheme)
            except ValueError:
                raise ConfigurationError(
                    f"glyph_type_scheme must be one of "
                    f"{tuple(s.value for s in GlyphTypeScheme)}, got {self.glyph_type_scheme!r}"
                ) from None
        if not self.smoothing > 0.0:
            raise ConfigurationError(f"smoothing must be > 0, got {self.smoothing}")
        if self.prior not in ("uniform", "identity"):
            raise ConfigurationError(
                f"prior must be one of ('uniform', 'identity'), got {self.prior!r}"
            )
        if not 0.0 < self.identity_weight < 1.0:
            raise ConfigurationError(
                f"identity_weight must be between 0.0 and 1.0 (exclusive), "
                f"got {self.identity_weight}"
            )
        if self.distribution_tolerance <= 0.0:
            raise ConfigurationError(
                f"distribution_tolerance must be > 0, got {self.distribution_tolerance}"
            )


@dataclass
class DecoderConfig:
    """
    Configuration for the sparse transition lattice.

    Example:
        >>> config = DecoderConfig(beam_size=None)  # exhaustive search
    """

    # States kept per pixel column; None keeps every reachable state
    beam_size: int | None = 64

    # A visible glyph may span width_of(glyph) +/- width_slack columns
    width_slack: int = 1

    max_consecutive_elisions: int = 2

    # Non-identity glyphs below this probability in every context are never proposed
    min_substitution_prob: float = 0.0

    # Budgets; a line over budget is abandoned as having no viable path
    max_steps_per_line: int | None = None
    line_timeout_seconds: float | None = None

    def __post_init__(self):
        """Validate configuration."""
        if self.beam_size is not None and self.beam_size < 1:
            raise ConfigurationError(f"beam_size must be >= 1 or None, got {self.beam_size}")
        if self.width_slack < 0:
            raise ConfigurationError(f"width_slack must be >= 0, got {self.width_slack}")
        if self.max_consecutive_elisions < 0:
            raise ConfigurationError(
                f"max_consecutive_elisions must be >= 0, got {self.max_consecutive_elisions}"
            )
        if not 0.0 <= self.min_substitution_prob < 1.0:
            raise ConfigurationError(
                f"min_substitution_prob must be in [0.0, 1.0), got {self.min_substitution_prob}"
            )
        if self.max_steps_per_line is not None and self.max_steps_per_line < 1:
            raise ConfigurationError(
                f"max_steps_per_line must be >= 1 or None, got {self.max_steps_per_line}"
            )
        if self.line_timeout_seconds is not None and self.line_timeout_seconds <= 0:
            raise ConfigurationError(
                f"line_timeout_seconds must be > 0 or None, got {self.line_timeout_seconds}"
            )


@dataclass
class TrainerConfig:
    """
    Configuration for the EM trainer.

    Example:
        >>> config = TrainerConfig(num_iterations=10, max_workers=4)
        >>> config = TrainerConfig.from_yaml("experiments/portuguese.yaml")
    """

    num_iterations: int = 5

    # Stop once the relative log-likelihood gain drops below this
    convergence_threshold: float | None = 1e-4

    # Documents decoded concurrently during the E-step
    max_workers: int = 1

    # Fraction of lines per iteration allowed to fail before training aborts
    max_failed_line_fraction: float = 0.1

    # Run a best-path pass every N iterations (and after the last one)
    decode_every: int | None = None

    # Re-estimate the emission model in the M-step
    learn_font: bool = True

    substitution: SubstitutionConfig = field(default_factory=SubstitutionConfig)
    decoder: DecoderConfig = field(default_factory=DecoderConfig)

    def __post_init__(self):
        """Validate configuration."""
        if self.num_iterations < 1:
            raise ConfigurationError(f"num_iterations must be >= 1, got {self.num_iterations}")
        if self.convergence_threshold is not None and self.convergence_threshold < 0:
            raise ConfigurationError(
                f"convergence_threshold must be >= 0 or None, got {self.convergence_threshold}"
            )
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}")
        if not 0.0 <= self.max_failed_line_fraction <= 1.0:
            raise ConfigurationError(
                f"max_failed_line_fraction must be between 0.0 and 1.0, "
                f"got {self.max_failed_line_fraction}"
            )
        if self.decode_every is not None and self.decode_every < 1:
            raise ConfigurationError(f"decode_every must be >= 1 or None, got {self.decode_every}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrainerConfig:
        """
        Build a config from a nested mapping.

        Raises:
            ConfigurationError: On unknown keys or invalid values.
        """
        data = dict(data or {})
        substitution = _build(SubstitutionConfig, data.pop("substitution", None) or {})
        decoder = _build(DecoderConfig, data.pop("decoder", None) or {})
        return _build(cls, data, substitution=substitution, decoder=decoder)

    @classmethod
    def from_yaml(cls, path: str | Path) -> TrainerConfig:
        """Load a config from a YAML file."""
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        if data is not None and not isinstance(data, dict):
            raise ConfigurationError(f"{path} must contain a mapping, got {type(data).__name__}")
        return cls.from_dict(data or {})

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain mapping (YAML/JSON friendly)."""
        data = dataclasses.asdict(self)
        data["substitution"]["glyph_type_scheme"] = self.substitution.glyph_type_scheme.value
        return data


def _build(config_cls: type, values: dict[str, Any], **extra: Any):
    known = {f.name for f in dataclasses.fields(config_cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(f"Unknown {config_cls.__name__} option(s): {', '.join(unknown)}")
    return config_cls(**values, **extra)
