"""
Versioned on-disk format for glyph substitution models.

A blob is gzip-compressed UTF-8 JSON:

    {
      "format": "palimpsest-gsm",
      "version": 1,
      "config": {...},
      "characters": ["a", "b", "-"],
      "languages": ["latin", "spanish"],
      "normalized": true,
      "table": [[language, prev_glyph_type, prev_lm_char, lm_char, [hex floats]], ...]
    }

Probabilities are written with float.hex() so a reloaded model answers
glyph_prob() with exactly the same bits.
"""

from __future__ import annotations

import dataclasses
import gzip
import json
import logging
import zlib
from pathlib import Path

import numpy as np

from palimpsest.config import SubstitutionConfig
from palimpsest.exceptions import IncompatibleModelVersionError, ModelFormatError
from palimpsest.indexer import Indexer
from palimpsest.models import GlyphType
from palimpsest.substitution.model import GlyphContext, GlyphSubstitutionModel

logger = logging.getLogger(__name__)

FORMAT_NAME = "palimpsest-gsm"
FORMAT_VERSION = 1


def dumps(model: GlyphSubstitutionModel) -> bytes:
    """Serialize a model, its config and both indexers."""
    config = dataclasses.asdict(model.config)
    config["glyph_type_scheme"] = model.config.glyph_type_scheme.value
    payload = {
        "format": FORMAT_NAME,
        "version": FORMAT_VERSION,
        "config": config,
        "characters": model.char_indexer.objects(),
        "languages": model.lang_indexer.objects(),
        "normalized": model.is_normalized,
        "table": [
            [
                context.language,
                context.prev_glyph_type.value,
                context.prev_lm_char,
                context.lm_char,
                [float(p).hex() for p in probs],
            ]
            for context, probs in model
        ],
    }
    raw = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    # mtime=0 keeps identical models byte-identical on disk
    return gzip.compress(raw, mtime=0)


def loads(data: bytes) -> GlyphSubstitutionModel:
    """
    Restore a model written by dumps().

    Raises:
        ModelFormatError: If the bytes are not a model blob.
        IncompatibleModelVersionError: If the blob's version is unsupported.
    """
    try:
        payload = json.loads(gzip.decompress(data).decode("utf-8"))
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ModelFormatError(f"not a glyph substitution model blob: {e}") from e

    if not isinstance(payload, dict) or payload.get("format") != FORMAT_NAME:
        raise ModelFormatError("blob does not carry the glyph substitution model format tag")
    version = payload.get("version")
    if version != FORMAT_VERSION:
        raise IncompatibleModelVersionError(version, FORMAT_VERSION)

    try:
        config = SubstitutionConfig(**payload["config"])
        chars = Indexer(payload["characters"], name="characters")
        langs = Indexer(payload["languages"], name="languages")
        model = GlyphSubstitutionModel(chars, langs, config)
        table = {
            GlyphContext(language, GlyphType(prev_type), prev_lm, lm): _decode_probs(
                probs, model.num_outcomes
            )
            for language, prev_type, prev_lm, lm, probs in payload["table"]
        }
        normalized = bool(payload["normalized"])
    except (KeyError, TypeError, ValueError) as e:
        raise ModelFormatError(f"malformed glyph substitution model blob: {e}") from e

    model._restore(table, normalized=normalized)
    return model


def _decode_probs(values: list[str], num_outcomes: int) -> np.ndarray:
    if len(values) != num_outcomes:
        raise ValueError(f"expected {num_outcomes} probabilities, got {len(values)}")
    return np.array([float.fromhex(v) for v in values], dtype=np.float64)


def save_model(model: GlyphSubstitutionModel, path: str | Path) -> Path:
    """
    Write a model to disk, creating parent directories.

    Args:
        model: Model to persist.
        path: Destination file (conventionally ``*.gsm.gz``).

    Returns:
        The path written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(dumps(model))
    logger.info("Saved glyph substitution model to %s", path)
    return path


def load_model(path: str | Path) -> GlyphSubstitutionModel:
    """Read a model written by save_model()."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Serialized glyph substitution model {path} not found")
    model = loads(path.read_bytes())
    logger.info("Loaded %r from %s", model, path)
    return model
