"""Tests for glyph substitution model persistence."""

import gzip
import json

import pytest

from palimpsest import (
    GlyphChar,
    GlyphSubstitutionModel,
    GlyphType,
    IncompatibleModelVersionError,
    Indexer,
    ModelFormatError,
    SubstitutionConfig,
    load_model,
    save_model,
)
from palimpsest.substitution import FORMAT_VERSION, dumps, loads

NORMAL = GlyphType.NORMAL_CHAR


@pytest.fixture
def trained_gsm():
    chars = Indexer(["a", "b", "-"], name="characters")
    langs = Indexer(["latin", "spanish"], name="languages")
    gsm = GlyphSubstitutionModel(chars, langs, SubstitutionConfig(smoothing=0.1))
    gsm.accumulate(0, NORMAL, -1, 0, GlyphChar(0), 0.7)
    gsm.accumulate(0, NORMAL, -1, 0, GlyphChar(1), 1.0 / 3.0)
    gsm.accumulate(1, GlyphType.ELISION_TILDE, 0, 2, GlyphChar(2, is_elided=True), 0.1)
    gsm.normalize()
    return gsm


def rewrite(blob: bytes, **changes) -> bytes:
    payload = json.loads(gzip.decompress(blob))
    payload.update(changes)
    return gzip.compress(json.dumps(payload).encode("utf-8"))


class TestRoundTrip:
    """Tests for save/load fidelity."""

    def test_probabilities_are_bit_identical(self, trained_gsm):
        restored = GlyphSubstitutionModel.load(trained_gsm.save())

        assert restored.contexts() == trained_gsm.contexts()
        for context in trained_gsm.contexts():
            for k in range(trained_gsm.num_outcomes):
                glyph = trained_gsm.outcome_glyph(k, context.lm_char)
                original = trained_gsm.glyph_prob(*context, glyph)
                assert restored.glyph_prob(*context, glyph) == original

    def test_fallback_matches_after_reload(self, trained_gsm):
        restored = loads(dumps(trained_gsm))
        assert restored.is_normalized
        assert restored.glyph_prob(1, NORMAL, 1, 1, GlyphChar(0)) == trained_gsm.glyph_prob(
            1, NORMAL, 1, 1, GlyphChar(0)
        )

    def test_indexers_and_config_restored(self, trained_gsm):
        restored = loads(dumps(trained_gsm))
        assert restored.char_indexer.objects() == ["a", "b", "-"]
        assert restored.lang_indexer.objects() == ["latin", "spanish"]
        assert restored.char_indexer.frozen
        assert restored.config == trained_gsm.config

    def test_dumps_is_deterministic(self, trained_gsm):
        assert dumps(trained_gsm) == dumps(loads(dumps(trained_gsm)))

    def test_save_creates_parent_directories(self, trained_gsm, tmp_path):
        path = save_model(trained_gsm, tmp_path / "models" / "latin" / "model.gsm.gz")
        assert path.exists()
        restored = load_model(path)
        assert restored.contexts() == trained_gsm.contexts()

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_model(tmp_path / "missing.gsm.gz")


class TestFormatErrors:
    """Tests for rejecting foreign or outdated blobs."""

    def test_version_mismatch(self, trained_gsm):
        blob = rewrite(dumps(trained_gsm), version=FORMAT_VERSION + 1)
        with pytest.raises(IncompatibleModelVersionError) as exc_info:
            loads(blob)
        assert exc_info.value.found == FORMAT_VERSION + 1
        assert exc_info.value.expected == FORMAT_VERSION

    def test_version_error_is_format_error(self, trained_gsm):
        with pytest.raises(ModelFormatError):
            loads(rewrite(dumps(trained_gsm), version=0))

    def test_not_gzip(self):
        with pytest.raises(ModelFormatError):
            loads(b"definitely not a model")

    def test_missing_format_tag(self, trained_gsm):
        with pytest.raises(ModelFormatError, match="format tag"):
            loads(rewrite(dumps(trained_gsm), format="something-else"))

    def test_truncated_table(self, trained_gsm):
        payload = json.loads(gzip.decompress(dumps(trained_gsm)))
        payload["table"][0][4] = payload["table"][0][4][:-1]
        blob = gzip.compress(json.dumps(payload).encode("utf-8"))
        with pytest.raises(ModelFormatError, match="malformed"):
            loads(blob)
