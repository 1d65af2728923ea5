"""Tests for the character language models."""

import math

import pytest
from spellchecker import SpellChecker

from palimpsest import CodeSwitchLanguageModel, UnknownSymbolError, word_frequency_corpus
from palimpsest.language import CharacterNgramModel
from palimpsest.models import NO_LANGUAGE

# =============================================================================
# N-GRAM TESTS
# =============================================================================


class TestCharacterNgramModel:
    """Tests for CharacterNgramModel."""

    def test_untrained_is_uniform(self):
        model = CharacterNgramModel(order=3, alphabet_size=4)
        assert model.prob([0, 1], 2) == pytest.approx(0.25)

    @pytest.mark.parametrize("context", [[], [0], [1, 0], [2, 2, 2]])
    def test_distribution_sums_to_one(self, context):
        model = CharacterNgramModel(order=3, alphabet_size=3)
        model.add_sequence([0, 1, 0, 1, 2, 0])
        model.add_sequence([1, 1, 0], weight=2.5)
        assert sum(model.prob(context, c) for c in range(3)) == pytest.approx(1.0)

    def test_observed_continuation_preferred(self):
        model = CharacterNgramModel(order=2, alphabet_size=3)
        model.add_sequence([0, 1, 0, 1])
        assert model.log_prob([0], 1) > model.log_prob([0], 2)
        assert model.prob([0], 2) > 0.0

    def test_rejects_ids_outside_alphabet(self):
        model = CharacterNgramModel(order=2, alphabet_size=2)
        with pytest.raises(ValueError):
            model.add_sequence([0, 2])

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"order": 0, "alphabet_size": 2},
            {"order": 2, "alphabet_size": 0},
            {"order": 2, "alphabet_size": 2, "smoothing": 0},
        ],
    )
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ValueError):
            CharacterNgramModel(**kwargs)


# =============================================================================
# CODE-SWITCHING TESTS
# =============================================================================


class TestCodeSwitchLanguageModel:
    """Tests for CodeSwitchLanguageModel."""

    @pytest.fixture
    def bilingual(self):
        return CodeSwitchLanguageModel.from_texts(
            {"latin": ["arma uirumque cano"], "spanish": ["en un lugar de la mancha"]},
            order=2,
            switch_prob=0.01,
        )

    def test_indexers(self, bilingual):
        assert bilingual.char_indexer.objects()[:2] == [" ", "-"]
        assert bilingual.lang_indexer.objects() == ["latin", "spanish"]
        assert bilingual.order == 2

    def test_line_start_spreads_over_languages(self, bilingual):
        assert bilingual.language_log_prob((), 0, NO_LANGUAGE) == pytest.approx(-math.log(2))
        assert bilingual.language_log_prob((), NO_LANGUAGE, NO_LANGUAGE) == -math.inf

    def test_switch_only_at_word_boundary(self, bilingual):
        a = bilingual.char_indexer.index_of("a")
        space = bilingual.char_indexer.index_of(" ")
        assert bilingual.score_next([a], a, 1, 0) == -math.inf
        assert bilingual.score_next([a, space], a, 1, 0) > -math.inf
        assert bilingual.language_log_prob([space], 1, 0) == pytest.approx(math.log(0.01))
        assert bilingual.language_log_prob([space], 0, 0) == pytest.approx(math.log(0.99))

    def test_staying_in_language_is_free_mid_word(self, bilingual):
        a = bilingual.char_indexer.index_of("a")
        assert bilingual.language_log_prob([a], 0, 0) == 0.0

    def test_every_char_finite_within_language(self, bilingual):
        context = bilingual.encode("ar")
        for c in range(len(bilingual.char_indexer)):
            assert math.isfinite(bilingual.score_next(context, c, 0, 0))

    def test_language_agnostic_model(self):
        lm = CodeSwitchLanguageModel.from_texts({None: ["ab ba"]}, order=2)
        assert len(lm.lang_indexer) == 0
        assert lm.score_next((), 2, NO_LANGUAGE, NO_LANGUAGE) > -math.inf
        assert lm.score_next((), 2, 0, NO_LANGUAGE) == -math.inf

    def test_mixing_agnostic_and_named_corpora_rejected(self):
        with pytest.raises(ValueError):
            CodeSwitchLanguageModel.from_texts({None: ["a"], "latin": ["b"]})

    def test_weighted_lines_and_extra_chars(self):
        lm = CodeSwitchLanguageModel.from_texts(
            {"latin": [("ab", 3.0), "ba"]}, order=2, extra_chars="\u2010q"
        )
        # The extra hyphen variant collapses onto the canonical hyphen
        assert lm.char_indexer.objects() == [" ", "-", "a", "b", "q"]

    def test_encode_normalizes_whitespace_and_hyphens(self, bilingual):
        assert bilingual.encode("  la\u2010 ") == bilingual.encode("la-")

    def test_encode_after_freeze(self, bilingual):
        bilingual.char_indexer.freeze()
        with pytest.raises(UnknownSymbolError):
            bilingual.encode("xyz")


# =============================================================================
# WORD FREQUENCY SEEDING TESTS
# =============================================================================


class TestWordFrequencyCorpus:
    """Tests for seeding a language model from pyspellchecker frequency lists."""

    @pytest.fixture(scope="class")
    def spell(self):
        return SpellChecker(language="en")

    def test_limit_and_weights(self, spell):
        lines = word_frequency_corpus(limit=25, spell=spell)
        assert len(lines) == 25
        weights = [weight for _, weight in lines]
        assert all(weight >= 1.0 for weight in weights)
        assert weights == sorted(weights, reverse=True)

    def test_words_are_alphabetic(self, spell):
        for word, _ in word_frequency_corpus(limit=200, spell=spell):
            assert word.isalpha()

    def test_trains_a_language_model(self, spell):
        lm = CodeSwitchLanguageModel.from_texts(
            {"english": word_frequency_corpus(limit=50, spell=spell)}, order=2
        )
        assert "e" in lm.char_indexer

    def test_invalid_limit(self, spell):
        with pytest.raises(ValueError):
            word_frequency_corpus(limit=0, spell=spell)
