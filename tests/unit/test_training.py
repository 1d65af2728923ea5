"""Tests for the EM trainer."""

import logging

import numpy as np
import pytest

from conftest import make_font
from palimpsest import (
    ConfigurationError,
    DecoderConfig,
    Document,
    EMTrainer,
    GlyphSubstitutionModel,
    Indexer,
    LineImage,
    SubstitutionConfig,
    TemplateEmissionModel,
    TrainerConfig,
    TrainingError,
    UnknownSymbolError,
    create_trainer,
)


def trainer_config(**kwargs):
    kwargs.setdefault("decoder", DecoderConfig(beam_size=16, width_slack=0))
    return TrainerConfig(**kwargs)


def make_trainer(lm, **kwargs):
    font = make_font(lm.char_indexer)
    return create_trainer(lm, line_height=4, config=trainer_config(**kwargs), emission_model=font)


def bad_document():
    # 4 columns: one 3-column glyph fits, nothing reaches the line end
    return Document("bad", [LineImage(np.zeros((4, 4)))])


def assert_same_statistics(first, second):
    assert first.contexts() == second.contexts()
    for context in first.contexts():
        np.testing.assert_array_equal(first.counts(context), second.counts(context))


# =============================================================================
# CONSTRUCTION TESTS
# =============================================================================


class TestCreateTrainer:
    """Tests for create_trainer() and EMTrainer construction."""

    def test_freezes_indexers(self, trained_lm):
        create_trainer(trained_lm, line_height=4)
        assert trained_lm.char_indexer.frozen
        with pytest.raises(UnknownSymbolError):
            trained_lm.encode("xyz")

    def test_default_font_is_flat(self, trained_lm):
        trainer = create_trainer(trained_lm, line_height=4)
        assert isinstance(trainer.emission_model, TemplateEmissionModel)
        assert trainer.emission_model.height == 4

    def test_substitution_config_reaches_model(self, trained_lm):
        trainer = make_trainer(trained_lm, substitution=SubstitutionConfig(allow_elision=False))
        assert trainer.substitution_model.num_outcomes == len(trained_lm.char_indexer)

    def test_mismatched_models_rejected(self, trained_lm):
        gsm = GlyphSubstitutionModel(Indexer(["a", "b"]), Indexer(["latin"]))
        with pytest.raises(ConfigurationError):
            EMTrainer(gsm, trained_lm, make_font(trained_lm.char_indexer))


# =============================================================================
# E-STEP TESTS
# =============================================================================


class TestEStep:
    """Tests for the parallel E-step."""

    def test_worker_count_does_not_change_statistics(self, trained_lm, documents):
        serial = make_trainer(trained_lm, max_workers=1).run_e_step(documents)
        parallel = make_trainer(trained_lm, max_workers=3).run_e_step(documents)

        assert serial.lines_succeeded == parallel.lines_succeeded == 5
        assert serial.log_likelihood == parallel.log_likelihood
        assert_same_statistics(serial.glyph_statistics, parallel.glyph_statistics)
        assert serial.emission_statistics.weights == parallel.emission_statistics.weights

    def test_failed_line_is_skipped(self, trained_lm, documents, caplog):
        trainer = make_trainer(trained_lm)
        clean = trainer.run_e_step(documents)
        with caplog.at_level(logging.WARNING, logger="palimpsest.training.em"):
            mixed = trainer.run_e_step([documents[0], bad_document(), documents[1]])

        assert mixed.lines_failed == 1
        assert mixed.failed_lines == [("bad", 0)]
        assert mixed.lines_succeeded == clean.lines_succeeded
        assert mixed.failure_fraction == pytest.approx(1 / 6)
        assert mixed.log_likelihood == clean.log_likelihood
        assert_same_statistics(mixed.glyph_statistics, clean.glyph_statistics)
        assert "Skipping line 0 of bad" in caplog.text

    def test_empty_corpus(self, trained_lm):
        result = make_trainer(trained_lm).run_e_step([])
        assert result.lines_succeeded == 0
        assert result.failure_fraction == 0.0
        assert not result.glyph_statistics


# =============================================================================
# M-STEP AND TRAINING LOOP TESTS
# =============================================================================


class TestTraining:
    """Tests for EMTrainer.train()."""

    def test_m_step_normalizes(self, trained_lm, documents):
        trainer = make_trainer(trained_lm)
        trainer.run_m_step(trainer.run_e_step(documents))
        assert trainer.substitution_model.is_normalized
        for _, probs in trainer.substitution_model:
            assert abs(probs.sum() - 1.0) <= 1e-6

    def test_font_fixed_when_not_learned(self, trained_lm, documents):
        trainer = make_trainer(trained_lm, learn_font=False)
        before = {i: t.copy() for i, t in trainer.emission_model.templates.items()}
        trainer.run_m_step(trainer.run_e_step(documents))
        for index, template in before.items():
            np.testing.assert_array_equal(trainer.emission_model.templates[index], template)

    def test_iteration_summaries(self, trained_lm, documents):
        trainer = make_trainer(trained_lm, num_iterations=2, convergence_threshold=None)
        result = trainer.train(documents)

        assert [s.iteration for s in result.iterations] == [1, 2]
        assert all(s.lines_succeeded == 5 and s.lines_failed == 0 for s in result.iterations)
        assert result.final_log_likelihood == result.iterations[-1].log_likelihood
        assert not result.converged
        assert result.decodes == {}

    def test_converges_early(self, trained_lm, documents):
        trainer = make_trainer(trained_lm, num_iterations=5, convergence_threshold=1.0)
        result = trainer.train(documents)
        assert len(result.iterations) == 2
        assert result.converged

    def test_regression_warns_and_continues(self, trained_lm, documents, monkeypatch, caplog):
        trainer = make_trainer(trained_lm, num_iterations=3, convergence_threshold=None)
        scripted = iter([-10.0, -20.0, -15.0])
        run_e_step = trainer.run_e_step

        def e_step_with_dip(docs):
            result = run_e_step(docs)
            result.log_likelihood = next(scripted)
            return result

        monkeypatch.setattr(trainer, "run_e_step", e_step_with_dip)
        with caplog.at_level(logging.WARNING, logger="palimpsest.training.em"):
            result = trainer.train(documents)

        assert [s.log_likelihood for s in result.iterations] == [-10.0, -20.0, -15.0]
        assert "Iteration 2: log-likelihood fell" in caplog.text
        assert caplog.text.count("log-likelihood fell") == 1
        assert trainer.substitution_model.is_normalized

    def test_decode_callback(self, trained_lm, documents):
        calls = []
        trainer = make_trainer(
            trained_lm, num_iterations=3, convergence_threshold=None, decode_every=2
        )
        result = trainer.train(documents, on_decode=lambda i, decodes: calls.append((i, decodes)))

        # Every second iteration plus the last one
        assert [i for i, _ in calls] == [2, 3]
        assert sorted(result.decodes) == [2, 3]
        decodes = result.decodes[3]
        assert [d.name for d in decodes] == ["doc-1", "doc-2"]
        assert [len(d.lines) for d in decodes] == [2, 3]

    def test_tolerates_failures_within_bound(self, trained_lm, documents):
        trainer = make_trainer(
            trained_lm, num_iterations=1, max_failed_line_fraction=0.5, decode_every=1
        )
        result = trainer.train([documents[0], bad_document()])
        assert result.iterations[0].lines_failed == 1
        assert result.decodes[1][1].failed_lines == [("bad", 0)]

    def test_aborts_above_failure_bound(self, trained_lm, documents):
        trainer = make_trainer(trained_lm, max_failed_line_fraction=0.1)
        with pytest.raises(TrainingError, match="1 of 3 lines failed"):
            trainer.train([documents[0], bad_document()])
