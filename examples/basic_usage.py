#!/usr/bin/env python3
"""
Basic Palimpsest Usage Example

This example demonstrates the core workflow:
1. Build a code-switching language model
2. Load line images into documents
3. Train glyph substitutions with EM
4. Decode lines and read the consolidated transcription
5. Save and load models
"""

import logging
from pathlib import Path

import palimpsest
from palimpsest import (
    CodeSwitchLanguageModel,
    DecoderConfig,
    Document,
    LineConsolidator,
    LineImage,
    SubstitutionConfig,
    TrainerConfig,
    create_trainer,
    word_frequency_corpus,
)

LINE_HEIGHT = 30


def main():
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    # ─────────────────────────────────────────────────────────────────────────
    # 1. Language Model
    # ─────────────────────────────────────────────────────────────────────────

    # Transcribed text where it exists, frequency lists where it does not
    latin_lines = Path("corpora/latin.txt").read_text(encoding="utf-8").splitlines()
    lm = CodeSwitchLanguageModel.from_texts(
        {
            "latin": latin_lines,
            "spanish": word_frequency_corpus("es", limit=20000),
        },
        order=4,
        switch_prob=1e-3,
    )
    print(f"Alphabet: {len(lm.char_indexer)} characters, {len(lm.lang_indexer)} languages")

    # ─────────────────────────────────────────────────────────────────────────
    # 2. Documents
    # ─────────────────────────────────────────────────────────────────────────

    documents = []
    for page_dir in sorted(Path("scans").iterdir()):
        lines = [LineImage.from_path(p, height=LINE_HEIGHT) for p in sorted(page_dir.glob("*.png"))]
        documents.append(Document(page_dir.name, lines))

    # ─────────────────────────────────────────────────────────────────────────
    # 3. Training
    # ─────────────────────────────────────────────────────────────────────────

    config = TrainerConfig(
        num_iterations=8,
        max_workers=4,  # Documents decoded in parallel during the E-step
        decode_every=4,
        substitution=SubstitutionConfig(
            allow_elision=True,  # Learn tilde-marked abbreviations
            smoothing=0.01,
        ),
        decoder=DecoderConfig(beam_size=64, width_slack=2),
    )
    # Or: config = TrainerConfig.from_yaml("experiments/latin-spanish.yaml")

    trainer = create_trainer(lm, line_height=LINE_HEIGHT, config=config)
    result = trainer.train(documents)

    for summary in result.iterations:
        print(
            f"Iteration {summary.iteration}: log-likelihood {summary.log_likelihood:.1f}, "
            f"{summary.lines_failed} lines skipped"
        )

    # ─────────────────────────────────────────────────────────────────────────
    # 4. Transcription
    # ─────────────────────────────────────────────────────────────────────────

    consolidator = LineConsolidator(lm.char_indexer)
    for decoded in result.decodes[max(result.decodes)]:
        lines, stats = consolidator.consolidate_document(decoded)
        print(f"{decoded.name}: {stats.wrap_hyphens_collapsed} line-wrap hyphens merged")
        for line in lines:
            print(f"  {line.text}")
            # Noisy-channel view, e.g. "qu[e/ẽ][m/]"
            print(f"  {consolidator.with_substitutions(line.states)}")

    # ─────────────────────────────────────────────────────────────────────────
    # 5. Persistence
    # ─────────────────────────────────────────────────────────────────────────

    palimpsest.save_model(trainer.substitution_model, "output/latin-spanish.gsm.gz")
    trainer.emission_model.save("output/font.npz")

    gsm = palimpsest.load_model("output/latin-spanish.gsm.gz")
    print(f"Loaded {gsm!r}")


def decode_only_example(lm):
    """Decode new pages with previously trained models (same language model as training)."""
    from palimpsest import SparseTransitionLattice, TemplateEmissionModel

    gsm = palimpsest.load_model("output/latin-spanish.gsm.gz")
    font = TemplateEmissionModel.load("output/font.npz", gsm.char_indexer)

    lattice = SparseTransitionLattice(gsm, lm, font, DecoderConfig(beam_size=32))
    try:
        best = lattice.decode(LineImage.from_path("scans/new/001.png", height=LINE_HEIGHT))
    except palimpsest.NoViablePathError as e:
        print(f"Could not decode line: {e}")
        return
    print(LineConsolidator(gsm.char_indexer).with_widths(best.states, best.widths))


if __name__ == "__main__":
    # Note: These examples use placeholder paths.
    # Replace with actual corpora and scans to run.
    print("Palimpsest Usage Examples")
    print("=" * 50)
    print("\nSee the code for detailed examples of:")
    print("  - Language model construction")
    print("  - EM training configuration")
    print("  - Consolidated transcriptions")
    print("  - Model persistence")
