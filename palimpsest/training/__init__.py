"""
Expectation-Maximization over documents.

Example:
    >>> from palimpsest.training import create_trainer
    >>> trainer = create_trainer(lm, line_height=30)
    >>> result = trainer.train(documents)
    >>> result.final_log_likelihood
"""

from palimpsest.training.em import (
    EMTrainer,
    EStepResult,
    IterationSummary,
    TrainingResult,
    create_trainer,
)

__all__ = [
    "EMTrainer",
    "EStepResult",
    "IterationSummary",
    "TrainingResult",
    "create_trainer",
]
