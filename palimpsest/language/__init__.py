"""
Language models supplying P(next LM char | context, language).

Example:
    >>> from palimpsest.language import CodeSwitchLanguageModel, word_frequency_corpus
    >>> lm = CodeSwitchLanguageModel.from_texts(
    ...     {"spanish": word_frequency_corpus("es"), "latin": latin_lines},
    ...     order=3,
    ... )
"""

from palimpsest.language.base import LanguageModel
from palimpsest.language.ngram import CharacterNgramModel, CodeSwitchLanguageModel
from palimpsest.language.wordlist import word_frequency_corpus

__all__ = [
    "LanguageModel",
    "CharacterNgramModel",
    "CodeSwitchLanguageModel",
    "word_frequency_corpus",
]
