"""
Error types raised by the translation pipeline.

All errors derive from TranslationError so callers can catch the whole
family at once. None of them is retried inside the package.
"""

from typing import Iterable


class TranslationError(Exception):
    """Base class for every error raised by opusmt."""


class ResourceLoadError(TranslationError):
    """A segmenter, vocabulary, config or model file is missing or unreadable."""


class ConfigurationError(TranslationError):
    """The supplied configuration cannot be used with the loaded resources."""


class TokenRangeError(ConfigurationError):
    """A bias rule references token ids outside the model vocabulary."""

    def __init__(self, vocab_size: int, token_ids: Iterable[int]):
        self.vocab_size = vocab_size
        self.token_ids = list(token_ids)
        super().__init__(
            f"The model vocabulary size is {vocab_size}, but the following "
            f"tokens were being biased: {', '.join(str(t) for t in self.token_ids)}"
        )


class ComputationError(TranslationError):
    """A model session rejected its inputs or returned unusable outputs."""
