"""
Marian Neural Machine Translation over exported encoder/decoder graphs.

Modules:
    - vocab: model vocabulary with special tokens
    - tokenizer: source/target SentencePiece tokenizer
    - inference: sequence bias, attention cache, greedy decoding, translator
    - model: in-process reference Transformer with cacheable attention
"""

import logging

from .config import TranslatorConfig, TokenizerConfig, DecodingConfig, SessionConfig, MarianConfig
from .errors import (
    TranslationError,
    ResourceLoadError,
    ConfigurationError,
    TokenRangeError,
    ComputationError,
)
from .vocab import Vocabulary
from .tokenizer import EncodedInput, MarianTokenizer

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "1.0.0"
__all__ = [
    "TranslatorConfig",
    "TokenizerConfig",
    "DecodingConfig",
    "SessionConfig",
    "MarianConfig",
    "TranslationError",
    "ResourceLoadError",
    "ConfigurationError",
    "TokenRangeError",
    "ComputationError",
    "Vocabulary",
    "EncodedInput",
    "MarianTokenizer",
]
