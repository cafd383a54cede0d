"""
SentencePiece Tokenizer Wrapper for Marian models.

Marian models use two SentencePiece models (one per language) and a
separate vocab.json that maps pieces to model ids. This module provides:
- Source-side encoding with EOS and truncation
- Target-side decoding that keeps special tokens out of SentencePiece
- Loading of all three resources with fail-fast errors
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import sentencepiece as spm
import torch

from .config import TokenizerConfig
from .errors import ResourceLoadError
from .vocab import Vocabulary

logger = logging.getLogger(__name__)

# Word-start marker used by SentencePiece
SPIECE_UNDERLINE = "▁"


@dataclass
class EncodedInput:
    """Source token ids ready for the encoder.

    Attributes:
        input_ids: Model ids, always ending with EOS.
        attention_mask: 1 for every position (no padding is added).
    """

    input_ids: List[int] = field(default_factory=list)
    attention_mask: List[int] = field(default_factory=list)

    def __post_init__(self):
        if len(self.input_ids) != len(self.attention_mask):
            raise ValueError(
                f"input_ids ({len(self.input_ids)}) and attention_mask "
                f"({len(self.attention_mask)}) must have equal length"
            )

    @property
    def length(self) -> int:
        return len(self.input_ids)

    def to_tensors(self, device: Optional[torch.device] = None) -> Tuple[torch.Tensor, torch.Tensor]:
        """Return (input_ids, attention_mask) as int64 tensors of shape (1, length)."""
        input_ids = torch.tensor([self.input_ids], dtype=torch.long, device=device)
        attention_mask = torch.tensor([self.attention_mask], dtype=torch.long, device=device)
        return input_ids, attention_mask


def load_sentencepiece(model_path: Union[str, Path]) -> spm.SentencePieceProcessor:
    """Load a SentencePiece model, raising ResourceLoadError on failure."""
    model_path = Path(model_path)
    if not model_path.is_file():
        raise ResourceLoadError(f"SentencePiece model not found: {model_path}")

    sp = spm.SentencePieceProcessor()
    try:
        loaded = sp.Load(str(model_path))
    except (OSError, RuntimeError) as e:
        logger.error("Failed to load SentencePiece model %s: %s", model_path, e)
        raise ResourceLoadError(f"Failed to load SentencePiece model from {model_path}") from e
    if loaded is False:
        raise ResourceLoadError(f"Failed to load SentencePiece model from {model_path}")
    return sp


class MarianTokenizer:
    """Marian tokenizer over a source and a target SentencePiece model.

    Pieces produced by the source model are mapped to model ids through
    the shared Vocabulary. On the way back, model ids become pieces through
    the Vocabulary and are detokenized by the target model.

    Args:
        source_sp: Loaded source-language SentencePiece processor.
        target_sp: Loaded target-language SentencePiece processor.
        vocab: Model vocabulary.
        model_max_length: Default truncation length for `encode`.
    """

    def __init__(
        self,
        source_sp,
        target_sp,
        vocab: Vocabulary,
        model_max_length: int = 512
    ):
        self.source_sp = source_sp
        self.target_sp = target_sp
        self.vocab = vocab
        self.model_max_length = model_max_length

        self.unk_id = vocab.unk_id
        self.eos_id = vocab.eos_id
        self.pad_id = vocab.pad_id

        self.all_special_tokens = frozenset(vocab.special_tokens)

    @classmethod
    def from_files(
        cls,
        source_spm: Union[str, Path],
        target_spm: Union[str, Path],
        vocab_file: Union[str, Path],
        config: Optional[TokenizerConfig] = None
    ) -> "MarianTokenizer":
        """Load both SentencePiece models and the vocabulary.

        Nothing is returned unless every resource loaded.
        """
        config = config or TokenizerConfig()

        source_sp = load_sentencepiece(source_spm)
        target_sp = load_sentencepiece(target_spm)
        vocab = Vocabulary.from_file(
            vocab_file,
            unk_token=config.unk_token,
            eos_token=config.eos_token,
            pad_token=config.pad_token
        )

        logger.info(
            "Tokenizer loaded: source_pieces=%d, target_pieces=%d, vocab_size=%d",
            source_sp.GetPieceSize(), target_sp.GetPieceSize(), len(vocab)
        )
        return cls(source_sp, target_sp, vocab, model_max_length=config.model_max_length)

    @classmethod
    def from_directory(
        cls,
        model_dir: Union[str, Path],
        config: Optional[TokenizerConfig] = None
    ) -> "MarianTokenizer":
        """Load the tokenizer from a model directory using configured file names."""
        config = config or TokenizerConfig()
        model_dir = Path(model_dir)
        return cls.from_files(
            model_dir / config.source_spm,
            model_dir / config.target_spm,
            model_dir / config.vocab_file,
            config=config
        )

    @property
    def vocab_size(self) -> int:
        """Return model vocabulary size."""
        return len(self.vocab)

    def tokenize(self, text: str) -> List[str]:
        """Split text into source pieces."""
        return list(self.source_sp.EncodeAsPieces(text))

    def convert_tokens_to_ids(self, tokens: Sequence[str]) -> List[int]:
        return [self.vocab.lookup(tok) for tok in tokens]

    def encode(self, text: str, max_length: Optional[int] = None) -> EncodedInput:
        """Encode text to source ids with EOS appended.

        If the sequence is longer than `max_length` it is cut to exactly
        `max_length` ids and the last surviving id is overwritten with EOS.

        Args:
            text: Input text string.
            max_length: Truncation length. Defaults to model_max_length.

        Returns:
            EncodedInput with an all-ones attention mask.
        """
        if max_length is None:
            max_length = self.model_max_length
        if max_length < 1:
            raise ValueError(f"max_length must be at least 1, got {max_length}")

        ids = self.convert_tokens_to_ids(self.tokenize(text))
        ids.append(self.eos_id)

        if len(ids) > max_length:
            ids = ids[:max_length]
            ids[-1] = self.eos_id

        return EncodedInput(input_ids=ids, attention_mask=[1] * len(ids))

    def _decode_run(self, tokens: List[str]) -> str:
        piece_ids = [self.target_sp.PieceToId(tok) for tok in tokens]
        return self.target_sp.DecodeIds(piece_ids)

    def convert_tokens_to_string(self, tokens: Sequence[str]) -> str:
        """Join tokens back into text.

        SentencePiece can only detokenize runs of piece ids, so the tokens
        are split at special tokens, which are emitted literally.
        """
        current_sub_tokens: List[str] = []
        out_string = ""

        for token in tokens:
            if token in self.all_special_tokens:
                out_string += self._decode_run(current_sub_tokens) if current_sub_tokens else ""
                out_string += token + " "
                current_sub_tokens = []
            else:
                current_sub_tokens.append(token)

        if current_sub_tokens:
            out_string += self._decode_run(current_sub_tokens)

        out_string = out_string.replace(SPIECE_UNDERLINE, " ")
        return out_string.rstrip()

    def decode(
        self,
        ids: Sequence[int],
        skip_special_tokens: bool = True
    ) -> str:
        """Decode model ids to text.

        Args:
            ids: Model token ids.
            skip_special_tokens: Whether to remove unk/eos/pad from output.

        Returns:
            Decoded text string.
        """
        tokens = []
        for idx in ids:
            token = self.vocab.reverse(int(idx))
            if skip_special_tokens and token in self.all_special_tokens:
                continue
            tokens.append(token)

        return self.convert_tokens_to_string(tokens)
