"""
Model Vocabulary.

Bidirectional token <-> id table for the Marian models. The ids here are
the model's ids (rows of the logits), not SentencePiece piece ids.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Mapping, Union

from .errors import ConfigurationError, ResourceLoadError

logger = logging.getLogger(__name__)


class Vocabulary:
    """Token to id mapping with designated unk, eos and pad tokens.

    Lookups never fail: unknown tokens map to the unk id and unknown ids
    map back to the unk token string.

    Args:
        token_to_id: Mapping of token string to model id.
        unk_token: Unknown token string.
        eos_token: End-of-sequence token string.
        pad_token: Padding token string (also the decoder start symbol).
    """

    def __init__(
        self,
        token_to_id: Mapping[str, int],
        unk_token: str = "<unk>",
        eos_token: str = "</s>",
        pad_token: str = "<pad>"
    ):
        self.token_to_id: Dict[str, int] = dict(token_to_id)

        missing = [
            tok for tok in (unk_token, eos_token, pad_token)
            if tok not in self.token_to_id
        ]
        if missing:
            raise ConfigurationError(
                f"Special tokens missing from vocabulary: {', '.join(missing)}"
            )

        self.unk_token = unk_token
        self.eos_token = eos_token
        self.pad_token = pad_token

        self.unk_id = self.token_to_id[unk_token]
        self.eos_id = self.token_to_id[eos_token]
        self.pad_id = self.token_to_id[pad_token]

        # Later entries win if two tokens share an id
        self.id_to_token: Dict[int, str] = {}
        for token, idx in self.token_to_id.items():
            self.id_to_token[idx] = token

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        unk_token: str = "<unk>",
        eos_token: str = "</s>",
        pad_token: str = "<pad>"
    ) -> "Vocabulary":
        """Load a vocabulary from a JSON object of token -> id.

        Raises:
            ResourceLoadError: The file is missing, is not valid JSON, or
                is not a flat object of integer ids.
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to read vocabulary %s: %s", path, e)
            raise ResourceLoadError(f"Failed to load or parse vocabulary file {path}") from e

        if not isinstance(data, dict) or not all(
            isinstance(v, int) and not isinstance(v, bool) for v in data.values()
        ):
            raise ResourceLoadError(
                f"Vocabulary file {path} must be a JSON object of token -> integer id"
            )

        vocab = cls(data, unk_token=unk_token, eos_token=eos_token, pad_token=pad_token)
        logger.info(
            "Vocabulary loaded: size=%d, unk_id=%d, eos_id=%d, pad_id=%d",
            len(vocab), vocab.unk_id, vocab.eos_id, vocab.pad_id
        )
        return vocab

    def lookup(self, token: str) -> int:
        """Return the id of `token`, or the unk id if absent."""
        return self.token_to_id.get(token, self.unk_id)

    def reverse(self, idx: int) -> str:
        """Return the token for `idx`, or the unk token if unmapped."""
        return self.id_to_token.get(idx, self.unk_token)

    @property
    def special_tokens(self) -> List[str]:
        return [self.unk_token, self.eos_token, self.pad_token]

    @property
    def special_ids(self) -> List[int]:
        return [self.unk_id, self.eos_id, self.pad_id]

    def __len__(self) -> int:
        return len(self.token_to_id)

    def __contains__(self, token: str) -> bool:
        return token in self.token_to_id
