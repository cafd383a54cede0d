"""
Sequence Bias Logits Processor.

Adds configured biases to next-token scores before selection:
- Single-token rules are applied at every step
- Multi-token rules bias their last token only when the generated
  history ends with the rest of the rule
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import torch

from ..errors import TokenRangeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BiasRule:
    """A token-id sequence and the bias added to its last token."""

    sequence_ids: Tuple[int, ...]
    bias: float

    def __post_init__(self):
        if not self.sequence_ids:
            raise ValueError("BiasRule needs at least one token id")
        # +inf meeting a -inf rule on the same id, or any NaN, gives NaN scores
        if math.isnan(self.bias) or self.bias == math.inf:
            raise ValueError(f"BiasRule bias must be finite or -inf, got {self.bias}")
        object.__setattr__(self, "sequence_ids", tuple(int(t) for t in self.sequence_ids))

    @property
    def prefix(self) -> Tuple[int, ...]:
        return self.sequence_ids[:-1]

    @property
    def last_id(self) -> int:
        return self.sequence_ids[-1]


def as_bias_rules(
    rules: Iterable[Union[BiasRule, Tuple[Sequence[int], float]]]
) -> List[BiasRule]:
    """Accept BiasRules or plain (ids, bias) pairs."""
    converted = []
    for rule in rules:
        if isinstance(rule, BiasRule):
            converted.append(rule)
        else:
            ids, bias = rule
            converted.append(BiasRule(tuple(ids), float(bias)))
    return converted


class SequenceBiasLogitsProcessor:
    """Applies sequence biases to a (batch, vocab) score matrix.

    Rules are kept in an ordered list and compared structurally; a later
    rule for the same sequence replaces an earlier one. The vocabulary size
    is only known from the first score matrix, so range validation and
    the dense single-token bias are prepared on the first call.

    Args:
        rules: BiasRules or (token-id-sequence, bias) pairs.
    """

    def __init__(self, rules: Iterable[Union[BiasRule, Tuple[Sequence[int], float]]]):
        self.rules: List[BiasRule] = []
        for rule in as_bias_rules(rules):
            for i, existing in enumerate(self.rules):
                if existing.sequence_ids == rule.sequence_ids:
                    self.rules[i] = rule
                    break
            else:
                self.rules.append(rule)

        self.length_1_bias: Optional[torch.Tensor] = None
        self.vocab_size: Optional[int] = None

    def _prepare_bias_variables(self, scores: torch.Tensor):
        vocab_size = scores.size(-1)

        invalid = []
        for rule in self.rules:
            for token_id in rule.sequence_ids:
                if (token_id < 0 or token_id >= vocab_size) and token_id not in invalid:
                    invalid.append(token_id)
        if invalid:
            raise TokenRangeError(vocab_size, invalid)

        length_1_bias = torch.zeros(vocab_size, dtype=scores.dtype, device=scores.device)
        for rule in self.rules:
            if len(rule.sequence_ids) == 1:
                length_1_bias[rule.last_id] = rule.bias

        self.length_1_bias = length_1_bias
        self.vocab_size = vocab_size
        logger.debug("Prepared sequence bias for vocab_size=%d (%d rules)", vocab_size, len(self.rules))

    def __call__(
        self,
        input_ids: Union[torch.Tensor, Sequence[Sequence[int]]],
        scores: torch.Tensor
    ) -> torch.Tensor:
        """Return biased scores.

        Args:
            input_ids: Generated history, (batch, seq_len) tensor or list of lists.
            scores: Next-token scores of shape (batch, vocab_size).

        Returns:
            A new tensor `scores + bias`; `scores` is not modified.
        """
        if self.length_1_bias is None:
            self._prepare_bias_variables(scores)

        if isinstance(input_ids, torch.Tensor):
            history = input_ids.tolist()
        else:
            history = [list(row) for row in input_ids]

        batch_size = scores.size(0)
        current_length = len(history[0]) if history else 0

        # 1. Single-token bias
        bias = self.length_1_bias.to(scores.device, scores.dtype).expand(batch_size, -1).clone()

        # 2. Multi-token bias, only where the prefix fits strictly inside the history
        for rule in self.rules:
            if len(rule.sequence_ids) == 1:
                continue

            prefix = list(rule.prefix)
            prefix_length = len(prefix)
            if prefix_length >= current_length:
                continue

            for row in range(batch_size):
                if history[row][-prefix_length:] == prefix:
                    bias[row, rule.last_id] += rule.bias

        # 3. Apply
        return scores + bias
