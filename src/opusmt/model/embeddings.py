"""
Token embeddings with Marian's fixed sinusoidal positions.

Positions are looked up from an explicit offset (the number of cached
decoder positions) so one token at a time can be embedded.
"""

import math
import torch
import torch.nn as nn


def sinusoidal_table(num_positions: int, dim: int) -> torch.Tensor:
    """Marian layout: sines in the first half of each row, cosines in the second."""
    position = torch.arange(num_positions, dtype=torch.float).unsqueeze(1)
    inv_freq = torch.exp(
        torch.arange(0, dim, 2, dtype=torch.float) * (-math.log(10000.0) / dim)
    )
    angles = position * inv_freq

    half = (dim + 1) // 2
    table = torch.zeros(num_positions, dim)
    table[:, :half] = torch.sin(angles)
    table[:, half:] = torch.cos(angles[:, :dim - half])
    return table


class SinusoidalPositionalEmbedding(nn.Module):
    """Fixed (non-trainable) position table.

    Args:
        num_positions: Largest supported sequence length.
        dim: Embedding dimension.
    """

    def __init__(self, num_positions: int, dim: int):
        super().__init__()
        self.num_positions = num_positions
        self.register_buffer("table", sinusoidal_table(num_positions, dim), persistent=False)

    def forward(self, seq_len: int, offset: int = 0) -> torch.Tensor:
        """Position embeddings for positions offset .. offset + seq_len - 1."""
        end = offset + seq_len
        if end > self.num_positions:
            raise ValueError(
                f"Position {end - 1} is out of range for {self.num_positions} positions"
            )
        return self.table[offset:end]


class TransformerEmbeddings(nn.Module):
    """token_embedding * sqrt(d_model) + position, then dropout.

    Args:
        vocab_size: Size of vocabulary.
        d_model: Model dimension.
        max_len: Maximum sequence length.
        dropout: Dropout probability.
    """

    def __init__(self, vocab_size: int, d_model: int, max_len: int = 512, dropout: float = 0.1):
        super().__init__()

        self.embed_scale = math.sqrt(d_model)

        # No padding_idx: the pad id doubles as the decoder start token
        self.embed_tokens = nn.Embedding(vocab_size, d_model)
        self.embed_positions = SinusoidalPositionalEmbedding(max_len, d_model)
        self.dropout = nn.Dropout(dropout)

    def forward(self, tokens: torch.Tensor, offset: int = 0) -> torch.Tensor:
        """Embed (batch, seq_len) ids whose first position is `offset`."""
        positions = self.embed_positions(tokens.size(1), offset=offset)
        return self.dropout(self.embed_tokens(tokens) * self.embed_scale + positions)

    @property
    def weight(self) -> torch.Tensor:
        return self.embed_tokens.weight
