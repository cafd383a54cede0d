"""
Marian encoder and decoder layers.

Post-LN layout (residual add, then LayerNorm) with a swish feed-forward
block, as in the opus-mt checkpoints. A decoder layer hands back its
attention state as

    (self_key, self_value, cross_key, cross_value)

The self-attention part grows by one position per generated token. The
cross-attention part depends only on the encoder output and is reused
unchanged after the first step.
"""

import torch
import torch.nn as nn
import torch.nn.functional as F
from typing import Optional, Tuple

from .attention import MultiHeadAttention

LayerState = Tuple[torch.Tensor, torch.Tensor, torch.Tensor, torch.Tensor]

ACTIVATIONS = {
    "swish": F.silu,
    "relu": F.relu,
    "gelu": F.gelu,
}


class FeedForward(nn.Module):
    """fc1 -> activation -> dropout -> fc2."""

    def __init__(self, d_model: int, d_ff: int, dropout: float = 0.0, activation: str = "swish"):
        super().__init__()
        if activation not in ACTIVATIONS:
            raise ValueError(f"Unknown activation: {activation}")

        self.fc1 = nn.Linear(d_model, d_ff)
        self.fc2 = nn.Linear(d_ff, d_model)
        self.activation_fn = ACTIVATIONS[activation]
        self.dropout = nn.Dropout(dropout)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.fc2(self.dropout(self.activation_fn(self.fc1(x))))


class EncoderLayer(nn.Module):
    def __init__(
        self,
        d_model: int,
        n_heads: int,
        d_ff: int,
        dropout: float = 0.1,
        attention_dropout: float = 0.0,
        activation: str = "swish"
    ):
        super().__init__()

        self.self_attn = MultiHeadAttention(d_model, n_heads, dropout=attention_dropout)
        self.self_attn_layer_norm = nn.LayerNorm(d_model)
        self.ffn = FeedForward(d_model, d_ff, dropout=dropout, activation=activation)
        self.final_layer_norm = nn.LayerNorm(d_model)
        self.dropout = nn.Dropout(dropout)

    def forward(self, x: torch.Tensor, mask: Optional[torch.Tensor] = None) -> torch.Tensor:
        x = self.self_attn_layer_norm(x + self.dropout(self.self_attn(x, x, mask=mask)))
        return self.final_layer_norm(x + self.dropout(self.ffn(x)))


class DecoderLayer(nn.Module):
    """Masked self-attention, cross-attention and feed-forward with cacheable state.

    Args:
        d_model: Model dimension.
        n_heads: Number of attention heads.
        d_ff: Feed-forward hidden dimension.
        dropout: Residual dropout.
        attention_dropout: Dropout on attention weights.
        activation: Feed-forward activation.
    """

    def __init__(
        self,
        d_model: int,
        n_heads: int,
        d_ff: int,
        dropout: float = 0.1,
        attention_dropout: float = 0.0,
        activation: str = "swish"
    ):
        super().__init__()

        self.self_attn = MultiHeadAttention(d_model, n_heads, dropout=attention_dropout)
        self.self_attn_layer_norm = nn.LayerNorm(d_model)
        self.encoder_attn = MultiHeadAttention(d_model, n_heads, dropout=attention_dropout)
        self.encoder_attn_layer_norm = nn.LayerNorm(d_model)
        self.ffn = FeedForward(d_model, d_ff, dropout=dropout, activation=activation)
        self.final_layer_norm = nn.LayerNorm(d_model)
        self.dropout = nn.Dropout(dropout)

    def forward(
        self,
        x: torch.Tensor,
        encoder_hidden_states: Optional[torch.Tensor],
        self_attn_mask: Optional[torch.Tensor] = None,
        cross_attn_mask: Optional[torch.Tensor] = None,
        past: Optional[LayerState] = None
    ) -> Tuple[torch.Tensor, LayerState]:
        """Run new decoder positions, continuing from `past` when given.

        Args:
            x: New positions, (batch, tgt_len, d_model).
            encoder_hidden_states: Encoder output. Only read when `past`
                is None; otherwise the cached cross-attention state is used.
            self_attn_mask: (1, 1, tgt_len, past_len + tgt_len).
            cross_attn_mask: (batch, 1, 1, src_len).
            past: Cached state from the previous step.

        Returns:
            Tuple of (output, present_state).
        """
        self_key, self_value = self.self_attn.project_key_value(x)
        if past is not None:
            self_key = torch.cat([past[0], self_key], dim=2)
            self_value = torch.cat([past[1], self_value], dim=2)
        h = self.self_attn.attend(x, self_key, self_value, mask=self_attn_mask)
        x = self.self_attn_layer_norm(x + self.dropout(h))

        if past is None:
            cross_key, cross_value = self.encoder_attn.project_key_value(encoder_hidden_states)
        else:
            cross_key, cross_value = past[2], past[3]
        h = self.encoder_attn.attend(x, cross_key, cross_value, mask=cross_attn_mask)
        x = self.encoder_attn_layer_norm(x + self.dropout(h))

        x = self.final_layer_norm(x + self.dropout(self.ffn(x)))
        return x, (self_key, self_value, cross_key, cross_value)
