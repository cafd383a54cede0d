"""
Marian-style multi-head attention with explicit key/value states.

Keys and values are exposed in the (batch, n_heads, seq_len, head_dim)
layout of the exported decoders so they can be handed out as cache
tensors and fed back on the next step.
"""

import torch
import torch.nn as nn
import torch.nn.functional as F
from typing import Optional, Tuple


class MultiHeadAttention(nn.Module):
    """Scaled dot-product attention over `n_heads` heads.

    Projection of keys and values (`project_key_value`) is separate from
    attending (`attend`), so a decoder can keep projected states around
    instead of recomputing them.

    Args:
        d_model: Model dimension.
        n_heads: Number of attention heads.
        dropout: Dropout on the attention weights.
    """

    def __init__(self, d_model: int, n_heads: int, dropout: float = 0.0):
        super().__init__()

        if d_model % n_heads:
            raise ValueError(f"{n_heads} heads do not divide d_model={d_model}")

        self.d_model = d_model
        self.n_heads = n_heads
        self.head_dim = d_model // n_heads
        self.scaling = self.head_dim ** -0.5
        self.dropout = dropout

        self.q_proj = nn.Linear(d_model, d_model)
        self.k_proj = nn.Linear(d_model, d_model)
        self.v_proj = nn.Linear(d_model, d_model)
        self.out_proj = nn.Linear(d_model, d_model)

    def _shape(self, x: torch.Tensor) -> torch.Tensor:
        # (batch, len, d_model) -> (batch, heads, len, head_dim)
        batch, length, _ = x.shape
        return x.view(batch, length, self.n_heads, self.head_dim).transpose(1, 2)

    def project_key_value(self, x: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        """Per-head keys and values for `x` of shape (batch, len, d_model)."""
        return self._shape(self.k_proj(x)), self._shape(self.v_proj(x))

    def attend(
        self,
        hidden_states: torch.Tensor,
        key: torch.Tensor,
        value: torch.Tensor,
        mask: Optional[torch.Tensor] = None
    ) -> torch.Tensor:
        """Attend from `hidden_states` over projected keys and values.

        Args:
            hidden_states: Queries before projection, (batch, q_len, d_model).
            key: (batch, n_heads, k_len, head_dim).
            value: (batch, n_heads, k_len, head_dim).
            mask: Broadcastable to (batch, 1, q_len, k_len); 0 marks
                positions that may not be attended.

        Returns:
            Tensor of shape (batch, q_len, d_model).
        """
        batch, q_len, _ = hidden_states.shape
        query = self._shape(self.q_proj(hidden_states) * self.scaling)

        weights = torch.matmul(query, key.transpose(-1, -2))
        if mask is not None:
            weights = weights.masked_fill(mask == 0, torch.finfo(weights.dtype).min)
        weights = F.softmax(weights, dim=-1)
        weights = F.dropout(weights, p=self.dropout, training=self.training)

        output = torch.matmul(weights, value)
        output = output.transpose(1, 2).reshape(batch, q_len, self.d_model)
        return self.out_proj(output)

    def forward(
        self,
        hidden_states: torch.Tensor,
        key_value_states: torch.Tensor,
        mask: Optional[torch.Tensor] = None
    ) -> torch.Tensor:
        key, value = self.project_key_value(key_value_states)
        return self.attend(hidden_states, key, value, mask=mask)


def create_attention_mask(attention_mask: torch.Tensor) -> torch.Tensor:
    """Turn a (batch, src_len) 1/0 mask into a (batch, 1, 1, src_len) mask.

    Built from the attention mask, never from pad ids: Marian decoders
    start from the pad id.
    """
    return attention_mask[:, None, None, :].to(torch.float)


def create_causal_mask(
    tgt_len: int,
    past_len: int = 0,
    device: Optional[torch.device] = None
) -> torch.Tensor:
    """Mask of shape (1, 1, tgt_len, past_len + tgt_len).

    New position i sees all `past_len` cached positions and the new
    positions up to and including i. With tgt_len=2, past_len=1:

        [[1, 1, 0],
         [1, 1, 1]]
    """
    full = torch.ones(tgt_len, past_len + tgt_len, device=device)
    return torch.tril(full, diagonal=past_len)[None, None, :, :]
