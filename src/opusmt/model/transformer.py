"""
Marian encoder-decoder with exportable cache state.

A small in-process stand-in for the exported ONNX graphs. `decode`
plays both exported decoders:
- without `past` it is the cold decoder and returns every layer's
  self-attention and cross-attention keys/values
- with `past` it is the decoder-with-past and only extends the
  self-attention state
"""

import torch
import torch.nn as nn
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .attention import create_attention_mask, create_causal_mask
from .embeddings import TransformerEmbeddings
from .layers import DecoderLayer, EncoderLayer, LayerState


class Seq2SeqTransformer(nn.Module):
    """Marian-shaped translation model with shared embeddings.

    Args:
        vocab_size: Shared source/target vocabulary size.
        d_model: Hidden size.
        n_heads: Attention heads per layer.
        n_encoder_layers: Encoder depth.
        n_decoder_layers: Decoder depth (number of cache entries).
        d_ff: Feed-forward hidden size.
        max_seq_len: Number of position embeddings.
        dropout: Residual and embedding dropout.
        attention_dropout: Dropout on attention weights.
        activation: Feed-forward activation ("swish" for opus-mt).
    """

    def __init__(
        self,
        vocab_size: int,
        d_model: int = 512,
        n_heads: int = 8,
        n_encoder_layers: int = 6,
        n_decoder_layers: int = 6,
        d_ff: int = 2048,
        max_seq_len: int = 512,
        dropout: float = 0.1,
        attention_dropout: float = 0.0,
        activation: str = "swish"
    ):
        super().__init__()

        self.config = dict(
            vocab_size=vocab_size, d_model=d_model, n_heads=n_heads,
            n_encoder_layers=n_encoder_layers, n_decoder_layers=n_decoder_layers,
            d_ff=d_ff, max_seq_len=max_seq_len, dropout=dropout,
            attention_dropout=attention_dropout, activation=activation,
        )
        self.vocab_size = vocab_size
        self.n_decoder_layers = n_decoder_layers

        # Encoder, decoder and output projection share one matrix
        self.embeddings = TransformerEmbeddings(vocab_size, d_model, max_seq_len, dropout)

        layer_args = (d_model, n_heads, d_ff, dropout, attention_dropout, activation)
        self.encoder_layers = nn.ModuleList([EncoderLayer(*layer_args) for _ in range(n_encoder_layers)])
        self.decoder_layers = nn.ModuleList([DecoderLayer(*layer_args) for _ in range(n_decoder_layers)])

        self.register_buffer("final_logits_bias", torch.zeros(1, vocab_size))

    def encode(
        self,
        input_ids: torch.Tensor,
        attention_mask: Optional[torch.Tensor] = None
    ) -> torch.Tensor:
        """(batch, src_len) ids -> (batch, src_len, d_model) hidden states."""
        if attention_mask is None:
            attention_mask = torch.ones_like(input_ids)
        mask = create_attention_mask(attention_mask)

        hidden = self.embeddings(input_ids)
        for layer in self.encoder_layers:
            hidden = layer(hidden, mask=mask)
        return hidden

    def decode(
        self,
        input_ids: torch.Tensor,
        encoder_attention_mask: torch.Tensor,
        encoder_hidden_states: Optional[torch.Tensor] = None,
        past: Optional[Sequence[LayerState]] = None
    ) -> Tuple[torch.Tensor, List[LayerState]]:
        """Decode new target positions.

        Args:
            input_ids: New target ids, (batch, tgt_len).
            encoder_attention_mask: Source mask, (batch, src_len).
            encoder_hidden_states: Encoder output; required without `past`.
            past: One cached state per decoder layer.

        Returns:
            (logits of shape (batch, tgt_len, vocab), one present state per layer)
        """
        if past is None and encoder_hidden_states is None:
            raise ValueError("encoder_hidden_states is required for the first decoder pass")
        if past is not None and len(past) != self.n_decoder_layers:
            raise ValueError(f"Expected cache for {self.n_decoder_layers} layers, got {len(past)}")

        past_len = 0 if past is None else past[0][0].size(2)
        self_mask = create_causal_mask(input_ids.size(1), past_len, device=input_ids.device)
        cross_mask = create_attention_mask(encoder_attention_mask)

        hidden = self.embeddings(input_ids, offset=past_len)
        presents = []
        for i, layer in enumerate(self.decoder_layers):
            hidden, present = layer(
                hidden, encoder_hidden_states, self_mask, cross_mask,
                past=None if past is None else past[i]
            )
            presents.append(present)

        logits = nn.functional.linear(hidden, self.embeddings.weight) + self.final_logits_bias
        return logits, presents

    def forward(
        self,
        src: torch.Tensor,
        tgt: torch.Tensor,
        src_mask: Optional[torch.Tensor] = None
    ) -> torch.Tensor:
        """Uncached pass over a whole target prefix; returns (batch, tgt_len, vocab) logits."""
        if src_mask is None:
            src_mask = torch.ones_like(src)
        logits, _ = self.decode(tgt, src_mask, encoder_hidden_states=self.encode(src, src_mask))
        return logits

    def get_config(self) -> Dict[str, Any]:
        return dict(self.config)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "Seq2SeqTransformer":
        return cls(**config)

    def count_parameters(self) -> int:
        return sum(p.numel() for p in self.parameters() if p.requires_grad)
