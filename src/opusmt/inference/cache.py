"""
Attention cache for incremental decoding.

Each decoder layer keeps four tensors of shape (batch, heads, len, head_dim):
- decoder self-attention key/value, one position longer after every step
- encoder (cross) attention key/value, computed by the cold decoder pass
  and shared unchanged by every later step
"""

from typing import Dict, Iterator, List, NamedTuple, Sequence

import torch


def present_name(layer_idx: int, kind: str, part: str) -> str:
    """Output name of a cache tensor, e.g. present.0.decoder.key."""
    return f"present.{layer_idx}.{kind}.{part}"


def past_name(layer_idx: int, kind: str, part: str) -> str:
    """Input name of a cache tensor, e.g. past_key_values.0.encoder.value."""
    return f"past_key_values.{layer_idx}.{kind}.{part}"


class LayerCache(NamedTuple):
    """Cached attention state of one decoder layer."""

    decoder_key: torch.Tensor
    decoder_value: torch.Tensor
    encoder_key: torch.Tensor
    encoder_value: torch.Tensor


class AttentionCache:
    """Per-layer cache owned by a single in-flight request.

    Tensors coming out of a session call are cloned before they are stored,
    so the cache never aliases a session's output buffers.
    """

    def __init__(self, layers: Sequence[LayerCache]):
        self.layers: List[LayerCache] = list(layers)

    @classmethod
    def from_cold_outputs(cls, outputs: Dict[str, torch.Tensor], num_layers: int) -> "AttentionCache":
        """Build the initial cache from all four present tensors per layer."""
        layers = []
        for i in range(num_layers):
            layers.append(LayerCache(
                decoder_key=outputs[present_name(i, "decoder", "key")].clone(),
                decoder_value=outputs[present_name(i, "decoder", "value")].clone(),
                encoder_key=outputs[present_name(i, "encoder", "key")].clone(),
                encoder_value=outputs[present_name(i, "encoder", "value")].clone(),
            ))
        return cls(layers)

    def advance(self, outputs: Dict[str, torch.Tensor]) -> "AttentionCache":
        """Return the cache for the next step from a warm decoder call.

        Self-attention entries are replaced by clones of the new present
        tensors; cross-attention entries are the same objects as before.
        The previous self-attention tensors are dropped from this cache.
        """
        layers = []
        for i, layer in enumerate(self.layers):
            layers.append(LayerCache(
                decoder_key=outputs[present_name(i, "decoder", "key")].clone(),
                decoder_value=outputs[present_name(i, "decoder", "value")].clone(),
                encoder_key=layer.encoder_key,
                encoder_value=layer.encoder_value,
            ))
        self.layers = []
        return AttentionCache(layers)

    def as_past_inputs(self) -> Dict[str, torch.Tensor]:
        """Named inputs for the decoder-with-past session."""
        inputs = {}
        for i, layer in enumerate(self.layers):
            inputs[past_name(i, "decoder", "key")] = layer.decoder_key
            inputs[past_name(i, "decoder", "value")] = layer.decoder_value
            inputs[past_name(i, "encoder", "key")] = layer.encoder_key
            inputs[past_name(i, "encoder", "value")] = layer.encoder_value
        return inputs

    @property
    def num_layers(self) -> int:
        return len(self.layers)

    @property
    def sequence_length(self) -> int:
        """Number of decoder positions held in the self-attention cache."""
        if not self.layers:
            return 0
        return self.layers[0].decoder_key.size(-2)

    def release(self):
        """Drop every tensor reference."""
        self.layers = []

    def __len__(self) -> int:
        return len(self.layers)

    def __iter__(self) -> Iterator[LayerCache]:
        return iter(self.layers)

    def __getitem__(self, idx: int) -> LayerCache:
        return self.layers[idx]
