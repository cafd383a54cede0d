"""In-process Marian model used in place of the exported graphs."""

from .transformer import Seq2SeqTransformer
from .layers import DecoderLayer, EncoderLayer, FeedForward, LayerState
from .attention import MultiHeadAttention, create_attention_mask, create_causal_mask
from .embeddings import SinusoidalPositionalEmbedding, TransformerEmbeddings, sinusoidal_table

__all__ = [
    "Seq2SeqTransformer",
    "DecoderLayer",
    "EncoderLayer",
    "FeedForward",
    "LayerState",
    "MultiHeadAttention",
    "create_attention_mask",
    "create_causal_mask",
    "SinusoidalPositionalEmbedding",
    "TransformerEmbeddings",
    "sinusoidal_table",
]
