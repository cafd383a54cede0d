"""Translation Inference Module."""

from .bias import BiasRule, SequenceBiasLogitsProcessor
from .cache import AttentionCache, LayerCache
from .greedy import DecodeState, GenerationState, GreedyDecoder
from .sessions import InferenceSession, OnnxSession, load_onnx_sessions, torch_sessions
from .translator import NMTTranslator, build_bias_rules

__all__ = [
    "BiasRule",
    "SequenceBiasLogitsProcessor",
    "AttentionCache",
    "LayerCache",
    "DecodeState",
    "GenerationState",
    "GreedyDecoder",
    "InferenceSession",
    "OnnxSession",
    "load_onnx_sessions",
    "torch_sessions",
    "NMTTranslator",
    "build_bias_rules",
]
