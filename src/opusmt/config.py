"""
Translator Configuration Module.

Defines the settings for tokenization, greedy decoding and model sessions.
Uses dataclasses for type safety and easy JSON serialization.
"""

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import List, Optional, Tuple, Union
import json

from .errors import ResourceLoadError


@dataclass
class TokenizerConfig:
    """Marian tokenizer configuration.

    The special token strings must all be present in vocab.json,
    otherwise the tokenizer refuses to load.
    """

    # Special tokens
    unk_token: str = "<unk>"
    eos_token: str = "</s>"
    pad_token: str = "<pad>"

    # Source inputs longer than this are truncated (EOS kept last)
    model_max_length: int = 512

    # File names inside a model directory
    source_spm: str = "source.spm"
    target_spm: str = "target.spm"
    vocab_file: str = "vocab.json"

    def __post_init__(self):
        assert self.model_max_length > 0, \
            f"model_max_length ({self.model_max_length}) must be positive"


@dataclass
class DecodingConfig:
    """Greedy decoding configuration.

    max_length bounds the number of decoder steps, the cold step included,
    so at most max_length tokens are produced. 0 and 1 produce nothing.
    """

    max_length: int = 50

    # Decoder depth of the exported graphs (Marian base: 6)
    num_layers: int = 6

    # None means "use the pad id", the Marian convention
    decoder_start_token_id: Optional[int] = None

    # Bias the pad id to -inf so it is never generated as content
    suppress_pad: bool = True

    # Extra (token-id-sequence, bias) pairs
    sequence_bias: List[Tuple[List[int], float]] = field(default_factory=list)

    def __post_init__(self):
        assert self.max_length >= 0, \
            f"max_length ({self.max_length}) must not be negative"
        assert self.num_layers > 0, \
            f"num_layers ({self.num_layers}) must be positive"


@dataclass
class SessionConfig:
    """ONNX Runtime session configuration."""

    encoder_file: str = "encoder_model.onnx"
    decoder_file: str = "decoder_model.onnx"
    decoder_with_past_file: str = "decoder_with_past_model.onnx"

    # "CUDAExecutionProvider" can be listed first when a GPU build is installed
    providers: List[str] = field(default_factory=lambda: ["CPUExecutionProvider"])


@dataclass
class TranslatorConfig:
    """Complete translator configuration."""

    tokenizer: TokenizerConfig = field(default_factory=TokenizerConfig)
    decoding: DecodingConfig = field(default_factory=DecodingConfig)
    session: SessionConfig = field(default_factory=SessionConfig)

    def save(self, path: Union[str, Path]):
        """Save configuration to JSON file."""
        config_dict = {
            "tokenizer": asdict(self.tokenizer),
            "decoding": asdict(self.decoding),
            "session": asdict(self.session),
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config_dict, f, indent=2, ensure_ascii=False)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "TranslatorConfig":
        """Load configuration from JSON file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                config_dict = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ResourceLoadError(f"Failed to load translator config from {path}") from e

        decoding = dict(config_dict.get("decoding", {}))
        decoding["sequence_bias"] = [
            (list(ids), float(bias)) for ids, bias in decoding.get("sequence_bias", [])
        ]

        return cls(
            tokenizer=TokenizerConfig(**config_dict.get("tokenizer", {})),
            decoding=DecodingConfig(**decoding),
            session=SessionConfig(**config_dict.get("session", {})),
        )


@dataclass
class MarianConfig:
    """Subset of an exported Marian `config.json` used by the pipeline.

    Only the fields the tokenizer and greedy decoder need are read; this
    is not a replacement for the full model configuration.
    """

    vocab_size: int
    eos_token_id: int
    pad_token_id: int
    decoder_start_token_id: int
    decoder_layers: int = 6
    max_length: int = 512
    bad_words_ids: List[List[int]] = field(default_factory=list)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "MarianConfig":
        """Load a MarianConfig from the model's config.json."""
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return cls(
                vocab_size=data["vocab_size"],
                eos_token_id=data["eos_token_id"],
                pad_token_id=data["pad_token_id"],
                decoder_start_token_id=data.get(
                    "decoder_start_token_id", data["pad_token_id"]
                ),
                decoder_layers=data.get("decoder_layers", 6),
                max_length=data.get("max_length", 512),
                bad_words_ids=data.get("bad_words_ids") or [],
            )
        except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
            raise ResourceLoadError(f"Failed to load model config from {path}") from e


def get_default_config() -> TranslatorConfig:
    """Configuration matching the opus-mt ONNX exports."""
    return TranslatorConfig()


def get_debug_config() -> TranslatorConfig:
    """Small limits for debugging and tests."""
    config = TranslatorConfig()
    config.tokenizer.model_max_length = 16
    config.decoding.max_length = 8
    config.decoding.num_layers = 2
    return config
