"""
High-Level Translation API.

Provides a simple interface for translation that handles:
- Tokenization
- Greedy decoding with sequence bias
- Detokenization
- Loading everything from an exported model directory
"""

import copy
import logging
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

import torch

from ..config import DecodingConfig, MarianConfig, TranslatorConfig
from ..errors import ConfigurationError
from ..tokenizer import MarianTokenizer
from .bias import BiasRule, SequenceBiasLogitsProcessor, as_bias_rules
from .greedy import GreedyDecoder, LogitsProcessor
from .sessions import InferenceSession, load_onnx_sessions

logger = logging.getLogger(__name__)


def build_bias_rules(
    config: DecodingConfig,
    pad_id: int,
    bad_words_ids: Optional[Iterable[Sequence[int]]] = None
) -> List[BiasRule]:
    """Collect the bias rules implied by the decoding config.

    - pad is suppressed with -inf when `suppress_pad` is set
    - every bad-words sequence becomes a -inf rule
    - configured `sequence_bias` pairs come last and win on duplicates
    """
    rules = []
    if config.suppress_pad:
        rules.append(BiasRule((pad_id,), float("-inf")))
    for ids in bad_words_ids or []:
        rules.append(BiasRule(tuple(ids), float("-inf")))
    rules.extend(as_bias_rules(config.sequence_bias))
    return rules


class NMTTranslator:
    """Text in, text out translator.

    Requests are serialised: the model sessions are reused across calls
    but never run by two requests at once. Use one translator per thread
    for concurrent throughput.

    Args:
        tokenizer: MarianTokenizer instance.
        encoder_session: Encoder graph.
        decoder_session: Decoder graph (first step).
        decoder_with_past_session: Decoder graph with cache inputs.
        config: Decoding configuration.
        logits_processor: Overrides the processor built from `config`.
        device: Device for input tensors.
    """

    def __init__(
        self,
        tokenizer: MarianTokenizer,
        encoder_session: InferenceSession,
        decoder_session: InferenceSession,
        decoder_with_past_session: InferenceSession,
        config: Optional[DecodingConfig] = None,
        logits_processor: Optional[LogitsProcessor] = None,
        device: Optional[torch.device] = None
    ):
        self.tokenizer = tokenizer
        self.config = config or DecodingConfig()
        self.max_length = self.config.max_length

        if logits_processor is None:
            rules = build_bias_rules(self.config, tokenizer.pad_id)
            logits_processor = SequenceBiasLogitsProcessor(rules) if rules else None
        self.logits_processor = logits_processor

        start_id = self.config.decoder_start_token_id
        if start_id is None:
            start_id = tokenizer.pad_id

        self.decoder = GreedyDecoder(
            encoder_session=encoder_session,
            decoder_session=decoder_session,
            decoder_with_past_session=decoder_with_past_session,
            eos_id=tokenizer.eos_id,
            decoder_start_token_id=start_id,
            num_layers=self.config.num_layers,
            logits_processor=logits_processor,
            device=device
        )
        self._lock = threading.Lock()

    def translate(self, text: str, max_length: Optional[int] = None) -> str:
        """Translate a single text.

        Args:
            text: Source text to translate.
            max_length: Decoder length bound; defaults to the configured one.

        Returns:
            Translated text ("" when nothing was generated).
        """
        if max_length is None:
            max_length = self.max_length

        encoded = self.tokenizer.encode(text)
        with self._lock:
            ids = self.decoder.decode(encoded, max_length)

        return self.tokenizer.decode(ids, skip_special_tokens=True)

    def translate_many(self, texts: Iterable[str], max_length: Optional[int] = None) -> List[str]:
        """Translate texts one after another."""
        return [self.translate(text, max_length=max_length) for text in texts]

    @classmethod
    def from_pretrained(
        cls,
        model_dir: Union[str, Path],
        config: Optional[TranslatorConfig] = None,
        device: Optional[torch.device] = None
    ) -> "NMTTranslator":
        """Load tokenizer, model config and ONNX sessions from a directory.

        Expected files: source.spm, target.spm, vocab.json, the three
        ONNX graphs, and optionally config.json (decoder start token,
        layer count and bad words).

        Raises:
            ResourceLoadError: A required file is missing or unreadable.
            ConfigurationError: The files disagree with each other.
        """
        model_dir = Path(model_dir)
        config = copy.deepcopy(config) if config else TranslatorConfig()

        tokenizer = MarianTokenizer.from_directory(model_dir, config.tokenizer)

        bad_words_ids = []
        marian_config_path = model_dir / "config.json"
        if marian_config_path.is_file():
            marian_config = MarianConfig.from_file(marian_config_path)
            if marian_config.pad_token_id != tokenizer.pad_id:
                raise ConfigurationError(
                    f"config.json pad_token_id ({marian_config.pad_token_id}) does not "
                    f"match vocab.json ({tokenizer.pad_id})"
                )
            if config.decoding.decoder_start_token_id is None:
                config.decoding.decoder_start_token_id = marian_config.decoder_start_token_id
            config.decoding.num_layers = marian_config.decoder_layers
            bad_words_ids = marian_config.bad_words_ids

        sessions = load_onnx_sessions(
            model_dir,
            encoder_file=config.session.encoder_file,
            decoder_file=config.session.decoder_file,
            decoder_with_past_file=config.session.decoder_with_past_file,
            providers=config.session.providers
        )

        rules = build_bias_rules(config.decoding, tokenizer.pad_id, bad_words_ids)
        processor = SequenceBiasLogitsProcessor(rules) if rules else None

        logger.info("Translator loaded from %s", model_dir)
        return cls(
            tokenizer, *sessions,
            config=config.decoding,
            logits_processor=processor,
            device=device
        )
