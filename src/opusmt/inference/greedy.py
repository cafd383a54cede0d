"""
Greedy Decoding over exported encoder/decoder sessions.

One request runs through:
    ENCODING     encoder pass over the source ids
    COLD_DECODE  first decoder pass, produces the full attention cache
    WARM_DECODE  decoder-with-past passes, one token each, reusing the cache
    DONE         cache released, generated ids returned

Selection is plain argmax (lowest id wins on ties) after the optional
logits processor. No randomness is involved.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import torch

from ..errors import ComputationError
from ..tokenizer import EncodedInput
from .cache import AttentionCache, present_name
from .sessions import InferenceSession

logger = logging.getLogger(__name__)

LogitsProcessor = Callable[[torch.Tensor, torch.Tensor], torch.Tensor]


class DecodeState(Enum):
    ENCODING = "encoding"
    COLD_DECODE = "cold_decode"
    WARM_DECODE = "warm_decode"
    DONE = "done"


@dataclass
class GenerationState:
    """Token history of one request.

    `history` starts with the decoder start token, which is not part of
    the output.
    """

    history: List[int] = field(default_factory=list)
    state: DecodeState = DecodeState.ENCODING
    steps: int = 0

    @property
    def last_id(self) -> int:
        return self.history[-1]

    @property
    def generated(self) -> List[int]:
        return self.history[1:]

    def append(self, token_id: int):
        self.history.append(token_id)


class GreedyDecoder:
    """Greedy decoder with encoder/decoder attention caching.

    Sessions are reused across requests but must not be shared by two
    requests at the same time. All per-request state (history and cache)
    lives inside `generate`.

    Args:
        encoder_session: Encoder graph.
        decoder_session: Decoder graph without cache inputs (cold pass).
        decoder_with_past_session: Decoder graph with cache inputs (warm passes).
        eos_id: End of sequence token ID.
        decoder_start_token_id: First decoder input (the pad id for Marian).
        num_layers: Number of decoder layers in the cache.
        logits_processor: Optional `(history, scores) -> scores` callable.
        device: Device for the input tensors.
    """

    def __init__(
        self,
        encoder_session: InferenceSession,
        decoder_session: InferenceSession,
        decoder_with_past_session: InferenceSession,
        eos_id: int,
        decoder_start_token_id: int,
        num_layers: int = 6,
        logits_processor: Optional[LogitsProcessor] = None,
        device: Optional[torch.device] = None
    ):
        self.encoder_session = encoder_session
        self.decoder_session = decoder_session
        self.decoder_with_past_session = decoder_with_past_session
        self.eos_id = eos_id
        self.decoder_start_token_id = decoder_start_token_id
        self.num_layers = num_layers
        self.logits_processor = logits_processor
        self.device = device or torch.device('cpu')

        self._cold_outputs = ["logits"] + [
            present_name(i, kind, part)
            for i in range(num_layers)
            for kind in ("decoder", "encoder")
            for part in ("key", "value")
        ]
        self._warm_outputs = ["logits"] + [
            present_name(i, "decoder", part)
            for i in range(num_layers)
            for part in ("key", "value")
        ]

    def _run(
        self,
        session: InferenceSession,
        inputs: Dict[str, torch.Tensor],
        required: List[str],
        what: str
    ) -> Dict[str, torch.Tensor]:
        outputs = session.run(inputs)
        missing = [name for name in required if name not in outputs]
        if missing:
            raise ComputationError(f"{what} did not return {', '.join(missing)}")
        return outputs

    def _select(self, generation: GenerationState, logits: torch.Tensor) -> int:
        """Bias the last-position logits and pick the argmax."""
        if logits.dim() != 3:
            raise ComputationError(
                f"Expected logits of shape (batch, seq_len, vocab), got {tuple(logits.shape)}"
            )
        next_token_logits = logits[:, -1, :]

        if self.logits_processor is not None:
            history = torch.tensor([generation.history], dtype=torch.long, device=next_token_logits.device)
            next_token_logits = self.logits_processor(history, next_token_logits)

        # torch.argmax returns the first maximal index
        return int(next_token_logits.argmax(dim=-1)[0])

    def _token_input(self, token_id: int) -> torch.Tensor:
        return torch.tensor([[token_id]], dtype=torch.long, device=self.device)

    @torch.no_grad()
    def generate(self, encoded: EncodedInput, max_length: int) -> GenerationState:
        """Run greedy decoding for one source sequence.

        Args:
            encoded: Tokenized source.
            max_length: Maximum number of decoder steps, the cold step included.
                Values of 0 and 1 run no session and produce nothing.

        Returns:
            The final GenerationState (state DONE).
        """
        generation = GenerationState(history=[self.decoder_start_token_id])
        if max_length <= 1:
            generation.state = DecodeState.DONE
            return generation

        input_ids, attention_mask = encoded.to_tensors(self.device)
        cache: Optional[AttentionCache] = None

        try:
            # Encoder pass (done once)
            encoder_outputs = self._run(
                self.encoder_session,
                {"input_ids": input_ids, "attention_mask": attention_mask},
                ["last_hidden_state"],
                "encoder"
            )
            encoder_hidden_states = encoder_outputs["last_hidden_state"]
            if encoder_hidden_states.dim() != 3:
                raise ComputationError(
                    "Expected encoder output of shape (batch, src_len, hidden), "
                    f"got {tuple(encoder_hidden_states.shape)}"
                )

            # Cold decoder pass builds the whole cache
            generation.state = DecodeState.COLD_DECODE
            outputs = self._run(
                self.decoder_session,
                {
                    "input_ids": self._token_input(generation.last_id),
                    "encoder_hidden_states": encoder_hidden_states,
                    "encoder_attention_mask": attention_mask,
                },
                self._cold_outputs,
                "decoder"
            )
            cache = AttentionCache.from_cold_outputs(outputs, self.num_layers)
            next_id = self._select(generation, outputs["logits"])
            generation.steps += 1
            del outputs

            while next_id != self.eos_id:
                generation.append(next_id)
                if generation.steps >= max_length:
                    break

                # Warm pass: only the last token, cross-attention state carried over
                generation.state = DecodeState.WARM_DECODE
                inputs = {
                    "input_ids": self._token_input(generation.last_id),
                    "encoder_attention_mask": attention_mask,
                }
                inputs.update(cache.as_past_inputs())
                outputs = self._run(
                    self.decoder_with_past_session, inputs, self._warm_outputs, "decoder_with_past"
                )
                del inputs
                cache = cache.advance(outputs)
                next_id = self._select(generation, outputs["logits"])
                generation.steps += 1
                del outputs

                logger.debug("step %d: selected id %d", generation.steps, next_id)
        finally:
            if cache is not None:
                cache.release()
            generation.state = DecodeState.DONE

        logger.debug(
            "Generated %d tokens in %d decoder steps", len(generation.generated), generation.steps
        )
        return generation

    def decode(self, encoded: EncodedInput, max_length: int) -> List[int]:
        """Return generated ids without the start token and EOS."""
        return self.generate(encoded, max_length).generated
