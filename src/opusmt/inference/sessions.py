"""
Model sessions with named tensor inputs and outputs.

The greedy decoder only needs three callables that take and return
dictionaries of named tensors, matching the exported Marian graphs:

    encoder:              input_ids, attention_mask
                          -> last_hidden_state
    decoder:              input_ids, encoder_hidden_states, encoder_attention_mask
                          -> logits, present.{i}.{decoder,encoder}.{key,value}
    decoder_with_past:    input_ids, encoder_attention_mask,
                          past_key_values.{i}.{decoder,encoder}.{key,value}
                          -> logits, present.{i}.decoder.{key,value}

Two implementations are provided: ONNX Runtime over exported files, and
an in-process wrapper over `opusmt.model.Seq2SeqTransformer`.

A session is not safe to run from two requests at the same time.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence, Union

import numpy as np
import onnxruntime as ort
import torch

from ..errors import ComputationError, ResourceLoadError
from ..model.transformer import Seq2SeqTransformer
from .cache import past_name, present_name

logger = logging.getLogger(__name__)

ENCODER_INPUTS = ["input_ids", "attention_mask"]
ENCODER_OUTPUTS = ["last_hidden_state"]
DECODER_INPUTS = ["input_ids", "encoder_hidden_states", "encoder_attention_mask"]


def decoder_outputs(num_layers: int) -> List[str]:
    names = ["logits"]
    for i in range(num_layers):
        for kind in ("decoder", "encoder"):
            names += [present_name(i, kind, "key"), present_name(i, kind, "value")]
    return names


def decoder_with_past_inputs(num_layers: int) -> List[str]:
    names = ["input_ids", "encoder_attention_mask"]
    for i in range(num_layers):
        for kind in ("decoder", "encoder"):
            names += [past_name(i, kind, "key"), past_name(i, kind, "value")]
    return names


def decoder_with_past_outputs(num_layers: int) -> List[str]:
    names = ["logits"]
    for i in range(num_layers):
        names += [present_name(i, "decoder", "key"), present_name(i, "decoder", "value")]
    return names


class InferenceSession(Protocol):
    """Anything that maps named input tensors to named output tensors."""

    input_names: List[str]
    output_names: List[str]

    def run(self, inputs: Dict[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
        ...


def check_inputs(name: str, expected: Sequence[str], inputs: Dict[str, torch.Tensor]):
    missing = [key for key in expected if key not in inputs]
    if missing:
        raise ComputationError(f"{name}: missing inputs {', '.join(missing)}")


class OnnxSession:
    """ONNX Runtime session over one exported graph.

    Args:
        model_path: Path to the .onnx file.
        providers: ONNX Runtime execution providers, in priority order.
    """

    def __init__(
        self,
        model_path: Union[str, Path],
        providers: Optional[List[str]] = None
    ):
        self.model_path = Path(model_path)
        if not self.model_path.is_file():
            raise ResourceLoadError(f"ONNX model not found: {self.model_path}")

        providers = providers or ["CPUExecutionProvider"]
        try:
            self.session = ort.InferenceSession(str(self.model_path), providers=providers)
        except Exception as e:
            logger.error("Failed to load ONNX model %s: %s", self.model_path, e)
            raise ResourceLoadError(f"Failed to load ONNX model from {self.model_path}") from e

        self.input_names = [i.name for i in self.session.get_inputs()]
        self.output_names = [o.name for o in self.session.get_outputs()]
        logger.info(
            "Loaded %s (%d inputs, %d outputs, providers=%s)",
            self.model_path.name, len(self.input_names), len(self.output_names),
            self.session.get_providers()
        )

    def run(self, inputs: Dict[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
        check_inputs(self.model_path.name, self.input_names, inputs)
        feed = {
            name: inputs[name].detach().cpu().numpy()
            for name in self.input_names
        }
        try:
            outputs = self.session.run(self.output_names, feed)
        except Exception as e:
            raise ComputationError(f"{self.model_path.name} rejected its inputs: {e}") from e

        return {
            name: torch.from_numpy(np.ascontiguousarray(value))
            for name, value in zip(self.output_names, outputs)
        }


class TorchSession:
    """Base class for sessions backed by an in-process Seq2SeqTransformer."""

    input_names: List[str] = []
    output_names: List[str] = []

    def __init__(self, model: Seq2SeqTransformer):
        self.model = model
        self.model.eval()

    @property
    def num_layers(self) -> int:
        return self.model.n_decoder_layers

    def run(self, inputs: Dict[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
        name = type(self).__name__
        check_inputs(name, self.input_names, inputs)
        try:
            with torch.no_grad():
                return self._run(inputs)
        except (RuntimeError, ValueError, IndexError) as e:
            raise ComputationError(f"{name} rejected its inputs: {e}") from e

    def _run(self, inputs: Dict[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
        raise NotImplementedError


class TorchEncoderSession(TorchSession):
    input_names = ENCODER_INPUTS
    output_names = ENCODER_OUTPUTS

    def _run(self, inputs):
        hidden = self.model.encode(inputs["input_ids"], inputs["attention_mask"])
        return {"last_hidden_state": hidden}


class TorchDecoderSession(TorchSession):
    input_names = DECODER_INPUTS

    def __init__(self, model: Seq2SeqTransformer):
        super().__init__(model)
        self.output_names = decoder_outputs(self.num_layers)

    def _run(self, inputs):
        logits, presents = self.model.decode(
            inputs["input_ids"],
            inputs["encoder_attention_mask"],
            encoder_hidden_states=inputs["encoder_hidden_states"],
        )
        outputs = {"logits": logits}
        for i, (self_k, self_v, cross_k, cross_v) in enumerate(presents):
            outputs[present_name(i, "decoder", "key")] = self_k
            outputs[present_name(i, "decoder", "value")] = self_v
            outputs[present_name(i, "encoder", "key")] = cross_k
            outputs[present_name(i, "encoder", "value")] = cross_v
        return outputs


class TorchDecoderWithPastSession(TorchSession):
    def __init__(self, model: Seq2SeqTransformer):
        super().__init__(model)
        self.input_names = decoder_with_past_inputs(self.num_layers)
        self.output_names = decoder_with_past_outputs(self.num_layers)

    def _run(self, inputs):
        past = [
            (
                inputs[past_name(i, "decoder", "key")],
                inputs[past_name(i, "decoder", "value")],
                inputs[past_name(i, "encoder", "key")],
                inputs[past_name(i, "encoder", "value")],
            )
            for i in range(self.num_layers)
        ]
        logits, presents = self.model.decode(
            inputs["input_ids"],
            inputs["encoder_attention_mask"],
            past=past,
        )
        outputs = {"logits": logits}
        for i, (self_k, self_v, _, _) in enumerate(presents):
            outputs[present_name(i, "decoder", "key")] = self_k
            outputs[present_name(i, "decoder", "value")] = self_v
        return outputs


def load_onnx_sessions(
    model_dir: Union[str, Path],
    encoder_file: str = "encoder_model.onnx",
    decoder_file: str = "decoder_model.onnx",
    decoder_with_past_file: str = "decoder_with_past_model.onnx",
    providers: Optional[List[str]] = None
):
    """Load the encoder, decoder and decoder-with-past graphs from a directory."""
    model_dir = Path(model_dir)
    return (
        OnnxSession(model_dir / encoder_file, providers),
        OnnxSession(model_dir / decoder_file, providers),
        OnnxSession(model_dir / decoder_with_past_file, providers),
    )


def torch_sessions(model: Seq2SeqTransformer):
    """Wrap an in-process model as (encoder, decoder, decoder_with_past) sessions."""
    return (
        TorchEncoderSession(model),
        TorchDecoderSession(model),
        TorchDecoderWithPastSession(model),
    )
