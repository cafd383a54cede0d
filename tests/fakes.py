"""Test doubles: a fake SentencePiece processor and scripted model sessions."""

import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import torch

from opusmt.errors import ComputationError
from opusmt.inference.cache import past_name, present_name
from opusmt.tokenizer import MarianTokenizer
from opusmt.vocab import Vocabulary

# Vocabulary from the end-to-end scenario
VOCAB = {"<unk>": 0, "<pad>": 1, "</s>": 2, "▁hi": 3, "▁there": 4}
UNK_ID, PAD_ID, EOS_ID, HI_ID, THERE_ID = 0, 1, 2, 3, 4

N_HEADS = 2
HEAD_DIM = 4
HIDDEN = N_HEADS * HEAD_DIM


class FakeSentencePiece:
    """Whitespace segmenter exposing the SentencePieceProcessor methods we use.

    Every word becomes one piece prefixed with the word-start marker.
    Piece ids are positions in `pieces`; unknown pieces map to id 0.
    """

    def __init__(self, pieces: Sequence[str]):
        self.pieces = list(pieces)
        self.piece_to_id = {p: i for i, p in enumerate(self.pieces)}

    def EncodeAsPieces(self, text: str) -> List[str]:
        return ["▁" + word for word in text.split()]

    def PieceToId(self, piece: str) -> int:
        return self.piece_to_id.get(piece, 0)

    def IdToPiece(self, idx: int) -> str:
        return self.pieces[idx]

    def DecodeIds(self, ids: Sequence[int]) -> str:
        text = "".join(self.pieces[i] for i in ids)
        return text.replace("▁", " ").lstrip(" ")

    def GetPieceSize(self) -> int:
        return len(self.pieces)


def make_tokenizer(vocab: Optional[Dict[str, int]] = None, model_max_length: int = 512) -> MarianTokenizer:
    """Tokenizer over the scenario vocabulary with fake segmenters.

    The target segmenter numbers pieces differently from vocab.json on
    purpose, like real Marian exports.
    """
    vocab = Vocabulary(vocab or VOCAB)
    source_sp = FakeSentencePiece(["<unk>", "▁hi", "▁there", "▁friend"])
    target_sp = FakeSentencePiece(["<unk>", "▁there", "▁hi", "▁friend"])
    return MarianTokenizer(source_sp, target_sp, vocab, model_max_length=model_max_length)


def logits_for(token_id: int, vocab_size: int, runner_up: Optional[int] = None) -> torch.Tensor:
    """A (1, 1, vocab) logit tensor whose argmax is `token_id`."""
    logits = torch.zeros(1, 1, vocab_size)
    logits[0, 0, token_id] = 10.0
    if runner_up is not None:
        logits[0, 0, runner_up] = 5.0
    return logits


class Script:
    """Shared step counter driving the scripted decoder sessions.

    `steps` holds one entry per decoder call: either a token id that
    becomes the argmax, or a ready-made (1, 1, vocab) logits tensor.
    After the script runs out EOS is emitted.
    """

    def __init__(self, steps: Sequence, vocab_size: int = len(VOCAB), eos_id: int = EOS_ID):
        self.steps = list(steps)
        self.vocab_size = vocab_size
        self.eos_id = eos_id
        self.calls = 0

    def next_logits(self) -> torch.Tensor:
        step = self.steps[self.calls] if self.calls < len(self.steps) else self.eos_id
        self.calls += 1
        if isinstance(step, torch.Tensor):
            return step
        return logits_for(step, self.vocab_size)


class ScriptedEncoder:
    input_names = ["input_ids", "attention_mask"]
    output_names = ["last_hidden_state"]

    def __init__(self):
        self.calls = []

    def run(self, inputs):
        self.calls.append(inputs)
        src_len = inputs["input_ids"].size(1)
        return {"last_hidden_state": torch.randn(1, src_len, HIDDEN)}


class ScriptedDecoder:
    """Cold decoder: returns all four cache tensors for every layer."""

    input_names = ["input_ids", "encoder_hidden_states", "encoder_attention_mask"]

    def __init__(self, script: Script, num_layers: int = 6, drop_output: Optional[str] = None):
        self.script = script
        self.num_layers = num_layers
        self.drop_output = drop_output
        self.calls = []
        self.last_outputs = None

    def run(self, inputs):
        self.calls.append(inputs)
        src_len = inputs["encoder_hidden_states"].size(1)
        outputs = {"logits": self.script.next_logits()}
        for i in range(self.num_layers):
            outputs[present_name(i, "decoder", "key")] = torch.randn(1, N_HEADS, 1, HEAD_DIM)
            outputs[present_name(i, "decoder", "value")] = torch.randn(1, N_HEADS, 1, HEAD_DIM)
            outputs[present_name(i, "encoder", "key")] = torch.randn(1, N_HEADS, src_len, HEAD_DIM)
            outputs[present_name(i, "encoder", "value")] = torch.randn(1, N_HEADS, src_len, HEAD_DIM)
        if self.drop_output is not None:
            del outputs[self.drop_output]
        self.last_outputs = outputs
        return outputs


class ScriptedDecoderWithPast:
    """Warm decoder: extends the self-attention cache by one position."""

    def __init__(self, script: Script, num_layers: int = 6, fail_on_call: Optional[int] = None):
        self.script = script
        self.num_layers = num_layers
        self.fail_on_call = fail_on_call
        self.calls = []
        self.input_names = ["input_ids", "encoder_attention_mask"] + [
            past_name(i, kind, part)
            for i in range(num_layers)
            for kind in ("decoder", "encoder")
            for part in ("key", "value")
        ]

    def run(self, inputs):
        self.calls.append(dict(inputs))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise ComputationError("scripted failure")

        outputs = {"logits": self.script.next_logits()}
        for i in range(self.num_layers):
            for part in ("key", "value"):
                past = inputs[past_name(i, "decoder", part)]
                new = torch.randn(1, N_HEADS, 1, HEAD_DIM)
                outputs[present_name(i, "decoder", part)] = torch.cat([past, new], dim=2)
        return outputs


def scripted_sessions(steps: Sequence, num_layers: int = 6, vocab_size: int = len(VOCAB)):
    """(encoder, decoder, decoder_with_past, script) sharing one script."""
    script = Script(steps, vocab_size=vocab_size)
    return (
        ScriptedEncoder(),
        ScriptedDecoder(script, num_layers),
        ScriptedDecoderWithPast(script, num_layers),
        script,
    )
