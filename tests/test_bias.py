"""Unit tests for the sequence bias logits processor."""

import math
import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import torch

from opusmt.errors import ConfigurationError, TokenRangeError
from opusmt.inference.bias import BiasRule, SequenceBiasLogitsProcessor


class TestBiasRule(unittest.TestCase):

    def test_prefix_and_last(self):
        rule = BiasRule([5, 9, 7], 2.0)
        self.assertEqual(rule.sequence_ids, (5, 9, 7))
        self.assertEqual(rule.prefix, (5, 9))
        self.assertEqual(rule.last_id, 7)

    def test_empty_rule_rejected(self):
        with self.assertRaises(ValueError):
            BiasRule((), 1.0)

    def test_positive_infinity_and_nan_rejected(self):
        for bias in (float("inf"), float("nan")):
            with self.assertRaises(ValueError):
                BiasRule((3,), bias)
        with self.assertRaises(ValueError):
            SequenceBiasLogitsProcessor([([3], float("inf")), ([5, 3], float("-inf"))])

    def test_overlapping_negative_infinity_stays_negative_infinity(self):
        processor = SequenceBiasLogitsProcessor([([3], float("-inf")), ([5, 3], float("-inf"))])
        biased = processor([[1, 5]], torch.zeros(1, 6))
        self.assertEqual(biased[0, 3].item(), float("-inf"))
        self.assertFalse(torch.isnan(biased).any())


class TestSingleTokenBias(unittest.TestCase):
    """Rules of length 1 apply at every step."""

    def test_negative_infinity_suppresses_token(self):
        processor = SequenceBiasLogitsProcessor([([1], float("-inf"))])
        scores = torch.tensor([[0.0, 9.0, 1.0, 0.5]])

        biased = processor([[1]], scores)

        self.assertTrue(math.isinf(biased[0, 1].item()))
        self.assertEqual(int(biased.argmax(dim=-1)[0]), 2)

    def test_input_not_mutated(self):
        processor = SequenceBiasLogitsProcessor([([0], 3.0)])
        scores = torch.zeros(1, 4)

        biased = processor([[1]], scores)

        self.assertTrue(torch.equal(scores, torch.zeros(1, 4)))
        self.assertIsNot(biased, scores)
        self.assertEqual(biased[0, 0].item(), 3.0)

    def test_applied_to_every_row(self):
        processor = SequenceBiasLogitsProcessor([([2], -1.5)])
        biased = processor([[0], [1]], torch.zeros(2, 3))
        self.assertTrue(torch.equal(biased[:, 2], torch.tensor([-1.5, -1.5])))

    def test_later_duplicate_wins(self):
        processor = SequenceBiasLogitsProcessor([([2], 1.0), ([3], 4.0), ([2], -2.0)])
        self.assertEqual(len(processor.rules), 2)
        biased = processor([[0]], torch.zeros(1, 4))
        self.assertEqual(biased[0, 2].item(), -2.0)
        self.assertEqual(biased[0, 3].item(), 4.0)


class TestMultiTokenBias(unittest.TestCase):
    """Rules longer than 1 depend on the generated history."""

    def test_prefix_match(self):
        processor = SequenceBiasLogitsProcessor([([5, 9], 5.0)])
        scores = torch.zeros(1, 10)

        matched = processor([[1, 5]], scores)
        unmatched = processor([[1, 6]], scores)

        self.assertEqual(matched[0, 9].item(), 5.0)
        self.assertEqual(unmatched[0, 9].item(), 0.0)

    def test_prefix_must_be_shorter_than_history(self):
        # Prefix [5, 9] has length 2: inert until the history is longer than 2
        processor = SequenceBiasLogitsProcessor([([5, 9, 7], 5.0)])
        scores = torch.zeros(1, 10)

        self.assertEqual(processor([[5, 9]], scores)[0, 7].item(), 0.0)
        self.assertEqual(processor([[1, 5, 9]], scores)[0, 7].item(), 5.0)

    def test_order_sensitive(self):
        processor = SequenceBiasLogitsProcessor([([5, 9, 7], 5.0)])
        self.assertEqual(processor([[1, 9, 5]], torch.zeros(1, 10))[0, 7].item(), 0.0)

    def test_only_suffix_counts(self):
        processor = SequenceBiasLogitsProcessor([([5, 7], 5.0)])
        self.assertEqual(processor([[5, 1, 2]], torch.zeros(1, 10))[0, 7].item(), 0.0)

    def test_per_row(self):
        processor = SequenceBiasLogitsProcessor([([5, 7], 5.0)])
        history = torch.tensor([[1, 5], [1, 6]])
        biased = processor(history, torch.zeros(2, 10))
        self.assertEqual(biased[0, 7].item(), 5.0)
        self.assertEqual(biased[1, 7].item(), 0.0)

    def test_combined_with_single_token_rule(self):
        processor = SequenceBiasLogitsProcessor([([7], 1.0), ([5, 7], 2.0)])
        biased = processor([[0, 5]], torch.zeros(1, 10))
        self.assertEqual(biased[0, 7].item(), 3.0)


class TestRangeValidation(unittest.TestCase):
    """Token ids are validated against the first score matrix."""

    def test_out_of_range_ids_deduplicated(self):
        processor = SequenceBiasLogitsProcessor([([12], -1.0), ([3, 12, 15], 1.0)])

        with self.assertRaises(TokenRangeError) as ctx:
            processor([[0]], torch.zeros(1, 10))

        self.assertEqual(ctx.exception.token_ids, [12, 15])
        self.assertEqual(ctx.exception.vocab_size, 10)
        self.assertIn("12, 15", str(ctx.exception))

    def test_negative_id_out_of_range(self):
        processor = SequenceBiasLogitsProcessor([([-1], -1.0)])
        with self.assertRaises(ConfigurationError):
            processor([[0]], torch.zeros(1, 10))

    def test_validation_is_lazy(self):
        processor = SequenceBiasLogitsProcessor([([100], -1.0)])
        self.assertIsNone(processor.vocab_size)
        processor([[0]], torch.zeros(1, 200))
        self.assertEqual(processor.vocab_size, 200)


if __name__ == '__main__':
    unittest.main()
