"""Unit tests for the model vocabulary."""

import json
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from opusmt.errors import ConfigurationError, ResourceLoadError
from opusmt.vocab import Vocabulary

VOCAB = {"<unk>": 0, "<pad>": 1, "</s>": 2, "▁hi": 3, "▁there": 4}


class TestVocabulary(unittest.TestCase):
    """Test lookups and special tokens."""

    def setUp(self):
        self.vocab = Vocabulary(VOCAB)

    def test_special_ids(self):
        self.assertEqual(self.vocab.unk_id, 0)
        self.assertEqual(self.vocab.pad_id, 1)
        self.assertEqual(self.vocab.eos_id, 2)
        self.assertEqual(self.vocab.special_tokens, ["<unk>", "</s>", "<pad>"])

    def test_lookup_unknown_token_returns_unk(self):
        self.assertEqual(self.vocab.lookup("▁hi"), 3)
        self.assertEqual(self.vocab.lookup("▁nope"), 0)

    def test_reverse_unknown_id_returns_unk_token(self):
        self.assertEqual(self.vocab.reverse(4), "▁there")
        self.assertEqual(self.vocab.reverse(999), "<unk>")
        self.assertEqual(self.vocab.reverse(-1), "<unk>")

    def test_len_and_contains(self):
        self.assertEqual(len(self.vocab), 5)
        self.assertIn("</s>", self.vocab)
        self.assertNotIn("<s>", self.vocab)

    def test_missing_special_token_fails(self):
        vocab = dict(VOCAB)
        del vocab["</s>"]
        with self.assertRaises(ConfigurationError) as ctx:
            Vocabulary(vocab)
        self.assertIn("</s>", str(ctx.exception))

    def test_custom_special_tokens(self):
        vocab = Vocabulary({"[UNK]": 5, "[PAD]": 6, "[EOS]": 7},
                           unk_token="[UNK]", eos_token="[EOS]", pad_token="[PAD]")
        self.assertEqual(vocab.special_ids, [5, 7, 6])


class TestVocabularyFile(unittest.TestCase):
    """Test loading vocab.json."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmpdir.name)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_load(self):
        path = self.dir / "vocab.json"
        path.write_text(json.dumps(VOCAB), encoding="utf-8")

        vocab = Vocabulary.from_file(path)
        self.assertEqual(vocab.lookup("▁there"), 4)

    def test_missing_file(self):
        with self.assertRaises(ResourceLoadError):
            Vocabulary.from_file(self.dir / "missing.json")

    def test_malformed_json(self):
        path = self.dir / "vocab.json"
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(ResourceLoadError):
            Vocabulary.from_file(path)

    def test_non_integer_ids(self):
        path = self.dir / "vocab.json"
        path.write_text(json.dumps({"<unk>": "0", "<pad>": 1, "</s>": 2}), encoding="utf-8")
        with self.assertRaises(ResourceLoadError):
            Vocabulary.from_file(path)

    def test_missing_special_in_file_is_configuration_error(self):
        path = self.dir / "vocab.json"
        path.write_text(json.dumps({"<unk>": 0, "</s>": 2}), encoding="utf-8")
        with self.assertRaises(ConfigurationError):
            Vocabulary.from_file(path)


if __name__ == '__main__':
    unittest.main()
