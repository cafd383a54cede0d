#!/usr/bin/env python3
"""
CLI Translation Tool.

Translate text with an exported Marian model directory (source.spm,
target.spm, vocab.json and the three ONNX graphs).

Usage:
    python scripts/translate.py --model-dir models/opus-mt-id-en --text "halo apa kabar"
    python scripts/translate.py --model-dir models/opus-mt-id-en --file input.txt --output translations.txt
    python scripts/translate.py --model-dir models/opus-mt-id-en --interactive
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from opusmt.config import TranslatorConfig
from opusmt.errors import TranslationError
from opusmt.inference import NMTTranslator

logger = logging.getLogger("translate")


def parse_args():
    parser = argparse.ArgumentParser(description="Translate text with an exported Marian model")

    # Model
    parser.add_argument("--model-dir", type=str, required=True,
                       help="Directory with spm models, vocab.json and ONNX graphs")
    parser.add_argument("--config", type=str, default=None,
                       help="Translator config JSON (see TranslatorConfig.save)")

    # Input
    input_group = parser.add_mutually_exclusive_group(required=True)
    input_group.add_argument("--text", type=str,
                            help="Text to translate")
    input_group.add_argument("--file", type=str,
                            help="File with texts to translate (one per line)")
    input_group.add_argument("--interactive", action="store_true",
                            help="Interactive translation mode")

    # Output
    parser.add_argument("--output", type=str, default=None,
                       help="Output file for translations")

    # Decoding
    parser.add_argument("--max-length", type=int, default=None,
                       help="Maximum number of decoder steps (0 or 1 gives an empty translation)")

    parser.add_argument("--log-level", type=str, default="WARNING",
                       help="Logging level (DEBUG, INFO, WARNING, ...)")

    return parser.parse_args()


def load_translator(args) -> NMTTranslator:
    """Load config and create translator."""
    config = TranslatorConfig.load(args.config) if args.config else TranslatorConfig()
    if args.max_length is not None:
        config.decoding.max_length = args.max_length

    return NMTTranslator.from_pretrained(args.model_dir, config=config)


def translate_text(translator, args):
    """Translate a single text."""
    result = translator.translate(args.text)

    print(f"Source: {args.text}")
    print(f"Translation: {result}")


def translate_file(translator, args):
    """Translate texts from a file, one line at a time."""
    with open(args.file, 'r', encoding='utf-8') as f:
        texts = [line.strip() for line in f if line.strip()]

    logger.info("Translating %d lines", len(texts))
    translations = translator.translate_many(texts)

    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            for t in translations:
                f.write(t + '\n')
        logger.info("Translations saved to %s", args.output)
    else:
        for src, tgt in zip(texts, translations):
            print(f"[SRC] {src}")
            print(f"[TGT] {tgt}")
            print()


def interactive_mode(translator, args):
    """Interactive translation."""
    print("Enter text to translate. Type 'quit' to exit.\n")

    while True:
        try:
            text = input("> ").strip()
        except (KeyboardInterrupt, EOFError):
            print()
            break

        if not text:
            continue
        if text.lower() in ('quit', 'exit', 'q'):
            break

        try:
            print(f"< {translator.translate(text)}\n")
        except TranslationError as e:
            logger.error("Translation failed: %s", e)


def main():
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        translator = load_translator(args)
    except TranslationError as e:
        logger.error("Could not load model: %s", e)
        return 1

    if args.text:
        translate_text(translator, args)
    elif args.file:
        translate_file(translator, args)
    elif args.interactive:
        interactive_mode(translator, args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
