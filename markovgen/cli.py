#!/usr/bin/env python3
"""
Train a Markov model from a token file and sample from saved models.

    markovgen train names.txt -o models/names.json
    markovgen sample models/names.json -n 20 --seed 7
"""

import argparse
import sys
from pathlib import Path

from markovgen.services.markov import InvalidModel, MarkovError, MarkovModel, train_from_sequence
from markovgen.utils.logger import setup_logger

logger = setup_logger("markovgen.cli")


def read_tokens(path: Path):
    """One token per line; blank lines are skipped."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return [line.rstrip("\r\n") for line in f if line.strip()]
    except UnicodeDecodeError as e:
        raise InvalidModel(f"{path} is not valid UTF-8: {e}") from e


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="markovgen", description="First-order Markov sequence generator")
    sub = parser.add_subparsers(dest="command", required=True)

    train = sub.add_parser("train", help="Build a model from a token file")
    train.add_argument("input", type=Path, help="Token file, one token per line")
    train.add_argument("-o", "--output", type=Path, required=True, help="Where to write the model JSON")

    sample = sub.add_parser("sample", help="Sample tokens from a saved model")
    sample.add_argument("model", type=Path, help="Model JSON written by 'train'")
    sample.add_argument("-n", "--count", type=int, default=10, help="Number of tokens to emit")
    sample.add_argument("--seed", type=int, default=None, help="Random seed for reproducible output")
    sample.add_argument("--reset-every", type=int, default=0,
                        help="Start a fresh chain every K tokens (0 = never)")

    return parser.parse_args(argv)


def cmd_train(args) -> int:
    tokens = read_tokens(args.input)
    model = train_from_sequence(tokens)
    model.save(args.output)
    logger.info(
        f"[Markov] Trained on {len(tokens)} tokens: {len(model)} states, "
        f"{len(model.live_states())} live -> {args.output}"
    )
    return 0


def cmd_sample(args) -> int:
    model = MarkovModel.load(args.model, rng=args.seed)
    for i in range(args.count):
        if args.reset_every and i and i % args.reset_every == 0:
            model.initialize()
        print(model.next())
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        if args.command == "train":
            return cmd_train(args)
        return cmd_sample(args)
    except (MarkovError, OSError) as e:
        logger.error(f"[ERR] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
