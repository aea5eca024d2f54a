#!/usr/bin/env python3
"""CLI entrypoint for parsing step programs and training rule sets."""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from standaardwerk.step_parser import extract, rules, trainer
from standaardwerk.step_parser.errors import StandaardwerkError
from standaardwerk.step_parser.pipeline import parse_document

logger = logging.getLogger("standaardwerk.step_parser.cli")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )


def load_rule_set(path: str | None) -> rules.RuleSet:
    if path:
        return rules.load_rules(Path(path).expanduser().resolve())
    return rules.ensure_rules()


def command_parse(args: argparse.Namespace) -> int:
    document = extract.extract_document(Path(args.file).expanduser())
    program = parse_document(
        document.normalized_text,
        load_rule_set(args.rules),
        indent_source=args.indent_source or document.indent_source,
        provenance=document.source,
    )
    print(json.dumps(program.to_dict(), indent=2, ensure_ascii=False))
    logger.info(
        "%s: %d steps, %d variables, %d errors, %d warnings",
        document.source,
        len(program.steps),
        len(program.variables),
        len(program.errors),
        len(program.warnings),
    )
    return 1 if program.errors else 0


def command_train(args: argparse.Namespace) -> int:
    root = Path(args.corpus).expanduser().resolve()
    if not root.exists():
        raise SystemExit(f"Corpus directory not found: {root}")
    corpus = list(extract.iter_supported_files(root))
    options = trainer.TrainerOptions.resolve(
        max_iterations=args.max_iterations,
        min_confidence=args.min_confidence,
        workers=args.workers,
    )
    output_dir = Path(args.output).expanduser().resolve() if args.output else None
    auto_trainer = trainer.AutoTrainer(
        corpus, load_rule_set(args.rules), options, output_dir=output_dir
    )
    result = auto_trainer.run()
    summary: dict[str, Any] = {
        "state": result.state.value,
        "iterations": [iteration.to_dict() for iteration in result.iterations],
        "rules_version": result.rules.version,
    }
    print(json.dumps(summary, indent=2))
    if output_dir is not None:
        rules.save_rules(output_dir / "rules.final.json", result.rules)
        logger.info("Rules written to %s", output_dir)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--rules", help="Rule set JSON file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    parse_cmd = subparsers.add_parser("parse", help="Parse one document and print the program")
    parse_cmd.add_argument("file")
    parse_cmd.add_argument("--indent-source", choices=sorted(rules.INDENT_SOURCES))
    parse_cmd.set_defaults(func=command_parse)

    train_cmd = subparsers.add_parser("train", help="Learn rules from a corpus directory")
    train_cmd.add_argument("corpus")
    train_cmd.add_argument("--output", help="Directory for rule snapshots and history")
    train_cmd.add_argument("--max-iterations", type=int)
    train_cmd.add_argument("--min-confidence", type=float)
    train_cmd.add_argument("--workers", type=int)
    train_cmd.set_defaults(func=command_train)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    try:
        return int(args.func(args))
    except StandaardwerkError as exc:
        logger.error("%s", exc)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
