"""Command-line interface for auto-task."""

import argparse
import logging
import sys
from typing import List, Optional

from openai import OpenAIError

from . import __version__
from .config import apply_overrides, load_config
from .errors import AutoTaskError
from .reporter import LOGGER, ConsoleReporter
from .runner import Runner

EXIT_BUDGET_EXHAUSTED = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="auto-task",
        description="Execute a task described in natural language, one model-proposed action at a time.",
    )
    parser.add_argument("task", help="Task description")
    parser.add_argument("-c", "--config", help="Path to a YAML config file")
    parser.add_argument("-m", "--model", help="Name of the model to use")
    parser.add_argument("-w", "--workdir", help="Working directory the task runs in")
    parser.add_argument("--max-steps", type=int, help="Maximum number of steps the task is allowed to take")
    parser.add_argument("--debug", metavar="FILE", help="Write debug log to a file")
    parser.add_argument("-v", "--verbose", action="store_true", default=None,
                        help="Show rejected model replies")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def setup_debug_log(path: Optional[str]) -> None:
    if not path:
        return
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
    LOGGER.addHandler(handler)
    LOGGER.setLevel(logging.DEBUG)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_debug_log(args.debug)

    try:
        cfg = apply_overrides(
            load_config(args.config),
            model=args.model,
            workdir=args.workdir,
            max_steps=args.max_steps,
            verbose=args.verbose,
        )
        runner = Runner.from_config(cfg, reporter=ConsoleReporter(verbose=cfg.verbose))
        result = runner.run(args.task)
    except (AutoTaskError, OpenAIError, OSError, ValueError) as exc:
        LOGGER.debug("fatal: %r", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 0 if result.succeeded else EXIT_BUDGET_EXHAUSTED


if __name__ == "__main__":
    raise SystemExit(main())
