"""Command-line entry point for running test artifacts."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console

from .config import RunnerSettings
from .discovery import NameFilter
from .runner import Runner


class CLIApplication:
    """Command-line entry point: ``runtests targets.json [filter ...]``."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self.parser = argparse.ArgumentParser(
            prog="runtests",
            description="Run the test fixtures in the modules listed by a targets file.",
            epilog="Filters are ANDed together - to OR, use a pipe in a regex.",
        )
        self.parser.add_argument(
            "targets",
            help='JSON array of targets, e.g. [{"module": "tests/test_api.py"}].',
        )
        self.parser.add_argument(
            "filters",
            nargs="*",
            help="Case-insensitive regexes matched against <module>.<Class>.<method>.",
        )
        self.parser.add_argument(
            "--log",
            dest="log_path",
            help="Shared output log (default: testoutput.log, or RUNTESTS_LOG_PATH).",
        )
        self.parser.add_argument(
            "--trace",
            dest="trace_output",
            nargs="?",
            const="traces.jsonl",
            help="Write one span per invocation to a JSONL file (default: traces.jsonl).",
        )
        self.parser.add_argument(
            "-v",
            "--verbose",
            action="store_true",
            help="Enable debug logging.",
        )

    def run(self, argv: Sequence[str] | None = None) -> int:
        load_dotenv(Path.cwd() / ".env")
        args = self.parser.parse_args(argv)
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING,
            format="%(levelname)s %(name)s: %(message)s",
        )

        overrides = {}
        if args.log_path:
            overrides["log_path"] = Path(args.log_path)
        if args.trace_output:
            overrides["trace"] = True
            overrides["trace_output"] = Path(args.trace_output)
        settings = RunnerSettings(**overrides)

        if args.filters:
            self.console.print("Using filters:")
            for pattern in args.filters:
                self.console.print(pattern, markup=False, highlight=False)

        runner = Runner(
            self.console,
            settings=settings,
            name_filter=NameFilter(args.filters) if args.filters else None,
        )
        tally = runner.run(args.targets)
        return 1 if tally.failed else 0


def main(argv: Sequence[str] | None = None) -> int:
    return CLIApplication().run(argv)
