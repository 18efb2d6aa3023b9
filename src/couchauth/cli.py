"""Command line entry point for the member-role scenario."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TextIO

from .config import ScenarioConfig, TeardownOrder
from .exceptions import ConfigError
from .logging_config import configure_logging
from .runner import ScenarioResult, StepRecord, StepStatus
from .scenario import run_scenario, sweep

_MARKS = {StepStatus.PASS: "✓", StepStatus.FAIL: "✗", StepStatus.SKIP: "–"}


class ConsoleReporter:
    """Print one line per step and a final summary."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stdout
        self.count = 0

    def header(self, config: ScenarioConfig, mode: str) -> None:
        self._print(f"{'=' * 60}")
        self._print(f"CouchDB member-role scenario ({mode})")
        self._print(f"Host: {config.host}")
        self._print(f"Database: {config.database}")
        self._print(f"Teardown order: {config.teardown_order.value}")
        self._print(f"{'=' * 60}\n")

    def __call__(self, record: StepRecord) -> None:
        self.count += 1
        mark = _MARKS.get(record.status, "?")
        target = f" {record.method} {record.address}" if record.method else ""
        actor = f" as {record.principal}" if record.principal else ""
        self._print(f"{mark} [{record.phase.value}] {record.step}{target}{actor}")
        if record.status == StepStatus.FAIL:
            self._print(f"    {record.detail}")

    def summary(self, result: ScenarioResult) -> None:
        self._print(f"\n{'=' * 60}")
        mark = "✓" if result.exit_code == 0 else "✗"
        self._print(f"{mark} {result.summary()}")
        for failure in result.teardown_failures:
            self._print(f"  ✗ {failure}")
        self._print(f"{'=' * 60}")

    def _print(self, line: str) -> None:
        print(line, file=self.stream)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="couchauth",
        description="Check that a CouchDB server honours member roles in _security documents.",
    )
    parser.add_argument("--config", type=Path, help="JSON file with scenario settings")
    parser.add_argument("--host", help="server URL (default: COUCHDB_URL or localhost:5984)")
    parser.add_argument("--database", help="name of the test database")
    parser.add_argument(
        "--teardown-order",
        choices=[order.value for order in TeardownOrder],
        help="remove the admin before or after the other teardown calls",
    )
    parser.add_argument(
        "--check-revocation",
        action="store_true",
        default=None,
        help="also verify that revoking the role denies access again",
    )
    parser.add_argument(
        "--teardown-only",
        action="store_true",
        help="only remove entities left behind by an earlier run",
    )
    parser.add_argument("--log-level", help="structured log level (default: LOG_LEVEL or WARNING)")
    return parser


def load_config(args: argparse.Namespace) -> ScenarioConfig:
    base = ScenarioConfig.from_file(args.config) if args.config else None
    config = ScenarioConfig.from_env(base=base)
    return config.with_overrides(
        host=args.host,
        database=args.database,
        teardown_order=args.teardown_order,
        check_revocation=args.check_revocation,
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = load_config(args)
    except ConfigError as exc:
        print(f"✗ {exc}", file=sys.stderr)
        return 1

    reporter = ConsoleReporter()
    if args.teardown_only:
        reporter.header(config, "teardown only")
        result = sweep(config, on_record=reporter)
    else:
        reporter.header(config, "full run")
        result = run_scenario(config, on_record=reporter)
    reporter.summary(result)
    return result.exit_code
