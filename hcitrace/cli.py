"""hcitrace command-line interface."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler

from hcitrace.analyzer import Reporter, analyze_trace
from hcitrace.errors import CaptureError
from hcitrace.metrics import MetricsLogger
from hcitrace.report import JsonReporter, RichReporter, TextReporter

logger = logging.getLogger("hcitrace.cli")


def _configure_logging(verbosity: int) -> None:
	if verbosity > 0:
		level = logging.DEBUG
	elif verbosity < 0:
		level = logging.ERROR
	else:
		level = logging.WARNING
	handler = RichHandler(console=Console(stderr=True), show_path=False, show_time=False)
	logging.basicConfig(level=level, format="%(message)s", handlers=[handler], force=True)


def _select_reporter(args: argparse.Namespace) -> Reporter:
	if args.json:
		return JsonReporter(sys.stdout)
	if args.rich:
		return RichReporter(Console())
	return TextReporter(sys.stdout)


def _cmd_analyze(args: argparse.Namespace) -> int:
	metrics = None
	if args.log:
		metrics = MetricsLogger(Path(args.log), static_extra={"capture": str(args.path)})
	reporter = _select_reporter(args)
	try:
		analyze_trace(args.path, reporter=reporter, metrics=metrics)
	except CaptureError as exc:
		logger.error("%s", exc)
		return 1
	return 0


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="Bluetooth HCI trace analysis")
	sub = parser.add_subparsers(dest="command", required=True)

	analyze = sub.add_parser("analyze", help="Summarize controllers found in a capture")
	analyze.add_argument("path", type=Path, help="btsnoop or PacketLogger capture file")
	output = analyze.add_mutually_exclusive_group()
	output.add_argument("--json", action="store_true", help="Output JSON")
	output.add_argument("--rich", action="store_true", help="Render a table")
	analyze.add_argument("--log", help="Append anomalies and results to this CSV file")
	analyze.add_argument("-v", "--verbose", action="store_const", const=1, default=0, dest="verbosity", help="Debug logging")
	analyze.add_argument("-q", "--quiet", action="store_const", const=-1, dest="verbosity", help="Only log errors")
	analyze.set_defaults(handler=_cmd_analyze)

	return parser


def main(argv: Optional[List[str]] = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)
	_configure_logging(args.verbosity)
	return args.handler(args)


if __name__ == "__main__":
	sys.exit(main())
