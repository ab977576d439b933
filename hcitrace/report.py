"""Renderers for finalized controllers and run totals."""
from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING, List, Optional, TextIO

from rich.console import Console
from rich.table import Table

from hcitrace.models import Controller

if TYPE_CHECKING:  # pragma: no cover - typing helper only
	from hcitrace.analyzer import TraceSummary


def format_controller(controller: Controller) -> str:
	lines = [
		f"Found {controller.link_type.label} controller with index {controller.index}",
		f"  BD_ADDR {controller.address}",
		f"  {controller.num_cmd} commands",
		f"  {controller.num_evt} events",
		f"  {controller.num_acl} ACL packets",
		f"  {controller.num_sco} SCO packets",
	]
	return "\n".join(lines) + "\n"


def format_totals(num_packets: int) -> str:
	return f"Trace contains {num_packets} packets\n"


class TextReporter:
	"""Write one block per controller as soon as it is finalized."""

	def __init__(self, stream: Optional[TextIO] = None) -> None:
		self.stream = stream or sys.stdout

	def controller(self, controller: Controller) -> None:
		self.stream.write(format_controller(controller))
		self.stream.write("\n")

	def finish(self, summary: "TraceSummary") -> None:
		self.stream.write(format_totals(summary.num_packets))


class RichReporter:
	"""Collect controllers and print them as a single table at the end."""

	def __init__(self, console: Optional[Console] = None) -> None:
		self.console = console or Console()
		self._rows: List[Controller] = []

	def controller(self, controller: Controller) -> None:
		self._rows.append(controller)

	def finish(self, summary: "TraceSummary") -> None:
		table = Table(title="HCI Trace Controllers", show_lines=False)
		for column in ("index", "type", "address", "name", "commands", "events", "acl", "sco"):
			table.add_column(column.upper())
		for entry in self._rows:
			table.add_row(
				str(entry.index),
				entry.link_type.label,
				entry.address,
				entry.name or "",
				str(entry.num_cmd),
				str(entry.num_evt),
				str(entry.num_acl),
				str(entry.num_sco),
			)
		self.console.print(table)
		self.console.print(format_totals(summary.num_packets).rstrip())


class JsonReporter:
	"""Dump the whole summary as JSON once the run finishes."""

	def __init__(self, stream: Optional[TextIO] = None) -> None:
		self.stream = stream or sys.stdout

	def controller(self, controller: Controller) -> None:
		pass

	def finish(self, summary: "TraceSummary") -> None:
		json.dump(summary.to_dict(), self.stream, indent=2)
		self.stream.write("\n")


__all__ = [
	"format_controller",
	"format_totals",
	"TextReporter",
	"RichReporter",
	"JsonReporter",
]
