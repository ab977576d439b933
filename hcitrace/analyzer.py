"""Trace driver: pull records, dispatch them, report every controller."""
from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from hcitrace.btsnoop import SUPPORTED_TYPES, CaptureType, Record, open_capture
from hcitrace.dispatcher import PacketDispatcher
from hcitrace.errors import CaptureReadError, UnsupportedCaptureError
from hcitrace.metrics import MetricsLogger
from hcitrace.models import Controller, ControllerRegistry

logger = logging.getLogger(__name__)


class TraceState(Enum):
    UNOPENED = "unopened"
    VALIDATING = "validating"
    STREAMING = "streaming"
    FINALIZED = "finalized"
    FAILED = "failed"


class RecordSource(Protocol):
    declared_type: CaptureType

    def next_record(self) -> Optional[Record]: ...


class Reporter(Protocol):
    def controller(self, controller: Controller) -> None: ...

    def finish(self, summary: "TraceSummary") -> None: ...


@dataclass(slots=True)
class TraceSummary:
    """Outcome of one analysis run."""

    capture_type: Optional[CaptureType]
    num_packets: int
    controllers: List[Controller] = field(default_factory=list)
    state: TraceState = TraceState.FINALIZED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "capture_type": self.capture_type.name if self.capture_type is not None else None,
            "state": self.state.value,
            "num_packets": self.num_packets,
            "controllers": [controller.to_dict() for controller in self.controllers],
        }


class TraceAnalyzer:
    """Run one capture through the dispatcher and report the result.

    The controller registry lives only inside :meth:`run`. It is created once
    the container type has been accepted and is always drained before
    :meth:`run` returns or raises.
    """

    def __init__(
        self,
        *,
        reporter: Optional[Reporter] = None,
        metrics: Optional[MetricsLogger] = None,
    ) -> None:
        self.reporter = reporter
        self.metrics = metrics
        self.state = TraceState.UNOPENED
        self.capture_type: Optional[CaptureType] = None
        self.num_packets = 0
        self.controllers: List[Controller] = []

    def run(self, source: RecordSource) -> TraceSummary:
        if self.state is not TraceState.UNOPENED:
            raise RuntimeError("TraceAnalyzer instances are single use")

        self.state = TraceState.VALIDATING
        self.capture_type = source.declared_type
        if self.capture_type not in SUPPORTED_TYPES:
            self.state = TraceState.FAILED
            raise UnsupportedCaptureError(f"unsupported packet format: {self.capture_type.name}")

        registry = ControllerRegistry(on_anomaly=self._anomaly)
        dispatcher = PacketDispatcher(registry, self._finalize, on_anomaly=self._anomaly)

        self.state = TraceState.STREAMING
        try:
            while True:
                record = source.next_record()
                if record is None:
                    break
                dispatcher.dispatch(record)
                self.num_packets += 1
        except (CaptureReadError, OSError) as exc:
            self.state = TraceState.FAILED
            logger.debug("stream stopped after %d packets", self.num_packets)
            self._finish(registry)
            raise CaptureReadError(f"capture read failed after {self.num_packets} packets: {exc}") from exc
        except BaseException:
            self.state = TraceState.FAILED
            registry.drain(self._finalize)
            raise

        self.state = TraceState.FINALIZED
        return self._finish(registry)

    def _finish(self, registry: ControllerRegistry) -> TraceSummary:
        registry.drain(self._finalize)
        summary = self.summary()
        if self.reporter is not None:
            self.reporter.finish(summary)
        return summary

    def summary(self) -> TraceSummary:
        return TraceSummary(
            capture_type=self.capture_type,
            num_packets=self.num_packets,
            controllers=list(self.controllers),
            state=self.state,
        )

    def _finalize(self, controller: Controller) -> None:
        self.controllers.append(controller)
        if self.reporter is not None:
            self.reporter.controller(controller)
        if self.metrics is not None:
            self.metrics.log(
                "controller_report",
                status=controller.link_type.label,
                index=controller.index,
                extra=controller.to_dict(),
            )

    def _anomaly(self, kind: str, index: int, message: str) -> None:
        if self.metrics is not None:
            self.metrics.anomaly(kind, index, message)


def analyze_trace(
    path: str | Path,
    *,
    reporter: Optional[Reporter] = None,
    metrics: Optional[MetricsLogger] = None,
) -> TraceSummary:
    """Open ``path``, analyze every record in it and return the summary."""
    analyzer = TraceAnalyzer(reporter=reporter, metrics=metrics)
    timer = contextlib.nullcontext()
    if metrics is not None:
        timer = metrics.timer("analyze_trace", path=str(path))
    with timer:
        with open_capture(path) as capture:
            return analyzer.run(capture)


__all__ = [
    "TraceState",
    "TraceSummary",
    "TraceAnalyzer",
    "RecordSource",
    "Reporter",
    "analyze_trace",
]
