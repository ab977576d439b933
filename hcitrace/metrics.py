"""CSV event log for trace analysis runs."""
from __future__ import annotations

import contextlib
import csv
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence


FIELDS: Sequence[str] = (
    "timestamp",
    "event",
    "status",
    "index",
    "value",
    "message",
    "extra",
)


def _normalize_extra(extra: Mapping[str, Any]) -> str:
    if not extra:
        return ""
    try:
        return json.dumps(extra, separators=(",", ":"), ensure_ascii=True, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return repr(extra)


@dataclass(slots=True)
class MetricRecord:
    """One row of the event log."""

    timestamp: str
    event: str
    status: Optional[str] = None
    index: Optional[int] = None
    value: Optional[float] = None
    message: Optional[str] = None
    extra: str = ""

    def as_row(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "event": self.event,
            "status": self.status or "",
            "index": self.index if self.index is not None else "",
            "value": self.value if self.value is not None else "",
            "message": self.message or "",
            "extra": self.extra,
        }


class MetricsLogger:
    """Append-only CSV log of anomalies and per-controller results.

    Rows are flushed as they are written so a partially analysed trace still
    leaves a usable log behind when the run is interrupted.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        static_extra: Mapping[str, Any] | None = None,
    ) -> None:
        self.path = Path(path)
        self._static_extra: Dict[str, Any] = dict(static_extra or {})
        self._stack: List[Dict[str, Any]] = []
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_header()

    def _ensure_header(self) -> None:
        if self.path.exists() and self.path.stat().st_size > 0:
            return
        with self.path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=FIELDS)
            writer.writeheader()

    def log(
        self,
        event: str,
        *,
        status: Optional[str] = None,
        index: Optional[int] = None,
        value: Optional[float] = None,
        message: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        record = MetricRecord(
            timestamp=self._timestamp(),
            event=event,
            status=status,
            index=index,
            value=value,
            message=message,
            extra=_normalize_extra(self._combined_extra(extra)),
        )
        self._write_row(record)

    def anomaly(self, kind: str, index: int, message: str) -> None:
        """Record a recoverable per-record problem."""
        self.log("record_anomaly", status=kind, index=index, message=message)

    @contextlib.contextmanager
    def scope(self, extra: Mapping[str, Any] | None = None, **extra_kwargs: Any) -> Iterator[None]:
        payload: Dict[str, Any] = dict(extra or {})
        payload.update(extra_kwargs)
        self._stack.append(payload)
        try:
            yield
        finally:
            self._stack.pop()

    @contextlib.contextmanager
    def timer(self, event: str, **extra: Any) -> Iterator[None]:
        """Log one ``event`` row with the duration of the block and its outcome."""
        start = perf_counter()
        payload = dict(extra)
        try:
            with self.scope(payload):
                yield
        except Exception as exc:
            duration = perf_counter() - start
            self.log(
                event,
                status="error",
                value=duration,
                message=str(exc),
                extra={**payload, "exception": type(exc).__name__},
            )
            raise
        else:
            self.log(event, status="ok", value=perf_counter() - start, extra=payload)

    def _write_row(self, record: MetricRecord) -> None:
        with self.path.open("a", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=FIELDS)
            writer.writerow(record.as_row())
            handle.flush()

    def _timestamp(self) -> str:
        return datetime.now(timezone.utc).isoformat(timespec="milliseconds")

    def _combined_extra(self, extra: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
        payload: Dict[str, Any] = dict(self._static_extra)
        for layer in self._stack:
            payload.update(layer)
        if extra:
            payload.update(extra)
        return payload


__all__ = [
    "MetricsLogger",
    "MetricRecord",
    "FIELDS",
]
