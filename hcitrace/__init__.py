"""Offline analysis of Bluetooth HCI capture files."""
from __future__ import annotations

from hcitrace.analyzer import TraceAnalyzer, TraceState, TraceSummary, analyze_trace
from hcitrace.btsnoop import CaptureFile, CaptureType, Opcode, Record, open_capture
from hcitrace.errors import (
    CaptureError,
    CaptureOpenError,
    CaptureReadError,
    DecodeError,
    HciTraceError,
    UnsupportedCaptureError,
)

__version__ = "0.1.0"

__all__ = [
    "TraceAnalyzer",
    "TraceState",
    "TraceSummary",
    "analyze_trace",
    "CaptureFile",
    "CaptureType",
    "Opcode",
    "Record",
    "open_capture",
    "HciTraceError",
    "CaptureError",
    "CaptureOpenError",
    "CaptureReadError",
    "UnsupportedCaptureError",
    "DecodeError",
]
