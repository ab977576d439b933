"""Exception types raised by hcitrace."""
from __future__ import annotations


class HciTraceError(Exception):
    """Base class for every error raised by this package."""


class DecodeError(HciTraceError, ValueError):
    """A field read would run past the end of its buffer."""


class CaptureError(HciTraceError):
    """Problem with the capture container itself."""


class CaptureOpenError(CaptureError):
    """The capture could not be opened or its header is not recognised."""


class UnsupportedCaptureError(CaptureError):
    """The container is valid but carries a data link we cannot analyze."""


class CaptureReadError(CaptureError):
    """The container broke off in the middle of a record."""


__all__ = [
    "HciTraceError",
    "DecodeError",
    "CaptureError",
    "CaptureOpenError",
    "UnsupportedCaptureError",
    "CaptureReadError",
]
