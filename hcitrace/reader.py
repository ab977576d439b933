"""Bounded little-endian field extraction over a byte slice."""
from __future__ import annotations

import struct
from typing import Union

from hcitrace.errors import DecodeError

BytesLike = Union[bytes, bytearray, memoryview]

_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")


class FieldReader:
    """Cursor over ``data`` that refuses to read past its end.

    Every read either returns the decoded value and advances the cursor, or
    raises :class:`DecodeError` and leaves the cursor where it was.
    """

    __slots__ = ("_data", "_offset")

    def __init__(self, data: BytesLike, offset: int = 0) -> None:
        if offset < 0 or offset > len(data):
            raise DecodeError(f"offset {offset} outside buffer of {len(data)} bytes")
        self._data = bytes(data)
        self._offset = offset

    def __len__(self) -> int:
        return self.remaining

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def _take(self, width: int, what: str) -> bytes:
        if width > self.remaining:
            raise DecodeError(
                f"{what} needs {width} bytes at offset {self._offset}, "
                f"only {self.remaining} available"
            )
        start = self._offset
        self._offset += width
        return self._data[start:self._offset]

    def u8(self, what: str = "u8") -> int:
        return self._take(1, what)[0]

    def u16(self, what: str = "u16") -> int:
        return _U16.unpack(self._take(2, what))[0]

    def u32(self, what: str = "u32") -> int:
        return _U32.unpack(self._take(4, what))[0]

    def raw(self, width: int, what: str = "bytes") -> bytes:
        if width < 0:
            raise DecodeError(f"negative width {width} for {what}")
        return self._take(width, what)

    def rest(self) -> bytes:
        """Return every unread byte and move the cursor to the end."""
        return self._take(self.remaining, "rest")


__all__ = ["FieldReader", "BytesLike"]
