"""Readers for btsnoop and Apple PacketLogger capture files.

Both containers are flattened into the monitor vocabulary: every record comes
out as ``(timestamp, index, opcode, data)`` where ``opcode`` is one of
:class:`Opcode`. Anything the reader cannot map is reported as
``Opcode.UNKNOWN`` rather than dropped, so record totals stay exact.
"""
from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Tuple

from hcitrace.errors import CaptureOpenError, CaptureReadError
from hcitrace.hci import BDADDR_SIZE
from hcitrace.reader import BytesLike, FieldReader

logger = logging.getLogger(__name__)

BTSNOOP_MAGIC = b"btsnoop\x00"
BTSNOOP_VERSION = 1
MAX_PACKET_SIZE = 1486 + 4

# microseconds between 0000-01-01 and 1970-01-01
BTSNOOP_EPOCH_DELTA = 0x00E03AB44A676000

_FILE_HDR = struct.Struct(">8sII")
_PKT_HDR = struct.Struct(">IIIIq")
_PKLG_HDR = struct.Struct(">IIIB")

_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class CaptureType(IntEnum):
    HCI = 1001
    UART = 1002
    BCSP = 1003
    THREE_WIRE = 1004
    MONITOR = 2001
    SIMULATOR = 2002
    OTHER = 0xFFFFFFFF

    @classmethod
    def from_wire(cls, value: int) -> "CaptureType":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


SUPPORTED_TYPES = frozenset({CaptureType.HCI, CaptureType.UART, CaptureType.MONITOR})


class CaptureFormat(IntEnum):
    BTSNOOP = 0
    PKLG = 1


class Opcode(IntEnum):
    NEW_INDEX = 0
    DEL_INDEX = 1
    COMMAND_PKT = 2
    EVENT_PKT = 3
    ACL_TX_PKT = 4
    ACL_RX_PKT = 5
    SCO_TX_PKT = 6
    SCO_RX_PKT = 7
    OPEN_INDEX = 8
    CLOSE_INDEX = 9
    INDEX_INFO = 10
    VENDOR_DIAG = 11
    SYSTEM_NOTE = 12
    USER_LOGGING = 13
    UNKNOWN = 0xFFFF


@dataclass(frozen=True, slots=True)
class Record:
    """One deframed capture record."""

    timestamp: Optional[datetime]
    index: int
    opcode: int
    data: bytes

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True, slots=True)
class NewIndex:
    """Payload of a monitor ``NEW_INDEX`` record.

    Type, bus and address are required; the trailing name is optional.
    """

    type: int
    bus: int
    bdaddr: bytes
    name: Optional[str] = None

    NAME_SIZE = 8

    @classmethod
    def decode(cls, data: BytesLike) -> "NewIndex":
        reader = FieldReader(data)
        type_ = reader.u8("new index type")
        bus = reader.u8("new index bus")
        bdaddr = reader.raw(BDADDR_SIZE, "new index address")
        name = None
        if reader.remaining >= cls.NAME_SIZE:
            raw_name = reader.raw(cls.NAME_SIZE, "new index name")
            name = raw_name.split(b"\x00", 1)[0].decode("ascii", errors="replace") or None
        return cls(type=type_, bus=bus, bdaddr=bdaddr, name=name)


def _h1_opcode(flags: int) -> int:
    received = bool(flags & 0x01)
    if flags & 0x02:
        return Opcode.EVENT_PKT if received else Opcode.COMMAND_PKT
    return Opcode.ACL_RX_PKT if received else Opcode.ACL_TX_PKT


def _h4_opcode(pkt_type: int, flags: int) -> int:
    received = bool(flags & 0x01)
    if pkt_type == 0x01:
        return Opcode.COMMAND_PKT
    if pkt_type == 0x02:
        return Opcode.ACL_RX_PKT if received else Opcode.ACL_TX_PKT
    if pkt_type == 0x03:
        return Opcode.SCO_RX_PKT if received else Opcode.SCO_TX_PKT
    if pkt_type == 0x04:
        return Opcode.EVENT_PKT
    return Opcode.UNKNOWN


_PKLG_OPCODES = {
    0x00: Opcode.COMMAND_PKT,
    0x01: Opcode.EVENT_PKT,
    0x02: Opcode.ACL_TX_PKT,
    0x03: Opcode.ACL_RX_PKT,
    0x08: Opcode.SCO_TX_PKT,
    0x09: Opcode.SCO_RX_PKT,
}


def _btsnoop_time(ts: int) -> Optional[datetime]:
    try:
        return _UNIX_EPOCH + timedelta(microseconds=ts - BTSNOOP_EPOCH_DELTA)
    except OverflowError:
        return None


def _pklg_time(ts: int) -> Optional[datetime]:
    try:
        return _UNIX_EPOCH + timedelta(seconds=ts >> 32, microseconds=ts & 0xFFFFFFFF)
    except OverflowError:
        return None


class CaptureFile:
    """Sequential reader over an open capture stream.

    The header is sniffed on construction. ``next_record`` returns ``None``
    once the stream ends on a record boundary and raises
    :class:`CaptureReadError` if it ends anywhere else.
    """

    def __init__(self, stream: BinaryIO, *, name: str = "<stream>", pklg_support: bool = True) -> None:
        self._stream = stream
        self.name = name
        self.num_records = 0
        self.format, self.declared_type = self._sniff(pklg_support)

    def _sniff(self, pklg_support: bool) -> Tuple[CaptureFormat, CaptureType]:
        header = self._stream.read(_FILE_HDR.size)
        if len(header) < 2:
            raise CaptureOpenError(f"{self.name}: file too short for a capture header")

        if header.startswith(BTSNOOP_MAGIC):
            if len(header) != _FILE_HDR.size:
                raise CaptureOpenError(f"{self.name}: truncated btsnoop header")
            _, version, datalink = _FILE_HDR.unpack(header)
            if version != BTSNOOP_VERSION:
                raise CaptureOpenError(f"{self.name}: unsupported btsnoop version {version}")
            logger.debug("%s: btsnoop v%d, data link %d", self.name, version, datalink)
            return CaptureFormat.BTSNOOP, CaptureType.from_wire(datalink)

        if pklg_support and header[0] == 0x00 and header[1] in (0x00, 0x01):
            self._stream.seek(0)
            logger.debug("%s: PacketLogger capture", self.name)
            return CaptureFormat.PKLG, CaptureType.MONITOR

        raise CaptureOpenError(f"{self.name}: not a btsnoop or PacketLogger capture")

    def __enter__(self) -> "CaptureFile":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    def __iter__(self) -> Iterator[Record]:
        while True:
            record = self.next_record()
            if record is None:
                return
            yield record

    def close(self) -> None:
        if not self._stream.closed:
            self._stream.close()

    def _read_exact(self, size: int, what: str) -> bytes:
        chunk = self._stream.read(size)
        if len(chunk) != size:
            raise CaptureReadError(
                f"{self.name}: record {self.num_records}: short {what} "
                f"({len(chunk)} of {size} bytes)"
            )
        return chunk

    def next_record(self) -> Optional[Record]:
        if self.format is CaptureFormat.PKLG:
            record = self._next_pklg()
        else:
            record = self._next_btsnoop()
        if record is not None:
            self.num_records += 1
        return record

    def _next_btsnoop(self) -> Optional[Record]:
        header = self._stream.read(_PKT_HDR.size)
        if not header:
            return None
        if len(header) != _PKT_HDR.size:
            raise CaptureReadError(f"{self.name}: record {self.num_records}: short record header")

        _, toread, flags, _, ts = _PKT_HDR.unpack(header)
        if toread > MAX_PACKET_SIZE:
            raise CaptureReadError(
                f"{self.name}: record {self.num_records}: packet length {toread} suspiciously big"
            )

        dtype = self.declared_type
        if dtype is CaptureType.HCI:
            index = 0
            opcode = _h1_opcode(flags)
        elif dtype is CaptureType.UART:
            if toread < 1:
                raise CaptureReadError(f"{self.name}: record {self.num_records}: missing H4 packet type")
            pkt_type = self._read_exact(1, "H4 packet type")[0]
            toread -= 1
            index = 0
            opcode = _h4_opcode(pkt_type, flags)
        elif dtype is CaptureType.MONITOR:
            index = flags >> 16
            opcode = flags & 0xFFFF
        else:
            index = 0
            opcode = Opcode.UNKNOWN

        data = self._read_exact(toread, "record body")
        return Record(timestamp=_btsnoop_time(ts), index=index, opcode=int(opcode), data=data)

    def _next_pklg(self) -> Optional[Record]:
        header = self._stream.read(_PKLG_HDR.size)
        if not header:
            return None
        if len(header) != _PKLG_HDR.size:
            raise CaptureReadError(f"{self.name}: record {self.num_records}: short record header")

        length, ts_sec, ts_usec, pkt_type = _PKLG_HDR.unpack(header)
        # length covers the timestamp and type byte as well as the body
        toread = length - (_PKLG_HDR.size - 4)
        if toread < 0 or toread > MAX_PACKET_SIZE:
            raise CaptureReadError(
                f"{self.name}: record {self.num_records}: invalid PacketLogger length {length}"
            )

        data = self._read_exact(toread, "record body")
        opcode = _PKLG_OPCODES.get(pkt_type, Opcode.UNKNOWN)
        return Record(
            timestamp=_pklg_time((ts_sec << 32) | ts_usec),
            index=0,
            opcode=int(opcode),
            data=data,
        )


def open_capture(path: str | Path, *, pklg_support: bool = True) -> CaptureFile:
    """Open ``path`` and sniff its container header."""
    path = Path(path)
    try:
        stream = path.open("rb")
    except OSError as exc:
        raise CaptureOpenError(f"failed to open {path}: {exc.strerror or exc}") from exc
    try:
        return CaptureFile(stream, name=str(path), pklg_support=pklg_support)
    except Exception:
        stream.close()
        raise


__all__ = [
    "BTSNOOP_MAGIC",
    "BTSNOOP_EPOCH_DELTA",
    "MAX_PACKET_SIZE",
    "CaptureType",
    "CaptureFormat",
    "SUPPORTED_TYPES",
    "Opcode",
    "Record",
    "NewIndex",
    "CaptureFile",
    "open_capture",
]
