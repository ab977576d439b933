"""Fixed-layout HCI header decoders.

Each decoder takes the raw payload of one record and returns the decoded
header together with the bytes that follow it. A payload shorter than the
header raises :class:`~hcitrace.errors.DecodeError`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from hcitrace.reader import BytesLike, FieldReader

CMD_HDR_SIZE = 3
EVT_HDR_SIZE = 2
ACL_HDR_SIZE = 4
SCO_HDR_SIZE = 3

EVT_CMD_COMPLETE = 0x0E
EVT_CMD_COMPLETE_SIZE = 3

CMD_READ_BD_ADDR = 0x1009
RSP_READ_BD_ADDR_SIZE = 7

BDADDR_SIZE = 6
BDADDR_ANY = bytes(BDADDR_SIZE)


def format_bdaddr(bdaddr: bytes) -> str:
    """Render a wire-order address as ``AA:BB:CC:DD:EE:FF`` (most significant first)."""
    return ":".join(f"{octet:02X}" for octet in reversed(bdaddr))


def parse_bdaddr(text: str) -> bytes:
    """Inverse of :func:`format_bdaddr`."""
    parts = text.split(":")
    if len(parts) != BDADDR_SIZE:
        raise ValueError(f"invalid BD_ADDR {text!r}")
    return bytes(int(part, 16) for part in reversed(parts))


@dataclass(frozen=True, slots=True)
class CommandHeader:
    opcode: int
    plen: int

    @property
    def ogf(self) -> int:
        return self.opcode >> 10

    @property
    def ocf(self) -> int:
        return self.opcode & 0x03FF


@dataclass(frozen=True, slots=True)
class EventHeader:
    evt: int
    plen: int


@dataclass(frozen=True, slots=True)
class AclHeader:
    handle: int
    dlen: int


@dataclass(frozen=True, slots=True)
class ScoHeader:
    handle: int
    dlen: int


@dataclass(frozen=True, slots=True)
class CommandComplete:
    ncmd: int
    opcode: int


@dataclass(frozen=True, slots=True)
class ReadBdAddrResponse:
    status: int
    bdaddr: bytes


def decode_command(data: BytesLike) -> Tuple[CommandHeader, bytes]:
    reader = FieldReader(data)
    hdr = CommandHeader(opcode=reader.u16("command opcode"), plen=reader.u8("command plen"))
    return hdr, reader.rest()


def decode_event(data: BytesLike) -> Tuple[EventHeader, bytes]:
    reader = FieldReader(data)
    hdr = EventHeader(evt=reader.u8("event code"), plen=reader.u8("event plen"))
    return hdr, reader.rest()


def decode_acl(data: BytesLike) -> Tuple[AclHeader, bytes]:
    reader = FieldReader(data)
    hdr = AclHeader(handle=reader.u16("ACL handle"), dlen=reader.u16("ACL dlen"))
    return hdr, reader.rest()


def decode_sco(data: BytesLike) -> Tuple[ScoHeader, bytes]:
    reader = FieldReader(data)
    hdr = ScoHeader(handle=reader.u16("SCO handle"), dlen=reader.u8("SCO dlen"))
    return hdr, reader.rest()


def decode_cmd_complete(data: BytesLike) -> Tuple[CommandComplete, bytes]:
    reader = FieldReader(data)
    evt = CommandComplete(
        ncmd=reader.u8("command complete ncmd"),
        opcode=reader.u16("command complete opcode"),
    )
    return evt, reader.rest()


def decode_read_bd_addr(data: BytesLike) -> ReadBdAddrResponse:
    reader = FieldReader(data)
    return ReadBdAddrResponse(
        status=reader.u8("read BD_ADDR status"),
        bdaddr=reader.raw(BDADDR_SIZE, "read BD_ADDR address"),
    )


__all__ = [
    "CMD_HDR_SIZE",
    "EVT_HDR_SIZE",
    "ACL_HDR_SIZE",
    "SCO_HDR_SIZE",
    "EVT_CMD_COMPLETE",
    "CMD_READ_BD_ADDR",
    "BDADDR_SIZE",
    "BDADDR_ANY",
    "CommandHeader",
    "EventHeader",
    "AclHeader",
    "ScoHeader",
    "CommandComplete",
    "ReadBdAddrResponse",
    "decode_command",
    "decode_event",
    "decode_acl",
    "decode_sco",
    "decode_cmd_complete",
    "decode_read_bd_addr",
    "format_bdaddr",
    "parse_bdaddr",
]
