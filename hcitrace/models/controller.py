from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
import logging

from hcitrace.hci import BDADDR_ANY, format_bdaddr

logger = logging.getLogger(__name__)


class LinkType(Enum):
    """Controller type carried by the new-index record."""

    PRIMARY = "BR/EDR"
    AMP = "AMP"
    UNKNOWN = "unknown"

    @classmethod
    def from_wire(cls, value: int) -> "LinkType":
        if value == 0x00:
            return cls.PRIMARY
        if value == 0x01:
            return cls.AMP
        return cls.UNKNOWN

    @property
    def label(self) -> str:
        return self.value


@dataclass
class Controller:
    """Aggregated state for one controller index seen in a trace.

    Counters only ever go up. ``bdaddr`` is kept in wire order and replaced
    whole by the new-index record or a successful Read BD_ADDR response.
    """
    index: int
    link_type: LinkType = LinkType.UNKNOWN
    bdaddr: bytes = BDADDR_ANY
    bus: Optional[int] = None
    name: Optional[str] = None
    created_at: Optional[datetime] = None
    removed_at: Optional[datetime] = None
    num_cmd: int = 0
    num_evt: int = 0
    num_acl: int = 0
    num_sco: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.index <= 0xFFFF:
            raise ValueError(f"controller index out of range: {self.index}")
        if len(self.bdaddr) != len(BDADDR_ANY):
            raise ValueError("bdaddr must be 6 bytes")

    @property
    def address(self) -> str:
        return format_bdaddr(self.bdaddr)

    def update_address(self, bdaddr: bytes) -> None:
        logger.debug("hci%d address %s -> %s", self.index, self.address, format_bdaddr(bdaddr))
        self.bdaddr = bytes(bdaddr)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "index": self.index,
            "type": self.link_type.label,
            "address": self.address,
            "commands": self.num_cmd,
            "events": self.num_evt,
            "acl": self.num_acl,
            "sco": self.num_sco,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "removed_at": self.removed_at.isoformat() if self.removed_at else None,
        }
        if self.name:
            payload["name"] = self.name
        if self.bus is not None:
            payload["bus"] = self.bus
        return payload
