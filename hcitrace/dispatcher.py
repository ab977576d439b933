"""Record classification and per-controller accounting."""
from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from hcitrace import hci
from hcitrace.btsnoop import NewIndex, Opcode, Record
from hcitrace.errors import DecodeError
from hcitrace.models import Controller, ControllerRegistry, LinkType
from hcitrace.models.registry import AnomalyHook, Finalizer

logger = logging.getLogger(__name__)

Handler = Callable[[Record], None]


class PacketDispatcher:
    """Route each record to its handler by opcode.

    Records are classified independently of one another. Decode failures are
    logged and reported through ``on_anomaly``; they never propagate.
    """

    def __init__(
        self,
        registry: ControllerRegistry,
        finalize: Finalizer,
        *,
        on_anomaly: Optional[AnomalyHook] = None,
    ) -> None:
        self.registry = registry
        self._finalize = finalize
        self._on_anomaly = on_anomaly
        self._handlers: Dict[int, Handler] = {
            Opcode.NEW_INDEX: self.new_index,
            Opcode.DEL_INDEX: self.del_index,
            Opcode.COMMAND_PKT: self.command_pkt,
            Opcode.EVENT_PKT: self.event_pkt,
            Opcode.ACL_TX_PKT: self.acl_pkt,
            Opcode.ACL_RX_PKT: self.acl_pkt,
            Opcode.SCO_TX_PKT: self.sco_pkt,
            Opcode.SCO_RX_PKT: self.sco_pkt,
        }

    def dispatch(self, record: Record) -> bool:
        """Handle ``record``; return False when its opcode is not one we track."""
        handler = self._handlers.get(record.opcode)
        if handler is None:
            logger.debug("hci%d: ignoring opcode 0x%04x", record.index, record.opcode)
            return False
        handler(record)
        return True

    def new_index(self, record: Record) -> None:
        controller = self.registry.create(record.index, created_at=record.timestamp)
        try:
            ni = NewIndex.decode(record.data)
        except DecodeError as exc:
            self._decode_failed("new_index", record.index, exc)
            return
        controller.link_type = LinkType.from_wire(ni.type)
        controller.bdaddr = ni.bdaddr
        controller.bus = ni.bus
        controller.name = ni.name

    def del_index(self, record: Record) -> None:
        controller = self.registry.remove(record.index)
        if controller is None:
            return
        controller.removed_at = record.timestamp
        self._finalize(controller)

    def command_pkt(self, record: Record) -> None:
        controller = self._lookup(record)
        controller.num_cmd += 1
        try:
            hdr, _ = hci.decode_command(record.data)
        except DecodeError as exc:
            self._decode_failed("command", record.index, exc)
            return
        logger.debug("hci%d: command 0x%04x plen %d", record.index, hdr.opcode, hdr.plen)

    def event_pkt(self, record: Record) -> None:
        controller = self._lookup(record)
        controller.num_evt += 1
        try:
            hdr, params = hci.decode_event(record.data)
        except DecodeError as exc:
            self._decode_failed("event", record.index, exc)
            return
        if hdr.evt == hci.EVT_CMD_COMPLETE:
            self.evt_cmd_complete(controller, params)

    def acl_pkt(self, record: Record) -> None:
        controller = self._lookup(record)
        controller.num_acl += 1
        try:
            hci.decode_acl(record.data)
        except DecodeError as exc:
            self._decode_failed("acl", record.index, exc)

    def sco_pkt(self, record: Record) -> None:
        controller = self._lookup(record)
        controller.num_sco += 1
        try:
            hci.decode_sco(record.data)
        except DecodeError as exc:
            self._decode_failed("sco", record.index, exc)

    def evt_cmd_complete(self, controller: Controller, params: bytes) -> None:
        try:
            evt, rsp = hci.decode_cmd_complete(params)
        except DecodeError as exc:
            self._decode_failed("cmd_complete", controller.index, exc)
            return
        if evt.opcode == hci.CMD_READ_BD_ADDR:
            self.rsp_read_bd_addr(controller, rsp)

    def rsp_read_bd_addr(self, controller: Controller, data: bytes) -> None:
        try:
            rsp = hci.decode_read_bd_addr(data)
        except DecodeError as exc:
            self._decode_failed("read_bd_addr", controller.index, exc)
            return
        logger.info("Read BD Addr event with status 0x%2.2x", rsp.status)
        if rsp.status:
            return
        controller.update_address(rsp.bdaddr)

    def _lookup(self, record: Record) -> Controller:
        return self.registry.lookup_or_create(record.index, created_at=record.timestamp)

    def _decode_failed(self, what: str, index: int, exc: DecodeError) -> None:
        logger.warning("hci%d: malformed %s packet: %s", index, what, exc)
        if self._on_anomaly is not None:
            self._on_anomaly(f"truncated_{what}", index, str(exc))


__all__ = ["PacketDispatcher"]
