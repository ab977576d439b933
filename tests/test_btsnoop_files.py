"""End-to-end tests over capture files written to a temporary directory."""
from __future__ import annotations

import csv
import io
import json
import struct
import tempfile
import unittest
from pathlib import Path
from typing import Iterable, Tuple

from hcitrace.analyzer import analyze_trace
from hcitrace.btsnoop import BTSNOOP_EPOCH_DELTA, CaptureFile, CaptureType, Opcode, open_capture
from hcitrace.cli import main
from hcitrace.errors import CaptureOpenError, CaptureReadError, UnsupportedCaptureError
from hcitrace.hci import parse_bdaddr
from hcitrace.metrics import MetricsLogger
from hcitrace.report import TextReporter

# 2024-01-01T00:00:00Z in btsnoop microseconds
TS0 = BTSNOOP_EPOCH_DELTA + 1_704_067_200 * 1_000_000


def _btsnoop(datalink: int, records: Iterable[Tuple[int, bytes]]) -> bytes:
    out = bytearray(b"btsnoop\x00" + struct.pack(">II", 1, datalink))
    for seq, (flags, data) in enumerate(records):
        out += struct.pack(">IIIIq", len(data), len(data), flags, 0, TS0 + seq)
        out += data
    return bytes(out)


def _monitor(index: int, opcode: int, data: bytes = b"") -> Tuple[int, bytes]:
    return (index << 16) | opcode, data


def _new_index(type_: int, address: str) -> bytes:
    return bytes([type_, 0x01]) + parse_bdaddr(address) + b"hci0".ljust(8, b"\x00")


def _read_bd_addr_event(address: str) -> bytes:
    params = b"\x01" + struct.pack("<H", 0x1009) + b"\x00" + parse_bdaddr(address)
    return bytes([0x0E, len(params)]) + params


SCENARIO = [
    _monitor(0, Opcode.NEW_INDEX, _new_index(0x00, "AA:BB:CC:DD:EE:FF")),
    _monitor(0, Opcode.COMMAND_PKT, struct.pack("<HB", 0x1009, 0)),
    _monitor(0, Opcode.EVENT_PKT, _read_bd_addr_event("11:22:33:44:55:66")),
    _monitor(0, Opcode.ACL_TX_PKT, struct.pack("<HH", 1, 0)),
    _monitor(0, Opcode.DEL_INDEX),
]

EXPECTED_REPORT = (
    "Found BR/EDR controller with index 0\n"
    "  BD_ADDR 11:22:33:44:55:66\n"
    "  1 commands\n"
    "  1 events\n"
    "  1 ACL packets\n"
    "  0 SCO packets\n"
    "\n"
    "Trace contains 5 packets\n"
)


class CaptureFileTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _write(self, name: str, payload: bytes) -> Path:
        path = self.tmp / name
        path.write_bytes(payload)
        return path

    def test_monitor_capture_end_to_end(self) -> None:
        path = self._write("monitor.btsnoop", _btsnoop(2001, SCENARIO))
        out = io.StringIO()
        summary = analyze_trace(path, reporter=TextReporter(out))
        self.assertEqual(out.getvalue(), EXPECTED_REPORT)
        self.assertEqual(summary.capture_type, CaptureType.MONITOR)
        self.assertEqual(summary.controllers[0].created_at.year, 2024)

    def test_monitor_index_and_opcode_come_from_flags(self) -> None:
        path = self._write("idx.btsnoop", _btsnoop(2001, [_monitor(3, Opcode.SCO_RX_PKT, b"\x01\x00\x00")]))
        with open_capture(path) as capture:
            record = capture.next_record()
            self.assertEqual((record.index, record.opcode, record.data), (3, Opcode.SCO_RX_PKT, b"\x01\x00\x00"))
            self.assertIsNone(capture.next_record())
            self.assertEqual(capture.num_records, 1)

    def test_hci_capture_uses_direction_flags(self) -> None:
        path = self._write("h1.btsnoop", _btsnoop(1001, [
            (0x02, struct.pack("<HB", 0x0C03, 0)),
            (0x03, b"\x0e\x04\x01\x03\x0c\x00"),
            (0x00, struct.pack("<HH", 1, 0)),
            (0x01, struct.pack("<HH", 1, 0)),
        ]))
        with open_capture(path) as capture:
            opcodes = [record.opcode for record in capture]
        self.assertEqual(opcodes, [Opcode.COMMAND_PKT, Opcode.EVENT_PKT, Opcode.ACL_TX_PKT, Opcode.ACL_RX_PKT])

    def test_uart_capture_strips_packet_type(self) -> None:
        path = self._write("h4.btsnoop", _btsnoop(1002, [
            (0x00, b"\x01" + struct.pack("<HB", 0x1009, 0)),
            (0x01, b"\x04" + _read_bd_addr_event("12:34:56:78:9A:BC")),
            (0x01, b"\x03" + struct.pack("<HB", 1, 0)),
            (0x00, b"\x07\x00"),
        ]))
        out = io.StringIO()
        with self.assertLogs("hcitrace", level="INFO"):
            summary = analyze_trace(path, reporter=TextReporter(out))
        controller = summary.controllers[0]
        self.assertEqual(controller.address, "12:34:56:78:9A:BC")
        self.assertEqual((controller.num_cmd, controller.num_evt, controller.num_sco), (1, 1, 1))
        self.assertEqual(summary.num_packets, 4)
        self.assertIn("Found unknown controller with index 0", out.getvalue())

    def test_uart_vendor_packet_type_maps_to_unknown(self) -> None:
        path = self._write("vendor.btsnoop", _btsnoop(1002, [
            (0x02, b"\xff\x00\x00\x00\x00"),
            (0x03, b"\xff\x01"),
        ]))
        with open_capture(path) as capture:
            records = list(capture)
        self.assertEqual([r.opcode for r in records], [Opcode.UNKNOWN, Opcode.UNKNOWN])
        self.assertEqual(records[0].data, b"\x00\x00\x00\x00")

        summary = analyze_trace(path, reporter=TextReporter(io.StringIO()))
        self.assertEqual(summary.num_packets, 2)
        self.assertEqual(summary.controllers, [])

    def test_pklg_capture(self) -> None:
        data = bytearray()
        for pkt_type, body in ((0x00, struct.pack("<HB", 0x1009, 0)), (0x03, struct.pack("<HH", 1, 0)), (0xFC, b"x")):
            data += struct.pack(">IIIB", 9 + len(body), 1_704_067_200, 500, pkt_type) + body
        path = self._write("trace.pklg", bytes(data))
        with open_capture(path) as capture:
            self.assertEqual(capture.declared_type, CaptureType.MONITOR)
            records = list(capture)
        self.assertEqual([r.opcode for r in records], [Opcode.COMMAND_PKT, Opcode.ACL_RX_PKT, Opcode.UNKNOWN])
        self.assertEqual(records[0].timestamp.microsecond, 500)

    def test_unsupported_datalink_is_rejected(self) -> None:
        path = self._write("bcsp.btsnoop", _btsnoop(1003, SCENARIO))
        out = io.StringIO()
        with self.assertRaises(UnsupportedCaptureError):
            analyze_trace(path, reporter=TextReporter(out))
        self.assertEqual(out.getvalue(), "")

    def test_unknown_magic_and_missing_file(self) -> None:
        with self.assertRaises(CaptureOpenError):
            open_capture(self._write("junk.bin", b"NOTASNOOPFILE!!!"))
        with self.assertRaises(CaptureOpenError):
            open_capture(self.tmp / "missing.btsnoop")
        with self.assertRaises(CaptureOpenError):
            CaptureFile(io.BytesIO(b"btsnoop\x00" + struct.pack(">II", 2, 2001)))

    def test_truncated_record_body_reports_what_was_read(self) -> None:
        payload = _btsnoop(2001, SCENARIO[:2])[:-1]
        path = self._write("short.btsnoop", payload)
        out = io.StringIO()
        with self.assertRaises(CaptureReadError):
            analyze_trace(path, reporter=TextReporter(out))
        self.assertIn("Found BR/EDR controller with index 0", out.getvalue())
        self.assertIn("Trace contains 1 packets", out.getvalue())

    def test_oversized_record_is_a_read_error(self) -> None:
        header = b"btsnoop\x00" + struct.pack(">II", 1, 2001)
        capture = CaptureFile(io.BytesIO(header + struct.pack(">IIIIq", 4000, 4000, 2, 0, TS0)))
        with self.assertRaises(CaptureReadError):
            capture.next_record()

    def test_metrics_log_records_anomalies_and_reports(self) -> None:
        path = self._write("anomaly.btsnoop", _btsnoop(2001, [
            _monitor(1, Opcode.COMMAND_PKT, b"\x03"),
            _monitor(2, Opcode.DEL_INDEX),
        ]))
        log_path = self.tmp / "run.csv"
        metrics = MetricsLogger(log_path, static_extra={"capture": "anomaly"})
        with self.assertLogs("hcitrace", level="WARNING"):
            analyze_trace(path, reporter=TextReporter(io.StringIO()), metrics=metrics)

        with log_path.open("r", encoding="utf-8", newline="") as handle:
            rows = list(csv.DictReader(handle))

        statuses = [(row["event"], row["status"], row["index"]) for row in rows]
        self.assertIn(("record_anomaly", "implicit_create", "1"), statuses)
        self.assertIn(("record_anomaly", "truncated_command", "1"), statuses)
        self.assertIn(("record_anomaly", "remove_unknown", "2"), statuses)
        self.assertIn(("controller_report", "unknown", "1"), statuses)
        timer_row = rows[-1]
        self.assertEqual((timer_row["event"], timer_row["status"]), ("analyze_trace", "ok"))
        extra = json.loads(timer_row["extra"])
        self.assertEqual(extra["capture"], "anomaly")
        self.assertTrue(extra["path"].endswith("anomaly.btsnoop"))

    def test_metrics_log_records_failed_run(self) -> None:
        path = self._write("cut.btsnoop", _btsnoop(2001, SCENARIO)[:-3])
        log_path = self.tmp / "cut.csv"
        with self.assertRaises(CaptureReadError):
            analyze_trace(path, reporter=TextReporter(io.StringIO()), metrics=MetricsLogger(log_path))

        with log_path.open("r", encoding="utf-8", newline="") as handle:
            rows = list(csv.DictReader(handle))

        self.assertEqual(list(rows[0].keys()), ["timestamp", "event", "status", "index", "value", "message", "extra"])
        timer_row = rows[-1]
        self.assertEqual((timer_row["event"], timer_row["status"]), ("analyze_trace", "error"))
        self.assertIn("after 4 packets", timer_row["message"])
        self.assertEqual(json.loads(timer_row["extra"])["exception"], "CaptureReadError")


class CliTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.capture = self.tmp / "monitor.btsnoop"
        self.capture.write_bytes(_btsnoop(2001, SCENARIO))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_analyze_prints_text_report(self) -> None:
        from contextlib import redirect_stdout

        out = io.StringIO()
        with redirect_stdout(out):
            status = main(["analyze", "-q", str(self.capture)])
        self.assertEqual(status, 0)
        self.assertEqual(out.getvalue(), EXPECTED_REPORT)

    def test_analyze_json(self) -> None:
        from contextlib import redirect_stdout

        out = io.StringIO()
        with redirect_stdout(out):
            status = main(["analyze", "-q", "--json", str(self.capture)])
        self.assertEqual(status, 0)
        payload = json.loads(out.getvalue())
        self.assertEqual(payload["num_packets"], 5)
        self.assertEqual(payload["capture_type"], "MONITOR")
        self.assertEqual(payload["controllers"][0]["address"], "11:22:33:44:55:66")
        self.assertEqual(payload["controllers"][0]["type"], "BR/EDR")
        self.assertEqual(payload["controllers"][0]["name"], "hci0")
        self.assertEqual(payload["controllers"][0]["bus"], 1)

    def test_unsupported_capture_logs_one_error(self) -> None:
        bcsp = self.tmp / "bcsp.btsnoop"
        bcsp.write_bytes(_btsnoop(1003, SCENARIO))
        with self.assertLogs("hcitrace", level="ERROR") as logs:
            status = main(["analyze", "-q", str(bcsp)])
        self.assertEqual(status, 1)
        self.assertEqual(len(logs.output), 1)
        self.assertIn("unsupported packet format: BCSP", logs.output[0])

    def test_missing_file_exits_nonzero(self) -> None:
        self.assertEqual(main(["analyze", "-q", str(self.tmp / "nope.btsnoop")]), 1)


if __name__ == "__main__":
    unittest.main()
