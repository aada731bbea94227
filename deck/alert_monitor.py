#!/usr/bin/env python3
"""Incremental reader for the security alert log.

The log is append-only in normal operation (OSSEC/Wazuh ``alerts.log``).
Each alert starts with a boundary line such as::

    ** Alert 1718000000.1234: - syslog,sshd,authentication_failed,
    2024 Jun 10 09:13:20 host->/var/log/auth.log
    Rule: 5716 (level 5) -> 'SSHD authentication failed.'

The tracker remembers how many bytes it has consumed and only ever reads what
was appended since. A separate mtime baseline backs the lightweight
"modified since last check" poll used by the control panel.
"""

from __future__ import annotations

import argparse
import codecs
import logging
import os
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from deck.config import section

_LOG = logging.getLogger("alert_monitor")

DEFAULT_LOG_PATH = Path("/var/ossec/logs/alerts/alerts.log")
DEFAULT_BOUNDARY_MARKER = "** Alert"
SEVERITY_PREFIX = "(level "


@dataclass
class AlertMonitorState:
    alerts_log_mtime: float | None = None
    notifications_enabled: bool = True
    last_file_position: int = 0
    # Bytes of a UTF-8 sequence cut off at the last scanned offset.
    pending_bytes: bytes = b""
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


@dataclass(frozen=True)
class AlertRecord:
    text: str

    @property
    def severity(self) -> int | None:
        return extract_severity(self.text)


def extract_severity(text: str) -> int | None:
    start = text.find(SEVERITY_PREFIX)
    if start < 0:
        return None
    rest = text[start + len(SEVERITY_PREFIX):]
    end = rest.find(")")
    if end < 0:
        return None
    digits = rest[:end]
    if not digits or not (digits.isascii() and digits.isdigit()):
        return None
    return int(digits)


def parse_alert_records(text: str, marker: str = DEFAULT_BOUNDARY_MARKER) -> list[AlertRecord]:
    records: list[AlertRecord] = []
    current: list[str] = []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    for line in lines:
        if line.startswith(marker) and current:
            records.append(AlertRecord("".join(current)))
            current = []
        current.append(line + "\n")
    # The next scan starts past these bytes, so a partial tail is emitted now.
    if current:
        records.append(AlertRecord("".join(current)))
    return records


class AlertTailTracker:
    """Byte-offset tail over the alert log, shared by the watcher and commands."""

    def __init__(
        self,
        log_path: Path | str = DEFAULT_LOG_PATH,
        *,
        boundary_marker: str = DEFAULT_BOUNDARY_MARKER,
        notifications_enabled: bool = True,
        state: AlertMonitorState | None = None,
    ) -> None:
        self.log_path = Path(log_path)
        self.boundary_marker = boundary_marker
        self.state = state or AlertMonitorState(notifications_enabled=notifications_enabled)

    @classmethod
    def from_cfg(cls, cfg: dict[str, Any] | None = None) -> "AlertTailTracker":
        cfg = cfg if cfg is not None else section("alerts")
        return cls(
            cfg.get("log_path") or DEFAULT_LOG_PATH,
            boundary_marker=str(cfg.get("boundary_marker") or DEFAULT_BOUNDARY_MARKER),
            notifications_enabled=bool(cfg.get("notifications_enabled", True)),
        )

    # --- notifications flag ---
    def notifications_enabled(self) -> bool:
        with self.state.lock:
            return self.state.notifications_enabled

    def set_notifications_enabled(self, enabled: bool) -> bool:
        with self.state.lock:
            self.state.notifications_enabled = bool(enabled)
            return self.state.notifications_enabled

    def last_file_position(self) -> int:
        with self.state.lock:
            return self.state.last_file_position

    # --- poll-based check ---
    def check_alerts_log_modified(self) -> bool:
        mtime = self.log_path.stat().st_mtime
        with self.state.lock:
            baseline = self.state.alerts_log_mtime
            if baseline is None:
                self.state.alerts_log_mtime = mtime
                return False
            if mtime > baseline:
                return True
            self.state.alerts_log_mtime = mtime
            return False

    def reset_baseline(self) -> None:
        stat = self.log_path.stat()
        with self.state.lock:
            self.state.alerts_log_mtime = stat.st_mtime
            self.state.last_file_position = stat.st_size
            self.state.pending_bytes = b""
        _LOG.info("Alert baseline reset at offset %d", stat.st_size)

    def prime(self) -> int:
        """Skip everything already in the log so history is never re-notified."""
        try:
            size = self.log_path.stat().st_size
        except FileNotFoundError:
            size = 0
        with self.state.lock:
            self.state.last_file_position = size
            self.state.pending_bytes = b""
        return size

    # --- incremental scan ---
    def scan(self) -> list[AlertRecord]:
        with self.state.lock:
            if not self.state.notifications_enabled:
                return []
            start = self.state.last_file_position
            pending = self.state.pending_bytes

        try:
            with self.log_path.open("rb") as handle:
                size = os.fstat(handle.fileno()).st_size
                offset = start
                if size < offset:
                    _LOG.info(
                        "%s shrank below offset %d (now %d bytes); reading from start",
                        self.log_path,
                        offset,
                        size,
                    )
                    offset = 0
                    pending = b""
                handle.seek(offset)
                data = handle.read()
        except OSError as exc:
            _LOG.warning("Alert scan of %s skipped: %s", self.log_path, exc)
            return []

        end = offset + len(data)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        text = decoder.decode(pending + data)
        leftover = decoder.getstate()[0]
        records = parse_alert_records(text, self.boundary_marker)

        with self.state.lock:
            if self.state.last_file_position != start:
                # A baseline reset landed mid-scan; it acknowledged these bytes.
                self.state.last_file_position = max(self.state.last_file_position, end)
                self.state.pending_bytes = b""
                return []
            self.state.last_file_position = end
            self.state.pending_bytes = leftover
        if records:
            _LOG.debug("Parsed %d alert record(s) up to offset %d", len(records), end)
        return records


def _print_records(records: Iterable[AlertRecord]) -> None:
    for record in records:
        severity = record.severity
        label = f"level {severity}" if severity is not None else "no level"
        first_line = record.text.splitlines()[0] if record.text else ""
        print(f"[alert-monitor] {label}: {first_line}", flush=True)


def parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print alert records from the security log")
    parser.add_argument(
        "--log-path",
        type=Path,
        default=None,
        help="Override the alert log path",
    )
    parser.add_argument(
        "--offset",
        type=int,
        default=0,
        help="Byte offset to start reading from (default: 0)",
    )
    return parser.parse_args(argv)


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    tracker = AlertTailTracker.from_cfg()
    if args.log_path:
        tracker.log_path = args.log_path
    with tracker.state.lock:
        tracker.state.last_file_position = max(0, args.offset)
    _print_records(tracker.scan())
    return 0


if __name__ == "__main__":  # pragma: no cover - manual execution path
    raise SystemExit(main())
