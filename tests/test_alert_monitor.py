from __future__ import annotations

import os
from pathlib import Path

import pytest

from deck.alert_monitor import (
    AlertTailTracker,
    extract_severity,
    parse_alert_records,
)

LOW = (
    "** Alert 1718000000.1: - syslog,sshd,\n"
    "2024 Jun 10 09:13:20 host->/var/log/auth.log\n"
    "Rule: 5716 (level 3) -> 'SSHD authentication failed.'\n"
)
HIGH = (
    "** Alert 1718000001.2: - syslog,sudo,\n"
    "2024 Jun 10 09:13:21 host->/var/log/auth.log\n"
    "Rule: 5402 (level 9) -> 'Successful sudo to ROOT executed.'\n"
)


@pytest.fixture
def log_path(tmp_path: Path) -> Path:
    path = tmp_path / "alerts.log"
    path.write_text("** Alert old\nRule: 1 (level 15) -> 'history'\n")
    return path


def _append(path: Path, text: str) -> None:
    with path.open("a", encoding="utf-8") as handle:
        handle.write(text)


def _bump_mtime(path: Path, delta: float) -> None:
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + delta))


def test_extract_severity_variants():
    assert extract_severity("Rule: 1 (level 10) -> x") == 10
    assert extract_severity("first (level 4) then (level 12)") == 4
    assert extract_severity("no level here") is None
    assert extract_severity("(level ) empty") is None
    assert extract_severity("(level 7 unterminated") is None
    assert extract_severity("(level x) bogus") is None


def test_parse_records_groups_on_marker():
    text = "noise before\n" + LOW + HIGH + "** Alert partial"
    records = parse_alert_records(text)

    assert len(records) == 4
    assert records[0].text == "noise before\n"
    assert records[1].text == LOW
    assert records[2].severity == 9
    assert records[3].text == "** Alert partial\n"


def test_parse_first_marker_does_not_emit_empty_record():
    assert [r.text for r in parse_alert_records(LOW)] == [LOW]
    assert parse_alert_records("") == []


def test_parse_splits_only_on_newline():
    body = "Rule: 7 (level 9) -> 'form\x0cfeed\x85next\u2028sep\x1ctab\x0bend'\n"
    records = parse_alert_records("** Alert 1:\n" + body)

    assert len(records) == 1
    assert records[0].text == "** Alert 1:\n" + body
    assert records[0].severity == 9


def test_modified_first_check_records_baseline(log_path):
    tracker = AlertTailTracker(log_path)

    assert tracker.check_alerts_log_modified() is False
    assert tracker.check_alerts_log_modified() is False

    _bump_mtime(log_path, 10)
    assert tracker.check_alerts_log_modified() is True
    # Baseline does not advance until reset.
    assert tracker.check_alerts_log_modified() is True

    tracker.reset_baseline()
    assert tracker.check_alerts_log_modified() is False


def test_modified_missing_file_raises(tmp_path):
    tracker = AlertTailTracker(tmp_path / "missing.log")
    with pytest.raises(FileNotFoundError):
        tracker.check_alerts_log_modified()
    with pytest.raises(FileNotFoundError):
        tracker.reset_baseline()


def test_reset_baseline_skips_existing_content(log_path):
    tracker = AlertTailTracker(log_path)
    tracker.reset_baseline()

    assert tracker.last_file_position() == log_path.stat().st_size
    assert tracker.scan() == []


def test_scan_without_new_bytes_is_empty(log_path):
    tracker = AlertTailTracker(log_path)
    tracker.prime()

    assert tracker.scan() == []
    assert tracker.scan() == []
    assert tracker.last_file_position() == log_path.stat().st_size


def test_scan_reads_only_appended_records(log_path):
    tracker = AlertTailTracker(log_path)
    tracker.prime()

    _append(log_path, LOW + HIGH)
    records = tracker.scan()

    assert [r.severity for r in records] == [3, 9]
    assert tracker.last_file_position() == log_path.stat().st_size

    _append(log_path, HIGH)
    assert [r.severity for r in tracker.scan()] == [9]


def test_scan_keeps_multibyte_character_split_across_appends(log_path):
    tracker = AlertTailTracker(log_path)
    tracker.prime()
    encoded = "** Alert 1: café (level 9)\n".encode("utf-8")
    cut = encoded.index(b"\xc3") + 1

    with log_path.open("ab") as handle:
        handle.write(encoded[:cut])
    first = tracker.scan()
    with log_path.open("ab") as handle:
        handle.write(encoded[cut:])
    second = tracker.scan()

    assert [r.text for r in first] == ["** Alert 1: caf\n"]
    assert [r.text for r in second] == ["é (level 9)\n"]
    assert second[0].severity == 9
    assert tracker.last_file_position() == log_path.stat().st_size
    assert tracker.state.pending_bytes == b""


def test_prime_drops_pending_partial_character(log_path):
    tracker = AlertTailTracker(log_path)
    tracker.prime()
    with log_path.open("ab") as handle:
        handle.write(b"** Alert 2: \xe2\x82")
    tracker.scan()
    assert tracker.state.pending_bytes == b"\xe2\x82"

    tracker.prime()
    _append(log_path, HIGH)

    assert [r.text for r in tracker.scan()] == [HIGH]


def test_scan_disabled_is_noop(log_path):
    tracker = AlertTailTracker(log_path)
    tracker.prime()
    start = tracker.last_file_position()

    assert tracker.set_notifications_enabled(False) is False
    _append(log_path, HIGH)

    assert tracker.scan() == []
    assert tracker.last_file_position() == start
    assert tracker.notifications_enabled() is False


def test_scan_after_truncation_restarts_at_zero(log_path):
    tracker = AlertTailTracker(log_path)
    tracker.prime()

    replacement = "** Alert z (level 9)\n"
    assert len(replacement) < tracker.last_file_position()
    log_path.write_text(replacement)
    records = tracker.scan()

    assert [r.severity for r in records] == [9]
    assert tracker.last_file_position() == len(replacement)


def test_scan_missing_file_keeps_offset(tmp_path):
    tracker = AlertTailTracker(tmp_path / "missing.log")
    assert tracker.prime() == 0
    assert tracker.scan() == []
    assert tracker.last_file_position() == 0


def test_from_cfg_reads_section(tmp_path):
    tracker = AlertTailTracker.from_cfg(
        {
            "log_path": str(tmp_path / "a.log"),
            "boundary_marker": "## ",
            "notifications_enabled": False,
        }
    )
    assert tracker.log_path == tmp_path / "a.log"
    assert tracker.boundary_marker == "## "
    assert tracker.notifications_enabled() is False
