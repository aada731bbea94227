"""Severity thresholds for security alert notifications."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator

CRITICAL_LEVEL = 12
WARNING_LEVEL = 8
INFO_LEVEL = 5


@dataclass(frozen=True)
class AlertNotification:
    notify: bool
    title: str = ""
    body: str = ""
    tier: str = "none"


SILENT = AlertNotification(notify=False)


def notification_for(severity: int) -> AlertNotification:
    if severity >= CRITICAL_LEVEL:
        return AlertNotification(
            notify=True,
            title="Critical security alert",
            body=f"High severity alert detected (level {severity})",
            tier="critical",
        )
    if severity >= WARNING_LEVEL:
        return AlertNotification(
            notify=True,
            title="Security warning",
            body=f"Suspicious activity detected (level {severity})",
            tier="warning",
        )
    if severity >= INFO_LEVEL:
        return AlertNotification(
            notify=True,
            title="Security alert",
            body=f"Alert detected (level {severity})",
            tier="info",
        )
    return SILENT


def notifications_for_records(records: Iterable) -> Iterator[AlertNotification]:
    """Yield one notification per record worth announcing, oldest first.

    Records without a severity are skipped entirely.
    """
    for record in records:
        severity = record.severity
        if severity is None:
            continue
        result = notification_for(severity)
        if result.notify:
            yield result
