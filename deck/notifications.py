#!/usr/bin/env python3
"""Delivery of security alert notifications."""

import json
import logging
import queue
import socket
import subprocess
import threading
import time
from typing import Any
from urllib.error import URLError
from urllib.request import Request, urlopen

from deck.alert_policy import AlertNotification
from deck.config import section

_LOG = logging.getLogger("notifications")

URGENCY_BY_TIER = {
    "critical": "critical",
    "warning": "normal",
    "info": "low",
}


class NotificationDispatcher:
    """Send notifications without blocking the caller.

    Every channel failure is logged and dropped; there is no caller to report
    to and no retry.
    """

    def __init__(
        self,
        *,
        app_name: str = "Control Deck",
        notify_command: str = "notify-send",
        webhook_cfg: dict[str, Any] | None = None,
        run_async: bool = True,
        queue_size: int = 32,
    ) -> None:
        self.app_name = app_name
        self.notify_command = notify_command
        self.webhook_cfg = webhook_cfg or {}
        self.hostname = socket.gethostname()
        self._run_async = run_async
        self._queue: queue.Queue[AlertNotification | None] | None = None
        self._worker: threading.Thread | None = None
        self._queue_size = max(1, int(queue_size or 32))

        self.webhook_url = str(self.webhook_cfg.get("url") or "").strip()
        self.webhook_headers = self._normalise_headers(self.webhook_cfg.get("headers"))
        self.webhook_timeout = float(self.webhook_cfg.get("timeout_sec", 5.0) or 5.0)

        if self._run_async:
            self._queue = queue.Queue(maxsize=self._queue_size)
            self._worker = threading.Thread(
                target=self._dispatch_loop,
                name="notification-dispatcher",
                daemon=True,
            )
            self._worker.start()

    @classmethod
    def from_cfg(cls, cfg: dict[str, Any] | None = None) -> "NotificationDispatcher":
        cfg = cfg if cfg is not None else section("notifications")
        webhook_cfg = cfg.get("webhook")
        return cls(
            app_name=str(cfg.get("app_name") or "Control Deck"),
            notify_command=str(cfg.get("notify_command") or "notify-send"),
            webhook_cfg=webhook_cfg if isinstance(webhook_cfg, dict) else None,
        )

    @staticmethod
    def _normalise_headers(headers: Any) -> dict[str, str]:
        if isinstance(headers, dict):
            return {
                str(key): str(value)
                for key, value in headers.items()
                if str(key).strip()
            }
        return {}

    def dispatch(self, notification: AlertNotification) -> None:
        if not notification.notify:
            return

        if not self._run_async:
            self._dispatch_notification(notification)
            return

        assert self._queue is not None
        try:
            self._queue.put_nowait(notification)
        except queue.Full:
            _LOG.warning("Dropping notification %r (queue full)", notification.title)

    def close(self, timeout: float = 2.0) -> None:
        if self._queue is None or self._worker is None:
            return
        try:
            self._queue.put(None, timeout=timeout)
        except queue.Full:
            return
        self._worker.join(timeout=timeout)

    def _dispatch_loop(self) -> None:
        assert self._queue is not None
        while True:
            notification = self._queue.get()
            if notification is None:
                self._queue.task_done()
                break

            try:
                self._dispatch_notification(notification)
            finally:
                self._queue.task_done()

    def _dispatch_notification(self, notification: AlertNotification) -> None:
        try:
            self._send_desktop(notification)
        except Exception as exc:
            _LOG.warning("Desktop notification raised unexpected error: %s", exc)

        try:
            self._send_webhook(notification)
        except Exception as exc:
            _LOG.warning("Webhook dispatch raised unexpected error: %s", exc)

    # --- desktop ---
    def _send_desktop(self, notification: AlertNotification) -> None:
        if not self.notify_command:
            return
        urgency = URGENCY_BY_TIER.get(notification.tier, "normal")
        try:
            result = subprocess.run(
                [
                    self.notify_command,
                    "-u", urgency,
                    "-a", self.app_name,
                    notification.title,
                    notification.body,
                ],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                check=False,
                timeout=10,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            _LOG.warning("%s failed: %s", self.notify_command, exc)
            return
        if result.returncode != 0:
            stderr = (result.stderr or b"").decode("utf-8", errors="replace").strip()
            _LOG.warning("%s exited with %s: %s", self.notify_command, result.returncode, stderr)

    # --- webhook ---
    def _send_webhook(self, notification: AlertNotification) -> None:
        if not self.webhook_url:
            return

        payload = {
            "title": notification.title,
            "body": notification.body,
            "tier": notification.tier,
            "host": self.hostname,
            "generated_at": time.time(),
        }
        body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        request = Request(
            self.webhook_url,
            data=body,
            method="POST",
            headers={"Content-Type": "application/json", **self.webhook_headers},
        )

        try:
            with urlopen(request, timeout=self.webhook_timeout) as response:
                response.read()
        except URLError as exc:
            _LOG.warning("Webhook delivery failed: %s", exc)
