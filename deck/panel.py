#!/usr/bin/env python3
"""
Control deck launcher.

- Loads configuration and sets up logging
- Starts the alert log watcher (when enabled)
- Serves the JSON control API in a background thread
- SIGINT / SIGTERM shut everything down cleanly
"""
from __future__ import annotations

import argparse
import logging
import signal
import threading
from dataclasses import dataclass, field
from typing import Any, Sequence

from deck.alert_monitor import AlertTailTracker
from deck.alert_watcher import AlertLogWatcher
from deck.app_registry import AppRegistry
from deck.config import get_cfg, search_paths
from deck.control_api import start_control_api_in_thread
from deck.notifications import NotificationDispatcher
from deck.recording_session import CaptureSettings, RecordingSessionManager
from deck.services import ServiceToggles
from deck.transcription import TranscriptionOrchestrator

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass
class ControlPanel:
    """Every component the control API dispatches to."""

    recording: RecordingSessionManager
    alerts: AlertTailTracker
    dispatcher: NotificationDispatcher
    apps: AppRegistry
    services: ServiceToggles
    watcher: AlertLogWatcher | None = None
    watch_alerts: bool = True
    _started: bool = field(default=False, repr=False)

    @classmethod
    def from_cfg(cls, cfg: dict[str, Any] | None = None) -> "ControlPanel":
        cfg = cfg if cfg is not None else get_cfg()
        recording = RecordingSessionManager(
            TranscriptionOrchestrator.from_cfg(cfg.get("transcription", {})),
            settings=CaptureSettings.from_cfg(cfg.get("recording", {})),
        )
        alerts_cfg = cfg.get("alerts", {})
        alerts = AlertTailTracker.from_cfg(alerts_cfg)
        dispatcher = NotificationDispatcher.from_cfg(cfg.get("notifications", {}))
        return cls(
            recording=recording,
            alerts=alerts,
            dispatcher=dispatcher,
            apps=AppRegistry.from_cfg(cfg.get("apps", {})),
            services=ServiceToggles.from_cfg(cfg.get("services", {})),
            watcher=AlertLogWatcher(alerts, dispatcher),
            watch_alerts=bool(alerts_cfg.get("watch", True)),
        )

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        if self.watcher is not None and self.watch_alerts:
            self.watcher.start()

    def shutdown(self) -> None:
        log = logging.getLogger("panel")
        log.info("Shutting down control deck ...")
        if self.watcher is not None:
            self.watcher.close()
        self.recording.shutdown()
        self.apps.shutdown()
        self.dispatcher.close()
        self._started = False


def configure_logging(dev_mode: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if dev_mode else logging.INFO,
        format=LOG_FORMAT,
    )
    for name in ("watchdog", "aiohttp.access"):
        logging.getLogger(name).setLevel(logging.WARNING)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the control deck backend")
    parser.add_argument("--host", help="Override the control API listen host")
    parser.add_argument("--port", type=int, help="Override the control API listen port")
    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Do not start the control API (alert watcher only)",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    cfg = get_cfg()
    configure_logging(bool(cfg.get("logging", {}).get("dev_mode", False)))
    log = logging.getLogger("panel")
    log.debug("Config search paths: %s", ", ".join(str(p) for p in search_paths()))

    panel = ControlPanel.from_cfg(cfg)
    panel.start()

    api_cfg = cfg.get("control_api", {})
    api_handle = None
    if api_cfg.get("enabled", True) and not args.no_api:
        api_handle = start_control_api_in_thread(
            panel,
            host=args.host or str(api_cfg.get("listen_host") or "127.0.0.1"),
            port=args.port or int(api_cfg.get("listen_port") or 8765),
        )

    stop_event = threading.Event()

    def _handle_signal(signum, _frame):
        log.info("Received signal %s", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    print("[deck] Control deck running (Ctrl-C to exit)", flush=True)
    try:
        while not stop_event.wait(1.0):
            pass
    finally:
        if api_handle is not None:
            api_handle.stop()
        panel.shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
