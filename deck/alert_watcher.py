"""Background watcher that turns alert log changes into notifications."""
from __future__ import annotations

import logging
import queue
import threading
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from deck.alert_monitor import AlertTailTracker
from deck.alert_policy import notifications_for_records
from deck.notifications import NotificationDispatcher

_LOG = logging.getLogger("alert_watcher")


class _ChannelHandler(FileSystemEventHandler):
    """Forward content-change paths into the watcher's channel.

    Open and close events are dropped; every scan opens the log itself.
    """

    def __init__(self, channel: "queue.Queue[str | None]") -> None:
        super().__init__()
        self._channel = channel

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.dest_path)

    def _forward(self, path) -> None:
        if isinstance(path, bytes):
            path = path.decode("utf-8", errors="replace")
        if path:
            self._channel.put(path)


class AlertLogWatcher:
    def __init__(
        self,
        tracker: AlertTailTracker,
        dispatcher: NotificationDispatcher,
        *,
        observer_factory=Observer,
    ) -> None:
        self.tracker = tracker
        self.dispatcher = dispatcher
        self._observer_factory = observer_factory
        self._observer = None
        self._channel: "queue.Queue[str | None]" = queue.Queue()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Begin watching; returns False when the feature is disabled."""
        if self.running:
            return True
        self.tracker.prime()
        directory = self.tracker.log_path.parent
        try:
            observer = self._observer_factory()
            observer.schedule(_ChannelHandler(self._channel), str(directory), recursive=False)
            observer.start()
        except Exception as exc:
            _LOG.error("Alert watcher disabled; cannot watch %s: %s", directory, exc)
            return False

        self._observer = observer
        self._thread = threading.Thread(
            target=self._run,
            name="alert-watcher",
            daemon=True,
        )
        self._thread.start()
        _LOG.info("Watching %s for security alerts", self.tracker.log_path)
        return True

    def close(self, timeout: float = 2.0) -> None:
        """Stop the observer and close the channel; the worker exits after it drains."""
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=timeout)
        self._channel.put(None)
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def matches(self, path: str) -> bool:
        return Path(path).name == self.tracker.log_path.name

    def handle_change(self) -> int:
        """Scan newly appended alerts and dispatch their notifications."""
        sent = 0
        for notification in notifications_for_records(self.tracker.scan()):
            self.dispatcher.dispatch(notification)
            sent += 1
        return sent

    def _run(self) -> None:
        while True:
            path = self._channel.get()
            if path is None:
                _LOG.info("Alert watcher channel closed")
                return
            if not self.matches(path):
                continue
            try:
                self.handle_change()
            except Exception:
                _LOG.exception("Alert scan failed; watcher continues")
