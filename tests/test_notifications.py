import subprocess

from deck import notifications as notifications_module
from deck.alert_policy import SILENT, notification_for
from deck.notifications import NotificationDispatcher


class Dummy(NotificationDispatcher):
    def __init__(self, **kwargs):
        super().__init__(run_async=False, **kwargs)
        self.desktop = []
        self.webhooks = []

    def _send_desktop(self, notification):
        self.desktop.append(notification)

    def _send_webhook(self, notification):
        self.webhooks.append(notification)


def test_silent_notifications_are_dropped():
    dummy = Dummy()
    dummy.dispatch(SILENT)
    dummy.dispatch(notification_for(2))
    assert not dummy.desktop
    assert not dummy.webhooks


def test_notifications_reach_every_channel():
    dummy = Dummy()
    dummy.dispatch(notification_for(12))
    assert [n.tier for n in dummy.desktop] == ["critical"]
    assert [n.tier for n in dummy.webhooks] == ["critical"]


def test_channel_errors_are_swallowed():
    class Exploding(Dummy):
        def _send_desktop(self, notification):
            raise RuntimeError("dbus down")

    dummy = Exploding()
    dummy.dispatch(notification_for(9))
    assert [n.tier for n in dummy.webhooks] == ["warning"]


def test_desktop_command_uses_tier_urgency(monkeypatch):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, b"", b"")

    monkeypatch.setattr(notifications_module.subprocess, "run", fake_run)
    dispatcher = NotificationDispatcher(run_async=False)

    dispatcher.dispatch(notification_for(5))
    dispatcher.dispatch(notification_for(8))
    dispatcher.dispatch(notification_for(12))

    assert calls == [
        ["notify-send", "-u", "low", "-a", "Control Deck", "Security alert", "Alert detected (level 5)"],
        ["notify-send", "-u", "normal", "-a", "Control Deck", "Security warning", "Suspicious activity detected (level 8)"],
        ["notify-send", "-u", "critical", "-a", "Control Deck", "Critical security alert", "High severity alert detected (level 12)"],
    ]


def test_missing_notify_send_is_logged(monkeypatch, caplog):
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", cmd[0])

    monkeypatch.setattr(notifications_module.subprocess, "run", fake_run)
    dispatcher = NotificationDispatcher(run_async=False)

    with caplog.at_level("WARNING", logger="notifications"):
        dispatcher.dispatch(notification_for(10))

    assert "notify-send failed" in caplog.text


def test_async_dispatch_drains_on_close(monkeypatch):
    seen = []
    monkeypatch.setattr(
        NotificationDispatcher,
        "_dispatch_notification",
        lambda self, notification: seen.append(notification.tier),
    )
    dispatcher = NotificationDispatcher()
    dispatcher.dispatch(notification_for(6))
    dispatcher.dispatch(notification_for(13))
    dispatcher.close()

    assert seen == ["info", "critical"]


def test_from_cfg_reads_webhook():
    dispatcher = NotificationDispatcher.from_cfg(
        {
            "app_name": "Deck",
            "notify_command": "",
            "webhook": {"url": "http://example/hook", "headers": {"X-Token": "abc"}},
        }
    )
    try:
        assert dispatcher.app_name == "Deck"
        assert dispatcher.webhook_url == "http://example/hook"
        assert dispatcher.webhook_headers == {"X-Token": "abc"}
    finally:
        dispatcher.close()
