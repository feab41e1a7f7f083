"""Desktop notifications for sync outcomes."""

import logging
import platform
import subprocess

from .sync.events import SyncEvent, SyncStatus

__all__ = ["send_notification", "DesktopNotifier", "format_sync_event"]

logger = logging.getLogger(__name__)

APP_TITLE = "MelonAI Sync"


def send_notification(title: str, message: str, sound: bool = True) -> None:
    """Show a native notification; failures are logged, never raised.

    Args:
        title: Notification title.
        message: Notification body text.
        sound: Play the default sound (macOS only).
    """
    system = platform.system()
    try:
        if system == "Darwin":
            _notify_macos(title, message, sound)
        elif system == "Windows":
            _notify_windows(title, message)
        elif system == "Linux":
            _notify_linux(title, message)
        else:
            logger.debug(f"Notifications not supported on {system}")
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"Failed to send notification: {e}")


def _applescript_quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _notify_macos(title: str, message: str, sound: bool) -> None:
    script = f"display notification {_applescript_quote(message)} with title {_applescript_quote(title)}"
    if sound:
        script += ' sound name "default"'
    subprocess.run(["osascript", "-e", script], capture_output=True, timeout=5)


def _notify_windows(title: str, message: str) -> None:
    def quote(text: str) -> str:
        return "'" + text.replace("'", "''") + "'"

    script = "; ".join(
        [
            "[Windows.UI.Notifications.ToastNotificationManager, Windows.UI.Notifications, "
            "ContentType = WindowsRuntime] > $null",
            "$xml = [Windows.UI.Notifications.ToastNotificationManager]::GetTemplateContent("
            "[Windows.UI.Notifications.ToastTemplateType]::ToastText02)",
            "$nodes = $xml.GetElementsByTagName('text')",
            f"$nodes.Item(0).AppendChild($xml.CreateTextNode({quote(title)})) > $null",
            f"$nodes.Item(1).AppendChild($xml.CreateTextNode({quote(message)})) > $null",
            "[Windows.UI.Notifications.ToastNotificationManager]::CreateToastNotifier("
            f"{quote(APP_TITLE)}).Show([Windows.UI.Notifications.ToastNotification]::new($xml))",
        ]
    )
    subprocess.run(["powershell", "-Command", script], capture_output=True, timeout=10)


def _notify_linux(title: str, message: str) -> None:
    subprocess.run(["notify-send", "--app-name", APP_TITLE, title, message], capture_output=True, timeout=5)


def format_sync_event(event: SyncEvent) -> str:
    if event.status == SyncStatus.SUCCESS:
        return f"{event.succeeded} photo(s) analyzed."
    if event.failed and event.succeeded:
        return f"{event.succeeded} photo(s) analyzed, {event.failed} will be retried."
    return f"{event.failed} photo(s) could not be synced and will be retried."


class DesktopNotifier:
    """Event listener that turns terminal sync events into notifications.

    Progress and idle events are ignored.
    """

    def __init__(self, sound: bool = True):
        self.sound = sound

    def __call__(self, event) -> None:
        if not isinstance(event, SyncEvent):
            return
        if event.status not in (SyncStatus.SUCCESS, SyncStatus.ERROR):
            return
        if event.status == SyncStatus.SUCCESS and not event.succeeded:
            return
        title = APP_TITLE if event.status == SyncStatus.SUCCESS else f"{APP_TITLE}: sync problem"
        send_notification(title, format_sync_event(event), sound=self.sound)
