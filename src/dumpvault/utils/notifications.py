"""Backup event publishing and desktop notifications"""

import logging
import shutil
import subprocess
from collections.abc import Callable
from typing import Any

BACKUP_STARTED = "backup:started"
BACKUP_PROGRESS = "backup:progress"
BACKUP_COMPLETED = "backup:completed"
BACKUP_ERROR = "backup:error"

EventHandler = Callable[[str, dict[str, Any]], None]


class EventBroadcaster:
    """Fire-and-forget fan-out of backup events to subscribers.

    Publishing never raises and never waits for acknowledgment; a failing
    subscriber is logged and skipped.
    """

    def __init__(self):
        self.logger = logging.getLogger("EventBroadcaster")
        self._subscribers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        self._subscribers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        for handler in list(self._subscribers):
            try:
                handler(event, payload)
            except Exception as e:
                self.logger.warning(f"Event subscriber failed for {event}: {e}")


class NotificationManager:
    """Manages desktop notifications for backup operations"""

    def __init__(self):
        self.logger = logging.getLogger("NotificationManager")
        self.enabled = self._check_notification_support()

    def _check_notification_support(self) -> bool:
        """Check if desktop notifications are supported"""
        if shutil.which("notify-send"):
            self.logger.debug("Desktop notifications enabled (notify-send)")
            return True

        self.logger.debug("Desktop notifications not available")
        return False

    def send(self, title: str, message: str, urgency: str = "normal", icon: str | None = None) -> bool:
        """Send a desktop notification

        Args:
            title: Notification title
            message: Notification message
            urgency: Urgency level ('low', 'normal', 'critical')
            icon: Optional icon name

        Returns:
            True if notification sent successfully, False otherwise
        """
        if not self.enabled:
            return False

        try:
            cmd = ["notify-send", f"--urgency={urgency}"]

            if icon:
                cmd.extend(["--icon", icon])

            cmd.extend([title, message])

            subprocess.run(cmd, check=False, capture_output=True, timeout=10)
            return True

        except (OSError, subprocess.SubprocessError) as e:
            self.logger.warning(f"Failed to send notification: {e}")
            return False

    def notify_backup_success(self, filename: str, cadence: str, size_text: str, verified: bool) -> bool:
        title = "✅ Backup Successful"
        message = f"{cadence.capitalize()} backup: {filename}\nSize: {size_text}"
        if not verified:
            message += "\nIntegrity probe failed"

        return self.send(title, message, urgency="normal", icon="emblem-default")

    def notify_backup_failure(self, filename: str, error: str = "") -> bool:
        title = "❌ Backup Failed"
        message = filename
        if error:
            # Truncate long error messages
            error_short = error[:100] + "..." if len(error) > 100 else error
            message += f"\nError: {error_short}"

        return self.send(title, message, urgency="critical", icon="dialog-error")

    def handle_event(self, event: str, payload: dict[str, Any]) -> None:
        """EventBroadcaster subscriber: only terminal events become notifications"""
        if event == BACKUP_COMPLETED:
            self.notify_backup_success(
                payload["filename"], payload.get("cadence", "manual"), payload.get("sizeText", ""), payload.get("verified", False)
            )
        elif event == BACKUP_ERROR:
            self.notify_backup_failure(payload.get("filename", "backup"), payload.get("error", ""))
