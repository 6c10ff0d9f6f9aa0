from __future__ import annotations

import datetime as dt
import logging
import os
from typing import TYPE_CHECKING, Optional

import httpx

from .config import ServerOptions
from .events import ScheduledEvent

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .store import JsonStore

logger = logging.getLogger(__name__)

DATE_FORMAT = "%A, %B %d, %Y %I:%M %p (%Z)"


class NotificationError(RuntimeError):
    pass


class DiscordNotifier:
    """Posts plain text messages to a Discord webhook."""

    def __init__(self, webhook_url: str | None = None) -> None:
        self.webhook_url = webhook_url if webhook_url is not None else os.getenv("DISCORD_WEBHOOK_URL", "")

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def send_message(self, text: str, webhook_url: str | None = None) -> None:
        url = webhook_url or self.webhook_url
        if not url:
            logger.debug("Skipping notification: no webhook configured")
            return
        try:
            with httpx.Client(timeout=10.0) as client:
                response = client.post(url, json={"content": text})
                response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise NotificationError(f"Failed to deliver notification: {exc}") from exc


def _event_password(event: ScheduledEvent, options: ServerOptions) -> str:
    # championship events take their password from the championship
    owner = getattr(event, "championship", None) or event
    if getattr(owner, "override_password", False):
        return getattr(owner, "replacement_password", "")
    return options.server_password


def _format_minutes(minutes: float) -> str:
    return f"{minutes:g}"


class NotificationManager:
    """Builds race announcement messages and hands them to the notifier."""

    def __init__(self, store: "JsonStore", notifier: Optional[DiscordNotifier] = None) -> None:
        self.store = store
        self.notifier = notifier or DiscordNotifier()

    def send_message(self, text: str) -> None:
        options = self.store.load_server_options()
        self.notifier.send_message(text, options.discord_webhook_url or None)

    def send_race_scheduled_message(self, event: ScheduledEvent, start_time: dt.datetime) -> None:
        config = event.get_race_config()
        lines = ["A new event has been scheduled"]
        name = event.event_name()
        if name:
            lines.append(f"Event name: {name}")
        lines.append(f"Date: {start_time.strftime(DATE_FORMAT)}")
        lines.append(f"Track: {config.track_name()}")
        cars = config.cars or sorted({entrant.model for entrant in event.read_only_entry_list() if entrant.model})
        if cars:
            lines.append(f"Car(s): {', '.join(cars)}")
        self.send_message("\n".join(lines))

    def send_race_reminder_message(self, event: ScheduledEvent) -> None:
        options = self.store.load_server_options()
        minutes = _format_minutes(options.notification_reminder_timer)
        track = event.get_race_config().track_name()
        self.send_message(f"{event.event_name()} race at {track} starts in {minutes} minutes")

    def send_race_start_message(self, event: ScheduledEvent) -> None:
        options = self.store.load_server_options()
        track = event.get_race_config().track_name()
        text = f"{event.event_name()} race at {track} is starting now"
        if options.name:
            text += f"\nServer: {options.name}"
        if options.show_password_in_notifications:
            password = _event_password(event, options)
            if password:
                text += f"\nPassword is '{password}' (no quotes)"
        self.send_message(text)
