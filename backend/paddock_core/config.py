from __future__ import annotations

import datetime as dt
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


def default_data_dir() -> Path:
    configured = os.getenv("PADDOCK_DATA_DIR", "")
    if configured:
        return Path(configured)
    return Path(__file__).parent.parent / "data"


class ServerOptions(BaseModel):
    """Global options persisted alongside races, championships and race weekends."""

    name: str = "Paddock Server"
    notification_reminder_timer: float = Field(
        default=0,
        alias="notificationReminderTimer",
        ge=0,
        description="Minutes before a scheduled start to send a reminder (0 = off)",
    )
    show_password_in_notifications: bool = Field(default=False, alias="showPasswordInNotifications")
    server_password: str = Field(default="", alias="serverPassword")
    discord_webhook_url: str = Field(default="", alias="discordWebhookUrl")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def reminder_lead_time(self) -> dt.timedelta:
        return dt.timedelta(minutes=self.notification_reminder_timer)
