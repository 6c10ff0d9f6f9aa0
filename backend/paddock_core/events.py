from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from .entrant import Entrant, car_models
from .recurrence import Rule, parse_rule
from .results import SESSION_RACE


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class SessionConfig:
    type: str = SESSION_RACE
    name: str = "Race"
    time: int = 0  # minutes
    laps: int = 0

    def duration(self) -> dt.timedelta:
        if self.time > 0:
            return dt.timedelta(minutes=self.time)
        # lap races have no fixed length; three minutes a lap is close enough
        return dt.timedelta(minutes=3 * self.laps)


@dataclass
class RaceConfig:
    track: str = ""
    track_layout: str = ""
    cars: List[str] = field(default_factory=list)
    sessions: List[SessionConfig] = field(default_factory=list)

    def track_name(self) -> str:
        name = self.track.replace("_", " ").title()
        if self.track_layout:
            name += f" ({self.track_layout.replace('_', ' ').title()})"
        return name

    def has_session(self, session_type: str) -> bool:
        return any(session.type == session_type for session in self.sessions)


class ScheduledEvent(Protocol):
    """Anything the scheduler can start at a future time."""

    id: str
    scheduled: Optional[dt.datetime]

    def has_recurrence_rule(self) -> bool: ...

    def get_recurrence_rule(self) -> Rule: ...

    def clear_recurrence_rule(self) -> None: ...

    def event_name(self) -> str: ...

    def get_race_config(self) -> RaceConfig: ...

    def read_only_entry_list(self) -> List[Entrant]: ...


@dataclass
class ScheduledEventBase:
    scheduled: Optional[dt.datetime] = None
    scheduled_initial: Optional[dt.datetime] = None
    recurrence: str = ""

    def set_recurrence_rule(self, text: str) -> None:
        """Validate and store a recurrence rule anchored on the initial schedule."""

        text = (text or "").strip()
        anchor = self.scheduled_initial or self.scheduled or utc_now()
        parse_rule(text, anchor)
        if self.scheduled_initial is None:
            self.scheduled_initial = anchor
        self.recurrence = text

    def get_recurrence_rule(self) -> Rule:
        return parse_rule(self.recurrence, self.scheduled_initial or self.scheduled or utc_now())

    def has_recurrence_rule(self) -> bool:
        return bool(self.recurrence)

    def clear_recurrence_rule(self) -> None:
        self.recurrence = ""


@dataclass
class CustomRace(ScheduledEventBase):
    """A standalone race configuration with its own entry list."""

    id: str = field(default_factory=_new_id)
    name: str = ""
    race_config: RaceConfig = field(default_factory=RaceConfig)
    entry_list: List[Entrant] = field(default_factory=list)
    override_password: bool = False
    replacement_password: str = ""
    created: Optional[dt.datetime] = field(default_factory=utc_now)
    updated: Optional[dt.datetime] = None
    deleted: Optional[dt.datetime] = None

    def event_name(self) -> str:
        if self.name:
            return self.name
        return f"Race at {self.race_config.track_name()}"

    def get_race_config(self) -> RaceConfig:
        return self.race_config

    def read_only_entry_list(self) -> List[Entrant]:
        return list(self.entry_list)

    def cars(self) -> List[str]:
        return self.race_config.cars or car_models(self.entry_list)
