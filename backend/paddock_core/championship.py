from __future__ import annotations

import copy
import datetime as dt
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .entrant import Entrant
from .events import RaceConfig, ScheduledEventBase, utc_now
from .results import (
    SESSION_QUALIFYING,
    SESSION_RACE,
    SESSION_SECOND_RACE,
    SessionCar,
    SessionResult,
    SessionResults,
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _default_places() -> List[int]:
    return [25, 18, 15, 12, 10, 8, 6, 4, 2, 1]


class ChampionshipEventNotFound(LookupError):
    pass


@dataclass
class ChampionshipPoints:
    places: List[int] = field(default_factory=_default_places)
    best_lap: int = 0
    pole_position: int = 0
    second_race_multiplier: float = 1.0

    def for_position(self, index: int) -> float:
        if index >= len(self.places):
            return 0
        return float(self.places[index])


@dataclass
class ChampionshipSession:
    started_time: Optional[dt.datetime] = None
    completed_time: Optional[dt.datetime] = None
    results: Optional[SessionResults] = None

    def in_progress(self) -> bool:
        return self.started_time is not None and self.completed_time is None

    def completed(self) -> bool:
        return self.completed_time is not None


@dataclass
class ChampionshipEvent(ScheduledEventBase):
    """One round of a championship. Owned and persisted by its Championship."""

    id: str = field(default_factory=_new_id)
    race_setup: RaceConfig = field(default_factory=RaceConfig)
    entry_list: List[Entrant] = field(default_factory=list)
    sessions: Dict[str, ChampionshipSession] = field(default_factory=dict)
    started_time: Optional[dt.datetime] = None
    completed_time: Optional[dt.datetime] = None

    # Not a dataclass field: set by the owning Championship so the event can
    # describe itself without being persisted twice.
    championship = None

    def event_name(self) -> str:
        track = self.race_setup.track_name()
        if self.championship is not None:
            return f"{self.championship.name}: {track}"
        return f"Championship event at {track}"

    def get_race_config(self) -> RaceConfig:
        return self.race_setup

    def read_only_entry_list(self) -> List[Entrant]:
        if self.championship is None:
            return list(self.entry_list)
        return self.championship.combined_entry_list(self)

    def in_progress(self) -> bool:
        return self.started_time is not None and self.completed_time is None

    def completed(self) -> bool:
        return self.completed_time is not None

    def record_session(
        self,
        session_type: str,
        results: SessionResults | None,
        started: dt.datetime | None = None,
        completed: dt.datetime | None = None,
    ) -> None:
        """Record a finished session; the event completes once every configured session has."""

        now = utc_now()
        session = self.sessions.setdefault(session_type, ChampionshipSession())
        session.started_time = started or session.started_time or now
        session.completed_time = completed or now
        session.results = results

        configured = [config.type for config in self.race_setup.sessions] or [session_type]
        if all(
            self.sessions.get(kind) is not None
            and self.sessions[kind].started_time is not None
            and self.sessions[kind].completed_time is not None
            for kind in configured
        ):
            self.completed_time = session.completed_time


@dataclass
class ChampionshipStanding:
    guid: str
    name: str
    team: str
    car: str
    points: float = 0.0


@dataclass
class TeamStanding:
    team: str
    points: float = 0.0


@dataclass
class Championship:
    id: str = field(default_factory=_new_id)
    name: str = ""
    entrants: List[Entrant] = field(default_factory=list)
    events: List[ChampionshipEvent] = field(default_factory=list)
    points: ChampionshipPoints = field(default_factory=ChampionshipPoints)
    driver_penalties: Dict[str, int] = field(default_factory=dict)
    team_penalties: Dict[str, int] = field(default_factory=dict)
    override_password: bool = False
    replacement_password: str = ""
    created: Optional[dt.datetime] = field(default_factory=utc_now)
    updated: Optional[dt.datetime] = None
    deleted: Optional[dt.datetime] = None

    def __post_init__(self) -> None:
        self.attach_events()

    def attach_events(self) -> None:
        for event in self.events:
            event.championship = self

    def add_event(self, event: ChampionshipEvent) -> None:
        event.championship = self
        self.events.append(event)

    def event_by_id(self, event_id: str) -> ChampionshipEvent:
        for event in self.events:
            if event.id == event_id:
                return event
        raise ChampionshipEventNotFound(f"championship event {event_id} not found")

    def progress(self) -> float:
        if not self.events:
            return 0.0
        completed = sum(1 for event in self.events if event.completed())
        return completed / len(self.events) * 100

    def combined_entry_list(self, event: ChampionshipEvent) -> List[Entrant]:
        """Championship entrants with any per-event overrides applied."""

        entry_list = [copy.copy(entrant) for entrant in self.entrants]
        for entrant in entry_list:
            for override in event.entry_list:
                if override.id == entrant.id and override.model == entrant.model:
                    entrant.overwrite_properties(override)
                    break
        return entry_list

    def _award(self, give: Callable[[ChampionshipEvent, str, float], None]) -> None:
        for event in self.events:
            qualifying = event.sessions.get(SESSION_QUALIFYING)
            if qualifying is not None and qualifying.results is not None:
                classified = _classified(qualifying.results.result)
                if classified:
                    give(event, classified[0].driver_guid, float(self.points.pole_position))

            for session_type, multiplier in (
                (SESSION_RACE, 1.0),
                (SESSION_SECOND_RACE, self.points.second_race_multiplier),
            ):
                race = event.sessions.get(session_type)
                if race is None or race.results is None:
                    continue
                fastest = race.results.fastest_lap()
                for position, row in enumerate(_classified(race.results.result)):
                    give(event, row.driver_guid, self.points.for_position(position) * multiplier)
                    if fastest is not None and fastest.driver_guid == row.driver_guid:
                        give(event, row.driver_guid, float(self.points.best_lap) * multiplier)

    def standings(self) -> List[ChampionshipStanding]:
        table: Dict[str, ChampionshipStanding] = {}

        def give(event: ChampionshipEvent, guid: str, points: float) -> None:
            car = _find_car(event, guid)
            if car is None:
                return
            standing = table.get(guid)
            if standing is None:
                standing = table[guid] = ChampionshipStanding(
                    guid=guid, name=car.driver.name, team=car.driver.team, car=car.model
                )
            standing.points += points

        self._award(give)

        out = []
        for standing in table.values():
            if not standing.name:
                continue
            standing.points -= self.driver_penalties.get(standing.guid, 0)
            out.append(standing)

        out.sort(key=lambda standing: (-standing.points, standing.name))
        return out

    def team_standings(self) -> List[TeamStanding]:
        teams: Dict[str, float] = {}

        def give(event: ChampionshipEvent, guid: str, points: float) -> None:
            car = _find_car(event, guid)
            team = car.driver.team if car is not None else ""
            teams[team] = teams.get(team, 0.0) + points

        self._award(give)

        out = [
            TeamStanding(team=name, points=points - self.team_penalties.get(name, 0))
            for name, points in teams.items()
        ]
        out.sort(key=lambda standing: (-standing.points, standing.team))
        return out


def _classified(rows: List[SessionResult]) -> List[SessionResult]:
    return [row for row in rows if row.total_time > 0 and not row.disqualified]


def _find_car(event: ChampionshipEvent, guid: str) -> Optional[SessionCar]:
    for session in event.sessions.values():
        if session.results is None:
            continue
        for car in session.results.cars:
            if car.driver.guid == guid:
                return car
    return None
