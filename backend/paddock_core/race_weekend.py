from __future__ import annotations

import copy
import datetime as dt
import logging
import uuid
from dataclasses import dataclass, field
from typing import Annotated, List, Literal, Optional, Protocol, Union

from pydantic import Field

from .entrant import Entrant
from .events import RaceConfig, ScheduledEventBase, utc_now
from .recurrence import Rule, RecurrenceError
from .results import SessionResult, SessionResults
from .sorting import sort_entrants

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


class RaceWeekendSessionNotFound(LookupError):
    pass


class DependencyIncomplete(RuntimeError):
    """A dependent session was asked for its entry list before its parents finished."""


class FilterError(ValueError):
    pass


class EntryListFilterFailed(RuntimeError):
    def __init__(self, filter_name: str, cause: Exception) -> None:
        super().__init__(f"entry list filter {filter_name!r} failed: {cause}")
        self.filter_name = filter_name


@dataclass
class SessionEntrant:
    """An entrant carried from one session into the next, with the result that got them there."""

    entrant: Entrant
    result: SessionResult = field(default_factory=SessionResult)
    results: Optional[SessionResults] = None
    session_id: str = ""

    @property
    def guid(self) -> str:
        return self.entrant.guid

    @property
    def model(self) -> str:
        return self.entrant.model

    @property
    def pit_box(self) -> int:
        return self.entrant.pit_box

    @pit_box.setter
    def pit_box(self, value: int) -> None:
        self.entrant.pit_box = value


class EntryListFilter(Protocol):
    @property
    def name(self) -> str: ...

    def filter(self, entrants: List[SessionEntrant]) -> None: ...


@dataclass
class PositionFilter:
    """Keeps finishing positions ``start`` to ``end`` (1-based, inclusive). ``end`` of 0 means last."""

    start: int = 1
    end: int = 0
    kind: Literal["position"] = "position"

    @property
    def name(self) -> str:
        return "Entrant Position Filter"

    def filter(self, entrants: List[SessionEntrant]) -> None:
        if self.start < 1 or (self.end and self.end < self.start):
            raise FilterError(f"invalid bounds {self.start}-{self.end}")
        end = len(entrants) if not self.end else min(self.end, len(entrants))
        entrants[:] = entrants[self.start - 1:end]


@dataclass
class ReverseGridFilter:
    """Reverses the first ``count`` entrants. -1 reverses everyone, 0 nobody."""

    count: int = -1
    kind: Literal["reverse"] = "reverse"

    @property
    def name(self) -> str:
        return "Reverse Grid Filter"

    def filter(self, entrants: List[SessionEntrant]) -> None:
        if self.count < -1:
            raise FilterError(f"cannot reverse {self.count} entrants")
        reverse_entrants(self.count, entrants)


@dataclass
class DriverSelectionFilter:
    """Keeps only the selected drivers, in the order they were selected."""

    guids: List[str] = field(default_factory=list)
    kind: Literal["driver_selection"] = "driver_selection"

    @property
    def name(self) -> str:
        return "Driver Selection Filter"

    def filter(self, entrants: List[SessionEntrant]) -> None:
        if not self.guids:
            raise FilterError("no drivers selected")
        by_guid = {}
        for entrant in entrants:
            by_guid.setdefault(entrant.guid, entrant)
        entrants[:] = [by_guid[guid] for guid in self.guids if guid in by_guid]


SessionFilter = Annotated[
    Union[PositionFilter, ReverseGridFilter, DriverSelectionFilter],
    Field(discriminator="kind"),
]


def reverse_entrants(count: int, entrants: List[SessionEntrant]) -> None:
    if count == 0:
        return
    if count < 0 or count > len(entrants):
        count = len(entrants)
    entrants[:count] = entrants[:count][::-1]


@dataclass
class RaceWeekendSession(ScheduledEventBase):
    """A session within a race weekend.

    Sessions without ``inherits_ids`` take their entrants straight from the
    race weekend; the rest take them from the results of the sessions they
    inherit from.
    """

    id: str = field(default_factory=_new_id)
    race_config: RaceConfig = field(default_factory=RaceConfig)
    inherits_ids: List[str] = field(default_factory=list)
    filters: List[SessionFilter] = field(default_factory=list)
    sort_type: str = ""
    start_when_parent_has_finished: bool = False
    override_password: bool = False
    replacement_password: str = ""
    started_time: Optional[dt.datetime] = None
    completed_time: Optional[dt.datetime] = None
    results: Optional[SessionResults] = None
    grid: List[Entrant] = field(default_factory=list)
    created: Optional[dt.datetime] = field(default_factory=utc_now)

    # set by the owning RaceWeekend
    race_weekend_name = ""

    def name(self) -> str:
        if self.race_config.sessions:
            return self.race_config.sessions[0].name
        return "Session"

    @property
    def session_type(self) -> str:
        if self.race_config.sessions:
            return self.race_config.sessions[0].type
        return ""

    def event_name(self) -> str:
        if self.race_weekend_name:
            return f"{self.race_weekend_name}: {self.name()}"
        return f"Race weekend {self.name()}"

    def get_race_config(self) -> RaceConfig:
        return self.race_config

    def read_only_entry_list(self) -> List[Entrant]:
        return list(self.grid)

    # Race weekend sessions do not recur.
    def set_recurrence_rule(self, text: str) -> None:
        return None

    def get_recurrence_rule(self) -> Rule:
        raise RecurrenceError("race weekend sessions do not recur")

    def has_recurrence_rule(self) -> bool:
        return False

    def is_base(self) -> bool:
        return not self.inherits_ids

    def in_progress(self) -> bool:
        return self.started_time is not None and self.completed_time is None

    def completed(self) -> bool:
        return self.completed_time is not None and self.results is not None

    def has_parent(self, session_id: str) -> bool:
        return session_id in self.inherits_ids

    def remove_parent(self, session_id: str) -> None:
        self.inherits_ids = [parent for parent in self.inherits_ids if parent != session_id]

    def finishing_grid(self) -> List[SessionEntrant]:
        """Entrants in finishing order, each placed in the pit box matching their position.

        Disqualified drivers and rows without a driver are left out. Drivers
        who started the session but are missing from its results follow the
        classified finishers in their starting order.
        """

        if self.results is None:
            raise DependencyIncomplete(f"session {self.id} has no results")

        grid: List[SessionEntrant] = []
        classified = set()
        for row in self.results.result:
            if not row.driver_guid or row.disqualified:
                continue
            car = self.results.find_car(row.driver_guid, row.car_model)
            if car is None:
                logger.warning(
                    "No car found for %s (%s) in results of session %s",
                    row.driver_guid,
                    row.car_model,
                    self.id,
                )
                continue
            entrant = Entrant()
            entrant.assign_from_result(row, car)
            entrant.pit_box = len(grid)
            classified.add((row.driver_guid, row.car_model))
            grid.append(SessionEntrant(entrant=entrant, result=row, results=self.results, session_id=self.id))

        disqualified = {row.driver_guid for row in self.results.result if row.disqualified}
        for starter in self.grid:
            if starter.is_placeholder or not starter.guid or starter.guid in disqualified:
                continue
            if (starter.guid, starter.model) in classified:
                continue
            entrant = copy.copy(starter)
            entrant.pit_box = len(grid)
            grid.append(
                SessionEntrant(
                    entrant=entrant, result=entrant.as_session_result(), results=self.results, session_id=self.id
                )
            )
        return grid


@dataclass
class RaceWeekend:
    """A series of sessions where each session's grid comes from earlier results."""

    id: str = field(default_factory=_new_id)
    name: str = ""
    entry_list: List[Entrant] = field(default_factory=list)
    sessions: List[RaceWeekendSession] = field(default_factory=list)
    created: Optional[dt.datetime] = field(default_factory=utc_now)
    updated: Optional[dt.datetime] = None
    deleted: Optional[dt.datetime] = None

    def __post_init__(self) -> None:
        self.attach_sessions()

    def attach_sessions(self) -> None:
        for session in self.sessions:
            session.race_weekend_name = self.name

    def add_session(self, session: RaceWeekendSession, parent: RaceWeekendSession | None = None) -> None:
        if parent is not None and parent.id not in session.inherits_ids:
            session.inherits_ids.append(parent.id)
        session.race_weekend_name = self.name
        self.sessions.append(session)

    def find_session(self, session_id: str) -> RaceWeekendSession:
        for session in self.sessions:
            if session.id == session_id:
                return session
        raise RaceWeekendSessionNotFound(f"race weekend session {session_id} not found")

    def children(self, session_id: str) -> List[RaceWeekendSession]:
        return [session for session in self.sessions if session.has_parent(session_id)]

    def remove_session(self, session_id: str) -> None:
        """Remove a session, handing its parents down to its children."""

        try:
            doomed = self.find_session(session_id)
        except RaceWeekendSessionNotFound:
            return

        for parent_id in doomed.inherits_ids:
            try:
                parent = self.find_session(parent_id)
            except RaceWeekendSessionNotFound:
                logger.warning("Could not find parent session %s", parent_id)
                continue
            for child in self.children(doomed.id):
                if child.id != parent.id and not self.has_ancestor(parent, child.id):
                    if parent_id not in child.inherits_ids:
                        child.inherits_ids.append(parent_id)

        self.sessions = [session for session in self.sessions if session.id != session_id]
        for session in self.sessions:
            session.remove_parent(session_id)

    def has_ancestor(self, session: RaceWeekendSession, other_id: str) -> bool:
        if session.has_parent(other_id):
            return True
        for parent_id in session.inherits_ids:
            try:
                parent = self.find_session(parent_id)
            except RaceWeekendSessionNotFound:
                continue
            if self.has_ancestor(parent, other_id):
                return True
        return False

    def num_ancestors(self, session: RaceWeekendSession) -> int:
        total = len(session.inherits_ids)
        for parent_id in session.inherits_ids:
            try:
                total += self.num_ancestors(self.find_session(parent_id))
            except RaceWeekendSessionNotFound:
                continue
        return total

    def sorted_sessions(self) -> List[RaceWeekendSession]:
        return sorted(self.sessions, key=self.num_ancestors)

    def session_can_be_run(self, session: RaceWeekendSession) -> bool:
        """Whether every session this one depends on, directly or not, has finished."""

        if session.is_base():
            return True
        for parent_id in session.inherits_ids:
            try:
                parent = self.find_session(parent_id)
            except RaceWeekendSessionNotFound:
                logger.warning("Race weekend session %s not found", parent_id)
                continue
            if not parent.completed() or not self.session_can_be_run(parent):
                return False
        return True

    def progress(self) -> float:
        if not self.sessions:
            return 0.0
        done = sum(1 for session in self.sessions if session.completed())
        return done / len(self.sessions) * 100

    def completed(self) -> bool:
        return all(session.completed() for session in self.sessions)

    def in_progress(self) -> bool:
        return any(session.in_progress() for session in self.sessions)

    def get_entry_list(self, session: RaceWeekendSession) -> List[SessionEntrant]:
        """Build the entry list for ``session``.

        Base sessions use the weekend's entrants as they are. Dependent
        sessions take the finishing order of each session they inherit from,
        in the order listed, and then run the session's filters over the
        combined list.

        Raises:
            RaceWeekendSessionNotFound: an inherited session does not exist.
            DependencyIncomplete: an inherited session has no results yet.
            EntryListFilterFailed: a filter rejected the entry list.
        """

        if session.is_base():
            return [
                SessionEntrant(entrant=copy.copy(entrant), result=entrant.as_session_result(), session_id=session.id)
                for entrant in self.entry_list
            ]

        entrants: List[SessionEntrant] = []
        for parent_id in session.inherits_ids:
            parent = self.find_session(parent_id)
            if parent.results is None:
                raise DependencyIncomplete(
                    f"session {parent.name()!r} ({parent.id}) has not finished; "
                    f"cannot build the entry list for {session.name()!r}"
                )
            # pit boxes restart at 0 for each parent; build_grid renumbers them
            entrants.extend(parent.finishing_grid())

        for entry_filter in session.filters:
            try:
                entry_filter.filter(entrants)
            except FilterError as exc:
                raise EntryListFilterFailed(entry_filter.name, exc) from exc

        return entrants

    def build_grid(self, session: RaceWeekendSession) -> List[SessionEntrant]:
        """The starting grid: the entry list sorted by the session's sort type, pit boxes renumbered."""

        entrants = self.get_entry_list(session)
        sort_entrants(session.sort_type, session, entrants)
        # drivers who never set a time start at the back
        entrants.sort(key=lambda entrant: entrant.results is not None and entrant.result.total_time == 0)
        for pit_box, entrant in enumerate(entrants):
            entrant.pit_box = pit_box
        return entrants
