from __future__ import annotations

import copy
import datetime as dt
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, List

from .events import CustomRace, ScheduledEvent
from .recurrence import RecurrenceError, occurrences_between

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .store import JsonStore

logger = logging.getLogger(__name__)


@dataclass
class CalendarEntry:
    id: str
    group_id: str
    start: dt.datetime
    end: dt.datetime
    title: str
    description: str
    session_type: str


class ScheduledEventsCalendar:
    """Lays scheduled events out as calendar entries, one per configured session."""

    def __init__(self, store: "JsonStore") -> None:
        self.store = store

    def scheduled_events(self) -> List[ScheduledEvent]:
        events: List[ScheduledEvent] = []
        events.extend(race for race in self.store.list_custom_races() if race.scheduled is not None)
        for championship in self.store.list_championships():
            events.extend(event for event in championship.events if event.scheduled is not None)
        for race_weekend in self.store.list_race_weekends():
            events.extend(session for session in race_weekend.sessions if session.scheduled is not None)
        return events

    def build(self, start: dt.datetime, end: dt.datetime) -> List[CalendarEntry]:
        """Calendar entries for events starting between ``start`` and ``end``, recurring races expanded."""

        scheduled = self.scheduled_events()

        occurrences: List[ScheduledEvent] = []
        for event in scheduled:
            if start <= event.scheduled <= end:
                occurrences.append(event)
            if isinstance(event, CustomRace) and event.has_recurrence_rule():
                occurrences.extend(self._recurrences(event, start, end))

        entries: List[CalendarEntry] = []
        for event in sorted(occurrences, key=lambda item: item.scheduled):
            entries.extend(_entries_for(event))
        return entries

    def _recurrences(self, race: CustomRace, start: dt.datetime, end: dt.datetime) -> List[CustomRace]:
        try:
            rule = race.get_recurrence_rule()
        except RecurrenceError as exc:
            logger.warning("Skipping recurrences of %s (%s)", race.event_name(), exc)
            return []

        out = []
        for when in occurrences_between(rule, start, end):
            if when == race.scheduled:
                continue
            occurrence = copy.copy(race)
            occurrence.id = f"{race.id}@{when.isoformat()}"
            occurrence.scheduled = when
            out.append(occurrence)
        return out


def _entries_for(event: ScheduledEvent) -> List[CalendarEntry]:
    config = event.get_race_config()
    names = ", ".join(entrant.name for entrant in event.read_only_entry_list() if entrant.name)
    description = f"{', '.join(config.cars)}: {names}"
    # recurring occurrences share their race's id before the '@'
    group_id = event.id.split("@", 1)[0]

    entries = []
    session_start = event.scheduled
    for session in config.sessions:
        session_end = session_start + session.duration()
        entries.append(
            CalendarEntry(
                id=f"{event.id}{session.name}",
                group_id=group_id,
                start=session_start,
                end=session_end,
                title=f"{session.name} at {config.track_name()}: {event.event_name()}",
                description=description,
                session_type=session.type,
            )
        )
        session_start = session_end
    return entries
