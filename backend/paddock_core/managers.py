"""Managers that own each kind of event and know how to start it.

The game server itself is external: starting an event resolves its
configuration and entry list, records the state change in the store and hands
the result to a ``ServerProcess``.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Tuple

from .championship import Championship, ChampionshipEvent
from .entrant import Entrant
from .events import CustomRace, RaceConfig, ScheduledEvent, utc_now
from .notifications import NotificationManager
from .race_weekend import DependencyIncomplete, RaceWeekend, RaceWeekendSession, SessionEntrant
from .results import SessionResults
from .store import JsonStore, RecordNotFound

logger = logging.getLogger(__name__)


class ServerProcess(Protocol):
    def start(self, event_name: str, race_config: RaceConfig, entry_list: List[Entrant]) -> None: ...


class _Manager:
    def __init__(
        self,
        store: JsonStore,
        process: ServerProcess,
        notifications: Optional[NotificationManager] = None,
    ) -> None:
        self.store = store
        self.process = process
        self.notifications = notifications

    def _notify_start(self, event: ScheduledEvent) -> None:
        if self.notifications is None:
            return
        try:
            self.notifications.send_race_start_message(event)
        except Exception:
            logger.exception("Could not send race start notification for %s", event.event_name())


class RaceManager(_Manager):
    def start_custom_race(self, race_id: str) -> CustomRace:
        race = self.store.find_custom_race_by_id(race_id)
        logger.info("Starting custom race %s (%s)", race.event_name(), race.id)
        self.process.start(race.event_name(), race.race_config, race.read_only_entry_list())
        self._notify_start(race)
        return race


class ChampionshipManager(_Manager):
    def find_championship_for_event(self, event_id: str) -> Tuple[Championship, ChampionshipEvent]:
        for championship in self.store.list_championships():
            for event in championship.events:
                if event.id == event_id:
                    return championship, event
        raise RecordNotFound(f"no championship contains event {event_id}")

    def upsert_championship(self, championship: Championship) -> None:
        self.store.upsert_championship(championship)

    def start_event(self, championship_id: str, event_id: str) -> ChampionshipEvent:
        """Start a championship round, resetting any sessions recorded by an earlier attempt."""

        championship = self.store.load_championship(championship_id)
        event = championship.event_by_id(event_id)

        event.started_time = utc_now()
        event.completed_time = None
        event.sessions = {}
        self.store.upsert_championship(championship)

        logger.info("Starting championship event %s (%s)", event.event_name(), event.id)
        self.process.start(event.event_name(), event.race_setup, championship.combined_entry_list(event))
        self._notify_start(event)
        return event

    def record_session_results(
        self,
        championship_id: str,
        event_id: str,
        session_type: str,
        results: SessionResults,
    ) -> Championship:
        championship = self.store.load_championship(championship_id)
        event = championship.event_by_id(event_id)
        event.record_session(session_type, results)
        self.store.upsert_championship(championship)
        if event.completed():
            logger.info("Championship event %s completed", event.event_name())
        return championship


class RaceWeekendManager(_Manager):
    def find_race_weekend_for_session(self, session_id: str) -> Tuple[RaceWeekend, RaceWeekendSession]:
        for race_weekend in self.store.list_race_weekends():
            for session in race_weekend.sessions:
                if session.id == session_id:
                    return race_weekend, session
        raise RecordNotFound(f"no race weekend contains session {session_id}")

    def find_session(self, race_weekend_id: str, session_id: str) -> Tuple[RaceWeekend, RaceWeekendSession]:
        race_weekend = self.store.load_race_weekend(race_weekend_id)
        return race_weekend, race_weekend.find_session(session_id)

    def preview_grid(self, race_weekend_id: str, session_id: str) -> List[SessionEntrant]:
        """The grid a session would start with right now. Nothing is persisted."""

        race_weekend, session = self.find_session(race_weekend_id, session_id)
        return race_weekend.build_grid(session)

    def start_session(self, race_weekend_id: str, session_id: str) -> RaceWeekendSession:
        race_weekend, session = self.find_session(race_weekend_id, session_id)
        if not race_weekend.session_can_be_run(session):
            raise DependencyIncomplete(f"session {session.name()!r} cannot run until its parent sessions finish")

        grid = race_weekend.build_grid(session)
        session.grid = [entrant.entrant for entrant in grid]
        session.started_time = utc_now()
        session.completed_time = None
        session.results = None
        self.store.upsert_race_weekend(race_weekend)

        logger.info("Starting race weekend session %s (%s) with %d entrants", session.event_name(), session.id, len(grid))
        self.process.start(session.event_name(), session.race_config, list(session.grid))
        self._notify_start(session)
        return session

    def complete_session(self, race_weekend_id: str, session_id: str, results: SessionResults) -> RaceWeekend:
        """Record a session's results, then start any child session waiting on it."""

        race_weekend, session = self.find_session(race_weekend_id, session_id)
        session.results = results
        session.completed_time = utc_now()
        if session.started_time is None:
            session.started_time = session.completed_time
        self.store.upsert_race_weekend(race_weekend)
        logger.info("Race weekend session %s completed", session.event_name())

        for child in race_weekend.children(session.id):
            if not child.start_when_parent_has_finished or not race_weekend.session_can_be_run(child):
                continue
            try:
                self.start_session(race_weekend.id, child.id)
            except Exception:
                logger.exception("Failed to auto-start race weekend session %s", child.id)

        return self.store.load_race_weekend(race_weekend.id)
