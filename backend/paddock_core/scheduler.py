"""Starts custom races, championship events and race weekend sessions at their scheduled times.

The store is the record of what is scheduled. The scheduler keeps one start
timer and at most one reminder timer per event id, rebuilt from the store by
``init`` whenever the process starts.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
from typing import Callable, Dict, List, Optional, Protocol

from .championship import ChampionshipEvent
from .events import CustomRace, ScheduledEvent, utc_now
from .managers import ChampionshipManager, RaceManager, RaceWeekendManager
from .notifications import NotificationManager
from .race_weekend import RaceWeekendSession
from .recurrence import RecurrenceError, next_occurrence
from .store import JsonStore

logger = logging.getLogger(__name__)


class InvalidScheduleTime(ValueError):
    pass


class UnknownScheduledEvent(TypeError):
    pass


class Timer(Protocol):
    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]
Clock = Callable[[], dt.datetime]


class Scheduler:
    def __init__(
        self,
        store: JsonStore,
        races: RaceManager,
        championships: ChampionshipManager,
        race_weekends: RaceWeekendManager,
        notifications: Optional[NotificationManager] = None,
        timer_factory: TimerFactory = threading.Timer,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.races = races
        self.championships = championships
        self.race_weekends = race_weekends
        self.notifications = notifications
        self._timer_factory = timer_factory
        self._clock = clock

        self._lock = threading.Lock()
        self._start_timers: Dict[str, Timer] = {}
        self._reminder_timers: Dict[str, Timer] = {}

    # ------------------------------------------------------------------
    # Startup

    def init(self) -> None:
        """Arm timers for everything the store says is scheduled.

        Failing to read any collection raises; a single event that cannot be
        scheduled is logged and skipped.
        """

        custom_races = self.store.list_custom_races()
        championships = self.store.list_championships()
        race_weekends = self.store.list_race_weekends()

        for race in custom_races:
            self._schedule_existing_event(race)
        for championship in championships:
            for event in championship.events:
                self._schedule_existing_event(event)
        for race_weekend in race_weekends:
            for session in race_weekend.sessions:
                self._schedule_existing_event(session)

        logger.info("Scheduler initialised with %d scheduled events", len(self.scheduled_event_ids()))

    def _schedule_existing_event(self, event: ScheduledEvent) -> None:
        try:
            self._recover(event)
        except Exception:
            logger.exception("Could not schedule event %s (%s)", event.event_name(), event.id)

    def _recover(self, event: ScheduledEvent) -> None:
        scheduled = event.scheduled
        if scheduled is None:
            return

        if scheduled > self._clock():
            self.schedule(event, scheduled)
            return

        if event.has_recurrence_rule():
            logger.info(
                "Server was offline when recurring event %s was due to start at %s; "
                "scheduling its next recurrence. Start the event manually if you wish to run it.",
                event.event_name(),
                scheduled.isoformat(),
            )
            next_time = self._find_next_recurrence(event, scheduled)
            if next_time is None:
                logger.warning("Recurring event %s has no future occurrence; it will not be rescheduled", event.event_name())
                return
            self._set_scheduled_time(event, next_time)
            self.schedule(event, next_time)
            return

        logger.warning(
            "Server was offline when event %s was due to start at %s; the schedule has been cleared. "
            "Start the event manually if you wish to run it.",
            event.event_name(),
            scheduled.isoformat(),
        )
        self._clear_scheduled_time(event)

    # ------------------------------------------------------------------
    # Scheduling

    def schedule(self, event: ScheduledEvent, start_time: Optional[dt.datetime]) -> None:
        """Start ``event`` at ``start_time``, replacing any timers it already has."""

        if start_time is None:
            raise InvalidScheduleTime(f"cannot schedule {event.event_name()} without a start time")

        options = self.store.load_server_options()
        lead_time = options.reminder_lead_time

        with self._lock:
            self._cancel_locked(event.id)
            self._arm(self._start_timers, event.id, start_time, lambda: self._fire(event, start_time))
            if lead_time > dt.timedelta(0):
                self._arm(self._reminder_timers, event.id, start_time - lead_time, lambda: self._remind(event))

        logger.info("Scheduled %s (%s) to start at %s", event.event_name(), event.id, start_time.isoformat())

        if lead_time > dt.timedelta(0) and self.notifications is not None:
            try:
                self.notifications.send_race_scheduled_message(event, start_time)
            except Exception:
                logger.exception("Could not send race scheduled message for %s", event.event_name())

    def de_schedule(self, event: ScheduledEvent) -> None:
        """Cancel an event's timers, drop its recurrence rule and clear its scheduled time."""

        with self._lock:
            self._cancel_locked(event.id)
        event.clear_recurrence_rule()
        self._clear_scheduled_time(event)
        logger.info("Removed schedule for %s (%s)", event.event_name(), event.id)

    def stop(self) -> None:
        with self._lock:
            for timer in list(self._start_timers.values()) + list(self._reminder_timers.values()):
                timer.cancel()
            self._start_timers.clear()
            self._reminder_timers.clear()

    def is_scheduled(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self._start_timers

    def scheduled_event_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._start_timers)

    def _cancel_locked(self, event_id: str) -> None:
        for timers in (self._start_timers, self._reminder_timers):
            timer = timers.pop(event_id, None)
            if timer is not None:
                timer.cancel()

    def _arm(
        self,
        timers: Dict[str, Timer],
        event_id: str,
        when: dt.datetime,
        callback: Callable[[], None],
    ) -> None:
        delay = max(0.0, (when - self._clock()).total_seconds())
        timer: Optional[Timer] = None

        def run() -> None:
            with self._lock:
                # a replacement may already sit under this id
                if timers.get(event_id) is timer:
                    del timers[event_id]
            callback()

        timer = self._timer_factory(delay, run)
        timer.daemon = True
        timers[event_id] = timer
        timer.start()

    # ------------------------------------------------------------------
    # Timer callbacks

    def _fire(self, event: ScheduledEvent, start_time: dt.datetime) -> None:
        logger.info("Starting scheduled event %s (%s)", event.event_name(), event.id)
        try:
            self._start_event(event)
        except Exception:
            logger.exception("Could not start scheduled event %s (%s)", event.event_name(), event.id)
            return

        if not event.has_recurrence_rule():
            return

        next_time = self._find_next_recurrence(event, start_time)
        if next_time is None:
            return
        try:
            self._set_scheduled_time(event, next_time)
            self.schedule(event, next_time)
        except Exception:
            logger.exception("Could not set next recurrence timer for %s (%s)", event.event_name(), event.id)

    def _remind(self, event: ScheduledEvent) -> None:
        if self.notifications is None:
            return
        try:
            self.notifications.send_race_reminder_message(event)
        except Exception:
            logger.exception("Could not send race reminder message for %s", event.event_name())

    def _find_next_recurrence(self, event: ScheduledEvent, start: dt.datetime) -> Optional[dt.datetime]:
        """Next occurrence strictly after ``start``; None when there is none still in the future."""

        try:
            rule = event.get_recurrence_rule()
        except RecurrenceError as exc:
            logger.error("Couldn't get recurrence rule for event %s (%s)", event.id, exc)
            return None

        next_time = next_occurrence(rule, start)
        if next_time is not None and next_time > self._clock():
            return next_time
        return None

    # ------------------------------------------------------------------
    # Dispatch over the event kinds

    def _start_event(self, event: ScheduledEvent) -> None:
        if isinstance(event, RaceWeekendSession):
            race_weekend, _ = self.race_weekends.find_race_weekend_for_session(event.id)
            self.race_weekends.start_session(race_weekend.id, event.id)
        elif isinstance(event, ChampionshipEvent):
            championship, owned = self.championships.find_championship_for_event(event.id)
            self.championships.start_event(championship.id, owned.id)
        elif isinstance(event, CustomRace):
            self.races.start_custom_race(event.id)
        else:
            raise UnknownScheduledEvent(f"cannot start {type(event).__name__}")

        self._clear_scheduled_time(event)

    def _clear_scheduled_time(self, event: ScheduledEvent) -> None:
        self._set_scheduled_time(event, None)

    def _set_scheduled_time(self, event: ScheduledEvent, value: Optional[dt.datetime]) -> None:
        """Write ``value`` to the stored copy of ``event`` and persist the aggregate that owns it."""

        if isinstance(event, RaceWeekendSession):
            race_weekend, session = self.race_weekends.find_race_weekend_for_session(event.id)
            session.scheduled = value
            self.store.upsert_race_weekend(race_weekend)
        elif isinstance(event, ChampionshipEvent):
            championship, owned = self.championships.find_championship_for_event(event.id)
            owned.scheduled = value
            _copy_recurrence(event, owned)
            self.championships.upsert_championship(championship)
        elif isinstance(event, CustomRace):
            race = self.store.find_custom_race_by_id(event.id)
            race.scheduled = value
            _copy_recurrence(event, race)
            self.store.upsert_custom_race(race)
        else:
            raise UnknownScheduledEvent(f"cannot update the schedule of {type(event).__name__}")

        event.scheduled = value


def _copy_recurrence(source: ChampionshipEvent | CustomRace, target: ChampionshipEvent | CustomRace) -> None:
    target.recurrence = source.recurrence
    if source.scheduled_initial is not None:
        target.scheduled_initial = source.scheduled_initial
