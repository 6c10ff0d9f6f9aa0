import datetime as dt
import logging
import threading
from dataclasses import dataclass
from typing import Optional

import pytest

from paddock_core.championship import Championship, ChampionshipEvent
from paddock_core.config import ServerOptions
from paddock_core.events import CustomRace, RaceConfig, SessionConfig, utc_now
from paddock_core.managers import ChampionshipManager, RaceManager, RaceWeekendManager
from paddock_core.notifications import DiscordNotifier, NotificationError, NotificationManager
from paddock_core.race_weekend import RaceWeekend, RaceWeekendSession
from paddock_core.scheduler import InvalidScheduleTime, Scheduler, UnknownScheduledEvent
from paddock_core.store import StoreError


class RecordingNotifications:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.scheduled = []
        self.reminders = []

    def send_race_scheduled_message(self, event, start_time) -> None:
        if self.fail:
            raise NotificationError("webhook is down")
        self.scheduled.append((event.id, start_time))

    def send_race_reminder_message(self, event) -> None:
        if self.fail:
            raise NotificationError("webhook is down")
        self.reminders.append(event.id)


@dataclass
class StrayEvent:
    id: str = "stray"
    scheduled: Optional[dt.datetime] = None

    def has_recurrence_rule(self) -> bool:
        return False

    def get_recurrence_rule(self):
        raise NotImplementedError

    def clear_recurrence_rule(self) -> None:
        return None

    def event_name(self) -> str:
        return "Stray"

    def get_race_config(self) -> RaceConfig:
        return RaceConfig()

    def read_only_entry_list(self) -> list:
        return []


@pytest.fixture
def notifications():
    return RecordingNotifications()


@pytest.fixture
def make_scheduler(store, process, timers, clock, notifications):
    def build(**overrides) -> Scheduler:
        options = {
            "notifications": notifications,
            "timer_factory": timers,
            "clock": clock,
        }
        options.update(overrides)
        return Scheduler(
            store,
            RaceManager(store, process),
            ChampionshipManager(store, process),
            RaceWeekendManager(store, process),
            **options,
        )

    return build


def _race(store, scheduled=None, recurrence: str = "") -> CustomRace:
    race = CustomRace(
        name="Club night",
        race_config=RaceConfig(track="spa", sessions=[SessionConfig(time=30)]),
        scheduled=scheduled,
    )
    if recurrence:
        race.set_recurrence_rule(recurrence)
    store.upsert_custom_race(race)
    return race


def test_schedule_without_start_time_is_rejected(store, make_scheduler, timers):
    scheduler = make_scheduler()
    race = _race(store)

    with pytest.raises(InvalidScheduleTime):
        scheduler.schedule(race, None)

    assert timers.created == []
    assert not scheduler.is_scheduled(race.id)


def test_rescheduling_replaces_timers(store, make_scheduler, timers, clock):
    store.upsert_server_options(ServerOptions(notification_reminder_timer=10))
    scheduler = make_scheduler()
    race = _race(store)

    scheduler.schedule(race, clock.now + dt.timedelta(hours=1))
    scheduler.schedule(race, clock.now + dt.timedelta(hours=2))

    live = timers.live()
    assert len(live) == 2
    assert sorted(timer.interval for timer in live) == [110 * 60, 120 * 60]
    assert all(timer.daemon for timer in live)
    assert scheduler.scheduled_event_ids() == [race.id]


def test_one_shot_event_starts_and_clears_schedule(store, make_scheduler, timers, clock, process):
    start = clock.now + dt.timedelta(minutes=5)
    race = _race(store, scheduled=start)
    scheduler = make_scheduler()

    scheduler.schedule(race, start)
    [timer] = timers.live()
    assert timer.interval == 300

    timer.fire()

    assert [started["name"] for started in process.started] == ["Club night"]
    assert store.find_custom_race_by_id(race.id).scheduled is None
    assert not scheduler.is_scheduled(race.id)
    assert timers.live() == []


def test_recurring_event_rearms_for_next_occurrence(store, make_scheduler, timers, clock, process):
    start = clock.now + dt.timedelta(hours=1)
    race = _race(store, scheduled=start, recurrence="FREQ=DAILY")
    scheduler = make_scheduler()
    scheduler.schedule(race, start)

    clock.now = start
    timers.live()[0].fire()

    assert len(process.started) == 1
    [timer] = timers.live()
    assert timer.interval == 24 * 60 * 60
    assert scheduler.is_scheduled(race.id)
    stored = store.find_custom_race_by_id(race.id)
    assert stored.scheduled == start + dt.timedelta(days=1)
    assert stored.recurrence == "FREQ=DAILY"


def test_recurrence_already_in_the_past_is_dropped(store, make_scheduler, timers, clock, process):
    start = clock.now + dt.timedelta(hours=1)
    race = _race(store, scheduled=start, recurrence="FREQ=MINUTELY")
    scheduler = make_scheduler()
    scheduler.schedule(race, start)

    # the callback ran long after its start time
    clock.now = start + dt.timedelta(hours=3)
    timers.live()[0].fire()

    assert len(process.started) == 1
    assert timers.live() == []
    assert store.find_custom_race_by_id(race.id).scheduled is None


def test_failed_start_is_logged_and_schedule_kept(store, make_scheduler, timers, clock, process, caplog):
    start = clock.now + dt.timedelta(minutes=1)
    race = _race(store, scheduled=start, recurrence="FREQ=DAILY")
    scheduler = make_scheduler()
    scheduler.schedule(race, start)

    def broken_start(*args, **kwargs):
        raise RuntimeError("acServer binary missing")

    process.start = broken_start
    with caplog.at_level(logging.ERROR, logger="paddock_core.scheduler"):
        timers.live()[0].fire()

    assert "Could not start scheduled event" in caplog.text
    assert store.find_custom_race_by_id(race.id).scheduled == start
    assert timers.live() == []


def test_championship_event_fires_through_championship_manager(store, make_scheduler, timers, clock, process):
    start = clock.now + dt.timedelta(minutes=1)
    championship = Championship(name="Winter Cup")
    event = ChampionshipEvent(race_setup=RaceConfig(track="monza"), scheduled=start)
    championship.add_event(event)
    store.upsert_championship(championship)
    scheduler = make_scheduler()

    scheduler.schedule(event, start)
    timers.live()[0].fire()

    stored = store.load_championship(championship.id).event_by_id(event.id)
    assert process.started[0]["name"] == "Winter Cup: Monza"
    assert stored.started_time is not None
    assert stored.scheduled is None


def test_race_weekend_session_fires_through_race_weekend_manager(
    store, make_scheduler, timers, clock, process, entrant_factory
):
    start = clock.now + dt.timedelta(minutes=1)
    race_weekend = RaceWeekend(name="Spa Weekend", entry_list=[entrant_factory("A", "Alice")])
    session = RaceWeekendSession(
        race_config=RaceConfig(track="spa", sessions=[SessionConfig(name="Practice", time=30)]),
        scheduled=start,
    )
    race_weekend.add_session(session)
    store.upsert_race_weekend(race_weekend)
    scheduler = make_scheduler()

    scheduler.schedule(session, start)
    timers.live()[0].fire()

    stored = store.load_race_weekend(race_weekend.id).find_session(session.id)
    assert process.started[0]["name"] == "Spa Weekend: Practice"
    assert [entrant.guid for entrant in stored.grid] == ["A"]
    assert stored.scheduled is None


def test_unknown_event_kind(store, make_scheduler, timers, clock, caplog):
    scheduler = make_scheduler()
    stray = StrayEvent()

    with pytest.raises(UnknownScheduledEvent):
        scheduler.de_schedule(stray)

    scheduler.schedule(stray, clock.now + dt.timedelta(minutes=1))
    with caplog.at_level(logging.ERROR, logger="paddock_core.scheduler"):
        timers.live()[0].fire()

    assert "Could not start scheduled event Stray" in caplog.text


def test_notifications_sent_when_reminders_enabled(store, make_scheduler, timers, clock, notifications):
    store.upsert_server_options(ServerOptions(notification_reminder_timer=10))
    start = clock.now + dt.timedelta(hours=1)
    race = _race(store, scheduled=start)
    scheduler = make_scheduler()

    scheduler.schedule(race, start)

    assert notifications.scheduled == [(race.id, start)]
    reminder = min(timers.live(), key=lambda timer: timer.interval)
    assert reminder.interval == 50 * 60
    reminder.fire()
    assert notifications.reminders == [race.id]
    assert scheduler.is_scheduled(race.id)


def test_no_notifications_without_lead_time(store, make_scheduler, timers, clock, notifications):
    start = clock.now + dt.timedelta(hours=1)
    race = _race(store, scheduled=start)
    scheduler = make_scheduler()

    scheduler.schedule(race, start)

    assert notifications.scheduled == []
    assert len(timers.live()) == 1


def test_notification_failure_does_not_block_scheduling(store, make_scheduler, timers, clock):
    store.upsert_server_options(ServerOptions(notification_reminder_timer=10))
    start = clock.now + dt.timedelta(hours=1)
    race = _race(store, scheduled=start)
    scheduler = make_scheduler(notifications=RecordingNotifications(fail=True))

    scheduler.schedule(race, start)
    reminder = min(timers.live(), key=lambda timer: timer.interval)
    reminder.fire()

    assert scheduler.is_scheduled(race.id)


def test_reminder_due_in_the_past_fires_immediately(store, make_scheduler, timers, clock):
    store.upsert_server_options(ServerOptions(notification_reminder_timer=30))
    start = clock.now + dt.timedelta(minutes=5)
    race = _race(store, scheduled=start)
    scheduler = make_scheduler()

    scheduler.schedule(race, start)

    assert sorted(timer.interval for timer in timers.live()) == [0, 300]


def test_init_recovers_each_kind_of_schedule(store, make_scheduler, timers, clock, process):
    future = _race(store, scheduled=clock.now + dt.timedelta(hours=2))
    missed = _race(store, scheduled=clock.now - dt.timedelta(hours=1))
    recurring = _race(store, scheduled=clock.now - dt.timedelta(hours=1), recurrence="FREQ=DAILY")
    unscheduled = _race(store)

    championship = Championship(name="Winter Cup")
    event = ChampionshipEvent(race_setup=RaceConfig(track="monza"), scheduled=clock.now + dt.timedelta(days=1))
    championship.add_event(event)
    store.upsert_championship(championship)

    race_weekend = RaceWeekend(name="Spa Weekend")
    session = RaceWeekendSession(scheduled=clock.now + dt.timedelta(days=2))
    race_weekend.add_session(session)
    store.upsert_race_weekend(race_weekend)

    scheduler = make_scheduler()
    scheduler.init()

    assert scheduler.scheduled_event_ids() == sorted([future.id, recurring.id, event.id, session.id])
    assert not scheduler.is_scheduled(missed.id)
    assert not scheduler.is_scheduled(unscheduled.id)
    assert store.find_custom_race_by_id(missed.id).scheduled is None
    assert store.find_custom_race_by_id(recurring.id).scheduled == clock.now + dt.timedelta(hours=23)
    assert process.started == []


def test_init_fails_when_store_is_unreadable(tmp_path, store, make_scheduler):
    (tmp_path / "championships.json").write_text("[", encoding="utf-8")

    with pytest.raises(StoreError):
        make_scheduler().init()


def test_init_drops_recurring_event_with_unreadable_rule(store, make_scheduler, clock, caplog):
    broken = _race(store, scheduled=clock.now - dt.timedelta(hours=1))
    broken.recurrence = "FREQ=WHENEVER"
    store.upsert_custom_race(broken)
    good = _race(store, scheduled=clock.now + dt.timedelta(hours=3))
    scheduler = make_scheduler()

    with caplog.at_level(logging.ERROR, logger="paddock_core.scheduler"):
        scheduler.init()

    assert scheduler.scheduled_event_ids() == [good.id]
    assert "Couldn't get recurrence rule" in caplog.text


def test_deschedule_clears_timers_rule_and_stored_time(store, make_scheduler, timers, clock):
    store.upsert_server_options(ServerOptions(notification_reminder_timer=10))
    start = clock.now + dt.timedelta(hours=1)
    race = _race(store, scheduled=start, recurrence="FREQ=WEEKLY")
    scheduler = make_scheduler()
    scheduler.schedule(race, start)

    scheduler.de_schedule(race)

    assert timers.live() == []
    stored = store.find_custom_race_by_id(race.id)
    assert stored.scheduled is None
    assert not stored.has_recurrence_rule()

    fresh = make_scheduler()
    fresh.init()
    assert fresh.scheduled_event_ids() == []


def test_stop_cancels_everything(store, make_scheduler, timers, clock):
    store.upsert_server_options(ServerOptions(notification_reminder_timer=10))
    scheduler = make_scheduler()
    for hours in (1, 2):
        scheduler.schedule(_race(store), clock.now + dt.timedelta(hours=hours))

    scheduler.stop()

    assert timers.live() == []
    assert scheduler.scheduled_event_ids() == []


def test_real_timers_fire_scheduled_reminder_and_start_once(store, process, notifications):
    # reminder a quarter of a second before a start half a second away
    store.upsert_server_options(ServerOptions(notification_reminder_timer=0.25 / 60))
    race = _race(store)
    started = threading.Event()
    record = process.start

    def start_and_signal(*args, **kwargs):
        record(*args, **kwargs)
        started.set()

    process.start = start_and_signal
    scheduler = Scheduler(
        store,
        RaceManager(store, process),
        ChampionshipManager(store, process),
        RaceWeekendManager(store, process),
        notifications,
    )

    start = utc_now() + dt.timedelta(seconds=0.5)
    scheduler.schedule(race, start)
    assert len(notifications.scheduled) == 1

    try:
        assert started.wait(timeout=5)
    finally:
        scheduler.stop()

    assert notifications.reminders == [race.id]
    assert len(process.started) == 1


def _recurring_championship_event(store, scheduled):
    championship = Championship(name="Winter Cup")
    event = ChampionshipEvent(race_setup=RaceConfig(track="monza"), scheduled=scheduled)
    event.set_recurrence_rule("FREQ=WEEKLY")
    championship.add_event(event)
    store.upsert_championship(championship)
    return championship, event


def test_recurring_championship_event_rearms_and_deschedules(store, make_scheduler, timers, clock, process):
    start = clock.now + dt.timedelta(hours=1)
    championship, event = _recurring_championship_event(store, start)
    scheduler = make_scheduler()
    scheduler.schedule(event, start)

    clock.now = start
    timers.live()[0].fire()

    assert process.started[0]["name"] == "Winter Cup: Monza"
    [timer] = timers.live()
    assert timer.interval == 7 * 24 * 60 * 60
    stored = store.load_championship(championship.id).event_by_id(event.id)
    assert stored.scheduled == start + dt.timedelta(days=7)
    assert stored.recurrence == "FREQ=WEEKLY"
    assert stored.started_time is not None

    scheduler.de_schedule(event)

    assert timers.live() == []
    stored = store.load_championship(championship.id).event_by_id(event.id)
    assert stored.scheduled is None
    assert not stored.has_recurrence_rule()

    fresh = make_scheduler()
    fresh.init()
    assert fresh.scheduled_event_ids() == []


def test_init_moves_missed_recurring_championship_event_forward(store, make_scheduler, clock, process):
    missed = clock.now - dt.timedelta(hours=1)
    championship, event = _recurring_championship_event(store, missed)
    scheduler = make_scheduler()

    scheduler.init()

    assert scheduler.scheduled_event_ids() == [event.id]
    stored = store.load_championship(championship.id).event_by_id(event.id)
    assert stored.scheduled == missed + dt.timedelta(days=7)
    assert stored.recurrence == "FREQ=WEEKLY"
    assert process.started == []


def test_malformed_webhook_does_not_break_recurring_race(store, process, timers, clock, caplog):
    store.upsert_server_options(
        ServerOptions(notification_reminder_timer=10, discord_webhook_url="https://discord.com/api/webhooks/1/abc\n")
    )
    notifications = NotificationManager(store, DiscordNotifier(""))
    scheduler = Scheduler(
        store,
        RaceManager(store, process, notifications),
        ChampionshipManager(store, process, notifications),
        RaceWeekendManager(store, process, notifications),
        notifications=notifications,
        timer_factory=timers,
        clock=clock,
    )
    start = clock.now + dt.timedelta(hours=1)
    race = _race(store, scheduled=start, recurrence="FREQ=DAILY")

    with caplog.at_level(logging.ERROR):
        scheduler.schedule(race, start)
        assert scheduler.is_scheduled(race.id)

        clock.now = start
        start_timer = max(timers.live(), key=lambda timer: timer.interval)
        start_timer.fire()

    assert len(process.started) == 1
    assert scheduler.is_scheduled(race.id)
    assert store.find_custom_race_by_id(race.id).scheduled == start + dt.timedelta(days=1)
    assert "Could not send race start notification" in caplog.text
