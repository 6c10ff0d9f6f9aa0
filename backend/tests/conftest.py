from __future__ import annotations

import datetime as dt
from typing import Callable, Dict, List, Sequence

import pytest

from paddock_core import JsonStore
from paddock_core.entrant import Entrant
from paddock_core.results import (
    SESSION_RACE,
    SessionCar,
    SessionDriver,
    SessionEvent,
    SessionLap,
    SessionResult,
    SessionResults,
)

NOW = dt.datetime(2026, 3, 7, 12, 0, tzinfo=dt.UTC)


class RecordingProcess:
    def __init__(self) -> None:
        self.started: List[Dict[str, object]] = []

    def start(self, event_name, race_config, entry_list) -> None:
        self.started.append({"name": event_name, "config": race_config, "entrants": list(entry_list)})


class FakeTimer:
    def __init__(self, interval: float, function: Callable[[], None]) -> None:
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        assert self.started and not self.cancelled, "timer is not live"
        self.fired = True
        self.function()


class FakeTimers:
    """Timer factory that records every timer instead of running it."""

    def __init__(self) -> None:
        self.created: List[FakeTimer] = []

    def __call__(self, interval: float, function: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(interval, function)
        self.created.append(timer)
        return timer

    def live(self) -> List[FakeTimer]:
        return [timer for timer in self.created if timer.started and not timer.cancelled and not timer.fired]


class FixedClock:
    def __init__(self, now: dt.datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + dt.timedelta(**kwargs)


@pytest.fixture
def store(tmp_path) -> JsonStore:
    return JsonStore(data_dir=tmp_path)


@pytest.fixture
def process() -> RecordingProcess:
    return RecordingProcess()


@pytest.fixture
def timers() -> FakeTimers:
    return FakeTimers()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


def make_entrant(guid: str, name: str, model: str = "ks_mazda_mx5_cup", team: str = "") -> Entrant:
    return Entrant(guid=guid, name=name, model=model, team=team)


def make_results(
    finishers: Sequence[Dict[str, object]],
    session_type: str = SESSION_RACE,
) -> SessionResults:
    """Results in finishing order.

    Each finisher is a dict with ``guid`` and ``name`` plus optional ``model``,
    ``best_lap``, ``total_time``, ``laps`` (lap times), ``cuts`` (per lap) and
    ``crashes``.
    """

    results = SessionResults(type=session_type, track_name="spa")
    for finisher in finishers:
        guid = str(finisher["guid"])
        name = str(finisher["name"])
        model = str(finisher.get("model", "ks_mazda_mx5_cup"))
        driver = SessionDriver(guid=guid, name=name, team=str(finisher.get("team", "")))
        results.cars.append(SessionCar(driver=driver, model=model, skin="red"))
        lap_times = list(finisher.get("laps", []))
        cuts = int(finisher.get("cuts", 0))
        for index, lap_time in enumerate(lap_times):
            results.laps.append(
                SessionLap(driver_guid=guid, car_model=model, lap_time=lap_time, cuts=cuts if index == 0 else 0)
            )
        for _ in range(int(finisher.get("crashes", 0))):
            results.events.append(SessionEvent(driver=driver))
        results.result.append(
            SessionResult(
                driver_guid=guid,
                driver_name=name,
                car_model=model,
                best_lap=int(finisher.get("best_lap", min(lap_times) if lap_times else 0)),
                total_time=int(finisher.get("total_time", sum(lap_times))),
            )
        )
    return results


@pytest.fixture
def entrant_factory():
    return make_entrant


@pytest.fixture
def results_factory():
    return make_results
