from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import List, Optional

SESSION_BOOKING = "BOOK"
SESSION_PRACTICE = "PRACTICE"
SESSION_QUALIFYING = "QUALIFY"
SESSION_RACE = "RACE"
SESSION_SECOND_RACE = "RACE_2"


@dataclass
class SessionDriver:
    guid: str = ""
    name: str = ""
    team: str = ""


@dataclass
class SessionCar:
    driver: SessionDriver = field(default_factory=SessionDriver)
    model: str = ""
    skin: str = ""
    car_id: int = 0
    ballast_kg: int = 0
    restrictor: int = 0


@dataclass
class SessionLap:
    driver_guid: str
    car_model: str
    lap_time: int  # milliseconds
    cuts: int = 0
    tyre: str = ""


@dataclass
class SessionEvent:
    """A collision reported by the game server."""

    type: str = "COLLISION_WITH_CAR"
    driver: SessionDriver = field(default_factory=SessionDriver)
    other_driver: SessionDriver = field(default_factory=SessionDriver)


@dataclass
class SessionResult:
    driver_guid: str = ""
    driver_name: str = ""
    car_model: str = ""
    best_lap: int = 0  # milliseconds, 0 = no valid lap
    total_time: int = 0  # milliseconds
    has_penalty: bool = False
    penalty_time: int = 0  # milliseconds
    lap_penalty: int = 0
    disqualified: bool = False


@dataclass
class SessionResults:
    """The outcome of one session, in finishing order."""

    type: str = ""
    track_name: str = ""
    track_config: str = ""
    date: Optional[dt.datetime] = None
    cars: List[SessionCar] = field(default_factory=list)
    events: List[SessionEvent] = field(default_factory=list)
    laps: List[SessionLap] = field(default_factory=list)
    result: List[SessionResult] = field(default_factory=list)

    def find_car(self, guid: str, model: str) -> Optional[SessionCar]:
        for car in self.cars:
            if car.driver.guid == guid and car.model == model:
                return car
        return None

    def get_num_laps(self, guid: str, model: str) -> int:
        laps = sum(1 for lap in self.laps if lap.driver_guid == guid and lap.car_model == model)
        for row in self.result:
            if row.driver_guid == guid and row.car_model == model and row.has_penalty:
                laps -= row.lap_penalty
        return laps

    def get_last_lap_time(self, guid: str, model: str) -> int:
        for lap in reversed(self.laps):
            if lap.driver_guid == guid and lap.car_model == model:
                return lap.lap_time
        return 0

    def get_time(self, total_time: int, guid: str, model: str, penalty: bool = True) -> int:
        """Total time in milliseconds, adjusted for time and lap penalties."""

        if self.get_num_laps(guid, model) == 0:
            return 0

        value = total_time
        if penalty:
            for row in self.result:
                if row.driver_guid == guid and row.car_model == model and row.has_penalty:
                    value += row.penalty_time
                    if self.type == SESSION_RACE:
                        value -= row.lap_penalty * self.get_last_lap_time(guid, model)
        return value

    def get_crashes(self, guid: str) -> int:
        return sum(1 for event in self.events if event.driver.guid == guid)

    def get_cuts(self, guid: str, model: str) -> int:
        return sum(lap.cuts for lap in self.laps if lap.driver_guid == guid and lap.car_model == model)

    def fastest_lap(self) -> Optional[SessionLap]:
        clean = [lap for lap in self.laps if lap.cuts == 0 and lap.lap_time > 0]
        if not clean:
            return None
        return min(clean, key=lambda lap: lap.lap_time)
