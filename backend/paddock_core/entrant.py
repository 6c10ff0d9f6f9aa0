from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, List

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .results import SessionCar, SessionResult


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Entrant:
    """A driver and car combination on an entry list.

    Entrants are identified by their driver GUID and car model; ``id`` is an
    internal identifier used to match per-event overrides in championships.
    """

    id: str = field(default_factory=_new_id)
    guid: str = ""
    name: str = ""
    team: str = ""
    model: str = ""
    skin: str = ""
    pit_box: int = 0
    ballast: int = 0
    restrictor: int = 0
    fixed_setup: str = ""
    is_placeholder: bool = False

    def assign_from_result(self, result: "SessionResult", car: "SessionCar") -> None:
        """Copy identity and car details from a finishing result."""

        self.guid = result.driver_guid
        self.name = result.driver_name or car.driver.name
        self.team = car.driver.team
        self.model = car.model
        self.skin = car.skin
        self.ballast = car.ballast_kg
        self.restrictor = car.restrictor

    def overwrite_properties(self, other: "Entrant") -> None:
        self.fixed_setup = other.fixed_setup
        self.restrictor = other.restrictor
        self.skin = other.skin
        self.ballast = other.ballast
        self.team = other.team
        self.pit_box = other.pit_box

    def as_session_result(self) -> "SessionResult":
        from .results import SessionResult

        return SessionResult(driver_guid=self.guid, driver_name=self.name, car_model=self.model)


def car_models(entrants: Iterable[Entrant]) -> List[str]:
    seen: List[str] = []
    for entrant in entrants:
        if entrant.model and entrant.model not in seen:
            seen.append(entrant.model)
    return seen
