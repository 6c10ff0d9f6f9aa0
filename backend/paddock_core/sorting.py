"""Grid sort strategies for race weekend sessions.

Each strategy takes the session being gridded and the entrants carried into
it, and reorders the entrants in place.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from functools import cmp_to_key
from typing import TYPE_CHECKING, Callable, Dict, List

from .results import SESSION_RACE

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .race_weekend import RaceWeekendSession, SessionEntrant

Sorter = Callable[["RaceWeekendSession", List["SessionEntrant"]], None]
Less = Callable[["SessionEntrant", "SessionEntrant"], bool]

_random = random.Random(time.time_ns())


def _num_laps(entrant: "SessionEntrant") -> int:
    if entrant.results is None:
        return 0
    return entrant.results.get_num_laps(entrant.guid, entrant.model)


def _total_time(entrant: "SessionEntrant") -> int:
    if entrant.results is None:
        return 0
    return entrant.results.get_time(entrant.result.total_time, entrant.guid, entrant.model, penalty=True)


def _crashes(entrant: "SessionEntrant") -> int:
    if entrant.results is None:
        return 0
    return entrant.results.get_crashes(entrant.guid)


def _cuts(entrant: "SessionEntrant") -> int:
    if entrant.results is None:
        return 0
    return entrant.results.get_cuts(entrant.guid, entrant.model)


def less_total_time(a: "SessionEntrant", b: "SessionEntrant") -> bool:
    laps_a, laps_b = _num_laps(a), _num_laps(b)
    if laps_a == laps_b:
        return _total_time(a) < _total_time(b)
    return laps_a > laps_b


def less_best_lap(a: "SessionEntrant", b: "SessionEntrant") -> bool:
    if a.result.best_lap == 0:
        return False
    if b.result.best_lap == 0:
        return True
    if a.result.best_lap == b.result.best_lap:
        crashes_a, crashes_b = _crashes(a), _crashes(b)
        if crashes_a == crashes_b:
            return _cuts(a) < _cuts(b)
        return crashes_a < crashes_b
    return a.result.best_lap < b.result.best_lap


def _tie_break(session: "RaceWeekendSession") -> Less:
    if session.session_type == SESSION_RACE:
        return less_total_time
    return less_best_lap


def _sort(entrants: List["SessionEntrant"], less: Less) -> None:
    def compare(a: "SessionEntrant", b: "SessionEntrant") -> int:
        if less(a, b):
            return -1
        if less(b, a):
            return 1
        return 0

    entrants.sort(key=cmp_to_key(compare))


def unchanged(session: "RaceWeekendSession", entrants: List["SessionEntrant"]) -> None:
    return None


def fastest_lap(session: "RaceWeekendSession", entrants: List["SessionEntrant"]) -> None:
    _sort(entrants, less_best_lap)


def total_race_time(session: "RaceWeekendSession", entrants: List["SessionEntrant"]) -> None:
    _sort(entrants, less_total_time)


def fewest_collisions(session: "RaceWeekendSession", entrants: List["SessionEntrant"]) -> None:
    tie_break = _tie_break(session)

    def less(a: "SessionEntrant", b: "SessionEntrant") -> bool:
        crashes_a, crashes_b = _crashes(a), _crashes(b)
        if crashes_a == crashes_b:
            return tie_break(a, b)
        return crashes_a < crashes_b

    _sort(entrants, less)


def fewest_cuts(session: "RaceWeekendSession", entrants: List["SessionEntrant"]) -> None:
    tie_break = _tie_break(session)

    def less(a: "SessionEntrant", b: "SessionEntrant") -> bool:
        cuts_a, cuts_b = _cuts(a), _cuts(b)
        if cuts_a == cuts_b:
            return tie_break(a, b)
        return cuts_a < cuts_b

    _sort(entrants, less)


def safety(session: "RaceWeekendSession", entrants: List["SessionEntrant"]) -> None:
    tie_break = _tie_break(session)

    def less(a: "SessionEntrant", b: "SessionEntrant") -> bool:
        crashes_a, crashes_b = _crashes(a), _crashes(b)
        if crashes_a != crashes_b:
            return crashes_a < crashes_b
        cuts_a, cuts_b = _cuts(a), _cuts(b)
        if cuts_a != cuts_b:
            return cuts_a < cuts_b
        return tie_break(a, b)

    _sort(entrants, less)


def shuffled(session: "RaceWeekendSession", entrants: List["SessionEntrant"]) -> None:
    _random.shuffle(entrants)


def alphabetical(session: "RaceWeekendSession", entrants: List["SessionEntrant"]) -> None:
    entrants.sort(key=lambda entrant: entrant.entrant.name)


@dataclass(frozen=True)
class SortStrategy:
    key: str
    title: str
    sort: Sorter


SORT_STRATEGIES: List[SortStrategy] = [
    SortStrategy("", "No Sort (Use Finishing Grid)", unchanged),
    SortStrategy("fastest_lap", "Fastest Lap", fastest_lap),
    SortStrategy("total_race_time", "Total Race Time", total_race_time),
    SortStrategy("fewest_collisions", "Fewest Collisions", fewest_collisions),
    SortStrategy("fewest_cuts", "Fewest Cuts", fewest_cuts),
    SortStrategy("safety", "Safety (Collisions then Cuts)", safety),
    SortStrategy("random", "Random", shuffled),
    SortStrategy("alphabetical", "Alphabetical (Using Driver Name)", alphabetical),
]

_BY_KEY: Dict[str, SortStrategy] = {strategy.key: strategy for strategy in SORT_STRATEGIES}


def get_sorter(key: str) -> Sorter:
    """The sorter registered under ``key``; unknown keys leave the grid as it is."""

    strategy = _BY_KEY.get(key or "")
    if strategy is None:
        return unchanged
    return strategy.sort


def sort_entrants(key: str, session: "RaceWeekendSession", entrants: List["SessionEntrant"]) -> None:
    get_sorter(key)(session, entrants)
