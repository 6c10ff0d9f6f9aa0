"""Scheduling and race weekend progression for racing game servers."""

from .championship import Championship, ChampionshipEvent, ChampionshipPoints
from .config import ServerOptions
from .entrant import Entrant
from .events import CustomRace, RaceConfig, ScheduledEvent, SessionConfig
from .managers import ChampionshipManager, RaceManager, RaceWeekendManager, ServerProcess
from .notifications import DiscordNotifier, NotificationManager
from .race_weekend import RaceWeekend, RaceWeekendSession
from .results import SessionResults
from .scheduled_races import CalendarEntry, ScheduledEventsCalendar
from .scheduler import InvalidScheduleTime, Scheduler, UnknownScheduledEvent
from .store import JsonStore

__all__ = [
    "CalendarEntry",
    "Championship",
    "ChampionshipEvent",
    "ChampionshipManager",
    "ChampionshipPoints",
    "CustomRace",
    "DiscordNotifier",
    "Entrant",
    "InvalidScheduleTime",
    "JsonStore",
    "NotificationManager",
    "RaceConfig",
    "RaceManager",
    "RaceWeekend",
    "RaceWeekendManager",
    "RaceWeekendSession",
    "ScheduledEvent",
    "ScheduledEventsCalendar",
    "Scheduler",
    "ServerOptions",
    "ServerProcess",
    "SessionConfig",
    "SessionResults",
    "UnknownScheduledEvent",
]
