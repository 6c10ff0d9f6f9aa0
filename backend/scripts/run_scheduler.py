"""Run the event scheduler against the local JSON data store until interrupted."""

from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
import sys
import threading
from pathlib import Path
from typing import List

from pydantic import TypeAdapter

from paddock_core import (
    ChampionshipManager,
    JsonStore,
    NotificationManager,
    RaceManager,
    RaceWeekendManager,
    Scheduler,
)
from paddock_core.entrant import Entrant
from paddock_core.events import RaceConfig
from paddock_core.store import StoreError

logger = logging.getLogger("run_scheduler")

_RACE_CONFIG = TypeAdapter(RaceConfig)
_ENTRY_LIST = TypeAdapter(List[Entrant])


class CommandServerProcess:
    """Launches the game server command with the event written to a JSON file."""

    def __init__(self, command: str, data_dir: Path) -> None:
        self.command = shlex.split(command)
        self.event_file = data_dir / "current_event.json"
        self._process: subprocess.Popen | None = None

    def start(self, event_name: str, race_config: RaceConfig, entry_list: List[Entrant]) -> None:
        payload = {
            "eventName": event_name,
            "raceConfig": _RACE_CONFIG.dump_python(race_config, mode="json"),
            "entryList": _ENTRY_LIST.dump_python(entry_list, mode="json"),
        }
        self.event_file.parent.mkdir(parents=True, exist_ok=True)
        with self.event_file.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, sort_keys=True)

        if self._process is not None and self._process.poll() is None:
            logger.info("Stopping running server before starting %s", event_name)
            self._process.terminate()
            self._process.wait(timeout=30)

        self._process = subprocess.Popen([*self.command, str(self.event_file)])
        logger.info("Started server process %s for %s", self._process.pid, event_name)


class LoggingServerProcess:
    def start(self, event_name: str, race_config: RaceConfig, entry_list: List[Entrant]) -> None:
        logger.warning(
            "PADDOCK_SERVER_COMMAND is not set; not launching %s at %s with %d entrants",
            event_name,
            race_config.track_name(),
            len(entry_list),
        )


def main() -> int:
    logging.basicConfig(
        level=os.getenv("PADDOCK_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = JsonStore()
    command = os.getenv("PADDOCK_SERVER_COMMAND", "")
    process = CommandServerProcess(command, store.data_dir) if command else LoggingServerProcess()
    notifications = NotificationManager(store)

    scheduler = Scheduler(
        store,
        RaceManager(store, process, notifications),
        ChampionshipManager(store, process, notifications),
        RaceWeekendManager(store, process, notifications),
        notifications,
    )
    try:
        scheduler.init()
    except StoreError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    stopped = threading.Event()
    try:
        while not stopped.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Shutting down scheduler")
    finally:
        scheduler.stop()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
