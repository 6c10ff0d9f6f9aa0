from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, List, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from .championship import Championship
from .config import ServerOptions, default_data_dir
from .events import CustomRace, utc_now
from .race_weekend import RaceWeekend

logger = logging.getLogger(__name__)

T = TypeVar("T", CustomRace, Championship, RaceWeekend)


class RecordNotFound(LookupError):
    pass


class StoreError(RuntimeError):
    pass


_CUSTOM_RACES = TypeAdapter(List[CustomRace])
_CHAMPIONSHIPS = TypeAdapter(List[Championship])
_RACE_WEEKENDS = TypeAdapter(List[RaceWeekend])


class JsonStore:
    """Keeps custom races, championships and race weekends in JSON files.

    Each collection lives in its own file under ``data_dir``. Records are never
    physically removed; deleting one stamps its ``deleted`` time and hides it
    from listings.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        """Initialize the JsonStore.

        Args:
            data_dir: Directory holding the JSON files. Defaults to
                ``PADDOCK_DATA_DIR`` or ``backend/data``.
        """
        self.data_dir = Path(data_dir) if data_dir else default_data_dir()
        self.custom_races_path = self.data_dir / "custom_races.json"
        self.championships_path = self.data_dir / "championships.json"
        self.race_weekends_path = self.data_dir / "race_weekends.json"
        self.server_options_path = self.data_dir / "server_options.json"
        # timer callbacks and request handlers write concurrently
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Custom races

    def list_custom_races(self, include_deleted: bool = False) -> List[CustomRace]:
        return self._list(self.custom_races_path, _CUSTOM_RACES, include_deleted)

    def find_custom_race_by_id(self, race_id: str) -> CustomRace:
        return self._find(self.custom_races_path, _CUSTOM_RACES, race_id, "custom race")

    def upsert_custom_race(self, race: CustomRace) -> None:
        self._upsert(self.custom_races_path, _CUSTOM_RACES, race)

    def delete_custom_race(self, race_id: str) -> None:
        self._soft_delete(self.custom_races_path, _CUSTOM_RACES, race_id, "custom race")

    # ------------------------------------------------------------------
    # Championships

    def list_championships(self, include_deleted: bool = False) -> List[Championship]:
        championships = self._list(self.championships_path, _CHAMPIONSHIPS, include_deleted)
        for championship in championships:
            championship.attach_events()
        return championships

    def load_championship(self, championship_id: str) -> Championship:
        championship = self._find(self.championships_path, _CHAMPIONSHIPS, championship_id, "championship")
        championship.attach_events()
        return championship

    def upsert_championship(self, championship: Championship) -> None:
        self._upsert(self.championships_path, _CHAMPIONSHIPS, championship)

    def delete_championship(self, championship_id: str) -> None:
        self._soft_delete(self.championships_path, _CHAMPIONSHIPS, championship_id, "championship")

    # ------------------------------------------------------------------
    # Race weekends

    def list_race_weekends(self, include_deleted: bool = False) -> List[RaceWeekend]:
        race_weekends = self._list(self.race_weekends_path, _RACE_WEEKENDS, include_deleted)
        for race_weekend in race_weekends:
            race_weekend.attach_sessions()
        return race_weekends

    def load_race_weekend(self, race_weekend_id: str) -> RaceWeekend:
        race_weekend = self._find(self.race_weekends_path, _RACE_WEEKENDS, race_weekend_id, "race weekend")
        race_weekend.attach_sessions()
        return race_weekend

    def upsert_race_weekend(self, race_weekend: RaceWeekend) -> None:
        self._upsert(self.race_weekends_path, _RACE_WEEKENDS, race_weekend)

    def delete_race_weekend(self, race_weekend_id: str) -> None:
        self._soft_delete(self.race_weekends_path, _RACE_WEEKENDS, race_weekend_id, "race weekend")

    # ------------------------------------------------------------------
    # Server options

    def load_server_options(self) -> ServerOptions:
        with self._lock:
            data = self._read_json_file(self.server_options_path, None)
        if data is None:
            return ServerOptions()
        try:
            return ServerOptions.model_validate(data)
        except ValidationError as exc:
            raise StoreError(f"Invalid server options in {self.server_options_path}") from exc

    def upsert_server_options(self, options: ServerOptions) -> None:
        with self._lock:
            self._write_json_file(self.server_options_path, options.model_dump(mode="json", by_alias=True))

    # ------------------------------------------------------------------
    # Helpers

    def _load(self, path: Path, adapter: TypeAdapter) -> List[Any]:
        data = self._read_json_file(path, [])
        try:
            return adapter.validate_python(data)
        except ValidationError as exc:
            raise StoreError(f"Invalid records in {path}") from exc

    def _list(self, path: Path, adapter: TypeAdapter, include_deleted: bool) -> List[Any]:
        with self._lock:
            records = self._load(path, adapter)
        if include_deleted:
            return records
        return [record for record in records if record.deleted is None]

    def _find(self, path: Path, adapter: TypeAdapter, record_id: str, label: str) -> Any:
        for record in self._list(path, adapter, include_deleted=False):
            if record.id == record_id:
                return record
        raise RecordNotFound(f"{label} {record_id} not found")

    def _upsert(self, path: Path, adapter: TypeAdapter, record: T) -> None:
        record.updated = utc_now()
        with self._lock:
            records = self._load(path, adapter)
            for index, existing in enumerate(records):
                if existing.id == record.id:
                    records[index] = record
                    break
            else:
                records.append(record)
            self._write_json_file(path, adapter.dump_python(records, mode="json"))

    def _soft_delete(self, path: Path, adapter: TypeAdapter, record_id: str, label: str) -> None:
        with self._lock:
            records = self._load(path, adapter)
            target: Optional[Any] = None
            for record in records:
                if record.id == record_id and record.deleted is None:
                    target = record
                    break
            if target is None:
                raise RecordNotFound(f"{label} {record_id} not found")
            target.deleted = utc_now()
            self._write_json_file(path, adapter.dump_python(records, mode="json"))
        logger.info("Deleted %s %s", label, record_id)

    def _read_json_file(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreError(f"Failed to read data store {path}") from exc

    def _write_json_file(self, path: Path, data: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
        except OSError as exc:
            raise StoreError(f"Failed to write data store {path}") from exc
