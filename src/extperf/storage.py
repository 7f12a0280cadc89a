"""Persistence backends for the history ledger."""

import json
import os
import tempfile
from pathlib import Path
from typing import Protocol

from extperf.errors import PersistenceError
from extperf.models import HistoryRecord


class HistoryStore(Protocol):
    """Load/save of the componentId -> HistoryRecord map."""

    def load(self) -> dict[str, HistoryRecord]: ...

    def save(self, records: dict[str, HistoryRecord]) -> None: ...

    def clear(self) -> None: ...


class MemoryHistoryStore:
    """Keeps the last saved map in memory."""

    def __init__(self, records: dict[str, HistoryRecord] | None = None) -> None:
        self._records = dict(records or {})
        self.save_count = 0

    def load(self) -> dict[str, HistoryRecord]:
        return dict(self._records)

    def save(self, records: dict[str, HistoryRecord]) -> None:
        self._records = dict(records)
        self.save_count += 1

    def clear(self) -> None:
        self._records.clear()


class JsonHistoryStore:
    """
    Stores history as a single JSON document.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash mid-write never leaves a truncated file.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, HistoryRecord]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
            return {
                component_id: HistoryRecord.from_dict(data)
                for component_id, data in raw.items()
            }
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise PersistenceError(f"Failed to load {self._path}: {e}") from e

    def save(self, records: dict[str, HistoryRecord]) -> None:
        payload = {cid: record.to_dict() for cid, record in records.items()}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=self._path.name, suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save {self._path}: {e}") from e

    def clear(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Failed to clear {self._path}: {e}") from e
