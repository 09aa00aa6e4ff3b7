"""Local table storage and the saved-items set used by row actions.

Both stores keep their state in memory and, when given a path, mirror it to a
JSON file after every write. Writes are read-modify-write and last write wins.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List

logger = logging.getLogger("tabula.storage")

Table = Dict[str, Any]
Listener = Callable[[List[Table]], None]

DEFAULT_MAX_SAVED_ITEMS = 50


def _read_json_list(path: Path | None) -> list:
    if path is None or not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("storage_read_failed path=%s error=%s", path, exc)
        return []
    return data if isinstance(data, list) else []


def _write_json_list(path: Path | None, items: list) -> None:
    if path is None:
        return
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(items, default=str), encoding="utf-8")
        os.replace(tmp, path)
    except OSError as exc:
        logger.error("storage_write_failed path=%s error=%s", path, exc)


class TableStorage:
    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._tables: List[Table] = []
        self._listeners: List[Listener] = []
        self._load()

    def _load(self) -> None:
        self._tables = [t for t in _read_json_list(self._path) if isinstance(t, dict)]
        if self._path is not None and not self._path.exists():
            self._persist()

    def _persist(self) -> None:
        _write_json_list(self._path, self._tables)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.get_tables())
            except Exception as exc:
                logger.warning("storage_listener_failed error=%s", exc)

    def get_tables(self) -> list[Table]:
        return copy.deepcopy(self._tables)

    def reload(self) -> None:
        self._load()
        self._notify()

    def save_table(self, table: Table) -> None:
        key = table.get("key")
        record = copy.deepcopy(table)
        for idx, existing in enumerate(self._tables):
            if existing.get("key") == key:
                self._tables[idx] = record
                break
        else:
            self._tables.append(record)
        self._persist()
        self._notify()

    def remove_table(self, key: str) -> None:
        self._tables = [t for t in self._tables if t.get("key") != key]
        self._persist()
        self._notify()

    def has_table(self, key: str) -> bool:
        return any(t.get("key") == key for t in self._tables)

    def get_table_by_key(self, key: str) -> Table | None:
        for table in self._tables:
            if table.get("key") == key:
                return copy.deepcopy(table)
        return None

    def get_table_by_title(self, title: str) -> Table | None:
        for table in self._tables:
            if table.get("title") == title:
                return copy.deepcopy(table)
        return None

    def clear_all_tables(self) -> None:
        self._tables = []
        self._persist()
        self._notify()

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


class SavedItemsStore:
    """Ordered saved rows, oldest first; capped by evicting the oldest."""

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._items: list[dict] = [item for item in _read_json_list(self._path) if isinstance(item, dict)]

    def items(self) -> list[dict]:
        return copy.deepcopy(self._items)

    def is_saved(self, item_id: Any) -> bool:
        return any(item.get("id") == item_id for item in self._items)

    def add(self, item: dict, max_items: int = DEFAULT_MAX_SAVED_ITEMS) -> None:
        items = [saved for saved in self._items if saved.get("id") != item.get("id")]
        items.append(copy.deepcopy(item))
        if not isinstance(max_items, int) or isinstance(max_items, bool) or max_items <= 0:
            max_items = DEFAULT_MAX_SAVED_ITEMS
        if len(items) > max_items:
            items = items[-max_items:]
        self._write(items)

    def remove(self, item_id: Any) -> None:
        self._write([saved for saved in self._items if saved.get("id") != item_id])

    def _write(self, items: list[dict]) -> None:
        self._items = items
        _write_json_list(self._path, items)
