"""In-memory stores used when USE_DB=0 and in tests."""

from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone
from typing import Dict, Tuple


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class HandlerVersionExists(ValueError):
    pass


HANDLER_FIELDS = ("name", "description", "enabled", "settings", "icon", "code", "frontend_version")


class MemoryActionHandlerStore:
    """Handler records keyed by (type, version); insertion order is kept."""

    def __init__(self) -> None:
        self._records: Dict[Tuple[str, str], dict] = {}

    def list(self, action_type: str | None = None) -> list[dict]:
        return [
            copy.deepcopy(record)
            for (rtype, _version), record in self._records.items()
            if action_type is None or rtype == action_type
        ]

    def get(self, action_type: str, version: str) -> dict | None:
        record = self._records.get((action_type, version))
        return copy.deepcopy(record) if record else None

    def count(self) -> int:
        return len(self._records)

    def insert(self, record: dict) -> dict:
        key = (record["type"], record["version"])
        if key in self._records:
            raise HandlerVersionExists(f"{key[0]}@{key[1]} already exists")
        now = _now()
        stored = copy.deepcopy(record)
        stored["id"] = str(uuid.uuid4())
        stored["created_at"] = now
        stored["updated_at"] = now
        self._records[key] = stored
        return copy.deepcopy(stored)

    def update(self, action_type: str, version: str, changes: dict) -> dict | None:
        record = self._records.get((action_type, version))
        if record is None:
            return None
        for key in HANDLER_FIELDS:
            if key in changes:
                record[key] = copy.deepcopy(changes[key])
        record["updated_at"] = _now()
        return copy.deepcopy(record)

    def delete(self, action_type: str, version: str) -> bool:
        return self._records.pop((action_type, version), None) is not None
