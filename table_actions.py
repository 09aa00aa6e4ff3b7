"""Row action dispatch for one table, as driven by the UI event layer."""

from __future__ import annotations

import copy
import logging
import time
from typing import Any, Callable, Dict

from action_registry import ActionRegistry, get_registry
from action_types import ActionContext, ActionResult, Row, fail
from table_storage import TableStorage

logger = logging.getLogger("tabula.handlers")

MESSAGE_TTL_SECONDS = 3.0


class TableActionController:
    """Executes registry actions against a table's rows.

    Duplicate submissions of the same action on the same row are refused while
    the first is in flight. Row messages expire after ``MESSAGE_TTL_SECONDS``.
    """

    def __init__(
        self,
        table: dict | None,
        registry: ActionRegistry | None = None,
        context: ActionContext | None = None,
        on_data_update: Callable[[dict], None] | None = None,
        storage: TableStorage | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.table = copy.deepcopy(table) if table else None
        self.registry = registry if registry is not None else get_registry()
        self._context = context or ActionContext()
        self._on_data_update = on_data_update
        self._storage = storage
        self._clock = clock
        self._in_flight: set[str] = set()
        self._messages: Dict[Any, tuple[str, float]] = {}
        self.saved: Dict[Any, bool] = {}
        self.load_saved_state()

    def load_saved_state(self) -> None:
        self.saved = {}
        handler = self.registry.get("save")
        get_saved = getattr(handler, "get_saved_items", None)
        if not callable(get_saved):
            return
        try:
            for item in get_saved():
                if isinstance(item, dict) and item.get("id"):
                    self.saved[item["id"]] = True
        except Exception as exc:
            logger.error("saved_state_load_failed error=%s", exc)

    def is_loading(self, row_id: Any, action_type: str) -> bool:
        return f"{row_id}-{action_type}" in self._in_flight

    def message_for(self, row_id: Any) -> str | None:
        entry = self._messages.get(row_id)
        if entry is None:
            return None
        message, expires_at = entry
        if self._clock() >= expires_at:
            del self._messages[row_id]
            return None
        return message

    def _set_message(self, row_id: Any, message: str) -> None:
        self._messages[row_id] = (message, self._clock() + MESSAGE_TTL_SECONDS)

    def _publish(self, table: dict) -> None:
        self.table = table
        if self._on_data_update is not None:
            self._on_data_update(copy.deepcopy(table))
            return
        if self._storage is None:
            return
        try:
            self._storage.save_table(table)
        except Exception as exc:
            logger.error("table_store_failed key=%s error=%s", table.get("key"), exc)

    def apply_update(self, updated: Row) -> None:
        if not self.table or not isinstance(updated, dict) or not updated.get("id"):
            return
        rows = [{**r, **updated} if r.get("id") == updated["id"] else r for r in self.table.get("rows", [])]
        self._publish({**self.table, "rows": rows})

    def apply_remove(self, row_id: Any) -> None:
        if not self.table or not row_id:
            return
        rows = self.table.get("rows", [])
        if not any(r.get("id") == row_id for r in rows):
            logger.error("row_not_found id=%s table=%s", row_id, self.table.get("key"))
            return
        self._publish({**self.table, "rows": [r for r in rows if r.get("id") != row_id]})

    def _row_context(self, row: Row, updated_ids: set) -> ActionContext:
        parent = self._context

        def update_data(updated: Row) -> None:
            if isinstance(updated, dict):
                updated_ids.add(updated.get("id"))
            self.apply_update(updated)

        def remove_item(row_id: str) -> None:
            if parent.remove_item is not None:
                parent.remove_item(row_id)
            else:
                self.apply_remove(row_id)

        return ActionContext(
            user_id=parent.user_id,
            table_id=parent.table_id or (self.table or {}).get("key") or row.get("tableKey"),
            view_id=parent.view_id,
            table_title=parent.table_title or (self.table or {}).get("title"),
            table_data=parent.table_data or (copy.deepcopy(self.table) if self.table else None),
            update_data=update_data,
            remove_item=remove_item,
            interaction=parent.interaction,
            extra=dict(parent.extra),
        )

    async def handle_action(self, action_type: str, row: Row) -> ActionResult:
        row_id = row.get("id")
        if not self.registry.has(action_type):
            self._set_message(row_id, f"Error: Action {action_type} not available")
            return fail(f"No handler registered for action type: {action_type}")

        key = f"{row_id}-{action_type}"
        if key in self._in_flight:
            return fail(f"{action_type} is already running for this item")
        self._in_flight.add(key)
        updated_ids: set = set()
        try:
            result = await self.registry.execute(action_type, row, self._row_context(row, updated_ids))
        finally:
            self._in_flight.discard(key)

        if not result.get("success"):
            self._set_message(row_id, f"Error: {result.get('error') or 'Action failed'}")
            logger.error("action_failed type=%s id=%s message=%s", action_type, row_id, result.get("message"))
            return result

        if action_type == "save":
            data = result.get("data") or {}
            if isinstance(data.get("saved"), bool):
                self.saved[row_id] = data["saved"]
            else:
                self.saved[row_id] = not self.saved.get(row_id, False)
        elif action_type != "delete":
            data = result.get("data")
            if isinstance(data, dict) and data and set(data) != {"id"} and not data.get("cancelled"):
                # handlers that already called update_data are not applied twice
                if data.get("id") == row_id and row_id not in updated_ids:
                    self.apply_update(data)
        if result.get("message"):
            self._set_message(row_id, result["message"])
        return result
