"""Built-in row action handlers and the safe fallback."""

from __future__ import annotations

import asyncio
import os
from typing import Any, Dict

from action_types import (
    ActionContext,
    ActionResult,
    BaseHandler,
    HandlerConfig,
    Interaction,
    Row,
    _now,
    default_metadata,
    fail,
    item_name,
    ok,
)
from table_storage import DEFAULT_MAX_SAVED_ITEMS, SavedItemsStore, TableStorage
from xlsx_export import export_table_to_xlsx


class SaveHandler(BaseHandler):
    """Toggles a row's membership in the saved-items set."""

    action_type = "save"
    name = "Save Handler"
    description = "Allows saving/bookmarking items"
    icon = "bookmark"
    default_settings = {"max_items": DEFAULT_MAX_SAVED_ITEMS}

    def __init__(
        self,
        config: HandlerConfig | None = None,
        saved_items: SavedItemsStore | None = None,
        interaction: Interaction | None = None,
    ) -> None:
        super().__init__(config, interaction=interaction)
        self._saved = saved_items if saved_items is not None else SavedItemsStore()

    def is_item_saved(self, item_id: Any) -> bool:
        return self._saved.is_saved(item_id)

    def get_saved_items(self) -> list[dict]:
        return self._saved.items()

    async def execute(self, row: Row, context: ActionContext | None = None) -> ActionResult:
        if not self.enabled:
            return self.disabled_result()
        item_id = row.get("id") if isinstance(row, dict) else None
        if not item_id:
            return fail("Cannot save item without ID")
        try:
            if self._saved.is_saved(item_id):
                self._saved.remove(item_id)
                return ok("Item removed from saved items", {"id": item_id, "saved": False})
            self._saved.add(row, max_items=self.setting("max_items", DEFAULT_MAX_SAVED_ITEMS))
            return ok("Item saved successfully", {"id": item_id, "saved": True})
        except Exception as exc:
            self.logger.error("save_failed id=%s error=%s", item_id, exc)
            return fail(f"Failed to save item: {exc}", error=str(exc))


class DeleteHandler(BaseHandler):
    """Removes a row, asking for confirmation first unless configured not to."""

    action_type = "delete"
    name = "Delete Handler"
    description = "Removes items with confirmation"
    icon = "delete"
    default_settings = {"confirm_before_delete": True}

    async def execute(self, row: Row, context: ActionContext | None = None) -> ActionResult:
        if not self.enabled:
            return self.disabled_result()
        item_id = row.get("id") if isinstance(row, dict) else None
        if not item_id:
            return fail("Cannot delete item without ID")

        if self.setting("confirm_before_delete", True):
            name = item_name(row, ("name", "title", "label", "subject", "description"), "Selected Item")
            confirmed = await self.interaction_for(context).confirm(
                "Confirm Delete",
                f'Are you sure you want to delete "{name}"? This action cannot be undone.',
            )
            if not confirmed:
                return ok("Delete cancelled", {"cancelled": True, "id": item_id})

        try:
            if context is not None and context.remove_item is not None:
                context.remove_item(item_id)
            else:
                self.logger.warning("delete_without_remove_item id=%s", item_id)
        except Exception as exc:
            self.logger.error("delete_failed id=%s error=%s", item_id, exc)
            return fail(f"Delete operation failed: {exc}", error=str(exc))
        return ok("Item deleted successfully", {"id": item_id, "timestamp": _now()})


def _find_owning_table(storage: TableStorage | None, row: Row, context: ActionContext | None) -> dict | None:
    if storage is None:
        return None
    keys = [context.table_id if context else None, row.get("tableKey")]
    for key in keys:
        if key:
            table = storage.get_table_by_key(key)
            if table is not None:
                return table
    titles = [context.table_title if context else None, row.get("tableTitle")]
    for title in titles:
        if title:
            table = storage.get_table_by_title(title)
            if table is not None:
                return table
    return None


class EditHandler(BaseHandler):
    """Opens an edit surface seeded from the row and applies the submitted fields."""

    action_type = "edit"
    name = "Edit Handler"
    description = "Allows editing item data in a modal form"
    icon = "edit"
    default_settings = {"open_in_modal": True, "validate_on_edit": True}

    def __init__(
        self,
        config: HandlerConfig | None = None,
        storage: TableStorage | None = None,
        interaction: Interaction | None = None,
    ) -> None:
        super().__init__(config, interaction=interaction)
        self._storage = storage

    async def execute(self, row: Row, context: ActionContext | None = None) -> ActionResult:
        if not self.enabled:
            return self.disabled_result()
        submitted = await self.interaction_for(context).edit(f"Edit {item_name(row)}", dict(row))
        if submitted is None:
            return ok("Edit cancelled", {"cancelled": True, "id": row.get("id")})

        merged = {**row, **submitted}
        try:
            if context is not None and context.update_data is not None:
                context.update_data(merged)
                return ok("Item updated successfully", merged)
            return self._write_to_storage(row, merged, context)
        except Exception as exc:
            self.logger.error("edit_failed id=%s error=%s", row.get("id"), exc)
            return fail(f"Failed to edit item: {exc}", error=str(exc))

    def _write_to_storage(self, row: Row, merged: Row, context: ActionContext | None) -> ActionResult:
        table = _find_owning_table(self._storage, row, context)
        if table is None:
            warning = "Item updated, but its table could not be found to persist the change"
            self.logger.warning("edit_table_not_found id=%s", row.get("id"))
            return ok(warning, merged, warning=warning)
        rows = table.get("rows") or []
        table["rows"] = [{**r, **merged} if r.get("id") == merged.get("id") else r for r in rows]
        self._storage.save_table(table)
        return ok("Item updated successfully", merged)


class ViewHandler(BaseHandler):
    """Read-only presentation of a row; always resolves successfully."""

    action_type = "view"
    name = "View Handler"
    description = "Shows item details in a modal"
    icon = "view"
    default_settings = {"open_in_modal": True}

    def _title(self, row: Row, table_title: str | None) -> str:
        title = item_name(row, ("title", "name", "label", "subject"), "")
        if title and not title.startswith("Item #"):
            return title
        if table_title:
            return f"{table_title} Item Details"
        return "Item Details"

    async def execute(self, row: Row, context: ActionContext | None = None) -> ActionResult:
        if not self.enabled:
            return self.disabled_result()
        title = self._title(row, context.table_title if context else None)
        try:
            await self.interaction_for(context).show(title, dict(row))
        except Exception as exc:
            self.logger.warning("view_surface_failed id=%s error=%s", row.get("id"), exc)
        return ok("Viewed item details", {"id": row.get("id")})


class ExportHandler(BaseHandler):
    """Writes the whole owning table to an XLSX file."""

    action_type = "export"
    name = "Export Handler"
    description = "Exports table data to XLSX format"
    icon = "download"
    default_settings = {"formats": ["xlsx"]}

    def __init__(
        self,
        config: HandlerConfig | None = None,
        storage: TableStorage | None = None,
        export_dir: str | None = None,
        interaction: Interaction | None = None,
    ) -> None:
        super().__init__(config, interaction=interaction)
        self._storage = storage
        self._export_dir = export_dir or os.getenv("TABULA_EXPORT_DIR", "exports")

    def _resolve_table(self, row: Row, context: ActionContext | None) -> dict | None:
        if context is not None and context.table_data:
            return context.table_data
        if self._storage is None:
            return None
        title = row.get("tableTitle") or row.get("title") or (context.table_title if context else None)
        if not title:
            return None
        return self._storage.get_table_by_title(title)

    async def execute(self, row: Row, context: ActionContext | None = None) -> ActionResult:
        if not self.enabled:
            return self.disabled_result()
        table = self._resolve_table(row, context)
        if table is None:
            return fail("Could not find table data to export")
        try:
            path = await asyncio.to_thread(export_table_to_xlsx, table, self._export_dir)
        except Exception as exc:
            self.logger.error("export_failed key=%s error=%s", table.get("key"), exc)
            return fail(f"Failed to export table: {exc}", error=str(exc))
        return ok("Table exported successfully", {"format": "xlsx", "path": str(path), "timestamp": _now()})


class SafeHandler(BaseHandler):
    """Stand-in for a type whose dynamic code is missing or failed to load."""

    def __init__(self, action_type: str, config: HandlerConfig | None = None) -> None:
        super().__init__(config if config is not None else {"enabled": True})
        self.action_type = action_type

    def get_metadata(self) -> Dict[str, Any]:
        metadata = default_metadata(self.action_type)
        override = self._config.get("metadata")
        if isinstance(override, dict):
            metadata.update(override)
        return metadata

    async def execute(self, row: Row, context: ActionContext | None = None) -> ActionResult:
        if not self.enabled:
            return self.disabled_result()
        row_id = row.get("id") if isinstance(row, dict) else None
        self.logger.info("safe_handler_executed type=%s row_id=%s", self.action_type, row_id)
        return ok(
            f"{self.action_type} action executed successfully",
            {"actionType": self.action_type, "timestamp": _now(), "rowId": row_id},
        )


BUILTIN_HANDLERS = {
    "save": SaveHandler,
    "delete": DeleteHandler,
    "edit": EditHandler,
    "view": ViewHandler,
    "export": ExportHandler,
}
