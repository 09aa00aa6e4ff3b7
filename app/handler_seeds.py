"""Default handler definitions installed into an empty store."""

from __future__ import annotations

SEED_VERSION = "1.0.0"
SEED_FRONTEND_VERSION = "1.0.0"

VIEW_HANDLER_CODE = '''
class ViewHandler(BaseHandler):
    action_type = "view"
    name = "View Handler"
    description = "Shows detailed view of a table item"
    icon = "view"

    async def execute(self, row, context=None):
        if not self.enabled:
            return self.disabled_result()
        title = item_name(row, ("title", "name", "label", "subject"), "Item Details")
        await self.interaction_for(context).show(title, dict(row))
        return ok("Viewed item details", {"id": row.get("id")})


handler_class = ViewHandler
'''

EDIT_HANDLER_CODE = '''
class EditHandler(BaseHandler):
    action_type = "edit"
    name = "Edit Handler"
    description = "Allows editing of table items"
    icon = "edit"

    async def execute(self, row, context=None):
        if not self.enabled:
            return self.disabled_result()
        submitted = await self.interaction_for(context).edit("Edit " + item_name(row), dict(row))
        if submitted is None:
            return ok("Edit cancelled", {"cancelled": True, "id": row.get("id")})
        merged = dict(row)
        merged.update(submitted)
        if context is not None and context.update_data is not None:
            context.update_data(merged)
            return ok("Item updated successfully", merged)
        log("edit_without_update_data id=%s", row.get("id"))
        return ok("Item updated, but no table was available to persist the change", merged)


handler_class = EditHandler
'''

DELETE_HANDLER_CODE = '''
class DeleteHandler(BaseHandler):
    action_type = "delete"
    name = "Delete Handler"
    description = "Handles deletion of table items"
    icon = "delete"

    async def execute(self, row, context=None):
        if not self.enabled:
            return self.disabled_result()
        item_id = row.get("id")
        if not item_id:
            return fail("Cannot delete item without ID")
        if self.setting("confirm_before_delete", True):
            message = 'Are you sure you want to delete "' + item_name(row) + '"? This action cannot be undone.'
            confirmed = await self.interaction_for(context).confirm("Confirm Delete", message)
            if not confirmed:
                return ok("Delete cancelled", {"cancelled": True, "id": item_id})
        if context is not None and context.remove_item is not None:
            context.remove_item(item_id)
        return ok("Item deleted successfully", {"id": item_id})


handler_class = DeleteHandler
'''

SAVE_HANDLER_CODE = '''
class SaveHandler(BaseHandler):
    action_type = "save"
    name = "Save Handler"
    description = "Saves or bookmarks table items"
    icon = "save"

    def __init__(self, config=None):
        super().__init__(config)
        self._saved = {}

    def get_saved_items(self):
        return [dict(item) for item in self._saved.values()]

    async def execute(self, row, context=None):
        if not self.enabled:
            return self.disabled_result()
        item_id = row.get("id")
        if not item_id:
            return fail("Cannot save item without ID")
        if item_id in self._saved:
            del self._saved[item_id]
            return ok("Item removed from saved items", {"id": item_id, "saved": False})
        self._saved[item_id] = dict(row)
        return ok("Item saved successfully", {"id": item_id, "saved": True})


handler_class = SaveHandler
'''


def _seed(action_type: str, name: str, description: str, settings: dict, code: str) -> dict:
    return {
        "type": action_type,
        "name": name,
        "description": description,
        "version": SEED_VERSION,
        "enabled": True,
        "frontend_version": SEED_FRONTEND_VERSION,
        "settings": settings,
        "icon": action_type,
        "code": code.strip() + "\n",
    }


def default_handlers() -> list[dict]:
    return [
        _seed("view", "View Handler", "Shows detailed view of a table item", {"open_in_modal": True}, VIEW_HANDLER_CODE),
        _seed("edit", "Edit Handler", "Allows editing of table items", {"validate_on_edit": True}, EDIT_HANDLER_CODE),
        _seed("delete", "Delete Handler", "Handles deletion of table items", {"confirm_before_delete": True}, DELETE_HANDLER_CODE),
        _seed("save", "Save Handler", "Saves or bookmarks table items", {"notify_on_save": True}, SAVE_HANDLER_CODE),
    ]
