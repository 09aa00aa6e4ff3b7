import os
import shutil
import sys
import tempfile
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from action_types import ActionContext, AutoInteraction
from builtin_handlers import DeleteHandler, EditHandler, ExportHandler, SafeHandler, SaveHandler, ViewHandler
from table_storage import DEFAULT_MAX_SAVED_ITEMS, SavedItemsStore, TableStorage


class RecordingInteraction:
    def __init__(self, confirm=True, edits=None):
        self._confirm = confirm
        self._edits = edits
        self.calls = []

    async def confirm(self, title, message):
        self.calls.append(("confirm", title, message))
        return self._confirm

    async def edit(self, title, item):
        self.calls.append(("edit", title, item))
        return self._edits

    async def show(self, title, item):
        self.calls.append(("show", title, item))


def _table():
    return {
        "key": "t1",
        "title": "Books",
        "columns": [{"key": "name", "label": "Name"}, {"key": "year", "label": "Year"}],
        "rows": [{"id": "r1", "name": "Dune", "year": 1965}, {"id": "r2", "name": "Emma", "year": 1815}],
        "actions": [],
    }


class TestSaveHandler(unittest.IsolatedAsyncioTestCase):
    async def test_toggle(self) -> None:
        handler = SaveHandler(saved_items=SavedItemsStore())
        first = await handler.execute({"id": "r1", "name": "Dune"})
        self.assertTrue(first["success"])
        self.assertTrue(first["data"]["saved"])
        self.assertTrue(handler.is_item_saved("r1"))
        second = await handler.execute({"id": "r1", "name": "Dune"})
        self.assertFalse(second["data"]["saved"])
        self.assertFalse(handler.is_item_saved("r1"))

    async def test_cap_evicts_oldest(self) -> None:
        handler = SaveHandler({"enabled": True, "settings": {"max_items": 2}}, saved_items=SavedItemsStore())
        for row_id in ("a", "b", "c"):
            await handler.execute({"id": row_id})
        self.assertEqual([item["id"] for item in handler.get_saved_items()], ["b", "c"])

    async def test_non_positive_cap_uses_default(self) -> None:
        for max_items in (0, -1, "3"):
            handler = SaveHandler({"enabled": True, "settings": {"max_items": max_items}}, saved_items=SavedItemsStore())
            result = await handler.execute({"id": "a"})
            self.assertTrue(result["data"]["saved"])
            self.assertTrue(handler.is_item_saved("a"), max_items)
            for idx in range(DEFAULT_MAX_SAVED_ITEMS + 10):
                await handler.execute({"id": f"row-{idx}"})
            saved = handler.get_saved_items()
            self.assertEqual(len(saved), DEFAULT_MAX_SAVED_ITEMS, max_items)
            self.assertEqual(saved[-1]["id"], f"row-{DEFAULT_MAX_SAVED_ITEMS + 9}")

    async def test_requires_id(self) -> None:
        result = await SaveHandler().execute({"name": "x"})
        self.assertFalse(result["success"])

    async def test_disabled(self) -> None:
        result = await SaveHandler({"enabled": False}).execute({"id": "r1"})
        self.assertEqual(result, {"success": False, "message": "The save action is currently disabled"})


class TestDeleteHandler(unittest.IsolatedAsyncioTestCase):
    async def test_cancel_is_not_failure(self) -> None:
        removed = []
        interaction = RecordingInteraction(confirm=False)
        ctx = ActionContext(remove_item=removed.append, interaction=interaction)
        result = await DeleteHandler().execute({"id": "r1", "name": "Dune"}, ctx)
        self.assertTrue(result["success"])
        self.assertEqual(result["data"], {"cancelled": True, "id": "r1"})
        self.assertEqual(removed, [])
        self.assertIn('"Dune"', interaction.calls[0][2])

    async def test_confirmed_removes(self) -> None:
        removed = []
        ctx = ActionContext(remove_item=removed.append, interaction=RecordingInteraction(confirm=True))
        result = await DeleteHandler().execute({"id": "r1"}, ctx)
        self.assertTrue(result["success"])
        self.assertEqual(removed, ["r1"])

    async def test_no_confirmation_when_disabled_by_setting(self) -> None:
        removed = []
        interaction = RecordingInteraction(confirm=False)
        handler = DeleteHandler({"enabled": True, "settings": {"confirm_before_delete": False}})
        result = await handler.execute({"id": "r1"}, ActionContext(remove_item=removed.append, interaction=interaction))
        self.assertTrue(result["success"])
        self.assertEqual(interaction.calls, [])
        self.assertEqual(removed, ["r1"])

    async def test_remove_error_is_reported(self) -> None:
        def boom(_row_id):
            raise RuntimeError("db down")

        result = await DeleteHandler().execute({"id": "r1"}, ActionContext(remove_item=boom))
        self.assertFalse(result["success"])
        self.assertIn("db down", result["message"])


class TestEditHandler(unittest.IsolatedAsyncioTestCase):
    async def test_submit_uses_update_data(self) -> None:
        updates = []
        interaction = RecordingInteraction(edits={"name": "Dune Messiah"})
        ctx = ActionContext(update_data=updates.append, interaction=interaction)
        result = await EditHandler().execute({"id": "r1", "name": "Dune", "year": 1965}, ctx)
        self.assertTrue(result["success"])
        self.assertEqual(updates, [{"id": "r1", "name": "Dune Messiah", "year": 1965}])
        self.assertEqual(interaction.calls[0][1], "Edit Dune")

    async def test_cancel(self) -> None:
        ctx = ActionContext(interaction=RecordingInteraction(edits=None))
        result = await EditHandler().execute({"id": "r1"}, ctx)
        self.assertTrue(result["success"])
        self.assertTrue(result["data"]["cancelled"])

    async def test_fallback_writes_storage(self) -> None:
        storage = TableStorage()
        storage.save_table(_table())
        handler = EditHandler(storage=storage)
        ctx = ActionContext(table_id="t1", interaction=RecordingInteraction(edits={"year": 1966}))
        result = await handler.execute({"id": "r1", "name": "Dune", "year": 1965}, ctx)
        self.assertTrue(result["success"])
        self.assertNotIn("warning", result)
        self.assertEqual(storage.get_table_by_key("t1")["rows"][0]["year"], 1966)

    async def test_fallback_without_table_warns(self) -> None:
        handler = EditHandler(storage=TableStorage())
        ctx = ActionContext(table_id="missing", interaction=AutoInteraction())
        result = await handler.execute({"id": "r1"}, ctx)
        self.assertTrue(result["success"])
        self.assertIn("warning", result)


class TestViewHandler(unittest.IsolatedAsyncioTestCase):
    async def test_view_shows_title(self) -> None:
        interaction = RecordingInteraction()
        result = await ViewHandler().execute({"id": "r1", "title": "Dune"}, ActionContext(interaction=interaction))
        self.assertEqual(result, {"success": True, "message": "Viewed item details", "data": {"id": "r1"}})
        self.assertEqual(interaction.calls[0][:2], ("show", "Dune"))

    async def test_view_uses_table_title(self) -> None:
        interaction = RecordingInteraction()
        await ViewHandler().execute({"id": "r1"}, ActionContext(table_title="Books", interaction=interaction))
        self.assertEqual(interaction.calls[0][1], "Books Item Details")

    async def test_view_never_fails(self) -> None:
        class Broken(RecordingInteraction):
            async def show(self, title, item):
                raise RuntimeError("closed")

        result = await ViewHandler().execute({"id": "r1"}, ActionContext(interaction=Broken()))
        self.assertTrue(result["success"])


class TestExportHandler(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.mkdtemp()

    def tearDown(self) -> None:
        shutil.rmtree(self.tmp, ignore_errors=True)

    async def test_export_context_table(self) -> None:
        handler = ExportHandler(export_dir=self.tmp)
        result = await handler.execute({"id": "r1"}, ActionContext(table_data=_table()))
        self.assertTrue(result["success"])
        self.assertTrue(os.path.exists(result["data"]["path"]))
        self.assertTrue(result["data"]["path"].endswith(".xlsx"))

    async def test_export_storage_lookup_by_title(self) -> None:
        storage = TableStorage()
        storage.save_table(_table())
        handler = ExportHandler(storage=storage, export_dir=self.tmp)
        result = await handler.execute({"id": "r1", "tableTitle": "Books"})
        self.assertTrue(result["success"])

    async def test_export_without_table_fails(self) -> None:
        result = await ExportHandler(storage=TableStorage(), export_dir=self.tmp).execute({"id": "r1"})
        self.assertFalse(result["success"])
        self.assertEqual(result["message"], "Could not find table data to export")


class TestSafeHandler(unittest.IsolatedAsyncioTestCase):
    async def test_generic_success(self) -> None:
        handler = SafeHandler("archive")
        result = await handler.execute({"id": "r9"})
        self.assertTrue(result["success"])
        self.assertEqual(result["data"]["actionType"], "archive")
        self.assertEqual(result["data"]["rowId"], "r9")
        self.assertEqual(handler.get_metadata()["name"], "Archive Handler")

    async def test_metadata_override(self) -> None:
        handler = SafeHandler("archive", {"enabled": True, "metadata": {"type": "archive", "version": "2.1.0"}})
        self.assertEqual(handler.get_metadata()["version"], "2.1.0")

    async def test_disabled(self) -> None:
        result = await SafeHandler("archive", {"enabled": False}).execute({"id": "r9"})
        self.assertEqual(result["message"], "The archive action is currently disabled")


if __name__ == "__main__":
    unittest.main()
