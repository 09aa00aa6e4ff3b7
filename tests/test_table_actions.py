import asyncio
import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from action_registry import ActionRegistry
from action_types import ActionContext, BaseHandler, ok
from builtin_handlers import DeleteHandler, EditHandler, SaveHandler, ViewHandler
from table_actions import MESSAGE_TTL_SECONDS, TableActionController
from table_storage import SavedItemsStore, TableStorage


class FixedInteraction:
    def __init__(self, confirm=True, edits=None):
        self._confirm = confirm
        self._edits = edits

    async def confirm(self, title, message):
        return self._confirm

    async def edit(self, title, item):
        return self._edits

    async def show(self, title, item):
        return None


class SlowHandler(BaseHandler):
    action_type = "slow"

    def __init__(self, config=None):
        super().__init__(config)
        self.release = asyncio.Event()

    async def execute(self, row, context=None):
        await self.release.wait()
        return ok("done", {"id": row.get("id")})


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def _table():
    return {
        "key": "t1",
        "title": "Books",
        "columns": [{"key": "name", "label": "Name"}],
        "rows": [{"id": "r1", "name": "Dune"}, {"id": "r2", "name": "Emma"}],
        "actions": [],
    }


class TestTableActionController(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.registry = ActionRegistry()
        self.saved = SavedItemsStore()
        self.registry.register("save", SaveHandler(saved_items=self.saved))
        self.registry.register("view", ViewHandler())
        self.clock = FakeClock()
        self.published = []

    def _controller(self, interaction=None, **kwargs):
        return TableActionController(
            _table(),
            registry=self.registry,
            context=ActionContext(interaction=interaction or FixedInteraction()),
            on_data_update=self.published.append,
            clock=self.clock,
            **kwargs,
        )

    async def test_unknown_action(self) -> None:
        controller = self._controller()
        result = await controller.handle_action("archive", {"id": "r1"})
        self.assertFalse(result["success"])
        self.assertEqual(controller.message_for("r1"), "Error: Action archive not available")

    async def test_save_toggles_and_messages_expire(self) -> None:
        controller = self._controller()
        await controller.handle_action("save", {"id": "r1", "name": "Dune"})
        self.assertTrue(controller.saved["r1"])
        self.assertIsNotNone(controller.message_for("r1"))
        self.clock.now += MESSAGE_TTL_SECONDS
        self.assertIsNone(controller.message_for("r1"))
        await controller.handle_action("save", {"id": "r1", "name": "Dune"})
        self.assertFalse(controller.saved["r1"])

    async def test_saved_state_loaded_from_handler(self) -> None:
        self.saved.add({"id": "r2"})
        controller = self._controller()
        self.assertEqual(controller.saved, {"r2": True})

    async def test_delete_removes_row(self) -> None:
        self.registry.register("delete", DeleteHandler())
        controller = self._controller(FixedInteraction(confirm=True))
        result = await controller.handle_action("delete", {"id": "r1", "name": "Dune"})
        self.assertTrue(result["success"])
        self.assertEqual([r["id"] for r in self.published[-1]["rows"]], ["r2"])

    async def test_delete_cancel_leaves_rows(self) -> None:
        self.registry.register("delete", DeleteHandler())
        controller = self._controller(FixedInteraction(confirm=False))
        await controller.handle_action("delete", {"id": "r1"})
        self.assertEqual(self.published, [])
        self.assertEqual(len(controller.table["rows"]), 2)

    async def test_edit_updates_row(self) -> None:
        self.registry.register("edit", EditHandler())
        controller = self._controller(FixedInteraction(edits={"name": "Dune Messiah"}))
        await controller.handle_action("edit", {"id": "r1", "name": "Dune"})
        self.assertEqual(controller.table["rows"][0]["name"], "Dune Messiah")
        self.assertEqual(self.published[-1]["rows"][0]["name"], "Dune Messiah")

    async def test_edit_publishes_once(self) -> None:
        self.registry.register("edit", EditHandler())
        controller = self._controller(FixedInteraction(edits={"year": 1966}))
        await controller.handle_action("edit", {"id": "r1", "name": "Dune"})
        self.assertEqual(len(self.published), 1)
        self.assertEqual(self.published[0]["rows"][0]["year"], 1966)

    async def test_returned_data_applied_once(self) -> None:
        class Rename(BaseHandler):
            action_type = "rename"

            async def execute(self, row, context=None):
                return ok("renamed", {**row, "name": "Renamed"})

        self.registry.register("rename", Rename())
        controller = self._controller()
        await controller.handle_action("rename", {"id": "r2", "name": "Emma"})
        self.assertEqual(len(self.published), 1)
        self.assertEqual(self.published[0]["rows"][1]["name"], "Renamed")

    async def test_view_does_not_touch_rows(self) -> None:
        controller = self._controller()
        result = await controller.handle_action("view", {"id": "r1"})
        self.assertTrue(result["success"])
        self.assertEqual(self.published, [])

    async def test_storage_fallback_when_no_callback(self) -> None:
        storage = TableStorage()
        storage.save_table(_table())
        self.registry.register("delete", DeleteHandler({"enabled": True, "settings": {"confirm_before_delete": False}}))
        controller = TableActionController(_table(), registry=self.registry, storage=storage, clock=self.clock)
        await controller.handle_action("delete", {"id": "r2"})
        self.assertEqual([r["id"] for r in storage.get_table_by_key("t1")["rows"]], ["r1"])

    async def test_duplicate_in_flight_refused(self) -> None:
        slow = SlowHandler()
        self.registry.register("slow", slow)
        controller = self._controller()
        first = asyncio.create_task(controller.handle_action("slow", {"id": "r1"}))
        await asyncio.sleep(0)
        self.assertTrue(controller.is_loading("r1", "slow"))
        second = await controller.handle_action("slow", {"id": "r1"})
        self.assertFalse(second["success"])
        slow.release.set()
        self.assertTrue((await first)["success"])
        self.assertFalse(controller.is_loading("r1", "slow"))


if __name__ == "__main__":
    unittest.main()
