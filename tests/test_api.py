import os
import sys
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from fastapi.testclient import TestClient

os.environ["USE_DB"] = "0"
os.environ["TABULA_SEED_ON_STARTUP"] = "0"
os.environ.setdefault("HANDLER_ENCRYPTION_KEY", "api-test-secret")

import app.main as main
from app.action_handlers import ActionHandlerService
from app.stores import MemoryActionHandlerStore
from tabula.code_cipher import ENCRYPTED_PREFIX, CodeCipher


class TestActionHandlerApi(unittest.TestCase):
    def setUp(self) -> None:
        self.cipher = CodeCipher("api-test-secret")
        main.handler_service = ActionHandlerService(MemoryActionHandlerStore(), self.cipher)
        self.client = TestClient(main.app)

    def _initialize(self) -> dict:
        res = self.client.post("/action-handlers/initialize")
        self.assertEqual(res.status_code, 200)
        return res.json()

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"ok": True})

    def test_initialize_is_idempotent(self) -> None:
        first = self._initialize()
        self.assertTrue(first["ok"])
        self.assertEqual(first["created"], 4)
        self.assertEqual(self._initialize()["created"], 0)
        handlers = self.client.get("/action-handlers").json()["handlers"]
        self.assertEqual(len(handlers), 4)
        views = self.client.get("/action-handlers", params={"type": "view"}).json()["handlers"]
        self.assertEqual([h["type"] for h in views], ["view"])

    def test_latest_returns_decrypted_code(self) -> None:
        self._initialize()
        body = self.client.get("/action-handlers/latest", params={"type": "view"}).json()
        self.assertTrue(body["ok"])
        self.assertIn("class ", body["handler"]["code"])

    def test_latest_requires_type_and_existing(self) -> None:
        res = self.client.get("/action-handlers/latest")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "HANDLER_TYPE_REQUIRED")
        res = self.client.get("/action-handlers/latest", params={"type": "nope"})
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "HANDLER_NOT_FOUND")

    def test_create_conflict_and_validation(self) -> None:
        payload = {"type": "archive", "version": "1.0.0", "frontendVersion": "1.0.0", "code": "x = 1\n"}
        res = self.client.post("/action-handlers", json=payload)
        self.assertEqual(res.status_code, 201)
        handler = res.json()["handler"]
        self.assertEqual(handler["name"], "Archive Handler")
        self.assertEqual(handler["frontend_version"], "1.0.0")
        self.assertNotEqual(handler["code"], "x = 1\n")
        res = self.client.post("/action-handlers", json=payload)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["errors"][0]["code"], "HANDLER_VERSION_EXISTS")
        res = self.client.post("/action-handlers", json={"type": "archive", "version": "latest"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["path"], "version")

    def test_get_update_delete_version(self) -> None:
        self._initialize()
        res = self.client.get("/action-handlers/edit/1.0.0")
        self.assertEqual(res.status_code, 200)
        res = self.client.put("/action-handlers/edit/1.0.0", json={"description": "Edited"})
        self.assertEqual(res.json()["handler"]["description"], "Edited")
        self.assertEqual(self.client.put("/action-handlers/edit/9.0.0", json={}).status_code, 404)
        self.assertEqual(self.client.delete("/action-handlers/edit/1.0.0").status_code, 200)
        self.assertEqual(self.client.get("/action-handlers/edit/1.0.0").status_code, 404)
        self.assertEqual(self.client.delete("/action-handlers/edit/1.0.0").status_code, 404)

    def test_new_version(self) -> None:
        self._initialize()
        res = self.client.post("/action-handlers/view/versions", params={"changeType": "minor"}, json={"description": "v2"})
        self.assertEqual(res.status_code, 201)
        self.assertEqual(res.json()["handler"]["version"], "1.1.0")
        self.assertEqual(self.client.get("/action-handlers/view/1.0.0").status_code, 200)
        res = self.client.post("/action-handlers/view/versions", params={"changeType": "giant"}, json={})
        self.assertEqual(res.status_code, 400)

    def test_check_updates(self) -> None:
        self._initialize()
        body = self.client.get("/action-handlers/check-updates", params={"type": "edit", "frontendVersion": "0.9.0"}).json()
        self.assertTrue(body["needsUpdate"])
        body = self.client.get("/table/action-handlers/check-updates", params={"type": "edit", "frontendVersion": "1.0.0"}).json()
        self.assertFalse(body["needsUpdate"])

    def test_table_wire_list(self) -> None:
        self._initialize()
        items = self.client.get("/table/action-handlers").json()
        self.assertEqual(len(items), 4)
        self.assertTrue(all(not item["code"].startswith(ENCRYPTED_PREFIX) for item in items))
        encrypted = self.client.get("/table/action-handlers", params={"encrypted": 1}).json()
        self.assertTrue(all(item["code"].startswith(ENCRYPTED_PREFIX) for item in encrypted))
        self.assertEqual(encrypted[0]["config"]["metadata"]["version"], "1.0.0")

    def test_cors_preflight_allowed_origin(self) -> None:
        res = self.client.options(
            "/action-handlers",
            headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "GET"},
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.headers.get("access-control-allow-origin"), "http://localhost:5173")

    def test_cors_preflight_disallowed_origin(self) -> None:
        res = self.client.options(
            "/action-handlers",
            headers={"Origin": "https://evil.test", "Access-Control-Request-Method": "GET"},
        )
        self.assertNotEqual(res.status_code, 200)
        self.assertNotIn("access-control-allow-origin", res.headers)
        res = self.client.options("/action-handlers", headers={"Origin": "https://evil.test"})
        self.assertNotEqual(res.status_code, 200)
        self.assertNotIn("access-control-allow-origin", res.headers)

    def test_cors_simple_request_disallowed_origin(self) -> None:
        res = self.client.get("/health", headers={"Origin": "https://evil.test"})
        self.assertEqual(res.status_code, 200)
        self.assertNotIn("access-control-allow-origin", res.headers)
        res = self.client.get("/health", headers={"Origin": "http://127.0.0.1:8080"})
        self.assertEqual(res.headers.get("access-control-allow-origin"), "http://127.0.0.1:8080")


if __name__ == "__main__":
    unittest.main()
