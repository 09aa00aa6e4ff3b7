from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

from action_registry import ActionRegistry, register_builtin_handlers
from action_sync import ActionSyncService
from table_storage import SavedItemsStore, TableStorage
from tabula.code_cipher import CodeCipher

logger = logging.getLogger("tabula.worker")


def build_runtime() -> tuple[ActionRegistry, ActionSyncService]:
    """Wire storage, built-in handlers and the sync service from the environment."""
    storage_dir = os.getenv("TABULA_STORAGE_DIR", "").strip()
    tables_path = Path(storage_dir) / "tables.json" if storage_dir else None
    saved_path = Path(storage_dir) / "saved_items.json" if storage_dir else None
    storage = TableStorage(tables_path)
    saved_items = SavedItemsStore(saved_path)

    registry = ActionRegistry()
    register_builtin_handlers(
        registry,
        storage=storage,
        saved_items=saved_items,
        export_dir=os.getenv("TABULA_EXPORT_DIR", "").strip() or None,
    )
    sync = ActionSyncService(registry=registry, cipher=CodeCipher.from_env())
    return registry, sync


async def run() -> None:
    registry, sync = build_runtime()
    logger.info("worker_started types=%s api_url=%s", ",".join(registry.types()), sync.api_url)
    sync.start_sync()
    try:
        await asyncio.Event().wait()
    finally:
        sync.stop_sync()
        logger.info("worker_stopped")


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
