"""Keeps the local registry in step with the handler definitions the backend serves."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, List

import httpx

from action_registry import ActionRegistry, get_registry
from action_types import default_metadata, merge_config
from builtin_handlers import SafeHandler
from dynamic_handler import HandlerLoadError, load_handler
from tabula.code_cipher import CodeCipher, ConfigurationError
from tabula.semver import is_update_needed, pick_latest

logger = logging.getLogger("tabula.sync")

FRONTEND_VERSION = "1.0.0"
DEFAULT_API_URL = "http://localhost:8000/table/action-handlers"
DEFAULT_SYNC_INTERVAL_MS = 5 * 60 * 1000


class SyncTransportError(RuntimeError):
    pass


def _env_interval() -> int:
    raw = os.getenv("ACTION_SYNC_INTERVAL_MS", "").strip()
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_SYNC_INTERVAL_MS
    return value if value > 0 else DEFAULT_SYNC_INTERVAL_MS


def latest_by_type(definitions: List[dict]) -> Dict[str, dict]:
    """Keep the highest version per type; the first seen wins a tie."""
    grouped: Dict[str, List[dict]] = {}
    for definition in definitions:
        if not isinstance(definition, dict):
            continue
        action_type = definition.get("type")
        if not isinstance(action_type, str) or not action_type:
            continue
        grouped.setdefault(action_type, []).append(definition)
    return {
        action_type: pick_latest(candidates, lambda definition: definition.get("version"))
        for action_type, candidates in grouped.items()
    }


class ActionSyncService:
    def __init__(
        self,
        registry: ActionRegistry | None = None,
        api_url: str | None = None,
        sync_interval_ms: int | None = None,
        cipher: CodeCipher | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.registry = registry if registry is not None else get_registry()
        self.api_url = api_url or os.getenv("ACTION_SYNC_API_URL", "").strip() or DEFAULT_API_URL
        self.sync_interval_ms = sync_interval_ms or _env_interval()
        self._cipher = cipher
        self._transport = transport
        self._timeout = timeout
        self._timer: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def configure(self, api_url: str | None = None, sync_interval_ms: int | None = None) -> None:
        """Update settings; a running loop keeps its interval until restarted."""
        if sync_interval_ms:
            self.sync_interval_ms = sync_interval_ms
        if api_url:
            self.api_url = api_url

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def start_sync(self) -> None:
        """Sync now, then every ``sync_interval_ms``. Must run inside an event loop."""
        if self.running:
            logger.warning("sync_already_running restarting")
            self.stop_sync()
        self._timer = asyncio.get_running_loop().create_task(self._tick_forever())
        logger.info("sync_started interval_ms=%s api_url=%s", self.sync_interval_ms, self.api_url)

    def stop_sync(self) -> None:
        # in-flight passes are left to finish
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None
        logger.info("sync_stopped")

    async def join(self) -> None:
        """Wait for every sync pass started by the loop to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _tick_forever(self) -> None:
        interval = self.sync_interval_ms / 1000.0
        while True:
            task = asyncio.get_running_loop().create_task(self._sync_logged())
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            await asyncio.sleep(interval)

    async def _sync_logged(self) -> None:
        try:
            await self.sync()
        except Exception as exc:
            logger.error("sync_failed error=%s", exc)

    async def fetch_definitions(self) -> List[dict]:
        try:
            async with self._client() as client:
                res = await client.get(self.api_url)
        except httpx.HTTPError as exc:
            raise SyncTransportError(f"fetch failed: {exc}") from exc
        if res.status_code >= 400:
            raise SyncTransportError(f"API responded with status {res.status_code}")
        try:
            data = res.json()
        except ValueError as exc:
            raise SyncTransportError("API returned invalid JSON") from exc
        if not isinstance(data, list):
            raise SyncTransportError("API returned a non-list payload")
        return data

    async def sync(self) -> int:
        """Run one pass; returns the number of types (re)registered.

        Only a failed fetch raises. Per-type problems are contained.
        """
        logger.info("sync_begin api_url=%s", self.api_url)
        definitions = await self.fetch_definitions()
        latest = latest_by_type(definitions)
        applied = 0
        for definition in latest.values():
            try:
                if self._apply(definition):
                    applied += 1
            except Exception as exc:
                logger.error("sync_definition_failed type=%s error=%s", definition.get("type"), exc)
        logger.info("sync_done types=%s applied=%s", len(latest), applied)
        return applied

    def _apply(self, definition: dict) -> bool:
        action_type = definition["type"]
        version = definition.get("version")
        raw_config = definition.get("config") if isinstance(definition.get("config"), dict) else {}
        config = merge_config({"enabled": True}, raw_config)

        current = self.registry.get(action_type)
        if current is not None:
            current_version = current.get_metadata().get("version")
            if not is_update_needed(current_version, version):
                logger.debug("handler_up_to_date type=%s local=%s remote=%s", action_type, current_version, version)
                return False

        logger.info("handler_updating type=%s version=%s", action_type, version)
        code = definition.get("code")
        handler: Any = None
        if code:
            try:
                handler = load_handler(action_type, code, config, cipher=self._cipher)
            except HandlerLoadError as exc:
                logger.error("dynamic_handler_failed type=%s code=%s error=%s", action_type, exc.code, exc.message)
            except ConfigurationError as exc:
                logger.error("dynamic_handler_failed type=%s error=%s", action_type, exc)
        if handler is not None:
            metadata = {**handler.get_metadata(), "version": version}
            handler.update_config({**config, "metadata": metadata})
        else:
            wire_metadata = config.get("metadata") if isinstance(config.get("metadata"), dict) else {}
            metadata = {**default_metadata(action_type, version), **wire_metadata, "type": action_type, "version": version}
            handler = SafeHandler(action_type, {**config, "metadata": metadata})
        self.registry.register(action_type, handler)
        return True

    async def check_for_updates(self, action_type: str) -> bool:
        """Ask the backend whether this client is behind; False when the check fails."""
        params = {"type": action_type, "frontendVersion": FRONTEND_VERSION}
        try:
            async with self._client() as client:
                res = await client.get(f"{self.api_url}/check-updates", params=params)
            if res.status_code >= 400:
                raise SyncTransportError(f"API responded with status {res.status_code}")
            return bool(res.json().get("needsUpdate"))
        except Exception as exc:
            logger.error("check_updates_failed type=%s error=%s", action_type, exc)
            return False


_sync_service: ActionSyncService | None = None


def get_sync_service() -> ActionSyncService:
    global _sync_service
    if _sync_service is None:
        _sync_service = ActionSyncService()
    return _sync_service
