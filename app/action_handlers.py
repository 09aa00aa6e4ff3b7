"""Versioned, encrypted-at-rest handler definitions served to clients."""

from __future__ import annotations

import logging
from typing import Any

from app.handler_seeds import default_handlers
from app.stores import HANDLER_FIELDS
from tabula.code_cipher import ENCRYPTED_PREFIX, CodeCipher
from tabula.semver import CHANGE_KINDS, increment_version, is_update_needed, parse_version, pick_latest

logger = logging.getLogger("tabula.storage")

_NO_VERSION = "0.0.0"


class HandlerValidationError(ValueError):
    def __init__(self, code: str, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.path = path


def _title(action_type: str) -> str:
    return action_type[:1].upper() + action_type[1:]


def _pick_latest(records: list[dict]) -> dict | None:
    return pick_latest(records, lambda record: record.get("version"))


class ActionHandlerService:
    def __init__(self, store: Any, cipher: CodeCipher) -> None:
        self._store = store
        self._cipher = cipher

    def _encrypt(self, code: Any) -> str | None:
        if code is None or code == "":
            return None
        if not isinstance(code, str):
            raise HandlerValidationError("HANDLER_CODE_INVALID", "code must be a string", "code")
        if self._cipher.is_encrypted(code):
            return code
        encrypted = self._cipher.encrypt(code)
        if not encrypted:
            raise HandlerValidationError("HANDLER_CODE_ENCRYPT_FAILED", "code could not be encrypted", "code")
        return encrypted

    def find_all(self, action_type: str | None = None) -> list[dict]:
        return self._store.list(action_type or None)

    def find_latest_by_type(self, action_type: str) -> dict | None:
        return _pick_latest(self._store.list(action_type))

    def find_one(self, action_type: str, version: str) -> dict | None:
        return self._store.get(action_type, version)

    def create(self, data: dict) -> dict:
        if not isinstance(data, dict):
            raise HandlerValidationError("HANDLER_INVALID", "handler must be an object")
        action_type = data.get("type")
        if not isinstance(action_type, str) or not action_type.strip():
            raise HandlerValidationError("HANDLER_TYPE_REQUIRED", "type is required", "type")
        version = data.get("version")
        if parse_version(version) is None:
            raise HandlerValidationError("HANDLER_VERSION_INVALID", "version must be a semantic version", "version")
        record = {key: data[key] for key in HANDLER_FIELDS if key in data}
        record["type"] = action_type.strip()
        record["version"] = version
        record.setdefault("name", f"{_title(record['type'])} Handler")
        record.setdefault("enabled", True)
        record["settings"] = record.get("settings") or {}
        record["code"] = self._encrypt(data.get("code"))
        created = self._store.insert(record)
        logger.info("handler_created type=%s version=%s", created["type"], created["version"])
        return created

    def update(self, action_type: str, version: str, partial: dict) -> dict | None:
        changes = {key: partial[key] for key in HANDLER_FIELDS if key in (partial or {})}
        if "code" in changes:
            changes["code"] = self._encrypt(changes["code"])
        updated = self._store.update(action_type, version, changes)
        if updated is None:
            logger.warning("handler_update_not_found type=%s version=%s", action_type, version)
            return None
        logger.info("handler_updated type=%s version=%s fields=%s", action_type, version, sorted(changes))
        return updated

    def create_new_version(self, action_type: str, partial: dict | None, change_kind: str = "patch") -> dict:
        """Persist a new row at the next version; earlier rows are left untouched."""
        if change_kind not in CHANGE_KINDS:
            raise HandlerValidationError("HANDLER_CHANGE_TYPE_INVALID", f"changeType must be one of {', '.join(CHANGE_KINDS)}", "changeType")
        latest = self.find_latest_by_type(action_type)
        current_version = latest["version"] if latest else _NO_VERSION
        next_version = increment_version(current_version, change_kind)
        base = {key: latest[key] for key in HANDLER_FIELDS if key in latest} if latest else {}
        for key in HANDLER_FIELDS:
            if key in (partial or {}):
                base[key] = partial[key]
        base["type"] = action_type
        base["version"] = next_version
        logger.info("handler_version_bump type=%s from=%s to=%s kind=%s", action_type, current_version, next_version, change_kind)
        return self.create(base)

    def remove(self, action_type: str, version: str) -> bool:
        removed = self._store.delete(action_type, version)
        if removed:
            logger.info("handler_removed type=%s version=%s", action_type, version)
        return removed

    def _decrypted(self, record: dict | None) -> dict | None:
        if record is None:
            return None
        result = dict(record)
        if result.get("code"):
            result["code"] = self._cipher.decrypt(result["code"]) or None
        return result

    def get_with_decrypted_code(self, action_type: str, version: str | None = None) -> dict | None:
        if version:
            return self._decrypted(self._store.get(action_type, version))
        return self._decrypted(self.find_latest_by_type(action_type))

    def check_for_updates(self, action_type: str, frontend_version: str | None) -> bool:
        latest = self.find_latest_by_type(action_type)
        if latest is None or not latest.get("frontend_version"):
            return True
        return is_update_needed(frontend_version, latest["frontend_version"])

    def seed_defaults(self) -> int:
        if self._store.count() > 0:
            logger.info("seed_skipped existing=%s", self._store.count())
            return 0
        created = 0
        for definition in default_handlers():
            self.create(definition)
            created += 1
        logger.info("seed_done created=%s", created)
        return created

    def wire_definitions(self, encrypted: bool = False) -> list[dict]:
        """Client wire list ``[{type, version, config, code}]`` for every stored row."""
        items = []
        for record in self._store.list():
            code = record.get("code")
            if code and encrypted and self._cipher.is_encrypted(code):
                code = ENCRYPTED_PREFIX + code
            elif code:
                code = self._cipher.decrypt(code) or None
            items.append(
                {
                    "type": record["type"],
                    "version": record["version"],
                    "config": {
                        "enabled": bool(record.get("enabled", True)),
                        "settings": record.get("settings") or {},
                        "metadata": {
                            "type": record["type"],
                            "name": record.get("name") or f"{_title(record['type'])} Handler",
                            "description": record.get("description") or f"Default handler for {record['type']} actions",
                            "version": record["version"],
                            "icon": record.get("icon"),
                        },
                    },
                    "code": code,
                }
            )
        return items
