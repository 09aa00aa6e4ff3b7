"""Action handler contract shared by built-in and dynamically loaded handlers."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Protocol, runtime_checkable


ActionResult = Dict[str, Any]
HandlerMetadata = Dict[str, Any]
HandlerConfig = Dict[str, Any]
Row = Dict[str, Any]

CONTRACT_MEMBERS = ("execute", "get_metadata", "update_config")
DEFAULT_HANDLER_VERSION = "1.0.0"
NAME_FIELDS = ("name", "title", "label", "subject")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def ok(message: str | None = None, data: dict | None = None, **extra: Any) -> ActionResult:
    result: ActionResult = {"success": True}
    if message is not None:
        result["message"] = message
    if data is not None:
        result["data"] = data
    result.update(extra)
    return result


def fail(message: str, error: str | None = None, data: dict | None = None) -> ActionResult:
    result: ActionResult = {"success": False, "message": message}
    if error is not None:
        result["error"] = error
    if data is not None:
        result["data"] = data
    return result


def merge_config(current: HandlerConfig | None, partial: HandlerConfig | None) -> HandlerConfig:
    """Shallow merge: top-level keys in ``partial`` replace those in ``current``.

    Nested dicts such as ``settings`` are replaced wholesale, never deep-merged.
    """
    merged = dict(current or {})
    if partial:
        merged.update(partial)
    return merged


def title_case(action_type: str) -> str:
    return action_type[:1].upper() + action_type[1:]


def default_metadata(action_type: str, version: str = DEFAULT_HANDLER_VERSION) -> HandlerMetadata:
    return {
        "type": action_type,
        "name": f"{title_case(action_type)} Handler",
        "description": f"Default handler for {action_type} actions",
        "version": version,
    }


def item_name(row: Row | None, fields: tuple = NAME_FIELDS, fallback: str = "Item") -> str:
    if not isinstance(row, dict):
        return fallback
    for key in fields:
        value = row.get(key)
        if isinstance(value, str) and value:
            return value
    if row.get("id"):
        return f"Item #{row['id']}"
    return fallback


def implements_contract(obj: Any) -> bool:
    return obj is not None and all(callable(getattr(obj, member, None)) for member in CONTRACT_MEMBERS)


class Interaction(Protocol):
    """User-facing surface for handlers that need a human in the loop.

    Each call suspends until the user answers; there is no timeout.
    """

    async def confirm(self, title: str, message: str) -> bool: ...

    async def edit(self, title: str, item: Row) -> Row | None: ...

    async def show(self, title: str, item: Row) -> None: ...


class AutoInteraction:
    """Headless interaction: answers every prompt immediately."""

    def __init__(self, confirm: bool = True) -> None:
        self._confirm = confirm

    async def confirm(self, title: str, message: str) -> bool:
        return self._confirm

    async def edit(self, title: str, item: Row) -> Row | None:
        if not self._confirm:
            return None
        return copy.deepcopy(item)

    async def show(self, title: str, item: Row) -> None:
        return None


@dataclass
class ActionContext:
    user_id: str | None = None
    table_id: str | None = None
    view_id: str | None = None
    table_title: str | None = None
    table_data: dict | None = None
    update_data: Callable[[Row], None] | None = None
    remove_item: Callable[[str], None] | None = None
    interaction: Interaction | None = None
    extra: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ActionHandler(Protocol):
    async def execute(self, row: Row, context: ActionContext | None = None) -> ActionResult: ...

    def get_metadata(self) -> HandlerMetadata: ...

    def update_config(self, config: HandlerConfig) -> None: ...


class BaseHandler:
    """Config and metadata plumbing for handlers.

    Subclasses set the class attributes and implement ``execute``. A
    ``metadata`` key in the config overrides the declared identity, which is
    how the loader and the sync service stamp type and version.
    """

    action_type = "action"
    name: str | None = None
    description: str | None = None
    version = DEFAULT_HANDLER_VERSION
    icon: str | None = None
    default_settings: Dict[str, Any] = {}

    def __init__(self, config: HandlerConfig | None = None, interaction: Interaction | None = None) -> None:
        if config is None:
            config = {"enabled": True, "settings": copy.deepcopy(self.default_settings)}
        self._config: HandlerConfig = dict(config)
        self._config.setdefault("enabled", True)
        self._interaction = interaction
        self.logger = logging.getLogger("tabula.handlers")

    @property
    def config(self) -> HandlerConfig:
        return copy.deepcopy(self._config)

    @property
    def enabled(self) -> bool:
        return bool(self._config.get("enabled", True))

    def setting(self, key: str, default: Any = None) -> Any:
        settings = self._config.get("settings")
        if not isinstance(settings, dict):
            return default
        return settings.get(key, default)

    def get_metadata(self) -> HandlerMetadata:
        metadata = default_metadata(self.action_type, self.version)
        if self.name:
            metadata["name"] = self.name
        if self.description:
            metadata["description"] = self.description
        if self.icon:
            metadata["icon"] = self.icon
        override = self._config.get("metadata")
        if isinstance(override, dict):
            metadata.update(override)
        return metadata

    def update_config(self, config: HandlerConfig) -> None:
        self._config = merge_config(self._config, config)

    def interaction_for(self, context: ActionContext | None) -> Interaction:
        if context is not None and context.interaction is not None:
            return context.interaction
        if self._interaction is not None:
            return self._interaction
        return AutoInteraction()

    def disabled_result(self) -> ActionResult:
        return fail(f"The {self.get_metadata()['type']} action is currently disabled")

    async def execute(self, row: Row, context: ActionContext | None = None) -> ActionResult:
        raise NotImplementedError
