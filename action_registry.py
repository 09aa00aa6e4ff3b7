"""In-memory type -> handler registry."""

from __future__ import annotations

import logging
from typing import Any, Dict

from action_types import ActionContext, ActionResult, HandlerConfig, HandlerMetadata, Row, fail
from builtin_handlers import BUILTIN_HANDLERS

logger = logging.getLogger("tabula.registry")


class ActionRegistry:
    def __init__(self) -> None:
        self._handlers: Dict[str, Any] = {}

    def register(self, action_type: str, handler: Any) -> None:
        if action_type in self._handlers:
            logger.warning("handler_overwritten type=%s", action_type)
        self._handlers[action_type] = handler

    def get(self, action_type: str) -> Any | None:
        return self._handlers.get(action_type)

    def has(self, action_type: str) -> bool:
        return action_type in self._handlers

    def remove(self, action_type: str) -> bool:
        return self._handlers.pop(action_type, None) is not None

    def types(self) -> list[str]:
        return list(self._handlers.keys())

    def update_config(self, action_type: str, config: HandlerConfig) -> None:
        handler = self._handlers.get(action_type)
        if handler is None:
            logger.warning("update_config_unknown_type type=%s", action_type)
            return
        handler.update_config(config)

    async def execute(self, action_type: str, row: Row, context: ActionContext | None = None) -> ActionResult:
        """Run the handler for ``action_type``; failures come back as results, never raised."""
        handler = self._handlers.get(action_type)
        if handler is None:
            logger.error("handler_not_found type=%s", action_type)
            return fail(f"No handler registered for action type: {action_type}")
        try:
            result = await handler.execute(row, context)
        except Exception as exc:
            logger.error("handler_execute_failed type=%s error=%s", action_type, exc)
            return fail(f"Error executing {action_type} action: {exc}", error=str(exc))
        if not isinstance(result, dict) or "success" not in result:
            logger.error("handler_result_invalid type=%s", action_type)
            return fail(f"Error executing {action_type} action: invalid result")
        return result

    def all_metadata(self) -> Dict[str, HandlerMetadata]:
        return {action_type: handler.get_metadata() for action_type, handler in self._handlers.items()}


def register_builtin_handlers(
    registry: ActionRegistry,
    storage: Any = None,
    saved_items: Any = None,
    interaction: Any = None,
    export_dir: str | None = None,
) -> ActionRegistry:
    """Install the built-in save/delete/edit/view/export handlers."""
    for action_type, cls in BUILTIN_HANDLERS.items():
        if action_type == "save":
            handler = cls(saved_items=saved_items, interaction=interaction)
        elif action_type == "edit":
            handler = cls(storage=storage, interaction=interaction)
        elif action_type == "export":
            handler = cls(storage=storage, export_dir=export_dir, interaction=interaction)
        else:
            handler = cls(interaction=interaction)
        registry.register(action_type, handler)
    return registry


_registry: ActionRegistry | None = None


def get_registry() -> ActionRegistry:
    global _registry
    if _registry is None:
        _registry = ActionRegistry()
    return _registry
