from __future__ import annotations

from typing import Protocol

from billbus.core.errors import HandlerNotRegisteredError
from billbus.domain.config import TaskDefinition


class CustomTaskHandler(Protocol):
    async def handle(self, definition: TaskDefinition) -> None: ...


class TaskHandlerRegistry:
    """Named custom handlers for task definitions flagged `custom`."""

    def __init__(self) -> None:
        self._handlers: dict[str, CustomTaskHandler] = {}

    def register(self, name: str, handler: CustomTaskHandler) -> None:
        self._handlers[name] = handler

    def names(self) -> set[str]:
        return set(self._handlers)

    def get(self, name: str | None) -> CustomTaskHandler:
        handler = self._handlers.get(name or "")
        if handler is None:
            raise HandlerNotRegisteredError(f"custom task handler {name!r} is not registered")
        return handler
