from __future__ import annotations

import logging
from typing import Callable

from billbus.core.errors import HandlerNotRegisteredError
from billbus.domain.config import DocumentTypeConfig
from billbus.services.handlers import BillHandler, ForwardingBillHandler, GenericBillHandler, HandlerContext


logger = logging.getLogger(__name__)

HandlerFactory = Callable[[DocumentTypeConfig, HandlerContext], BillHandler]


class HandlerRegistry:
    """Maps handler variant names from document type configs to factories."""

    def __init__(self) -> None:
        self._factories: dict[str, HandlerFactory] = {}

    def register(self, name: str, factory: HandlerFactory) -> None:
        self._factories[name] = factory

    def names(self) -> set[str]:
        return set(self._factories)

    def create(self, config: DocumentTypeConfig, context: HandlerContext) -> BillHandler:
        factory = self._factories.get(config.handler)
        if factory is None:
            raise HandlerNotRegisteredError(
                f"handler {config.handler!r} for {config.account_id}/{config.document_type} is not registered"
            )
        return factory(config, context)


def default_handler_registry() -> HandlerRegistry:
    registry = HandlerRegistry()
    registry.register("generic", GenericBillHandler)
    registry.register("forward", ForwardingBillHandler)
    return registry


class DispatchResolver:
    def __init__(self, context: HandlerContext, registry: HandlerRegistry | None = None) -> None:
        self.context = context
        self.registry = registry or default_handler_registry()

    def resolve(self, account_id: str | None, document_type: str) -> BillHandler:
        # An omitted account resolves to the configured default account.
        resolved_account = self.context.store.resolve_account_id(account_id)
        config = self.context.store.document_type(resolved_account, document_type)
        return self.registry.create(config, self.context)
