# rollsync/dispatcher.py

"""
First-match-wins dispatch.

Handlers are consulted in registration order and the first whose
``can_handle`` returns True runs; no other handler sees that event. Generic
or fallback handlers must therefore be registered last.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from rollsync.errors import ContractViolation, HandlerError

logger = logging.getLogger(__name__)


class MessageHandler(ABC):
    """Processes one kind of inbound remote message."""

    @abstractmethod
    def can_handle(self, message: Dict[str, Any]) -> bool:
        ...

    @abstractmethod
    async def handle(self, message: Dict[str, Any]) -> None:
        ...


class HandlerChain:
    """Ordered handler list shared by the message and roll dispatchers."""

    handler_type: type = object

    def __init__(self):
        self._handlers: List[Any] = []

    def register(self, handler) -> None:
        if not isinstance(handler, self.handler_type):
            raise ContractViolation(
                f"{type(handler).__name__} must implement {self.handler_type.__name__}"
            )
        self._handlers.append(handler)
        logger.info(f"Handler registered: {type(handler).__name__}")

    @property
    def handlers(self) -> List[Any]:
        return list(self._handlers)

    def clear(self) -> None:
        self._handlers = []

    def _select(self, event) -> Optional[Any]:
        for handler in self._handlers:
            if handler.can_handle(event):
                return handler
        return None

    async def _run(self, handler, pending) -> None:
        name = type(handler).__name__
        try:
            await pending
        except Exception as exc:
            logger.error(f"Handler {name} threw error: {exc}", exc_info=exc)
            raise HandlerError(name, exc) from exc
        logger.debug(f"Event handled by {name}")


class MessageDispatcher(HandlerChain):
    handler_type = MessageHandler

    async def dispatch(self, message: Dict[str, Any]) -> bool:
        """Run the first matching handler; False when none matched."""
        handler = self._select(message)
        if handler is None:
            logger.warning(f"No handler found for message: {message.get('eventType') or message.get('type')}")
            return False

        await self._run(handler, handler.handle(message))
        return True
