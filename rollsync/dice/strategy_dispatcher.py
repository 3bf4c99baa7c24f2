# rollsync/dice/strategy_dispatcher.py

import logging
from typing import Optional

from rollsync.bridge import RollBridge
from rollsync.dice.strategies import RollStrategy
from rollsync.dispatcher import HandlerChain
from schemas.actor import Actor
from schemas.wire import RollPayload

logger = logging.getLogger(__name__)


class RollStrategyDispatcher(HandlerChain):
    """Routes an unclaimed remote roll to the first matching roll strategy."""

    handler_type = RollStrategy

    async def dispatch(self, actor: Actor, payload: RollPayload, bridge: Optional[RollBridge] = None) -> bool:
        strategy = self._select(payload)
        if strategy is None:
            logger.warning(f"No handler found for roll type {payload.roll_type!r}")
            return False

        if strategy.uses_cache() and bridge is not None:
            logger.debug(f"Caching roll for handler {type(strategy).__name__}")
            bridge.cache_roll(payload, strategy.cache_action(actor, payload))

        logger.info(f"Dispatching roll {payload.roll_id} to {type(strategy).__name__}")
        await self._run(strategy, strategy.handle(actor, payload))
        return True

    async def wait_background(self) -> None:
        """Wait for host actions the strategies started in the background."""
        for strategy in self._handlers:
            await strategy.wait_background()
