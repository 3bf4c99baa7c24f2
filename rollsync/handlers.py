# rollsync/handlers.py

import logging

from rollsync.actors import ActorRegistry
from rollsync.bridge import RollBridge
from rollsync.deduplicator import create_roll_key
from rollsync.dice.strategy_dispatcher import RollStrategyDispatcher
from rollsync.dispatcher import MessageHandler
from rollsync.errors import HandlerError
from rollsync.table import GameTable
from schemas.wire import EVENT_DICE_ROLL_FULFILLED, RollPayload

logger = logging.getLogger(__name__)


class DiceRollMessageHandler(MessageHandler):
    """
    Routes ``dice/roll/fulfilled`` messages.

    Waiting prompts get first pick through the bridge. A roll nobody claimed
    goes to the roll strategies for the mapped local actor, guarded so that a
    quick re-delivery of the same roll is not replayed.
    """

    def __init__(self, bridge: RollBridge, actors: ActorRegistry, roll_dispatcher: RollStrategyDispatcher,
                 table: GameTable):
        self.bridge = bridge
        self.actors = actors
        self.roll_dispatcher = roll_dispatcher
        self.table = table

    def can_handle(self, message):
        return message.get("eventType") == EVENT_DICE_ROLL_FULFILLED

    async def handle(self, message):
        payload = RollPayload.from_message(message)
        logger.info(
            f"Received roll {payload.roll_id}: {payload.action} ({payload.roll_type})",
            extra={"roll_id": payload.roll_id},
        )

        if self.bridge.offer(payload):
            return

        if not payload.roll_type:
            logger.debug(f"Roll {payload.roll_id} has no roll type, ignoring")
            return

        actor = self.actors.get_local_actor(payload.entity_id)
        if actor is None:
            logger.info(f"No local actor mapped to remote character {payload.entity_id}")
            return

        roll_key = create_roll_key(payload.entity_id, payload.action, payload.roll_id)
        if not self.bridge.begin_processing(roll_key):
            logger.info(f"Already processing roll, skipping: {roll_key}")
            return

        try:
            logger.info(f"Routing {payload.roll_type} roll for {actor.name}")
            await self.roll_dispatcher.dispatch(actor, payload, self.bridge)
        except HandlerError as e:
            self.table.notify("error", f"Failed to apply {payload.action} roll for {actor.name}: {e.original}")
        finally:
            self.bridge.finish_processing(roll_key)
