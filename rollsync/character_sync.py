# rollsync/character_sync.py

"""
Hit point sync from remote character-sheet updates.

The update event only says *which* character changed; the sheet itself is
fetched through the proxy and the remaining hit points applied to the mapped
local actor.
"""

import logging
from typing import Any, Dict, Optional

from rollsync.actors import ActorRegistry
from rollsync.dispatcher import MessageHandler
from rollsync.errors import TransportError
from rollsync.proxy import ProxyClient
from rollsync.table import GameTable
from schemas.actor import Actor
from schemas.wire import EVENT_CHARACTER_UPDATE_FULFILLED, CharacterUpdate

logger = logging.getLogger(__name__)


class CharacterDataService:

    def __init__(self, proxy: ProxyClient, campaign_id: str):
        self.proxy = proxy
        self.campaign_id = campaign_id

    async def fetch_character_data(self, character_id: str) -> Optional[Dict[str, Any]]:
        """The remote ``character`` object, or None when the proxy could not provide it."""
        try:
            result = await self.proxy.fetch_character(character_id, self.campaign_id)
        except TransportError as e:
            logger.error(f"Error fetching character data: {e}")
            return None

        character = (result.get("ddb") or {}).get("character") if result.get("success") else None
        if not character:
            logger.warning(f"Failed to fetch character data for {character_id}")
            return None
        return character


class HitPointSync:

    def __init__(self, data_service: CharacterDataService, actors: ActorRegistry, table: GameTable):
        self.data_service = data_service
        self.actors = actors
        self.table = table

    async def handle_update(self, update: CharacterUpdate) -> None:
        if not update.character_id:
            logger.warning("Invalid character update message format")
            return

        actor = self.actors.get_local_actor(update.character_id)
        if actor is None:
            logger.warning(f"No mapping found for remote character {update.character_id}")
            return

        character = await self.data_service.fetch_character_data(update.character_id)
        if character is None:
            return

        await self.apply_damage(actor, int(character.get("removedHitPoints") or 0))

    async def apply_damage(self, actor: Actor, removed_hit_points: int) -> None:
        new_hp = max(0, actor.max_hp - removed_hit_points)
        if new_hp == actor.hp:
            return
        await self.table.update_hit_points(actor, new_hp)


class CharacterUpdateHandler(MessageHandler):

    def __init__(self, hit_points: HitPointSync):
        self.hit_points = hit_points

    def can_handle(self, message):
        return message.get("eventType") == EVENT_CHARACTER_UPDATE_FULFILLED

    async def handle(self, message):
        await self.hit_points.handle_update(CharacterUpdate.model_validate(message))
