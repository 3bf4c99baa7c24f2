# rollsync/override.py

import logging
import random
from typing import Optional

from rollsync.actors import ActorRegistry
from rollsync.dice.roll import Roll
from rollsync.dice.substitution import substitute
from rollsync.prompts import DicePrompter
from schemas.actor import Actor, DiceMode

logger = logging.getLogger(__name__)


class EvaluationOverride:
    """
    Wraps the host's roll evaluation and sources dice per the actor's mode.

    Normal mode, and any actor that is not a player character, evaluates
    exactly as the host would. Manual and remote modes evaluate locally
    first so the die terms exist, then wait for entered or delivered values
    and substitute them. A cancelled prompt leaves the local evaluation as
    it was.
    """

    def __init__(self, prompter: DicePrompter, actors: Optional[ActorRegistry] = None, rng=random):
        self.prompter = prompter
        self.actors = actors
        self.rng = rng

    def _resolve_actor(self, roll: Roll, actor: Optional[Actor]) -> Optional[Actor]:
        if actor is not None:
            return actor
        actor_id = roll.data.get("actor_id") or roll.options.get("actor_id")
        if isinstance(actor_id, str) and self.actors is not None:
            return self.actors.get(actor_id)
        return None

    async def evaluate(self, roll: Roll, actor: Optional[Actor] = None, item_name: Optional[str] = None) -> Roll:
        actor = self._resolve_actor(roll, actor)
        if actor is None or not actor.is_player_character or actor.dice_mode == DiceMode.NORMAL:
            return roll.evaluate(self.rng)

        roll.evaluate(self.rng)
        dice_terms = roll.dice
        if not dice_terms:
            return roll

        if actor.dice_mode == DiceMode.MANUAL:
            groups = await self.prompter.prompt_for_manual_dice(roll.formula, dice_terms, actor)
        else:
            item_name = item_name or roll.options.get("item_name")
            groups = await self.prompter.prompt_for_remote_dice(roll.formula, dice_terms, actor, item_name)

        if groups is None:
            logger.info(f"Dice prompt for {actor.name} dismissed, keeping local roll {roll.total}")
            return roll

        substitute(roll, groups)
        roll.recompute_total()
        logger.info(f"{actor.dice_mode.value} dice applied for {actor.name}: {roll.formula} = {roll.total}")
        return roll
