# rollsync/dice/strategies.py

"""
Roll-type strategies for remote rolls that no prompt was waiting for.

Each strategy rebuilds the roll locally with the actor's own modifiers,
writes the remote dice over it and posts it to the game table. Register
``GenericRollStrategy`` last; it accepts every roll.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Optional, Set

from rollsync.dice.extractor import extract_dice_results, parse_dice_formula
from rollsync.dice.substitution import RollBuilder
from rollsync.table import GameTable
from schemas.actor import Actor
from schemas.wire import RollFormula, RollPayload

logger = logging.getLogger(__name__)


ABILITY_MAP = {
    "strength": "str",
    "dexterity": "dex",
    "constitution": "con",
    "intelligence": "int",
    "wisdom": "wis",
    "charisma": "cha",
    # Abbreviated forms
    "str": "str",
    "dex": "dex",
    "con": "con",
    "int": "int",
    "wis": "wis",
    "cha": "cha",
}

ABILITY_LABELS = {
    "str": "Strength",
    "dex": "Dexterity",
    "con": "Constitution",
    "int": "Intelligence",
    "wis": "Wisdom",
    "cha": "Charisma",
}

SKILL_MAP = {
    "acrobatics": "acr",
    "animal handling": "ani",
    "arcana": "arc",
    "athletics": "ath",
    "deception": "dec",
    "history": "his",
    "insight": "ins",
    "intimidation": "itm",
    "investigation": "inv",
    "medicine": "med",
    "nature": "nat",
    "perception": "prc",
    "performance": "prf",
    "persuasion": "per",
    "religion": "rel",
    "sleight of hand": "slt",
    "stealth": "ste",
    "survival": "sur",
}


def with_roll_kind(flavor: str, formula: RollFormula) -> str:
    if formula.is_advantage:
        return flavor + " (Advantage)"
    if formula.is_disadvantage:
        return flavor + " (Disadvantage)"
    return flavor


class RollStrategy(ABC):
    """Handles one roll type."""

    def __init__(self, builder: RollBuilder, table: GameTable):
        self.builder = builder
        self.table = table
        self._background: Set[asyncio.Task] = set()

    @abstractmethod
    def can_handle(self, payload: RollPayload) -> bool:
        ...

    def uses_cache(self) -> bool:
        """True when the roll should be cached for a prompt the handler is about to open."""
        return False

    def cache_action(self, actor: Actor, payload: RollPayload) -> str:
        """Action name the cached roll is filed under."""
        return payload.action

    def _start_background(self, pending: Awaitable, description: str) -> asyncio.Task:
        """
        Run a host action that may wait on user input without holding up the
        message loop. Failures are logged and surfaced as notifications.
        """
        task = asyncio.ensure_future(pending)
        self._background.add(task)

        def finished(done: asyncio.Task) -> None:
            self._background.discard(done)
            if done.cancelled():
                return
            error = done.exception()
            if error is not None:
                logger.error(f"Failed to {description}: {error}", exc_info=error)
                self.table.notify("error", f"Failed to {description}: {error}")

        task.add_done_callback(finished)
        return task

    async def wait_background(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    @abstractmethod
    async def handle(self, actor: Actor, payload: RollPayload) -> None:
        ...

    async def _post_with_modifier(self, actor: Actor, payload: RollPayload, modifier: int,
                                  flavor: str, roll_type: str):
        formula = parse_dice_formula(payload, modifier)
        groups = extract_dice_results(payload)
        roll = self.builder.build_with_results(formula.formula, groups)
        flavor = with_roll_kind(flavor, formula)
        await self.table.post_roll(actor, roll, flavor, roll_type=roll_type, remote_roll_id=payload.roll_id)
        logger.info(f"{flavor} rolled: {roll.total} for {actor.name}")
        return roll


class InitiativeRollStrategy(RollStrategy):

    def can_handle(self, payload):
        return "initiative" in (payload.action.lower(), payload.roll_type.lower())

    async def handle(self, actor, payload):
        logger.info(f"Handling initiative roll for {actor.name}")
        roll = await self._post_with_modifier(
            actor, payload, actor.initiative_bonus,
            f"{actor.name} rolls for Initiative!", "initiative",
        )
        if not await self.table.set_initiative(actor, roll.total):
            self.table.notify("warn", f"{actor.name} is not in the current combat")


class SaveRollStrategy(RollStrategy):

    def can_handle(self, payload):
        return payload.roll_type.lower() == "save"

    async def handle(self, actor, payload):
        logger.info(f"Handling save roll for {actor.name}")

        ability_key = ABILITY_MAP.get(payload.action.lower())
        if not ability_key:
            logger.warning(f"Unknown save ability: {payload.action}")
            self.table.notify("warn", f"Unknown save ability: {payload.action}")
            return

        ability = actor.abilities.get(ability_key)
        if ability is None:
            logger.warning(f"Actor {actor.name} has no ability: {ability_key}")
            self.table.notify("warn", f"{actor.name} has no {ability_key} ability")
            return

        await self._post_with_modifier(
            actor, payload, ability.save,
            f"{ABILITY_LABELS[ability_key]} Saving Throw", "save",
        )


class AttackRollStrategy(RollStrategy):
    """
    Attack rolls are replayed by using the matching item on the host, whose
    own attack roll then picks the cached remote dice up. The roll is cached
    under the matched item's name so the host-side lookup finds it.
    """

    def can_handle(self, payload):
        return payload.roll_type.lower() == "to hit"

    def uses_cache(self):
        return True

    def cache_action(self, actor, payload):
        return find_matching_item(actor, payload.action) or payload.action

    async def handle(self, actor, payload):
        item = find_matching_item(actor, payload.action)
        if not item:
            logger.warning(f"No matching item \"{payload.action}\" found on actor {actor.name}")
            return

        logger.info(f"Found matching item \"{item}\" for action \"{payload.action}\", using it")
        # Item use may open a dice prompt that waits for the next remote roll
        self._start_background(self.table.use_item(actor, item), f"use {item} for {actor.name}")


def find_matching_item(actor: Actor, action_name: str) -> Optional[str]:
    """Exact (case-insensitive) name match first, then containment either way."""
    normalized = action_name.lower().strip()
    if not normalized:
        return None

    for name in actor.items:
        if name.lower().strip() == normalized:
            return name

    for name in actor.items:
        lowered = name.lower()
        if normalized in lowered or lowered in normalized:
            return name

    return None


class AbilityCheckRollStrategy(RollStrategy):
    """Skill checks first, then raw ability checks."""

    def can_handle(self, payload):
        return payload.roll_type.lower() == "check"

    async def handle(self, actor, payload):
        logger.info(f"Handling ability check roll for {actor.name}")
        action = payload.action.lower()

        skill_key = SKILL_MAP.get(action)
        if skill_key:
            if skill_key not in actor.skills:
                logger.warning(f"Actor {actor.name} has no skill: {skill_key}")
                self.table.notify("warn", f"{actor.name} has no {action} skill")
                return
            await self._post_with_modifier(
                actor, payload, actor.skills[skill_key], f"{action.title()} Check", "check",
            )
            return

        ability_key = ABILITY_MAP.get(action)
        if ability_key:
            ability = actor.abilities.get(ability_key)
            if ability is None:
                logger.warning(f"Actor {actor.name} has no ability: {ability_key}")
                self.table.notify("warn", f"{actor.name} has no {ability_key} ability")
                return
            await self._post_with_modifier(
                actor, payload, ability.check, f"{ABILITY_LABELS[ability_key]} Check", "check",
            )
            return

        logger.warning(f"Unknown ability or skill for check: {payload.action}")
        self.table.notify("warn", f"Unknown ability or skill for check: {payload.action}")


class GenericRollStrategy(RollStrategy):
    """Fallback for every other roll type, e.g. damage."""

    def can_handle(self, payload):
        return True

    async def handle(self, actor, payload):
        label = f"{payload.action} {payload.roll_type or 'generic'}".strip()
        logger.info(f"Handling {label} roll for {actor.name}")

        groups = extract_dice_results(payload)
        formula = parse_dice_formula(payload)
        if groups:
            roll = self.builder.build_with_results(formula.formula, groups)
        else:
            roll = self.builder.build_basic(formula.formula)

        await self.table.post_roll(
            actor, roll, with_roll_kind(label, formula),
            roll_type=payload.roll_type or None, remote_roll_id=payload.roll_id,
        )
