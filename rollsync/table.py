# rollsync/table.py

"""
The host game table: where finalized rolls and their effects land.

The engine only calls this interface; posting chat cards, turn order and
hit points belong to the host. ``JournalGameTable`` is the standalone
implementation used by the HTTP service: it logs, journals rolls to the
database and keeps initiative and notifications in memory.
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Awaitable, Callable, Dict, Optional

from rollsync.dice.roll import Roll
from schemas.actor import Actor

logger = logging.getLogger(__name__)


class GameTable(ABC):

    @abstractmethod
    async def post_roll(self, actor: Actor, roll: Roll, flavor: str, roll_type: Optional[str] = None,
                        remote_roll_id: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def set_initiative(self, actor: Actor, total: int) -> bool:
        """Return False when the actor is not in the current combat."""

    @abstractmethod
    async def use_item(self, actor: Actor, item_name: str) -> None:
        ...

    @abstractmethod
    async def update_hit_points(self, actor: Actor, hp: int) -> None:
        ...

    @abstractmethod
    def notify(self, level: str, message: str) -> None:
        """Non-blocking user notification ("info", "warn", "error")."""

    def bind_evaluator(self, evaluate: Callable[..., Awaitable[Roll]]) -> None:
        """Receive the host-side roll evaluator once the engine is built."""


class JournalGameTable(GameTable):

    def __init__(self, session_factory=None, max_notifications: int = 100):
        self.session_factory = session_factory
        self.initiative: Dict[str, int] = {}
        self.notifications = deque(maxlen=max_notifications)
        self._evaluate: Optional[Callable[..., Awaitable[Roll]]] = None

    def bind_evaluator(self, evaluate):
        self._evaluate = evaluate

    async def post_roll(self, actor, roll, flavor, roll_type=None, remote_roll_id=None):
        logger.info(f"{actor.name}: {flavor} = {roll.total} ({roll.formula})")
        if self.session_factory is None:
            return

        from models.roll_log import RollLog

        db = self.session_factory()
        try:
            db.add(RollLog(
                actor=actor.name,
                roll_type=roll_type,
                roll_mode=actor.dice_mode.value,
                formula=roll.formula,
                total=roll.total,
                flavor=flavor,
                dice=[term.values for term in roll.dice],
                remote_roll_id=remote_roll_id,
            ))
            db.commit()
        except Exception as e:
            logger.error(f"Failed to journal roll for {actor.name}: {e}")
            db.rollback()
        finally:
            db.close()

    async def set_initiative(self, actor, total):
        self.initiative[actor.id] = total
        logger.info(f"Initiative set to {total} for {actor.name}")
        return True

    async def use_item(self, actor, item_name):
        formula = actor.items.get(item_name)
        if not formula:
            logger.warning(f"{actor.name} has no attack formula for {item_name}")
            return

        roll = Roll(formula, data={"actor_id": actor.id}, options={"item_name": item_name, "roll_type": "attack"})
        if self._evaluate is not None:
            await self._evaluate(roll, actor=actor, item_name=item_name)
        else:
            roll.evaluate()
        await self.post_roll(actor, roll, f"{item_name} - Attack Roll", roll_type="attack")

    async def update_hit_points(self, actor, hp):
        previous = actor.hp
        actor.hp = hp
        logger.info(f"Applied HP: {previous} -> {hp} for actor {actor.name}")
        self.notify("info", f"{actor.name} hit points updated")

    def notify(self, level, message):
        self.notifications.append({"level": level, "message": message})
        log = {"error": logger.error, "warn": logger.warning}.get(level, logger.info)
        log(f"[notify] {message}")
