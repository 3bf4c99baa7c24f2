# rollsync/actors.py

import json
import logging
from typing import Dict, Iterable, List, Optional

from schemas.actor import Actor, DiceMode

logger = logging.getLogger(__name__)


class ActorRegistry:
    """Local actors and their mapping to remote character ids."""

    def __init__(self, actors: Iterable[Actor] = ()):
        self._actors: Dict[str, Actor] = {}
        for actor in actors:
            self.add(actor)

    @classmethod
    def from_file(cls, path: str) -> "ActorRegistry":
        """Load a JSON list of actors."""
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        registry = cls(Actor.model_validate(item) for item in data)
        logger.info(f"Loaded {len(registry.all())} actors from {path}")
        return registry

    def add(self, actor: Actor) -> Actor:
        self._actors[actor.id] = actor
        return actor

    def get(self, actor_id: str) -> Optional[Actor]:
        return self._actors.get(actor_id)

    def all(self) -> List[Actor]:
        return list(self._actors.values())

    def get_local_actor(self, remote_id) -> Optional[Actor]:
        if remote_id is None:
            return None
        remote_id = str(remote_id)
        for actor in self._actors.values():
            if actor.remote_id == remote_id:
                return actor
        return None

    def set_mapping(self, actor_id: str, remote_id: Optional[str]) -> Optional[Actor]:
        actor = self._actors.get(actor_id)
        if actor is None:
            return None
        actor.remote_id = str(remote_id) if remote_id else None
        logger.info(f"Mapped actor {actor.name} to remote character {actor.remote_id}")
        return actor

    def remove_mapping(self, actor_id: str) -> Optional[Actor]:
        return self.set_mapping(actor_id, None)

    def set_dice_mode(self, actor_id: str, mode: DiceMode) -> Optional[Actor]:
        actor = self._actors.get(actor_id)
        if actor is None:
            return None
        actor.dice_mode = DiceMode(mode)
        logger.info(f"Dice mode for {actor.name} set to {actor.dice_mode.value}")
        return actor
