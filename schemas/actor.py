from enum import Enum
from pydantic import BaseModel, Field
from typing import Dict

from schemas.wire import IdStr


class DiceMode(str, Enum):
    """Where an actor's dice come from when the host evaluates a roll."""
    NORMAL = "normal"  # local random roll, untouched
    MANUAL = "manual"  # player types in physical dice
    REMOTE = "remote"  # wait for the remote platform's roll


PLAYER_CHARACTER = "character"


class AbilityScore(BaseModel):
    check: int = 0  # ability check modifier
    save: int = 0   # saving throw modifier


class Actor(BaseModel):
    id: str
    name: str
    actor_type: str = PLAYER_CHARACTER  # "character", "npc", "vehicle", ...
    remote_id: IdStr = None             # remote platform character id
    dice_mode: DiceMode = DiceMode.NORMAL
    initiative_bonus: int = 0
    abilities: Dict[str, AbilityScore] = Field(default_factory=dict)  # keyed "str".."cha"
    skills: Dict[str, int] = Field(default_factory=dict)              # keyed "acr", "ste", ...
    items: Dict[str, str] = Field(default_factory=dict)               # item name → attack formula
    hp: int = 0
    max_hp: int = 0

    @property
    def is_player_character(self) -> bool:
        return self.actor_type == PLAYER_CHARACTER
