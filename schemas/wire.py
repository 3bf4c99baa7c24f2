"""
Pydantic models for the remote platform's wire protocol.
Inbound envelopes are discriminated by ``eventType``; roll payloads carry the
remote dice notation that the extractor turns into die groups and formulas.
"""

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from typing import Annotated, Any, Dict, List, Literal, Optional


EVENT_AUTHENTICATED = "authenticated"
EVENT_DICE_ROLL_FULFILLED = "dice/roll/fulfilled"
EVENT_CHARACTER_UPDATE = "character-sheet/character-update"
EVENT_CHARACTER_UPDATE_FULFILLED = "character-sheet/character-update/fulfilled"


def _to_str(value):
    if value is None or isinstance(value, str):
        return value
    return str(value)


# Remote ids arrive as numbers or strings
IdStr = Annotated[Optional[str], BeforeValidator(_to_str)]


# ============================================================================
# INBOUND (Remote platform → engine)
# ============================================================================

class WireEnvelope(BaseModel):
    """Outer frame of every inbound message."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    event_type: Optional[str] = Field(default=None, alias="eventType")
    data: Optional[Dict[str, Any]] = None
    id: IdStr = None
    roll_id: IdStr = Field(default=None, alias="rollId")



class DieValue(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    die_value: Optional[int] = Field(default=None, alias="dieValue")
    die_type: Optional[str] = Field(default=None, alias="dieType")


class DiceSet(BaseModel):
    """One homogeneous group of dice in the remote notation (e.g. 2 × d20)."""
    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    die_type: Optional[str] = Field(default=None, alias="dieType")
    count: Optional[int] = None
    dice: Optional[List[DieValue]] = None  # None when the platform sent no per-die results


class DiceNotation(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    sets: List[DiceSet] = Field(default_factory=list, alias="set")
    constant: int = 0


class RollResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    values: Optional[List[int]] = None
    total: Optional[int] = None


class RollContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    entity_id: IdStr = Field(default=None, alias="entityId")



class RollEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    roll_type: str = Field(default="", alias="rollType")
    roll_kind: str = Field(default="", alias="rollKind")  # "", "advantage", "disadvantage"
    dice_notation: Optional[DiceNotation] = Field(default=None, alias="diceNotation")
    result: Optional[RollResult] = None


class RollPayload(BaseModel):
    """
    One ``dice/roll/fulfilled`` notification.

    ``action`` and ``context`` normally sit at the top level; some payloads
    only carry them inside the first roll entry, so they are lifted up.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    action: str = ""
    roll_id: IdStr = Field(default=None, alias="rollId")
    context: Optional[RollContext] = None
    top_level_entity_id: IdStr = Field(default=None, alias="entityId")
    top_level_roll_type: Optional[str] = Field(default=None, alias="rollType")
    rolls: List[RollEntry] = Field(default_factory=list)
    event_type: Optional[str] = Field(default=None, alias="eventType")
    id: IdStr = None


    @model_validator(mode="before")
    @classmethod
    def _lift_from_first_roll(cls, data):
        if not isinstance(data, dict):
            return data
        rolls = data.get("rolls")
        if not isinstance(rolls, list) or not rolls or not isinstance(rolls[0], dict):
            return data
        first = rolls[0]
        lifted = dict(data)
        if not lifted.get("action") and first.get("action"):
            lifted["action"] = first["action"]
        if not lifted.get("context") and isinstance(first.get("context"), dict):
            lifted["context"] = first["context"]
        return lifted

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "RollPayload":
        """Parse a dispatched message, unwrapping ``data`` when present."""
        data = message.get("data") or message
        if data is not message:
            data = {**data, "eventType": message.get("eventType"), "id": message.get("id")}
        return cls.model_validate(data)

    @property
    def entity_id(self) -> Optional[str]:
        if self.context and self.context.entity_id:
            return self.context.entity_id
        return self.top_level_entity_id

    @property
    def first_roll(self) -> Optional[RollEntry]:
        return self.rolls[0] if self.rolls else None

    @property
    def roll_type(self) -> str:
        if self.top_level_roll_type:
            return self.top_level_roll_type
        return self.first_roll.roll_type if self.first_roll else ""

    @property
    def roll_kind(self) -> str:
        return self.first_roll.roll_kind if self.first_roll else ""


class CharacterUpdate(BaseModel):
    """``character-sheet/character-update`` payload; only the id is needed here."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    character_id: IdStr = Field(default=None, alias="characterId")
    event_type: Optional[str] = Field(default=None, alias="eventType")
    id: IdStr = None



# ============================================================================
# DERIVED (Extractor output)
# ============================================================================

class DieGroup(BaseModel):
    """Results for one die type, in the order the platform delivered them."""
    die_type: str
    count: int = 0
    results: List[int] = Field(default_factory=list)


class FormulaTerm(BaseModel):
    count: int
    die_type: str
    keep_modifier: str = ""  # "kh1", "kl1" or ""


class RollFormula(BaseModel):
    formula: str = ""
    roll_kind: str = ""
    is_advantage: bool = False
    is_disadvantage: bool = False
    terms: List[FormulaTerm] = Field(default_factory=list)


# ============================================================================
# OUTBOUND (Engine → remote platform)
# ============================================================================

class AuthenticateData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str
    campaign_id: str = Field(alias="campaignId")


class AuthenticateMessage(BaseModel):
    type: Literal["authenticate"] = "authenticate"
    data: AuthenticateData


class SubscribeData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event: str = "character.update"
    campaign_id: str = Field(alias="campaignId")


class SubscribeMessage(BaseModel):
    type: Literal["subscribe"] = "subscribe"
    data: SubscribeData
