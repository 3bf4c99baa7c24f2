"""
Request/response bodies for the local HTTP control surface.
"""

from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime

from schemas.actor import DiceMode


class SyncStatus(BaseModel):
    enabled: bool
    connected: bool
    pending_subscriptions: int
    cached_rolls: int
    processed_messages: int
    pending_prompts: int


class DiceModeUpdate(BaseModel):
    dice_mode: DiceMode


class MappingUpdate(BaseModel):
    remote_id: Optional[str] = None  # None removes the mapping


class DieSpec(BaseModel):
    faces: int
    number: int


class PromptView(BaseModel):
    id: str
    kind: str       # "manual" or "remote"
    status: str     # "waiting", "ready", "resolved", "cancelled"
    formula: str
    dice: List[DieSpec]
    values: List[List[int]]
    actor_id: Optional[str] = None


class PromptSubmission(BaseModel):
    # One list of face values per die term, in formula order
    values: List[List[Optional[int]]]


class RollLogView(BaseModel):
    id: int
    actor: Optional[str] = None
    roll_type: Optional[str] = None
    roll_mode: Optional[str] = None
    formula: Optional[str] = None
    total: Optional[int] = None
    flavor: Optional[str] = None
    remote_roll_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    model_config = {"from_attributes": True}
