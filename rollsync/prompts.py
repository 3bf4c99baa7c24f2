# rollsync/prompts.py

"""
Interactive dice prompts.

A prompt asks the user for physical dice values (manual mode) or waits for
the remote platform to deliver a matching roll (remote mode). Prompts live
in ``PromptBroker`` until the HTTP surface submits or cancels them; the
override awaits the outcome.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from rollsync.bridge import RollBridge, RollOffer
from rollsync.dice.extractor import dice_signature, extract_dice_results
from rollsync.dice.roll import DieTerm
from rollsync.errors import PromptNotFound
from schemas.actor import Actor
from schemas.wire import DieGroup, RollPayload

logger = logging.getLogger(__name__)

MANUAL = "manual"
REMOTE = "remote"

WAITING = "waiting"      # no values yet
READY = "ready"          # remote values arrived, awaiting confirmation
RESOLVED = "resolved"
CANCELLED = "cancelled"


@dataclass
class DieSlot:
    faces: int
    number: int


@dataclass
class PendingPrompt:
    kind: str
    formula: str
    dice: List[DieSlot]
    actor_id: Optional[str] = None
    status: str = WAITING
    values: List[List[int]] = field(default_factory=list)
    subscription_id: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    result: Optional[List[List[int]]] = None
    _future: Optional[asyncio.Future] = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.status in (RESOLVED, CANCELLED)

    def _finish(self, status: str, result: Optional[List[List[int]]]) -> None:
        self.status = status
        self.result = result
        if self._future is not None and not self._future.done():
            self._future.set_result(result)

    async def wait(self) -> Optional[List[List[int]]]:
        if self.done:
            return self.result
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return await self._future


def clamp_die_value(value, faces: int) -> int:
    """Coerce one entered value into ``1..faces``; anything non-numeric becomes 1."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        return 1
    return max(1, min(faces, number))


def clamp_values(dice: Sequence[DieSlot], values) -> List[List[int]]:
    """One clamped list per die slot, padded with 1 where values are missing."""
    values = values or []
    clamped = []
    for index, slot in enumerate(dice):
        entered = values[index] if index < len(values) and values[index] is not None else []
        term_values = []
        for j in range(slot.number):
            raw = entered[j] if j < len(entered) else None
            term_values.append(clamp_die_value(raw, slot.faces))
        clamped.append(term_values)
    return clamped


class PromptBroker:
    """Pending prompts by id."""

    def __init__(self):
        self._prompts: Dict[str, PendingPrompt] = {}

    def open(self, kind: str, formula: str, dice_terms: Sequence[DieTerm],
             actor_id: Optional[str] = None) -> PendingPrompt:
        prompt = PendingPrompt(
            kind=kind,
            formula=formula,
            dice=[DieSlot(faces=t.faces, number=t.number) for t in dice_terms],
            actor_id=actor_id,
        )
        self._prompts[prompt.id] = prompt
        logger.info(f"Opened {kind} dice prompt {prompt.id} for {formula}")
        return prompt

    def get(self, prompt_id: str) -> PendingPrompt:
        prompt = self._prompts.get(prompt_id)
        if prompt is None:
            raise PromptNotFound(f"No pending dice prompt {prompt_id}")
        return prompt

    def pending(self) -> List[PendingPrompt]:
        return [p for p in self._prompts.values() if not p.done]

    def fill(self, prompt_id: str, values: List[List[int]]) -> PendingPrompt:
        """Pre-fill a prompt with delivered values without resolving it."""
        prompt = self.get(prompt_id)
        prompt.values = clamp_values(prompt.dice, values)
        prompt.status = READY
        return prompt

    def submit(self, prompt_id: str, values=None) -> PendingPrompt:
        """
        Resolve a prompt with entered values.

        Out-of-range values are clamped into the die's range. Without
        ``values`` a remote prompt confirms whatever it was pre-filled with.
        """
        prompt = self.get(prompt_id)
        if prompt.done:
            return prompt
        if not values:
            values = prompt.values
        prompt.values = clamp_values(prompt.dice, values)
        prompt._finish(RESOLVED, prompt.values)
        self._prompts.pop(prompt_id, None)
        logger.info(f"Dice prompt {prompt_id} resolved with {prompt.values}")
        return prompt

    def cancel(self, prompt_id: str) -> PendingPrompt:
        prompt = self.get(prompt_id)
        if not prompt.done:
            prompt._finish(CANCELLED, None)
            logger.info(f"Dice prompt {prompt_id} cancelled")
        self._prompts.pop(prompt_id, None)
        return prompt


def map_remote_values(groups: List[DieGroup], dice_terms: Sequence[DieTerm]) -> List[List[int]]:
    """Hand out delivered values to the local terms by die type, falling back to 1."""
    pool: Dict[str, List[int]] = {}
    for group in groups:
        pool.setdefault(group.die_type, []).extend(group.results)

    mapped = []
    for term in dice_terms:
        available = pool.get(term.die_type, [])
        mapped.append([available.pop(0) if available else 1 for _ in range(term.number)])
    return mapped


def expected_signature(dice_terms: Sequence[DieTerm]) -> Dict[str, int]:
    signature: Dict[str, int] = {}
    for term in dice_terms:
        signature[term.die_type] = signature.get(term.die_type, 0) + term.number
    return signature


def roll_matches(payload: RollPayload, remote_id: Optional[str], dice_terms: Sequence[DieTerm]) -> bool:
    """Same character (when both sides know it) and exactly the expected dice."""
    if remote_id and payload.entity_id and str(remote_id) != str(payload.entity_id):
        return False
    groups = extract_dice_results(payload)
    if not groups:
        return False
    return dice_signature(groups) == expected_signature(dice_terms)


def as_groups(values: List[List[int]], dice_terms: Sequence[DieTerm]) -> List[DieGroup]:
    return [
        DieGroup(die_type=term.die_type, count=term.number, results=list(term_values))
        for term, term_values in zip(dice_terms, values)
    ]


class DicePrompter:

    def __init__(self, broker: PromptBroker, bridge: RollBridge, auto_confirm_remote: bool = True):
        self.broker = broker
        self.bridge = bridge
        self.auto_confirm_remote = auto_confirm_remote

    async def prompt_for_manual_dice(self, formula: str, dice_terms: Sequence[DieTerm],
                                     actor: Optional[Actor] = None) -> Optional[List[DieGroup]]:
        """Wait for hand-entered values; None when the prompt is cancelled."""
        prompt = self.broker.open(MANUAL, formula, dice_terms, actor.id if actor else None)
        values = await prompt.wait()
        if values is None:
            return None
        return as_groups(values, dice_terms)

    async def prompt_for_remote_dice(self, formula: str, dice_terms: Sequence[DieTerm], actor: Actor,
                                     item_name: Optional[str] = None) -> Optional[List[DieGroup]]:
        """
        Get the remote platform's values for this roll.

        A roll that already arrived for this character and item is used
        straight from the cache. Otherwise a prompt opens and a one-shot
        subscription waits for a roll from the same character with exactly
        the expected dice.
        """
        remote_id = actor.remote_id
        if remote_id and item_name:
            cached = self.bridge.get_cached_roll(remote_id, item_name)
            if cached is not None:
                logger.info(f"Using cached roll for {item_name}")
                return as_groups(map_remote_values(extract_dice_results(cached), dice_terms), dice_terms)

        prompt = self.broker.open(REMOTE, formula, dice_terms, actor.id)

        def on_roll(subscription_id: str, offer: RollOffer) -> bool:
            if offer.claimed or not roll_matches(offer.payload, remote_id, dice_terms):
                return False
            if not offer.claim(subscription_id):
                return False

            values = map_remote_values(extract_dice_results(offer.payload), dice_terms)
            logger.info(f"Roll received for prompt {prompt.id}: {values}")
            if self.auto_confirm_remote:
                self.broker.submit(prompt.id, values)
            else:
                self.broker.fill(prompt.id, values)
            return True

        prompt.subscription_id = self.bridge.subscribe(on_roll, once=True)

        try:
            values = await prompt.wait()
        finally:
            self.bridge.unsubscribe(prompt.subscription_id)

        if values is None:
            if remote_id and item_name:
                self.bridge.discard_cached_roll(remote_id, item_name)
            return None
        return as_groups(values, dice_terms)
