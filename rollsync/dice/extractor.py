# rollsync/dice/extractor.py

"""
Dice extraction: turns a remote roll payload into die groups and into a
formula the local evaluator understands.
"""

import logging
import re
from typing import Any, Dict, List, Union

from schemas.wire import DieGroup, FormulaTerm, RollFormula, RollPayload

logger = logging.getLogger(__name__)

DICE_TERM_PATTERN = re.compile(r"(\d+)d(\d+)")

ADVANTAGE = "advantage"
DISADVANTAGE = "disadvantage"


def _as_payload(roll_data: Union[RollPayload, Dict[str, Any]]) -> RollPayload:
    if isinstance(roll_data, RollPayload):
        return roll_data
    return RollPayload.model_validate(roll_data)


def extract_dice_results(roll_data) -> List[DieGroup]:
    """
    Flatten every roll's dice sets into one group per set.

    Sets without a ``dice`` list are skipped; a payload with no rolls gives
    an empty list.
    """
    payload = _as_payload(roll_data)
    groups: List[DieGroup] = []

    if not payload.rolls:
        logger.warning("No rolls in roll payload")
        return groups

    for roll in payload.rolls:
        if not roll.dice_notation:
            continue
        for die_set in roll.dice_notation.sets:
            if die_set.dice is None:
                continue
            results = [d.die_value for d in die_set.dice if d.die_value is not None]
            groups.append(DieGroup(
                die_type=die_set.die_type or "d6",
                count=die_set.count if die_set.count is not None else len(die_set.dice),
                results=results,
            ))

    logger.debug(f"Extracted {len(groups)} dice groups from roll {payload.roll_id}")
    return groups


def parse_dice_formula(roll_data, modifier: int = 0) -> RollFormula:
    """
    Build a local formula from the first roll entry.

    Advantage and disadvantage on a multi-die d20 set become ``kh1``/``kl1``.
    The die count follows what was actually delivered, so a d20 set whose
    result lists two values becomes ``2d20`` even if the nominal count says 1.
    ``modifier`` replaces the remote constant when it is non-zero.
    """
    payload = _as_payload(roll_data)
    result = RollFormula()

    roll = payload.first_roll
    if roll is None:
        logger.warning("No rolls in roll payload for formula parsing")
        return result

    roll_kind = roll.roll_kind or ""
    result.roll_kind = roll_kind
    result.is_advantage = roll_kind.lower() == ADVANTAGE
    result.is_disadvantage = roll_kind.lower() == DISADVANTAGE

    if roll.dice_notation is None:
        return result

    parts = []
    for die_set in roll.dice_notation.sets:
        die_type = die_set.die_type or "d6"

        count = len(die_set.dice) if die_set.dice else (die_set.count or 1)
        if die_type == "d20" and roll.result and roll.result.values:
            count = len(roll.result.values)

        keep = ""
        if die_type == "d20" and count > 1:
            if result.is_advantage:
                keep = "kh1"
            elif result.is_disadvantage:
                keep = "kl1"

        parts.append(f"{count}{die_type}{keep}")
        result.terms.append(FormulaTerm(count=count, die_type=die_type, keep_modifier=keep))

    constant = modifier or roll.dice_notation.constant or 0
    suffix = f"+{constant}" if constant >= 0 else f"{constant}"

    result.formula = "+".join(parts) + suffix
    logger.debug(f"Parsed formula: {result.formula} (rollKind: {roll_kind})")
    return result


def parse_dice_terms(formula: str) -> List[Dict[str, int]]:
    """List the ``NdF`` terms of a formula as ``{"number", "faces"}`` dicts."""
    return [
        {"number": int(m.group(1)), "faces": int(m.group(2))}
        for m in DICE_TERM_PATTERN.finditer(formula)
    ]


def calculate_dice_total(groups: List[DieGroup]) -> int:
    return sum(sum(group.results) for group in groups)


def dice_signature(groups: List[DieGroup]) -> Dict[str, int]:
    """Count of delivered dice per die type, e.g. ``{"d20": 2, "d6": 1}``."""
    signature: Dict[str, int] = {}
    for group in groups:
        count = len(group.results) or group.count or 0
        signature[group.die_type] = signature.get(group.die_type, 0) + count
    return signature
