# rollsync/dice/substitution.py

"""
Substitution engine: overwrite a locally evaluated roll's die outcomes with
externally supplied values, then recompute its total.
"""

import logging
import random
from typing import List

from rollsync.dice.roll import DieTerm, NumericTerm, OperatorTerm, Roll
from schemas.wire import DieGroup

logger = logging.getLogger(__name__)


def substitute(roll: Roll, groups: List[DieGroup]) -> None:
    """
    Pair the i-th die term with the i-th group and write values by rank.

    Both sides are sorted ascending and overwritten pairwise up to the
    shorter length. When a keep term gets more values than it has dice, the
    surplus is dropped from the end it would discard, so ``1d20kh1`` given
    ``[14, 9]`` keeps 14. Pairing is positional, not by die type. The roll
    is mutated in place; call ``roll.recompute_total()`` afterwards.
    """
    for index, term in enumerate(roll.dice):
        if index >= len(groups):
            logger.debug(f"No external values for term {term.formula}, keeping local outcomes")
            break

        group = groups[index]
        if group.die_type and group.die_type != term.die_type:
            logger.warning(
                f"Pairing {group.die_type} values with local {term.formula} term by position"
            )

        external = sorted(group.results)
        surplus = len(external) - len(term.results)
        if surplus > 0 and term.keep == "kh":
            external = external[surplus:]
        elif surplus > 0 and term.keep == "kl":
            external = external[:len(term.results)]

        term.results.sort(key=lambda r: r.result)
        for j in range(min(len(term.results), len(external))):
            term.results[j].result = external[j]
        term.apply_keep()


class RollBuilder:
    """Creates local rolls carrying external dice results."""

    def __init__(self, rng=random):
        self.rng = rng

    def build_with_results(self, formula: str, groups: List[DieGroup]) -> Roll:
        roll = Roll(formula).evaluate(self.rng)
        substitute(roll, groups)
        roll.recompute_total()
        logger.info(f"Built roll with formula \"{formula}\", total: {roll.total}")
        return roll

    def build_basic(self, formula: str) -> Roll:
        roll = Roll(formula).evaluate(self.rng)
        logger.info(f"Built basic roll with formula \"{formula}\", total: {roll.total}")
        return roll


def format_roll(roll: Roll) -> str:
    """Render a roll like ``[9,14] + 7``."""
    parts = []
    for term in roll.terms:
        if isinstance(term, DieTerm):
            parts.append("[" + ",".join(str(v) for v in term.values) + "]")
        elif isinstance(term, OperatorTerm):
            parts.append(term.operator)
        elif isinstance(term, NumericTerm):
            parts.append(str(term.number))
    return " ".join(parts)
