# rollsync/dice/roll.py

"""
Local roll evaluator.

Parses formulas such as ``2d20kh1+7`` or ``1d8 + 2d6 - 1`` into die,
numeric and operator terms, rolls them, and sums the result. Die terms keep
their individual outcomes so remote or hand-entered values can be written
over them before the total is recomputed.
"""

import random
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


TOKEN_PATTERN = re.compile(
    r"\s*(?:(?P<dice>(?P<number>\d*)d(?P<faces>\d+)(?:(?P<keep>kh|kl)(?P<keep_count>\d*))?)"
    r"|(?P<numeric>\d+)|(?P<operator>[+\-]))",
    re.IGNORECASE,
)


@dataclass
class DieResult:
    result: int
    active: bool = True


class DieTerm:
    """``N`` dice of ``faces`` sides, optionally keeping the highest/lowest ``keep_count``."""

    def __init__(self, number: int, faces: int, keep: Optional[str] = None, keep_count: int = 1):
        if number < 1 or faces < 1:
            raise ValueError(f"Invalid die term: {number}d{faces}")
        self.number = number
        self.faces = faces
        self.keep = keep.lower() if keep else None
        self.keep_count = keep_count
        self.results: List[DieResult] = []

    @property
    def die_type(self) -> str:
        return f"d{self.faces}"

    @property
    def formula(self) -> str:
        term = f"{self.number}d{self.faces}"
        if self.keep:
            term += f"{self.keep}{self.keep_count}"
        return term

    @property
    def values(self) -> List[int]:
        return [r.result for r in self.results]

    def evaluate(self, rng=random):
        self.results = [DieResult(rng.randint(1, self.faces)) for _ in range(self.number)]
        self.apply_keep()

    def apply_keep(self):
        """Mark which outcomes count toward the total."""
        for r in self.results:
            r.active = True
        if not self.keep or not self.results:
            return

        ranked = sorted(range(len(self.results)), key=lambda i: self.results[i].result)
        if self.keep == "kh":
            kept = set(ranked[-self.keep_count:]) if self.keep_count > 0 else set()
        else:
            kept = set(ranked[:self.keep_count])
        for i, r in enumerate(self.results):
            r.active = i in kept

    @property
    def total(self) -> int:
        self.apply_keep()
        return sum(r.result for r in self.results if r.active)

    def __repr__(self):
        return f"DieTerm({self.formula}, results={self.values})"


class NumericTerm:
    def __init__(self, number: int):
        self.number = number

    @property
    def formula(self) -> str:
        return str(self.number)

    @property
    def total(self) -> int:
        return self.number

    def __repr__(self):
        return f"NumericTerm({self.number})"


class OperatorTerm:
    def __init__(self, operator: str):
        self.operator = operator

    @property
    def formula(self) -> str:
        return self.operator

    def __repr__(self):
        return f"OperatorTerm({self.operator!r})"


def parse_formula(formula: str) -> list:
    """Split a formula into terms, raising ``ValueError`` on anything unparseable."""
    terms = []
    pos = 0
    text = formula.strip()
    if not text:
        raise ValueError("Empty roll formula")

    while pos < len(text):
        match = TOKEN_PATTERN.match(text, pos)
        if not match or match.end() == pos:
            raise ValueError(f"Invalid roll formula: {formula}")
        pos = match.end()

        if match.group("dice"):
            number = int(match.group("number") or 1)
            keep_count = int(match.group("keep_count") or 1)
            terms.append(DieTerm(number, int(match.group("faces")), match.group("keep"), keep_count))
        elif match.group("numeric"):
            terms.append(NumericTerm(int(match.group("numeric"))))
        elif match.group("operator"):
            terms.append(OperatorTerm(match.group("operator")))

        # Trailing whitespace
        while pos < len(text) and text[pos].isspace():
            pos += 1

    # Two operands in a row, or a dangling operator, are both malformed
    previous_was_operand = False
    for term in terms:
        is_operand = not isinstance(term, OperatorTerm)
        if is_operand and previous_was_operand:
            raise ValueError(f"Missing operator in roll formula: {formula}")
        previous_was_operand = is_operand
    if isinstance(terms[-1], OperatorTerm):
        raise ValueError(f"Roll formula ends with an operator: {formula}")

    return terms


class Roll:
    """
    An evaluable roll.

    ``data`` and ``options`` mirror what the host attaches to a roll (the
    rolling actor's id, the item being used, the roll type) so the
    evaluation override can tell whose roll it is.
    """

    def __init__(self, formula: str, data: Optional[Dict[str, Any]] = None, options: Optional[Dict[str, Any]] = None):
        self.formula = formula.strip()
        self.data = data or {}
        self.options = options or {}
        self.terms = parse_formula(self.formula)
        self._total: Optional[int] = None

    @property
    def dice(self) -> List[DieTerm]:
        return [t for t in self.terms if isinstance(t, DieTerm)]

    @property
    def evaluated(self) -> bool:
        return self._total is not None

    @property
    def total(self) -> Optional[int]:
        return self._total

    def evaluate(self, rng=random) -> "Roll":
        for term in self.dice:
            term.evaluate(rng)
        self._total = self._evaluate_total()
        return self

    def recompute_total(self) -> int:
        """Re-sum the terms after their outcomes were overwritten."""
        self._total = self._evaluate_total()
        return self._total

    def _evaluate_total(self) -> int:
        total = 0
        sign = 1
        for term in self.terms:
            if isinstance(term, OperatorTerm):
                sign = -1 if term.operator == "-" else 1
                continue
            total += sign * term.total
            sign = 1
        return total

    def __repr__(self):
        return f"Roll({self.formula!r}, total={self._total})"
