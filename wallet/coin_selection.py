"""
Greedy largest-first input selection over ada-only UTxOs.
"""

from typing import Iterable, List

from errors.exceptions import InsufficientFundsError
from models.models import FundUnit


def spendable_units(available: Iterable[FundUnit]) -> List[FundUnit]:
    """Drop anything holding native assets or no lovelace, largest value first"""
    candidates = [u for u in available if not u.carries_foreign_value and u.value > 0]
    # id as a tie-breaker keeps the selection deterministic
    candidates.sort(key=lambda u: u.id)
    candidates.sort(key=lambda u: u.value, reverse=True)
    return candidates


def select_inputs(available: Iterable[FundUnit], required: int) -> List[FundUnit]:
    """
    Pick the fewest ada-only units whose value covers ``required``.

    Units carrying native assets are never selected, otherwise the mint
    transaction would sweep unrelated tokens into change.

    Raises:
        InsufficientFundsError: if every spendable unit together is still short
    """
    selected: List[FundUnit] = []
    total = 0
    for unit in spendable_units(available):
        if total >= required:
            break
        selected.append(unit)
        total += unit.value

    if total < required:
        raise InsufficientFundsError(have=total, required=required)
    return selected
