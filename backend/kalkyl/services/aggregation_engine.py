"""
Aggregation Engine: derives every amount in a calculation tree.

Covers:
  - Post-order re-derivation of sub-subsection, subsection and section amounts
  - Full-tree CO2 sum (absolute per row, options excluded)
  - Derived financial summary (budget, fixed fee, bid amount, CO2 budget check)
  - Save precondition check

Amounts are recomputed from the leaves on every call. Nothing is cached and no
stored amount is ever trusted as input.
"""
import copy
from dataclasses import asdict, dataclass
from typing import Any, Dict

from kalkyl.config import MSG_NO_SECTIONS, MSG_NON_POSITIVE_BID
from kalkyl.services.calculation_model import (
    Calculation,
    Section,
    Subsection,
    SubSubsection,
    iter_rows,
)


class SaveValidationError(Exception):
    """Raised when a calculation does not satisfy the save preconditions."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ── Tree amounts ───────────────────────────────────────────────────────────────

def _aggregate_sub_subsection(node: SubSubsection) -> float:
    node.amount = sum(row.line_total for row in node.rows)
    return node.amount


def _aggregate_subsection(node: Subsection) -> float:
    total = sum(row.line_total for row in node.rows)
    total += sum(_aggregate_sub_subsection(s) for s in node.sub_subsections)
    node.amount = total
    return total


def _aggregate_section(node: Section) -> float:
    node.amount = sum(_aggregate_subsection(s) for s in node.subsections)
    return node.amount


def aggregate(calc: Calculation) -> Calculation:
    """Return a copy of ``calc`` with every derived amount recomputed."""
    result = copy.deepcopy(calc)
    for section in result.sections:
        _aggregate_section(section)
    return result


def total_co2(calc: Calculation) -> float:
    """Σ row.co2 over the whole section tree. Never multiplied by quantity."""
    return sum(row.co2 for row in iter_rows(calc))


def options_total(calc: Calculation) -> float:
    return sum(option.line_total for option in calc.options)


# ── Financial summary ──────────────────────────────────────────────────────────

@dataclass
class FinancialSummary:
    budget_excl_rate: float
    fixed_rate: float
    bid_amount: float
    total_co2: float
    co2_budget_total: float
    exceeds_budget: bool
    co2_overshoot: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def summarize(calc: Calculation) -> FinancialSummary:
    """
    Compute the derived financial figures for a calculation.

        budget_excl_rate = Σ section amounts + Σ option line totals
        fixed_rate       = budget_excl_rate × rate / 100
        bid_amount       = budget_excl_rate + fixed_rate
        co2_budget_total = co2_budget × area
        exceeds_budget   = total_co2 > co2_budget_total > 0

    Section amounts are taken from a fresh aggregation, so the input tree may
    carry stale amounts.
    """
    aggregated = aggregate(calc)
    budget = sum(section.amount for section in aggregated.sections) + options_total(aggregated)
    fixed = budget * calc.rate / 100.0
    co2 = total_co2(aggregated)
    co2_budget_total = calc.co2_budget * calc.area if calc.area else 0.0
    exceeds = co2_budget_total > 0 and co2 > co2_budget_total

    return FinancialSummary(
        budget_excl_rate=budget,
        fixed_rate=fixed,
        bid_amount=budget + fixed,
        total_co2=co2,
        co2_budget_total=co2_budget_total,
        exceeds_budget=exceeds,
        co2_overshoot=co2 - co2_budget_total if exceeds else 0.0,
    )


def validate_for_save(calc: Calculation) -> FinancialSummary:
    """
    Check the save preconditions and return the summary on success.

    Raises SaveValidationError when the calculation has no sections or its bid
    amount is not positive.
    """
    if not calc.sections:
        raise SaveValidationError(MSG_NO_SECTIONS)
    summary = summarize(calc)
    if summary.bid_amount <= 0:
        raise SaveValidationError(MSG_NON_POSITIVE_BID)
    return summary
