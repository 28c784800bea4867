"""
Calculation Editor: structural edits on a calculation tree and the editing session.

Every mutation takes the current Calculation and returns a new one; the input
is never modified. Mutations do not aggregate: callers re-run
aggregation_engine.aggregate() before reading amounts (CalculationSession does
this for them).

A target that cannot be found (stale id from an old view) is a silent no-op:
the input tree is returned unchanged and the miss is logged at DEBUG.
"""
import copy
import logging
import math
from dataclasses import asdict, fields
from typing import Any, Callable, Dict, Optional

from kalkyl.config import SECTION_LABEL, SUBSECTION_LABEL, SUB_SUBSECTION_LABEL
from kalkyl.services.aggregation_engine import FinancialSummary, aggregate, summarize, total_co2
from kalkyl.services.calculation_model import (
    Calculation,
    OptionRow,
    Row,
    Subsection,
    SubSubsection,
    find_row_container,
    find_section,
    find_sub_subsection,
    find_subsection,
    new_option,
    new_row,
    new_section,
    next_id,
)
from kalkyl.services.expression_evaluator import evaluate, evaluate_integer

logger = logging.getLogger("kalkyl-editor")

# camelCase names accepted alongside the attribute names
_FIELD_ALIASES: Dict[str, str] = {
    "pricePerUnit": "price_per_unit",
}

_ROW_FIELDS = frozenset(f.name for f in fields(Row)) - {"id"}
_OPTION_FIELDS = frozenset(f.name for f in fields(OptionRow)) - {"id"}
_NUMERIC_FIELDS = frozenset({"quantity", "price_per_unit", "co2"})


def _miss(op: str, **ids: Any) -> None:
    logger.debug(f"{op}: target not found {ids}, tree unchanged")


# ── Sections ───────────────────────────────────────────────────────────────────

def add_section(calc: Calculation) -> Calculation:
    result = copy.deepcopy(calc)
    section_id = next_id(s.id for s in result.sections)
    result.sections.append(new_section(section_id, SECTION_LABEL))
    return result


def rename_section(calc: Calculation, section_id: int, name: str) -> Calculation:
    result = copy.deepcopy(calc)
    section = find_section(result, section_id)
    if section is None:
        _miss("rename_section", section_id=section_id)
        return calc
    section.name = name
    return result


def delete_section(calc: Calculation, section_id: int) -> Calculation:
    if find_section(calc, section_id) is None:
        _miss("delete_section", section_id=section_id)
        return calc
    result = copy.deepcopy(calc)
    result.sections = [s for s in result.sections if s.id != section_id]
    return result


def toggle_section(calc: Calculation, section_id: int) -> Calculation:
    result = copy.deepcopy(calc)
    section = find_section(result, section_id)
    if section is None:
        _miss("toggle_section", section_id=section_id)
        return calc
    section.expanded = not section.expanded
    return result


# ── Subsections ────────────────────────────────────────────────────────────────

def add_subsection(calc: Calculation, section_id: int) -> Calculation:
    result = copy.deepcopy(calc)
    section = find_section(result, section_id)
    if section is None:
        _miss("add_subsection", section_id=section_id)
        return calc
    subsection_id = next_id(s.id for s in section.subsections)
    section.subsections.append(Subsection(id=subsection_id, name=SUBSECTION_LABEL, expanded=True))
    return result


def rename_subsection(calc: Calculation, section_id: int, subsection_id: int, name: str) -> Calculation:
    result = copy.deepcopy(calc)
    subsection = find_subsection(result, section_id, subsection_id)
    if subsection is None:
        _miss("rename_subsection", section_id=section_id, subsection_id=subsection_id)
        return calc
    subsection.name = name
    return result


def delete_subsection(calc: Calculation, section_id: int, subsection_id: int) -> Calculation:
    if find_subsection(calc, section_id, subsection_id) is None:
        _miss("delete_subsection", section_id=section_id, subsection_id=subsection_id)
        return calc
    result = copy.deepcopy(calc)
    section = find_section(result, section_id)
    section.subsections = [s for s in section.subsections if s.id != subsection_id]
    return result


def toggle_subsection(calc: Calculation, section_id: int, subsection_id: int) -> Calculation:
    result = copy.deepcopy(calc)
    subsection = find_subsection(result, section_id, subsection_id)
    if subsection is None:
        _miss("toggle_subsection", section_id=section_id, subsection_id=subsection_id)
        return calc
    subsection.expanded = not subsection.expanded
    return result


# ── Sub-subsections ────────────────────────────────────────────────────────────

def add_sub_subsection(calc: Calculation, section_id: int, subsection_id: int) -> Calculation:
    result = copy.deepcopy(calc)
    subsection = find_subsection(result, section_id, subsection_id)
    if subsection is None:
        _miss("add_sub_subsection", section_id=section_id, subsection_id=subsection_id)
        return calc
    sub_id = next_id(s.id for s in subsection.sub_subsections)
    subsection.sub_subsections.append(SubSubsection(id=sub_id, name=SUB_SUBSECTION_LABEL, expanded=True))
    return result


def rename_sub_subsection(
    calc: Calculation, section_id: int, subsection_id: int, sub_subsection_id: int, name: str
) -> Calculation:
    result = copy.deepcopy(calc)
    node = find_sub_subsection(result, section_id, subsection_id, sub_subsection_id)
    if node is None:
        _miss("rename_sub_subsection", section_id=section_id, subsection_id=subsection_id,
              sub_subsection_id=sub_subsection_id)
        return calc
    node.name = name
    return result


def delete_sub_subsection(
    calc: Calculation, section_id: int, subsection_id: int, sub_subsection_id: int
) -> Calculation:
    if find_sub_subsection(calc, section_id, subsection_id, sub_subsection_id) is None:
        _miss("delete_sub_subsection", section_id=section_id, subsection_id=subsection_id,
              sub_subsection_id=sub_subsection_id)
        return calc
    result = copy.deepcopy(calc)
    subsection = find_subsection(result, section_id, subsection_id)
    subsection.sub_subsections = [s for s in subsection.sub_subsections if s.id != sub_subsection_id]
    return result


def toggle_sub_subsection(
    calc: Calculation, section_id: int, subsection_id: int, sub_subsection_id: int
) -> Calculation:
    result = copy.deepcopy(calc)
    node = find_sub_subsection(result, section_id, subsection_id, sub_subsection_id)
    if node is None:
        _miss("toggle_sub_subsection", section_id=section_id, subsection_id=subsection_id,
              sub_subsection_id=sub_subsection_id)
        return calc
    node.expanded = not node.expanded
    return result


# ── Rows ───────────────────────────────────────────────────────────────────────
# Rows live either directly under a subsection or under one of its
# sub-subsections; `sub_subsection_id=None` selects the former.

def add_row(
    calc: Calculation, section_id: int, subsection_id: int, sub_subsection_id: Optional[int] = None
) -> Calculation:
    result = copy.deepcopy(calc)
    container = find_row_container(result, section_id, subsection_id, sub_subsection_id)
    if container is None:
        _miss("add_row", section_id=section_id, subsection_id=subsection_id,
              sub_subsection_id=sub_subsection_id)
        return calc
    container.rows.append(new_row(next_id(r.id for r in container.rows)))
    return result


def _find_row(container, row_id: int) -> Optional[Row]:
    if container is None:
        return None
    return next((r for r in container.rows if r.id == row_id), None)


def update_row_field(
    calc: Calculation,
    section_id: int,
    subsection_id: int,
    row_id: int,
    field: str,
    value: Any,
    sub_subsection_id: Optional[int] = None,
) -> Calculation:
    """
    Set one field on a row. The value is stored as given; range checks (for
    example rejecting a negative quantity) belong to the caller.
    """
    attr = _FIELD_ALIASES.get(field, field)
    if attr not in _ROW_FIELDS:
        logger.debug(f"update_row_field: unknown field '{field}', tree unchanged")
        return calc
    result = copy.deepcopy(calc)
    row = _find_row(find_row_container(result, section_id, subsection_id, sub_subsection_id), row_id)
    if row is None:
        _miss("update_row_field", section_id=section_id, subsection_id=subsection_id,
              row_id=row_id, sub_subsection_id=sub_subsection_id)
        return calc
    setattr(row, attr, value)
    return result


def update_row_co2(
    calc: Calculation,
    section_id: int,
    subsection_id: int,
    row_id: int,
    value: float,
    sub_subsection_id: Optional[int] = None,
) -> Calculation:
    result = copy.deepcopy(calc)
    row = _find_row(find_row_container(result, section_id, subsection_id, sub_subsection_id), row_id)
    if row is None:
        _miss("update_row_co2", section_id=section_id, subsection_id=subsection_id,
              row_id=row_id, sub_subsection_id=sub_subsection_id)
        return calc
    row.co2 = value
    return result


def delete_row(
    calc: Calculation,
    section_id: int,
    subsection_id: int,
    row_id: int,
    sub_subsection_id: Optional[int] = None,
) -> Calculation:
    if _find_row(find_row_container(calc, section_id, subsection_id, sub_subsection_id), row_id) is None:
        _miss("delete_row", section_id=section_id, subsection_id=subsection_id,
              row_id=row_id, sub_subsection_id=sub_subsection_id)
        return calc
    result = copy.deepcopy(calc)
    container = find_row_container(result, section_id, subsection_id, sub_subsection_id)
    container.rows = [r for r in container.rows if r.id != row_id]
    return result


# ── View state ─────────────────────────────────────────────────────────────────

def _set_all_expanded(calc: Calculation, expanded: bool) -> Calculation:
    result = copy.deepcopy(calc)
    for section in result.sections:
        section.expanded = expanded
        for subsection in section.subsections:
            subsection.expanded = expanded
            for sub_sub in subsection.sub_subsections:
                sub_sub.expanded = expanded
    return result


def expand_all(calc: Calculation) -> Calculation:
    return _set_all_expanded(calc, True)


def collapse_all(calc: Calculation) -> Calculation:
    return _set_all_expanded(calc, False)


# ── Options ────────────────────────────────────────────────────────────────────

def add_option(calc: Calculation) -> Calculation:
    result = copy.deepcopy(calc)
    result.options.append(new_option(next_id(o.id for o in result.options)))
    return result


def update_option_field(calc: Calculation, option_id: int, field: str, value: Any) -> Calculation:
    attr = _FIELD_ALIASES.get(field, field)
    if attr not in _OPTION_FIELDS:
        logger.debug(f"update_option_field: unknown field '{field}', tree unchanged")
        return calc
    result = copy.deepcopy(calc)
    option = next((o for o in result.options if o.id == option_id), None)
    if option is None:
        _miss("update_option_field", option_id=option_id)
        return calc
    setattr(option, attr, value)
    return result


def delete_option(calc: Calculation, option_id: int) -> Calculation:
    if not any(o.id == option_id for o in calc.options):
        _miss("delete_option", option_id=option_id)
        return calc
    result = copy.deepcopy(calc)
    result.options = [o for o in result.options if o.id != option_id]
    return result


# ── Editing session ────────────────────────────────────────────────────────────

def _without_view_state(node: Any) -> Any:
    if isinstance(node, dict):
        return {k: _without_view_state(v) for k, v in node.items() if k != "expanded"}
    if isinstance(node, list):
        return [_without_view_state(v) for v in node]
    return node


def _content_key(calc: Calculation) -> Dict[str, Any]:
    return _without_view_state(asdict(aggregate(calc)))


def _parse_number(text: str, integer: bool) -> Optional[float]:
    if integer:
        value = evaluate_integer(text)
        return None if value is None else float(value)
    return evaluate(text)


def _valid_scalar(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value >= 0


class CalculationSession:
    """
    Single-writer editing session around one calculation tree.

    Edits run synchronously through apply(), which re-aggregates after every
    mutation. Asynchronous reference-data lookups take a token from
    begin_fetch() and hand their result back through apply_co2_item(); a result
    whose token is stale (the session was closed or loaded with another
    calculation in the meantime) is discarded.
    """

    def __init__(self, calculation: Optional[Calculation] = None):
        self._generation = 0
        self._closed = False
        self._tree = aggregate(calculation or Calculation())
        self._saved_key = _content_key(self._tree)

    # ── State ────────────────────────────────────────────────────────────────

    @property
    def calculation(self) -> Calculation:
        return self._tree

    @property
    def summary(self) -> FinancialSummary:
        return summarize(self._tree)

    @property
    def total_co2(self) -> float:
        return total_co2(self._tree)

    @property
    def is_dirty(self) -> bool:
        """True when the content differs from the last loaded or saved snapshot."""
        return _content_key(self._tree) != self._saved_key

    @property
    def closed(self) -> bool:
        return self._closed

    def load(self, calculation: Calculation) -> None:
        """Replace the tree. Pending fetches for the previous tree are invalidated."""
        self._ensure_open()
        self._generation += 1
        self._tree = aggregate(calculation)
        self._saved_key = _content_key(self._tree)

    def mark_saved(self) -> None:
        self._saved_key = _content_key(self._tree)

    def close(self) -> None:
        self._generation += 1
        self._closed = True

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Calculation session is closed")

    # ── Editing ──────────────────────────────────────────────────────────────

    def apply(self, op: Callable[..., Calculation], *args: Any, **kwargs: Any) -> Calculation:
        """Run one mutation operation and re-aggregate the result."""
        self._ensure_open()
        self._tree = aggregate(op(self._tree, *args, **kwargs))
        return self._tree

    def set_rate(self, value: float) -> bool:
        return self._set_scalar("rate", value)

    def set_area(self, value: float) -> bool:
        return self._set_scalar("area", value)

    def set_co2_budget(self, value: float) -> bool:
        return self._set_scalar("co2_budget", value)

    def _set_scalar(self, attr: str, value: float) -> bool:
        self._ensure_open()
        if not _valid_scalar(value):
            logger.debug(f"Rejected {attr}={value!r}")
            return False
        result = copy.deepcopy(self._tree)
        setattr(result, attr, float(value))
        self._tree = aggregate(result)
        return True

    def set_numeric_field(
        self,
        section_id: int,
        subsection_id: int,
        row_id: int,
        field: str,
        text: str,
        sub_subsection_id: Optional[int] = None,
        integer: bool = False,
    ) -> bool:
        """
        Parse free-text input for a numeric row cell and store it.

        Returns False and keeps the previous value when the text does not
        evaluate or the result is negative.
        """
        attr = _FIELD_ALIASES.get(field, field)
        if attr not in _NUMERIC_FIELDS:
            raise ValueError(f"'{field}' is not a numeric row field")
        value = _parse_number(text, integer)
        if value is None or value < 0:
            logger.debug(f"Rejected input {text!r} for row {row_id}.{attr}")
            return False
        if attr == "co2":
            self.apply(update_row_co2, section_id, subsection_id, row_id, value, sub_subsection_id)
        else:
            self.apply(update_row_field, section_id, subsection_id, row_id, attr, value, sub_subsection_id)
        return True

    def set_option_numeric_field(self, option_id: int, field: str, text: str, integer: bool = False) -> bool:
        attr = _FIELD_ALIASES.get(field, field)
        if attr not in ("quantity", "price_per_unit"):
            raise ValueError(f"'{field}' is not a numeric option field")
        value = _parse_number(text, integer)
        if value is None or value < 0:
            logger.debug(f"Rejected input {text!r} for option {option_id}.{attr}")
            return False
        self.apply(update_option_field, option_id, attr, value)
        return True

    # ── Reference data merge ─────────────────────────────────────────────────

    def begin_fetch(self) -> int:
        """Token for an asynchronous lookup issued against the current tree."""
        self._ensure_open()
        return self._generation

    def is_current(self, token: int) -> bool:
        return not self._closed and token == self._generation

    def apply_co2_item(
        self,
        token: int,
        section_id: int,
        subsection_id: int,
        row_id: int,
        co2_value: float,
        sub_subsection_id: Optional[int] = None,
    ) -> bool:
        """Store a CO2 reference value on a row unless the fetch has gone stale."""
        if not self.is_current(token):
            logger.debug(f"Discarding stale CO2 result (token {token}, generation {self._generation})")
            return False
        if not _valid_scalar(co2_value):
            return False
        self.apply(update_row_co2, section_id, subsection_id, row_id, float(co2_value), sub_subsection_id)
        return True
