"""
Calculation tree model.

    Calculation
      ├── sections: [Section]
      │     └── subsections: [Subsection]
      │           ├── rows: [Row]
      │           └── sub_subsections: [SubSubsection]
      │                 └── rows: [Row]
      └── options: [OptionRow]

`amount` fields are derived. They are written only by the aggregation engine
and are never an input; see aggregation_engine.aggregate().

Id scopes:
  - Section ids and option ids are unique within the calculation
  - Subsection ids are unique within their section
  - Sub-subsection ids are unique within their subsection
  - Row ids are unique within their direct parent
New ids are always max(existing ids, 0) + 1.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional

from kalkyl.config import SECTION_LABEL, SUBSECTION_LABEL, SUB_SUBSECTION_LABEL, settings


@dataclass
class Row:
    id: int
    description: str = ""
    quantity: float = 0.0
    unit: str = "m2"
    price_per_unit: float = 0.0
    co2: float = 0.0                 # kg, absolute for the row (not per unit)
    account: Optional[str] = None    # None = no bookkeeping account selected
    resource: str = ""
    note: str = ""

    @property
    def line_total(self) -> float:
        return self.quantity * self.price_per_unit


@dataclass
class SubSubsection:
    id: int
    name: str = SUB_SUBSECTION_LABEL
    amount: float = 0.0
    expanded: bool = False
    rows: List[Row] = field(default_factory=list)


@dataclass
class Subsection:
    id: int
    name: str = SUBSECTION_LABEL
    amount: float = 0.0
    expanded: bool = False
    rows: List[Row] = field(default_factory=list)
    sub_subsections: List[SubSubsection] = field(default_factory=list)


@dataclass
class Section:
    id: int
    name: str = SECTION_LABEL
    amount: float = 0.0
    expanded: bool = False
    subsections: List[Subsection] = field(default_factory=list)


@dataclass
class OptionRow:
    id: int
    description: str = ""
    quantity: float = 0.0
    unit: str = "m2"
    price_per_unit: float = 0.0

    @property
    def line_total(self) -> float:
        return self.quantity * self.price_per_unit


@dataclass
class Calculation:
    name: str = ""
    project: str = ""
    rate: float = field(default_factory=lambda: settings.default_rate)
    area: float = 0.0
    co2_budget: float = 0.0          # kg per m²
    sections: List[Section] = field(default_factory=list)
    options: List[OptionRow] = field(default_factory=list)
    created_by: str = ""


# ── Id allocation ──────────────────────────────────────────────────────────────

def next_id(existing: Iterable[int]) -> int:
    """max(existing ∪ {0}) + 1. Ids are never reused while a higher id exists."""
    return max([0, *existing]) + 1


# ── Lookup helpers ─────────────────────────────────────────────────────────────

def find_section(calc: Calculation, section_id: int) -> Optional[Section]:
    return next((s for s in calc.sections if s.id == section_id), None)


def find_subsection(calc: Calculation, section_id: int, subsection_id: int) -> Optional[Subsection]:
    section = find_section(calc, section_id)
    if section is None:
        return None
    return next((s for s in section.subsections if s.id == subsection_id), None)


def find_sub_subsection(
    calc: Calculation, section_id: int, subsection_id: int, sub_subsection_id: int
) -> Optional[SubSubsection]:
    subsection = find_subsection(calc, section_id, subsection_id)
    if subsection is None:
        return None
    return next((s for s in subsection.sub_subsections if s.id == sub_subsection_id), None)


def find_row_container(
    calc: Calculation,
    section_id: int,
    subsection_id: int,
    sub_subsection_id: Optional[int] = None,
):
    """Return the Subsection or SubSubsection whose `rows` a row op targets."""
    if sub_subsection_id is None:
        return find_subsection(calc, section_id, subsection_id)
    return find_sub_subsection(calc, section_id, subsection_id, sub_subsection_id)


def iter_rows(calc: Calculation) -> Iterator[Row]:
    """Every row in the section tree, sub-subsection rows included. Options excluded."""
    for section in calc.sections:
        for subsection in section.subsections:
            yield from subsection.rows
            for sub_sub in subsection.sub_subsections:
                yield from sub_sub.rows


# ── Construction ───────────────────────────────────────────────────────────────

def new_row(row_id: int, unit: Optional[str] = None) -> Row:
    return Row(id=row_id, unit=unit or settings.default_unit)


def new_option(option_id: int, unit: Optional[str] = None) -> OptionRow:
    return OptionRow(id=option_id, unit=unit or settings.default_unit)


def new_section(section_id: int, name: Optional[str] = None) -> Section:
    """A fresh, expanded section holding one default subsection."""
    return Section(
        id=section_id,
        name=name or SECTION_LABEL,
        expanded=True,
        subsections=[Subsection(id=1, name=SUBSECTION_LABEL, expanded=True)],
    )


def calculation_from_template(
    template: dict,
    name: str = "",
    project: str = "",
    rate: Optional[float] = None,
) -> Calculation:
    """
    Seed a Calculation from a template definition
    ``{"name": ..., "sections": [{"name": ..., "rows": [...]?}]}``.

    Each template section becomes a collapsed Section with one Subsection that
    holds the template rows. Amounts are left at 0 for aggregation to fill in.
    """
    sections: List[Section] = []
    for index, tpl_section in enumerate(template.get("sections") or [], start=1):
        rows = [
            Row(
                id=row_index,
                description=str(tpl_row.get("description", "")),
                quantity=float(tpl_row.get("quantity", 0) or 0),
                unit=str(tpl_row.get("unit") or settings.default_unit),
                price_per_unit=float(tpl_row.get("pricePerUnit", 0) or 0),
                co2=float(tpl_row.get("co2", 0) or 0),
                account=tpl_row.get("account") or None,
                resource=str(tpl_row.get("resource") or ""),
                note=str(tpl_row.get("note") or ""),
            )
            for row_index, tpl_row in enumerate(tpl_section.get("rows") or [], start=1)
        ]
        sections.append(
            Section(
                id=index,
                name=str(tpl_section.get("name") or SECTION_LABEL),
                subsections=[Subsection(id=1, name=SUBSECTION_LABEL, rows=rows)],
            )
        )
    return Calculation(
        name=name or str(template.get("name", "")),
        project=project,
        rate=settings.default_rate if rate is None else float(rate),
        sections=sections,
    )


# ── Display helpers ────────────────────────────────────────────────────────────

def display_name_and_index(name: str, base_label: str, fallback_index: int) -> tuple[str, Optional[str]]:
    """
    Split a node name into (display name, display index).

    "Nivå 1"      -> ("Nivå 1", "<fallback_index>")
    "Nivå 1 - 4"  -> ("Nivå 1", "4")
    "Mark"        -> ("Mark", None)
    """
    if name.strip() == base_label:
        return base_label, str(fallback_index)
    m = re.match(rf"^{re.escape(base_label)}\s*-\s*([0-9]+)\s*$", name)
    if m:
        return base_label, m.group(1)
    return name, None
