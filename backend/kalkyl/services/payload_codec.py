"""
Payload codec: persisted JSON <-> Calculation tree.

Reading validates the JSON against CalculationPayload (see
kalkyl.models.calculation_payload for the accepted shapes), then maps the
validated models onto the Calculation dataclasses. A malformed value raises
PayloadError naming its path, e.g. ``sections[1].subsections[0].rows[2].quantity``.
Missing optional fields get their defaults and missing ids are assigned with
the max+1 rule. Stored amounts are ignored; they are always re-derived.

Writing always produces the native camelCase shape with ``account: null`` for
"no account selected".
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from kalkyl.config import (
    SECTION_LABEL,
    SUBSECTION_LABEL,
    SUB_SUBSECTION_LABEL,
    settings,
)
from kalkyl.models.calculation_payload import (
    CalculationPayload,
    OptionPayload,
    RowPayload,
    SectionPayload,
    SubsectionPayload,
    SubSubsectionPayload,
    normalize_account,
)
from kalkyl.services.aggregation_engine import aggregate
from kalkyl.services.calculation_model import (
    Calculation,
    OptionRow,
    Row,
    Section,
    Subsection,
    SubSubsection,
    next_id,
)

logger = logging.getLogger("kalkyl-calculations")


class PayloadError(ValueError):
    """A persisted calculation payload does not have the expected shape."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}" if path else message)
        self.path = path
        self.message = message


def error_path(loc: Sequence[Union[str, int]]) -> str:
    """('sections', 1, 'rows', 0, 'quantity') -> 'sections[1].rows[0].quantity'."""
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path = f"{path}.{part}" if path else str(part)
    return path


def parse_account(value: Any) -> Optional[str]:
    """Account reference -> account number, or None when unset. Raises PayloadError."""
    try:
        return normalize_account(value)
    except ValueError as e:
        raise PayloadError("account", str(e))


def _assign_ids(items: List[Any], ids: List[Optional[int]], path: str) -> None:
    """Apply explicit ids, then fill the gaps in order with max+1."""
    seen = set()
    for index, item_id in enumerate(ids):
        if item_id is None:
            continue
        if item_id in seen:
            raise PayloadError(f"{path}[{index}].id", f"duplicate id {item_id}")
        seen.add(item_id)
    for item, item_id in zip(items, ids):
        if item_id is None:
            item_id = next_id(seen)
            seen.add(item_id)
        item.id = item_id


# ── Decoding ───────────────────────────────────────────────────────────────────

def _rows(payloads: List[RowPayload], path: str) -> List[Row]:
    rows = [
        Row(
            id=0,
            description=p.description,
            quantity=p.quantity,
            unit=p.unit or settings.default_unit,
            price_per_unit=p.price_per_unit,
            co2=p.co2,
            account=p.account,
            resource=p.resource,
            note=p.note,
        )
        for p in payloads
    ]
    _assign_ids(rows, [p.id for p in payloads], path)
    return rows


def _sub_subsections(payloads: List[SubSubsectionPayload], path: str) -> List[SubSubsection]:
    nodes = [
        SubSubsection(
            id=0,
            name=SUB_SUBSECTION_LABEL if p.name is None else p.name,
            expanded=bool(p.expanded),
            rows=_rows(p.rows, f"{path}[{i}].rows"),
        )
        for i, p in enumerate(payloads)
    ]
    _assign_ids(nodes, [p.id for p in payloads], path)
    return nodes


def _subsections(payloads: List[SubsectionPayload], path: str) -> List[Subsection]:
    nodes = [
        Subsection(
            id=0,
            name=SUBSECTION_LABEL if p.name is None else p.name,
            expanded=bool(p.expanded),
            rows=_rows(p.rows, f"{path}[{i}].rows"),
            sub_subsections=_sub_subsections(p.sub_subsections, f"{path}[{i}].sub_subsections"),
        )
        for i, p in enumerate(payloads)
    ]
    _assign_ids(nodes, [p.id for p in payloads], path)
    return nodes


def _sections(payloads: List[SectionPayload]) -> List[Section]:
    nodes = [
        Section(
            id=0,
            name=SECTION_LABEL if p.name is None else p.name,
            expanded=bool(p.expanded),
            subsections=_subsections(p.subsections, f"sections[{i}].subsections"),
        )
        for i, p in enumerate(payloads)
    ]
    _assign_ids(nodes, [p.id for p in payloads], "sections")
    return nodes


def _options(payloads: List[OptionPayload]) -> List[OptionRow]:
    options = [
        OptionRow(
            id=0,
            description=p.description,
            quantity=p.quantity,
            unit=p.unit or settings.default_unit,
            price_per_unit=p.price_per_unit,
        )
        for p in payloads
    ]
    _assign_ids(options, [p.id for p in payloads], "options")
    return options


def _rate(payload: CalculationPayload) -> float:
    if payload.rate is not None:
        return payload.rate
    budget = payload.budget or 0.0
    if budget > 0 and payload.fee is not None and payload.fee >= 0:
        return payload.fee / budget * 100.0
    return settings.default_rate


def calculation_from_model(payload: CalculationPayload) -> Calculation:
    """Map a validated payload onto a Calculation. Raises PayloadError on duplicate ids."""
    calc = Calculation(
        name=payload.name,
        project=payload.project,
        rate=_rate(payload),
        area=payload.area,
        co2_budget=payload.co2_budget,
        sections=_sections(payload.sections),
        options=_options(payload.options),
        created_by=payload.created_by,
    )
    logger.debug(
        f"Decoded calculation '{calc.name}' with {len(calc.sections)} sections, {len(calc.options)} options"
    )
    return calc


def calculation_from_payload(payload: Any) -> Calculation:
    """Rebuild a Calculation from a persisted payload. Raises PayloadError."""
    if not isinstance(payload, CalculationPayload):
        try:
            payload = CalculationPayload.model_validate(payload)
        except ValidationError as e:
            first = e.errors()[0]
            raise PayloadError(error_path(first["loc"]), first["msg"])
    return calculation_from_model(payload)


# ── Encoding ───────────────────────────────────────────────────────────────────

def _encode_row(row: Row) -> Dict[str, Any]:
    return {
        "id": row.id,
        "description": row.description,
        "quantity": row.quantity,
        "unit": row.unit,
        "pricePerUnit": row.price_per_unit,
        "amount": row.line_total,
        "co2": row.co2,
        "account": row.account,
        "resource": row.resource,
        "note": row.note,
    }


def calculation_to_payload(calc: Calculation) -> Dict[str, Any]:
    """Serialise a Calculation to the native camelCase shape, amounts included."""
    agg = aggregate(calc)
    return {
        "name": agg.name,
        "project": agg.project,
        "rate": agg.rate,
        "area": agg.area,
        "co2Budget": agg.co2_budget,
        "createdBy": agg.created_by,
        "sections": [
            {
                "id": section.id,
                "name": section.name,
                "amount": section.amount,
                "expanded": section.expanded,
                "subsections": [
                    {
                        "id": sub.id,
                        "name": sub.name,
                        "amount": sub.amount,
                        "expanded": sub.expanded,
                        "rows": [_encode_row(row) for row in sub.rows],
                        "subSubsections": [
                            {
                                "id": sub_sub.id,
                                "name": sub_sub.name,
                                "amount": sub_sub.amount,
                                "expanded": sub_sub.expanded,
                                "rows": [_encode_row(row) for row in sub_sub.rows],
                            }
                            for sub_sub in sub.sub_subsections
                        ],
                    }
                    for sub in section.subsections
                ],
            }
            for section in agg.sections
        ],
        "options": [
            {
                "id": option.id,
                "description": option.description,
                "quantity": option.quantity,
                "unit": option.unit,
                "pricePerUnit": option.price_per_unit,
                "amount": option.line_total,
            }
            for option in agg.options
        ],
    }
