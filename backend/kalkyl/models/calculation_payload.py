"""
Pydantic models for a serialized calculation tree.

These models are the validation contract for calculation JSON coming from
clients and from stored records. They accept two shapes:

  native    {name, project, rate, area, co2Budget,
             sections: [{id, name, expanded, subsections: [{id, name, rows: [...],
                                                            subSubsections: [...]}]}],
             options: [{id, description, quantity, unit, pricePerUnit}]}
            (camelCase or snake_case keys)

  server    {name, squareMeter, co2Budget, budget, fee,
             sections: [{id?, title, subSections: [{id?, title, budgetRows: [...],
                                                    subSections: [...]}], budgetRows: []}],
             optionBudgetRows: [{id?, name, quantity, price, amount}]}

Stored `amount` values are accepted and ignored. Ids are optional here; the
codec fills the gaps (see payload_codec.calculation_from_model).

Usage:
    payload = CalculationPayload.model_validate(raw)
"""
import re
from typing import Annotated, Any, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    Field,
    FiniteFloat,
    StrictBool,
    field_validator,
)

from kalkyl.config import UNSET_ACCOUNT_LABEL

_LEGACY_ACCOUNT = re.compile(r"^\s*(\d+)\s*-")


def normalize_account(value: Any) -> Optional[str]:
    """
    Normalise an account reference to its number, or None when unset.

    Accepts None, "", 0 and the "Välj konto" label as unset, a bare number
    ("4010" or 4010), and the legacy "4010 - Description" form.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("expected an account number, got bool")
    if isinstance(value, (int, float)):
        return str(int(value)) if value > 0 else None
    if not isinstance(value, str):
        raise ValueError(f"expected an account number, got {type(value).__name__}")
    raw = value.strip()
    if not raw or raw == UNSET_ACCOUNT_LABEL:
        return None
    if raw.isdigit():
        return raw if int(raw) > 0 else None
    m = _LEGACY_ACCOUNT.match(raw)
    if m:
        return m.group(1)
    return raw


# ── Lenient scalar inputs ─────────────────────────────────────────────────────

def _number_or_none(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("expected a number, got bool")
    if isinstance(value, str):
        # Swedish input uses a decimal comma
        return value.strip().replace(",", ".") or None
    return value


def _number_or_zero(value: Any) -> Any:
    value = _number_or_none(value)
    return 0.0 if value is None else value


def _text_or_none(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def _text_or_empty(value: Any) -> Any:
    return "" if value is None else _text_or_none(value)


def _id_input(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("expected an integer id, got bool")
    return value


def _list_input(value: Any) -> Any:
    return [] if value is None else value


_NonNegative = Annotated[FiniteFloat, Field(ge=0)]

Amount = Annotated[_NonNegative, BeforeValidator(_number_or_zero)]
OptionalAmount = Annotated[Optional[_NonNegative], BeforeValidator(_number_or_none)]
OptionalNumber = Annotated[Optional[FiniteFloat], BeforeValidator(_number_or_none)]
Text = Annotated[str, BeforeValidator(_text_or_empty)]
OptionalText = Annotated[Optional[str], BeforeValidator(_text_or_none)]
NodeId = Annotated[Optional[int], BeforeValidator(_id_input)]


# ── Tree nodes ────────────────────────────────────────────────────────────────

class RowPayload(BaseModel):
    """A budget row. `name`/`price`/`notes`/`accountNo` are the server-shape keys."""
    id: NodeId = None
    description: Text = Field("", validation_alias=AliasChoices("description", "name"))
    quantity: Amount = 0.0
    unit: OptionalText = None
    price_per_unit: Amount = Field(
        0.0, validation_alias=AliasChoices("pricePerUnit", "price_per_unit", "price")
    )
    co2: Amount = 0.0
    account: Optional[str] = Field(None, validation_alias=AliasChoices("account", "accountNo", "account_no"))
    resource: Text = ""
    note: Text = Field("", validation_alias=AliasChoices("note", "notes"))

    @field_validator("account", mode="before")
    @classmethod
    def _account(cls, value: Any) -> Optional[str]:
        return normalize_account(value)


class SubSubsectionPayload(BaseModel):
    id: NodeId = None
    name: OptionalText = Field(None, validation_alias=AliasChoices("name", "title"))
    expanded: Optional[StrictBool] = None
    rows: Annotated[List[RowPayload], BeforeValidator(_list_input)] = Field(
        default_factory=list, validation_alias=AliasChoices("rows", "budgetRows")
    )
    sub_subsections: Annotated[List[Any], BeforeValidator(_list_input)] = Field(
        default_factory=list,
        validation_alias=AliasChoices("subSubsections", "sub_subsections", "subSections"),
    )

    @field_validator("sub_subsections")
    @classmethod
    def _no_fourth_level(cls, value: List[Any]) -> List[Any]:
        if value:
            raise ValueError("nesting deeper than three levels is not supported")
        return value


class SubsectionPayload(BaseModel):
    id: NodeId = None
    name: OptionalText = Field(None, validation_alias=AliasChoices("name", "title"))
    expanded: Optional[StrictBool] = None
    rows: Annotated[List[RowPayload], BeforeValidator(_list_input)] = Field(
        default_factory=list, validation_alias=AliasChoices("rows", "budgetRows")
    )
    sub_subsections: Annotated[List[SubSubsectionPayload], BeforeValidator(_list_input)] = Field(
        default_factory=list,
        validation_alias=AliasChoices("subSubsections", "sub_subsections", "subSections"),
    )


class SectionPayload(BaseModel):
    id: NodeId = None
    name: OptionalText = Field(None, validation_alias=AliasChoices("name", "title"))
    expanded: Optional[StrictBool] = None
    subsections: Annotated[List[SubsectionPayload], BeforeValidator(_list_input)] = Field(
        default_factory=list, validation_alias=AliasChoices("subsections", "subSections")
    )
    # Server records carry an always-empty budgetRows list on sections
    rows: Annotated[List[Any], BeforeValidator(_list_input)] = Field(
        default_factory=list, validation_alias=AliasChoices("rows", "budgetRows")
    )

    @field_validator("rows")
    @classmethod
    def _rows_need_subsection(cls, value: List[Any]) -> List[Any]:
        if value:
            raise ValueError("rows must belong to a subsection")
        return value


class OptionPayload(BaseModel):
    id: NodeId = None
    description: Text = Field("", validation_alias=AliasChoices("description", "name"))
    quantity: Amount = 0.0
    unit: OptionalText = None
    price_per_unit: Amount = Field(
        0.0, validation_alias=AliasChoices("pricePerUnit", "price_per_unit", "price")
    )


class CalculationPayload(BaseModel):
    """A whole calculation tree with its header fields."""
    name: Text = ""
    project: Text = Field("", validation_alias=AliasChoices("project", "projectName", "project_name"))
    rate: OptionalAmount = Field(None, validation_alias=AliasChoices("rate", "feeRate", "fee_rate"))
    # Server records keep the fee as an amount next to the budget it was taken on
    budget: OptionalAmount = None
    fee: OptionalNumber = Field(None, validation_alias=AliasChoices("fee", "calculatedFeeAmount"))
    area: Amount = Field(0.0, validation_alias=AliasChoices("area", "squareMeter", "square_meter"))
    co2_budget: Amount = Field(0.0, validation_alias=AliasChoices("co2Budget", "co2_budget"))
    created_by: Text = Field("", validation_alias=AliasChoices("createdBy", "created_by"))
    sections: Annotated[List[SectionPayload], BeforeValidator(_list_input)] = Field(default_factory=list)
    options: Annotated[List[OptionPayload], BeforeValidator(_list_input)] = Field(
        default_factory=list,
        validation_alias=AliasChoices("options", "optionBudgetRows", "option_budget_rows"),
    )
