"""Request/response models for the Kalkyl API."""
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kalkyl.config import CALCULATION_STATUSES, STATUS_ACTIVE
from kalkyl.models.calculation_payload import CalculationPayload


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ── Persisted calculation records ─────────────────────────────────────────────

class CalculationIn(_CamelModel):
    name: str = Field(min_length=1, max_length=255)
    project: str = Field(default="", max_length=255)
    status: str = STATUS_ACTIVE
    amount: str = Field(default="", max_length=100)
    created: Optional[date] = None
    created_by: str = Field(default="", max_length=255, alias="createdBy")
    revision: Optional[str] = Field(default=None, max_length=50)
    # Serialized calculation tree; when present the server derives `amount`
    content: Optional[CalculationPayload] = None

    @field_validator("status")
    @classmethod
    def _known_status(cls, value: str) -> str:
        if value not in CALCULATION_STATUSES:
            raise ValueError(f"status must be one of {', '.join(CALCULATION_STATUSES)}")
        return value


class CalculationSummaryOut(_CamelModel):
    """List entry: the record without its calculation tree."""
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: int
    name: str
    project: str
    status: str
    amount: str
    created: date
    created_by: str = Field(alias="createdBy")
    revision: Optional[str] = None


class CalculationOut(CalculationSummaryOut):
    content: Optional[Dict[str, Any]] = None


# ── Stateless compute ─────────────────────────────────────────────────────────

class FinancialSummaryOut(_CamelModel):
    budget_excl_rate: float = Field(alias="budgetExclRate")
    fixed_rate: float = Field(alias="fixedRate")
    bid_amount: float = Field(alias="bidAmount")
    total_co2: float = Field(alias="totalCo2")
    co2_budget_total: float = Field(alias="co2BudgetTotal")
    exceeds_budget: bool = Field(alias="exceedsBudget")
    co2_overshoot: float = Field(alias="co2Overshoot")


class ComputeResponse(_CamelModel):
    calculation: Dict[str, Any]
    total_co2: float = Field(alias="totalCo2")
    summary: FinancialSummaryOut
    formatted_bid: str = Field(alias="formattedBid")


class EvaluateRequest(BaseModel):
    expression: str
    integer: bool = False


class EvaluateResponse(BaseModel):
    value: Optional[float] = None
    ok: bool


# ── Templates ─────────────────────────────────────────────────────────────────

class TemplateOut(BaseModel):
    id: str
    title: str
    description: str
    popular: bool
    template: Dict[str, Any]


class InstantiateRequest(BaseModel):
    name: str = ""
    project: str = ""
    rate: Optional[float] = Field(default=None, ge=0)


class CustomTemplateRequest(BaseModel):
    name: str = Field(min_length=1)
    sections: List[str] = Field(min_length=1)
    project: str = ""
    rate: Optional[float] = Field(default=None, ge=0)
