"""
Calculation routes: persisted calculation records.

GET    /api/calculations        list, newest first
GET    /api/calculations/{id}   one record
POST   /api/calculations        create (201)
PUT    /api/calculations/{id}   replace
DELETE /api/calculations/{id}   delete (204)

When a record carries `content` (a serialized calculation tree) the tree is
decoded, checked against the save preconditions and the display `amount` is
formatted from the computed bid amount. A client-supplied amount is ignored
in that case.
"""
import logging
from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kalkyl.config import MSG_DELETED, MSG_NOT_FOUND, MSG_SAVED
from kalkyl.db import get_db
from kalkyl.models.orm_models import CalculationRecord
from kalkyl.models.schemas import CalculationIn, CalculationOut, CalculationSummaryOut
from kalkyl.services.aggregation_engine import SaveValidationError, validate_for_save
from kalkyl.services.notifications import NotificationService
from kalkyl.services.payload_codec import (
    PayloadError,
    calculation_from_payload,
    calculation_to_payload,
)
from kalkyl.services.report_engine import format_currency

router = APIRouter(prefix="/api/calculations", tags=["Calculations"])
logger = logging.getLogger("kalkyl-api")


def get_notifications(request: Request) -> NotificationService:
    return request.app.state.notifications


# ─── Helpers ────────────────────────────────────────────────────────────────

def _prepare(body: CalculationIn, notifications: NotificationService) -> dict:
    """Column values for a record; validates and re-derives content-backed amounts."""
    values = {
        "name": body.name,
        "project": body.project,
        "status": body.status,
        "amount": body.amount,
        "created": body.created or date.today(),
        "created_by": body.created_by,
        "revision": body.revision or None,
        "content": None,
    }
    if body.content is None:
        return values

    # Shape is validated with the request body; only duplicate ids are left to reject here
    try:
        calc = calculation_from_payload(body.content)
    except PayloadError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        summary = validate_for_save(calc)
    except SaveValidationError as e:
        notifications.error(e.message)
        raise HTTPException(status_code=400, detail=e.message)

    values["amount"] = format_currency(summary.bid_amount)
    values["content"] = calculation_to_payload(calc)
    return values


async def _get_record(db: AsyncSession, calculation_id: int) -> CalculationRecord:
    result = await db.execute(select(CalculationRecord).where(CalculationRecord.id == calculation_id))
    record = result.scalar_one_or_none()
    if not record:
        raise HTTPException(status_code=404, detail=MSG_NOT_FOUND)
    return record


# ─── Routes ─────────────────────────────────────────────────────────────────

@router.get("", response_model=List[CalculationSummaryOut])
async def list_calculations(db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(CalculationRecord).order_by(CalculationRecord.created.desc(), CalculationRecord.id.desc())
    )
    return result.scalars().all()


@router.get("/{calculation_id}", response_model=CalculationOut)
async def get_calculation(calculation_id: int, db: AsyncSession = Depends(get_db)):
    return await _get_record(db, calculation_id)


@router.post("", response_model=CalculationOut, status_code=201)
async def create_calculation(
    body: CalculationIn,
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notifications),
):
    record = CalculationRecord(**_prepare(body, notifications))
    db.add(record)
    await db.commit()
    await db.refresh(record)
    logger.info(f"Calculation created: {record.name}", extra={"calculation_id": record.id})
    notifications.success(MSG_SAVED)
    return record


@router.put("/{calculation_id}", response_model=CalculationOut)
async def update_calculation(
    calculation_id: int,
    body: CalculationIn,
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notifications),
):
    record = await _get_record(db, calculation_id)
    for column, value in _prepare(body, notifications).items():
        setattr(record, column, value)
    await db.commit()
    await db.refresh(record)
    logger.info(f"Calculation updated: {record.name}", extra={"calculation_id": record.id})
    notifications.success(MSG_SAVED)
    return record


@router.delete("/{calculation_id}", status_code=204)
async def delete_calculation(
    calculation_id: int,
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notifications),
):
    record = await _get_record(db, calculation_id)
    await db.delete(record)
    await db.commit()
    logger.info("Calculation deleted", extra={"calculation_id": calculation_id})
    notifications.success(MSG_DELETED)
    return Response(status_code=204)
