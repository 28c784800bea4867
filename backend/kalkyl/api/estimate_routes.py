"""
Estimate routes: stateless computation on a calculation tree sent by the client.

POST /api/estimates/compute        aggregated tree + CO2 total + financial summary
POST /api/estimates/evaluate       evaluate a free-text numeric expression
POST /api/estimates/export/{fmt}   csv | pdf | xlsx file download

Nothing here touches the database.
"""
import logging
import os
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask

from kalkyl.config import MSG_EXPORT_FAILED
from kalkyl.models.calculation_payload import CalculationPayload
from kalkyl.models.schemas import ComputeResponse, EvaluateRequest, EvaluateResponse
from kalkyl.services.aggregation_engine import aggregate, summarize
from kalkyl.services.expression_evaluator import evaluate, evaluate_integer
from kalkyl.services.payload_codec import (
    PayloadError,
    calculation_from_payload,
    calculation_to_payload,
)
from kalkyl.services.report_engine import ReportEngine, export_filename, format_currency

router = APIRouter(prefix="/api/estimates", tags=["Estimates"])
logger = logging.getLogger("kalkyl-api")

EXPORT_MEDIA_TYPES = {
    "csv": "text/csv",
    "pdf": "application/pdf",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def _decode(payload: CalculationPayload):
    try:
        return calculation_from_payload(payload)
    except PayloadError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/compute", response_model=ComputeResponse)
async def compute(payload: CalculationPayload):
    calc = aggregate(_decode(payload))
    summary = summarize(calc)
    return {
        "calculation": calculation_to_payload(calc),
        "total_co2": summary.total_co2,
        "summary": summary.to_dict(),
        "formatted_bid": format_currency(summary.bid_amount),
    }


@router.post("/evaluate", response_model=EvaluateResponse)
async def evaluate_expression(body: EvaluateRequest):
    value = evaluate_integer(body.expression) if body.integer else evaluate(body.expression)
    return {"value": value, "ok": value is not None}


@router.post("/export/{fmt}")
async def export_calculation(
    fmt: str,
    request: Request,
    payload: CalculationPayload,
    created_by: Optional[str] = None,
    only_expanded: bool = True,
):
    """Render the posted calculation and return the file."""
    fmt = fmt.lower()
    if fmt not in EXPORT_MEDIA_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported export format: {fmt}")

    calc = _decode(payload)
    engine = ReportEngine()
    kwargs = {"created_by": created_by, "only_expanded": only_expanded} if fmt == "pdf" else {}
    path = engine.generate(calc, fmt, **kwargs)
    if not path:
        request.app.state.notifications.error(MSG_EXPORT_FAILED)
        raise HTTPException(status_code=500, detail=MSG_EXPORT_FAILED)

    logger.info(f"Exported '{calc.name}' as {fmt}")
    # The stored file is unique per request; it goes away once the response is sent
    return FileResponse(
        path=path,
        filename=export_filename(calc, fmt, only_expanded=only_expanded),
        media_type=EXPORT_MEDIA_TYPES[fmt],
        background=BackgroundTask(os.remove, path),
    )
