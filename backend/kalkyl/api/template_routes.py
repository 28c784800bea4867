"""
Template and reference-data routes.

GET  /api/templates                         built-in template catalog
GET  /api/templates/{id}                    one template
POST /api/templates/{id}/instantiate        new aggregated calculation from a template
POST /api/templates/custom                  new calculation from ad-hoc section names

GET  /api/reference/unit-types              proxied reference lookups
GET  /api/reference/bookkeeping-accounts
GET  /api/reference/co2-items[?q=]
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from kalkyl.models.schemas import CustomTemplateRequest, InstantiateRequest, TemplateOut
from kalkyl.services.calculation_model import calculation_from_template
from kalkyl.services.payload_codec import calculation_to_payload
from kalkyl.services.reference_data import ReferenceDataClient, ReferenceDataResult
from kalkyl.services.template_catalog import (
    all_templates,
    create_custom_template,
    get_template_metadata,
    instantiate,
)

router = APIRouter(prefix="/api/templates", tags=["Templates"])
reference_router = APIRouter(prefix="/api/reference", tags=["Reference Data"])
logger = logging.getLogger("kalkyl-api")


def get_reference_client() -> ReferenceDataClient:
    return ReferenceDataClient()


# ─── Templates ──────────────────────────────────────────────────────────────

@router.get("", response_model=List[TemplateOut])
async def list_templates():
    return all_templates()


@router.post("/custom")
async def instantiate_custom_template(body: CustomTemplateRequest):
    template = create_custom_template(body.name, body.sections)
    calc = calculation_from_template(template, name=body.name, project=body.project, rate=body.rate)
    return calculation_to_payload(calc)


@router.get("/{template_id}", response_model=TemplateOut)
async def get_template(template_id: str):
    entry = get_template_metadata(template_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Template {template_id} not found")
    return entry


@router.post("/{template_id}/instantiate")
async def instantiate_template(template_id: str, body: Optional[InstantiateRequest] = None):
    body = body or InstantiateRequest()
    calc = instantiate(template_id, name=body.name, project=body.project, rate=body.rate)
    if calc is None:
        raise HTTPException(status_code=404, detail=f"Template {template_id} not found")
    logger.info(f"Calculation instantiated from template '{template_id}'")
    return calculation_to_payload(calc)


# ─── Reference data ─────────────────────────────────────────────────────────

def _unwrap(result: ReferenceDataResult) -> list:
    if not result.ok:
        raise HTTPException(status_code=502, detail=result.error)
    return result.to_dict()["items"]


@reference_router.get("/unit-types")
async def unit_types(client: ReferenceDataClient = Depends(get_reference_client)):
    return _unwrap(await client.fetch(client.unit_types))


@reference_router.get("/bookkeeping-accounts")
async def bookkeeping_accounts(client: ReferenceDataClient = Depends(get_reference_client)):
    return _unwrap(await client.fetch(client.bookkeeping_accounts))


@reference_router.get("/co2-items")
async def co2_items(q: Optional[str] = None, client: ReferenceDataClient = Depends(get_reference_client)):
    if q is None:
        return _unwrap(await client.fetch(client.co2_items))
    return _unwrap(await client.fetch(lambda: client.search_co2_items(q)))
