"""
Forms API. Read-only view of the form catalog.

GET /v1/forms            List forms
GET /v1/forms/{form_id}  One form with its ordered fields
"""

from fastapi import APIRouter, HTTPException

from ..core.errors import FormNotFound
from ..forms.catalog import FormDefinition, FormSummary, get_catalog

forms_router = APIRouter(tags=["forms"])


@forms_router.get("/forms", response_model=list[FormSummary])
async def list_forms():
    return get_catalog().list_forms()


@forms_router.get("/forms/{form_id}", response_model=FormDefinition)
async def get_form(form_id: str):
    try:
        return get_catalog().get_form_by_id(form_id)
    except FormNotFound:
        raise HTTPException(status_code=404, detail=f"Form not found: {form_id}")
