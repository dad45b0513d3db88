# backend/crm/routers/contact_routes.py
"""
Contact Routes

Thin HTTP layer over the ContactWriteOrchestrator. The tenant id travels
explicitly (body for the universal create, query string elsewhere); engine
errors are rendered by the CRMError handler registered in crm.main.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from crm.dependencies import get_orchestrator
from crm.schemas.contact import (
    CleanupResponse,
    ContactDetailResponse,
    ContactListResponse,
    ContactResponse,
    ContactUpdateRequest,
    ContactWriteRequest,
    ContactWriteResponse,
    ConversionResponse,
    TransitionResponse,
)
from crm.services.contact_orchestrator import ContactWriteOrchestrator, ContactWriteResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/contacts", tags=["Contacts"])


def _write_response(result: ContactWriteResult) -> ContactWriteResponse:
    return ContactWriteResponse(
        created=result.created,
        company_created=result.company_created,
        triggered=result.triggered,
        contact=ContactResponse.model_validate(result.contact),
        transition=TransitionResponse(**result.transition.to_dict()) if result.transition else None,
    )


# ============================================================================
# LIST / GET
# ============================================================================

@router.get("", response_model=ContactListResponse)
async def list_contacts(
    tenant_id: UUID = Query(...),
    pipeline: Optional[str] = Query(None, description="Filter by pipeline type"),
    stage: Optional[str] = Query(None, description="Filter by stage"),
    orchestrator: ContactWriteOrchestrator = Depends(get_orchestrator)
):
    contacts = await orchestrator.list_contacts(tenant_id, pipeline_type=pipeline, stage=stage)
    return ContactListResponse(
        total=len(contacts),
        contacts=[ContactResponse.model_validate(c) for c in contacts],
    )


@router.get("/{contact_id}", response_model=ContactDetailResponse)
async def get_contact(
    contact_id: UUID,
    tenant_id: UUID = Query(...),
    orchestrator: ContactWriteOrchestrator = Depends(get_orchestrator)
):
    contact = await orchestrator.get_contact(tenant_id, contact_id)
    return ContactDetailResponse(contact=ContactResponse.model_validate(contact))


@router.get("/{contact_id}/conversions", response_model=list[ConversionResponse])
async def get_conversion_history(
    contact_id: UUID,
    tenant_id: UUID = Query(...),
    orchestrator: ContactWriteOrchestrator = Depends(get_orchestrator)
):
    conversions = await orchestrator.conversion_history(tenant_id, contact_id)
    return [ConversionResponse.model_validate(c) for c in conversions]


# ============================================================================
# WRITES
# ============================================================================

@router.post("", response_model=ContactWriteResponse)
async def create_or_update_contact(
    request: ContactWriteRequest,
    response: Response,
    orchestrator: ContactWriteOrchestrator = Depends(get_orchestrator)
):
    """
    Universal create.

    Creates the contact (201) or merges into the tenant's contact with the
    same email (200). Company and pipeline blocks are optional.
    """
    result = await orchestrator.create_or_update_contact(
        request.tenant_id,
        request.contact,
        company=request.company,
        pipeline=request.pipeline,
    )
    response.status_code = status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
    return _write_response(result)


@router.put("/{contact_id}", response_model=ContactWriteResponse)
async def update_contact(
    contact_id: UUID,
    request: ContactUpdateRequest,
    tenant_id: UUID = Query(...),
    orchestrator: ContactWriteOrchestrator = Depends(get_orchestrator)
):
    result = await orchestrator.update_contact(
        tenant_id,
        contact_id,
        person=request.contact,
        pipeline=request.pipeline,
    )
    return _write_response(result)


@router.delete("/{contact_id}")
async def delete_contact(
    contact_id: UUID,
    tenant_id: UUID = Query(...),
    orchestrator: ContactWriteOrchestrator = Depends(get_orchestrator)
):
    await orchestrator.delete_contact(tenant_id, contact_id)
    return {"success": True, "message": "Contact deleted successfully"}


@router.post("/cleanup-duplicates", response_model=CleanupResponse)
async def cleanup_duplicates(
    tenant_id: UUID = Query(...),
    orchestrator: ContactWriteOrchestrator = Depends(get_orchestrator)
):
    """Remove legacy duplicate contacts (same normalized email), keeping the oldest."""
    summary = await orchestrator.cleanup_duplicates(tenant_id)
    return CleanupResponse(**summary)
