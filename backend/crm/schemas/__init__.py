"""Pydantic schemas for request/response validation."""

from crm.schemas.contact import (
    ContactFields,
    CompanyFields,
    PipelineFields,
    ContactWriteRequest,
    ContactUpdateRequest,
    CompanyResponse,
    PipelineStateResponse,
    ContactResponse,
    TransitionResponse,
    ContactWriteResponse,
    ContactListResponse,
    ContactDetailResponse,
    ConversionResponse,
    CleanupResponse,
)
