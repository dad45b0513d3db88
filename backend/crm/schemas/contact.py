"""
Pydantic schemas for contact writes and reads.

Write schemas are partial updates: a field is applied only when the caller
supplied it (`model_fields_set`), so "not supplied", "supplied as null" and
"supplied as a value" stay distinguishable.
"""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID


class PartialModel(BaseModel):
    """Base for partial-update payloads; accepts snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def supplied(self) -> Dict[str, Any]:
        """Only the fields the caller actually sent, explicit nulls included."""
        return self.model_dump(exclude_unset=True)


# ============================================================================
# WRITE SCHEMAS
# ============================================================================

class ContactFields(PartialModel):
    """Person attributes; every field is optional and independently supplied."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    goes_by: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    title: Optional[str] = None
    company_id: Optional[UUID] = Field(
        None, validation_alias=AliasChoices("company_id", "companyId", "contactCompanyId")
    )
    buyer_decision: Optional[str] = None
    how_met: Optional[str] = None
    notes: Optional[str] = None


class CompanyFields(PartialModel):
    """Organization a contact works for; name is matched case-insensitively."""
    company_name: str = Field(..., validation_alias=AliasChoices("company_name", "companyName", "name"))
    address: Optional[str] = None
    industry: Optional[str] = None
    revenue: Optional[str] = None
    years_in_business: Optional[str] = None
    website: Optional[str] = Field(None, validation_alias=AliasChoices("website", "url", "companyURL"))

    @field_validator("revenue", "years_in_business", mode="before")
    @classmethod
    def coerce_numbers(cls, v):
        if isinstance(v, (int, float)):
            return str(v)
        return v

    def enrichment(self) -> Dict[str, Any]:
        data = self.model_dump(exclude={"company_name"})
        return {k: v for k, v in data.items() if v is not None}


class PipelineFields(PartialModel):
    """Proposed pipeline position; either half may be omitted."""
    pipeline_type: Optional[str] = Field(
        None, validation_alias=AliasChoices("pipeline_type", "pipelineType", "pipeline")
    )
    stage: Optional[str] = None

    def is_empty(self) -> bool:
        return self.pipeline_type is None and self.stage is None


class ContactWriteRequest(BaseModel):
    """Create-or-update payload (contact + optional company + optional pipeline)."""
    tenant_id: UUID = Field(..., validation_alias=AliasChoices("tenant_id", "tenantId", "crmId"))
    contact: ContactFields = Field(default_factory=ContactFields)
    company: Optional[CompanyFields] = None
    pipeline: Optional[PipelineFields] = None


class ContactUpdateRequest(BaseModel):
    """Update-by-id payload."""
    contact: ContactFields = Field(default_factory=ContactFields)
    pipeline: Optional[PipelineFields] = None


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class CompanyResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    name: str
    address: Optional[str] = None
    industry: Optional[str] = None
    revenue: Optional[str] = None
    years_in_business: Optional[str] = None
    website: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PipelineStateResponse(BaseModel):
    pipeline_type: str
    stage: str
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ContactResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    goes_by: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    title: Optional[str] = None
    buyer_decision: Optional[str] = None
    how_met: Optional[str] = None
    notes: Optional[str] = None
    company_id: Optional[UUID] = None
    company: Optional[CompanyResponse] = None
    pipeline: Optional[PipelineStateResponse] = Field(
        None, validation_alias=AliasChoices("pipeline_state", "pipeline")
    )
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TransitionResponse(BaseModel):
    applied: bool
    triggered: bool
    final_pipeline_type: str
    final_stage: str
    previous: Optional[Dict[str, str]] = None


class ContactWriteResponse(BaseModel):
    success: bool = True
    created: bool
    company_created: bool = False
    triggered: bool = False
    contact: ContactResponse
    transition: Optional[TransitionResponse] = None


class ContactListResponse(BaseModel):
    success: bool = True
    total: int
    contacts: List[ContactResponse]


class ContactDetailResponse(BaseModel):
    success: bool = True
    contact: ContactResponse


class ConversionResponse(BaseModel):
    id: UUID
    contact_id: UUID
    from_pipeline_type: Optional[str] = None
    from_stage: Optional[str] = None
    trigger_pipeline_type: str
    trigger_stage: str
    to_pipeline_type: str
    to_stage: str
    occurred_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CleanupResponse(BaseModel):
    success: bool = True
    deleted: int
    kept: int
