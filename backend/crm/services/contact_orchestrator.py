# backend/crm/services/contact_orchestrator.py
"""
Contact Write Orchestrator - the entry point used by the API layer.

Stages of a create-or-update call:
1. Validate tenant; reject pipeline proposals that are invalid on their face
2. Resolve company (optional)
3. Upsert contact
4. Evaluate pipeline transition (optional)

Each stage commits on its own and a failure stops the call. A crash between
stages leaves a contact without pipeline state, which is a valid state
("no funnel assignment yet"); pipeline state never exists without its contact.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import async_sessionmaker

from crm.config import settings
from crm.exceptions import DuplicateKeyRace
from crm.models import Contact, PipelineConversion
from crm.pipeline_config import PipelineConfig, get_pipeline_config
from crm.schemas.contact import CompanyFields, ContactFields, PipelineFields
from crm.services.company_resolver import CompanyResolver
from crm.services.contact_store import ContactStore
from crm.services.conversion_audit import ConversionAuditLogger, ConversionListener
from crm.services.normalization import normalization_service
from crm.services.pipeline_state import PipelineStateStore
from crm.services.store_access import StorePolicy
from crm.services.tenant_registry import TenantRegistry
from crm.services.trigger_engine import ConversionTriggerEngine, TransitionResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ContactWriteResult:
    contact: Contact
    created: bool
    company_created: bool = False
    transition: Optional[TransitionResult] = None

    @property
    def triggered(self) -> bool:
        return bool(self.transition and self.transition.triggered)


class ContactWriteOrchestrator:
    """Sequences company resolution, contact upsert and pipeline transitions."""

    def __init__(
        self,
        tenants: TenantRegistry,
        companies: CompanyResolver,
        contacts: ContactStore,
        triggers: ConversionTriggerEngine
    ):
        self.tenants = tenants
        self.companies = companies
        self.contacts = contacts
        self.triggers = triggers

    @classmethod
    def build(
        cls,
        session_factory: async_sessionmaker,
        config: Optional[PipelineConfig] = None,
        policy: Optional[StorePolicy] = None,
        listeners: Optional[List[ConversionListener]] = None,
        enforce_stage_membership: Optional[bool] = None
    ) -> "ContactWriteOrchestrator":
        """Wire every collaborator around one session factory."""
        config = config or get_pipeline_config()
        policy = policy or StorePolicy.from_settings(settings)

        pipeline_store = PipelineStateStore(
            session_factory, config, policy, enforce_stage_membership=enforce_stage_membership
        )
        audit = ConversionAuditLogger(session_factory, policy, listeners)

        return cls(
            tenants=TenantRegistry(session_factory, policy),
            companies=CompanyResolver(session_factory, policy),
            contacts=ContactStore(session_factory, policy),
            triggers=ConversionTriggerEngine(config, pipeline_store, audit),
        )

    @property
    def audit(self) -> ConversionAuditLogger:
        return self.triggers.audit

    @staticmethod
    async def _retry_race(stage: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run a find-or-create stage; the loser of a key race retries the lookup once."""
        try:
            return await call()
        except DuplicateKeyRace as e:
            logger.warning(f"{stage}: {e.message}; retrying lookup-then-merge")
            return await call()

    # ========================================================================
    # WRITES
    # ========================================================================

    async def create_or_update_contact(
        self,
        tenant_id: UUID,
        person: ContactFields,
        company: Optional[CompanyFields] = None,
        pipeline: Optional[PipelineFields] = None
    ) -> ContactWriteResult:
        """
        Create a contact, or update the tenant's contact with the same email.

        Repeating the call with identical input leaves the same final state.
        """
        # Stage 1: tenant, and pipeline proposals that can be rejected up front
        await self.tenants.get_tenant(tenant_id)
        if pipeline is not None:
            self.triggers.check_proposal(pipeline.pipeline_type, pipeline.stage)

        # Stage 2: company
        supplied = person.supplied()
        company_created = False
        if company is not None:
            fallback = company.enrichment()
            if not fallback.get("website"):
                inferred = normalization_service.infer_website_from_email(person.email)
                if inferred:
                    fallback["website"] = inferred
                    logger.debug(f"Inferred website from email: {inferred}")

            resolution = await self._retry_race(
                "resolve_company",
                lambda: self.companies.resolve_company(tenant_id, company.company_name, fallback)
            )
            company_created = resolution.created
            supplied["company_id"] = resolution.company_id

        # Stage 3: contact
        fields = ContactFields(**supplied)
        upsert = await self._retry_race(
            "upsert_contact",
            lambda: self.contacts.upsert_contact(tenant_id, fields)
        )
        contact = upsert.contact

        # Stage 4: pipeline
        transition = None
        if pipeline is not None and not pipeline.is_empty():
            transition = await self.triggers.apply_partial(contact.id, pipeline.pipeline_type, pipeline.stage)
            contact = await self.contacts.get_contact(tenant_id, contact.id)

        return ContactWriteResult(
            contact=contact,
            created=upsert.created,
            company_created=company_created,
            transition=transition,
        )

    async def update_contact(
        self,
        tenant_id: UUID,
        contact_id: UUID,
        person: Optional[ContactFields] = None,
        pipeline: Optional[PipelineFields] = None
    ) -> ContactWriteResult:
        """Update a contact by id; a partial pipeline proposal is merged with current state."""
        if pipeline is not None:
            self.triggers.check_proposal(pipeline.pipeline_type, pipeline.stage)

        if person is not None and person.supplied():
            contact = await self.contacts.update_contact(tenant_id, contact_id, person)
        else:
            contact = await self.contacts.get_contact(tenant_id, contact_id)

        transition = None
        if pipeline is not None and not pipeline.is_empty():
            transition = await self.triggers.apply_partial(contact.id, pipeline.pipeline_type, pipeline.stage)
            contact = await self.contacts.get_contact(tenant_id, contact.id)

        return ContactWriteResult(contact=contact, created=False, transition=transition)

    async def delete_contact(self, tenant_id: UUID, contact_id: UUID) -> None:
        await self.contacts.delete_contact(tenant_id, contact_id)

    async def cleanup_duplicates(self, tenant_id: UUID) -> Dict[str, int]:
        return await self.contacts.cleanup_duplicates(tenant_id)

    # ========================================================================
    # READS
    # ========================================================================

    async def get_contact(self, tenant_id: UUID, contact_id: UUID) -> Contact:
        return await self.contacts.get_contact(tenant_id, contact_id)

    async def list_contacts(
        self,
        tenant_id: UUID,
        pipeline_type: Optional[str] = None,
        stage: Optional[str] = None
    ) -> List[Contact]:
        return await self.contacts.list_contacts(tenant_id, pipeline_type=pipeline_type, stage=stage)

    async def conversion_history(self, tenant_id: UUID, contact_id: UUID) -> List[PipelineConversion]:
        await self.contacts.get_contact(tenant_id, contact_id)
        return await self.audit.history(tenant_id, contact_id)
