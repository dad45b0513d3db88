# backend/crm/services/contact_store.py
"""
Contact Store

Single home for contact upsert semantics:
1. Email supplied and known for the tenant -> merge supplied fields into that row
2. Email supplied but unknown, or no email -> create a new row

Contacts without an email are never deduplicated: without an email or a
record id there is no reliable identity key, so each such write is a new
person. The (tenant_id, email) unique constraint is the final guard against
concurrent duplicates.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from crm.exceptions import CompanyNotFound, ContactNotFound, DuplicateContactEmail, DuplicateKeyRace
from crm.models import Company, Contact, PipelineState
from crm.schemas.contact import ContactFields
from crm.services.normalization import normalization_service
from crm.services.store_access import StorePolicy, store_call
from crm.services.tenant_registry import require_tenant

logger = logging.getLogger(__name__)


@dataclass
class ContactUpsert:
    """Tagged upsert outcome."""
    contact: Contact
    created: bool

    @property
    def matched_existing(self) -> bool:
        return not self.created


def contact_query():
    """Contact select with company and pipeline state eagerly loaded."""
    return select(Contact).options(
        selectinload(Contact.company),
        selectinload(Contact.pipeline_state),
    )


class ContactStore:
    """Tenant-scoped contact persistence."""

    def __init__(self, session_factory: async_sessionmaker, policy: Optional[StorePolicy] = None):
        self.session_factory = session_factory
        self.policy = policy or StorePolicy()

    # ========================================================================
    # HELPERS
    # ========================================================================

    @staticmethod
    async def _find_by_email(session: AsyncSession, tenant_id: UUID, email: str) -> Optional[Contact]:
        result = await session.execute(
            contact_query().where(
                Contact.tenant_id == tenant_id,
                Contact.email == email
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _find_by_id(session: AsyncSession, tenant_id: UUID, contact_id: UUID) -> Contact:
        result = await session.execute(
            contact_query().where(
                Contact.id == contact_id,
                Contact.tenant_id == tenant_id
            )
        )
        contact = result.scalar_one_or_none()
        if contact is None:
            raise ContactNotFound(contact_id)
        return contact

    @staticmethod
    async def _require_company(session: AsyncSession, tenant_id: UUID, supplied: Dict[str, Any]) -> None:
        """A supplied company_id must name a company of the same tenant."""
        company_id = supplied.get("company_id")
        if company_id is None:
            return
        result = await session.execute(
            select(Company.id).where(Company.id == company_id, Company.tenant_id == tenant_id)
        )
        if result.scalar_one_or_none() is None:
            raise CompanyNotFound(company_id)

    @staticmethod
    async def _reload(session: AsyncSession, contact_id: UUID) -> Contact:
        result = await session.execute(
            contact_query()
            .where(Contact.id == contact_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    @staticmethod
    def _apply(contact: Contact, supplied: Dict[str, Any]) -> List[str]:
        """Apply supplied fields, returning the names that changed."""
        changed = []
        for field_name, value in supplied.items():
            if field_name not in Contact.MUTABLE_FIELDS:
                continue
            if getattr(contact, field_name) != value:
                setattr(contact, field_name, value)
                changed.append(field_name)
        return changed

    # ========================================================================
    # UPSERT
    # ========================================================================

    @store_call("upsert_contact")
    async def upsert_contact(self, tenant_id: UUID, fields: ContactFields) -> ContactUpsert:
        """
        Create or merge a contact keyed by (tenant, normalized email).

        Only fields the caller supplied overwrite stored values; omitted
        fields keep their previous values.

        Raises:
            TenantNotFound: tenant does not exist
            DuplicateKeyRace: a concurrent request inserted the same email first
        """
        supplied = normalization_service.normalize_contact_fields(fields.supplied())
        email = supplied.get("email")

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await require_tenant(session, tenant_id)
                    await self._require_company(session, tenant_id, supplied)

                    if email:
                        existing = await self._find_by_email(session, tenant_id, email)
                        if existing is not None:
                            changed = self._apply(existing, supplied)
                            await session.flush()
                            contact = await self._reload(session, existing.id)
                            logger.info(
                                f"Contact already exists with {email} - updated {contact.id} "
                                f"({', '.join(changed) if changed else 'no changes'})"
                            )
                            return ContactUpsert(contact=contact, created=False)

                    contact = Contact(tenant_id=tenant_id)
                    self._apply(contact, supplied)
                    session.add(contact)
                    await session.flush()
                    contact = await self._reload(session, contact.id)

                logger.info(f"✅ Contact created: {contact.id}{'' if email else ' (no email)'}")
                return ContactUpsert(contact=contact, created=True)

        except IntegrityError as e:
            logger.warning(f"Contact insert lost a race for {email} (tenant {tenant_id}): {e.orig}")
            raise DuplicateKeyRace("contact", {"tenant_id": str(tenant_id), "email": email}) from e

    # ========================================================================
    # READ / UPDATE / DELETE
    # ========================================================================

    @store_call("get_contact")
    async def get_contact(self, tenant_id: UUID, contact_id: UUID) -> Contact:
        async with self.session_factory() as session:
            await require_tenant(session, tenant_id)
            return await self._find_by_id(session, tenant_id, contact_id)

    @store_call("find_contact_by_email")
    async def find_by_email(self, tenant_id: UUID, email: str) -> Optional[Contact]:
        normalized = normalization_service.normalize_email(email)
        if not normalized:
            return None
        async with self.session_factory() as session:
            await require_tenant(session, tenant_id)
            return await self._find_by_email(session, tenant_id, normalized)

    @store_call("list_contacts")
    async def list_contacts(
        self,
        tenant_id: UUID,
        pipeline_type: Optional[str] = None,
        stage: Optional[str] = None
    ) -> List[Contact]:
        """Contacts for a tenant, newest first, optionally filtered by pipeline/stage."""
        async with self.session_factory() as session:
            await require_tenant(session, tenant_id)

            query = contact_query().where(Contact.tenant_id == tenant_id)
            if pipeline_type or stage:
                query = query.join(PipelineState, PipelineState.contact_id == Contact.id)
                if pipeline_type:
                    query = query.where(PipelineState.pipeline_type == pipeline_type)
                if stage:
                    query = query.where(PipelineState.stage == stage)

            result = await session.execute(query.order_by(Contact.created_at.desc()))
            return list(result.scalars().all())

    @store_call("update_contact")
    async def update_contact(self, tenant_id: UUID, contact_id: UUID, fields: ContactFields) -> Contact:
        """
        Merge supplied fields into a contact addressed by id.

        Raises:
            ContactNotFound: no such contact for this tenant
            DuplicateContactEmail: the new email belongs to another contact
        """
        supplied = normalization_service.normalize_contact_fields(fields.supplied())

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await require_tenant(session, tenant_id)
                    contact = await self._find_by_id(session, tenant_id, contact_id)
                    await self._require_company(session, tenant_id, supplied)

                    email = supplied.get("email")
                    if email and email != contact.email:
                        other = await self._find_by_email(session, tenant_id, email)
                        if other is not None:
                            raise DuplicateContactEmail(email, other.id)

                    changed = self._apply(contact, supplied)
                    await session.flush()
                    contact = await self._reload(session, contact.id)

            logger.info(f"✅ Contact updated: {contact_id} ({', '.join(changed) if changed else 'no changes'})")
            return contact

        except IntegrityError as e:
            raise DuplicateKeyRace("contact", {"tenant_id": str(tenant_id), "email": supplied.get("email")}) from e

    @store_call("delete_contact")
    async def delete_contact(self, tenant_id: UUID, contact_id: UUID) -> None:
        """Delete a contact; its pipeline state and conversion history go with it."""
        async with self.session_factory() as session:
            async with session.begin():
                await require_tenant(session, tenant_id)
                result = await session.execute(
                    select(Contact)
                    .options(selectinload(Contact.pipeline_state), selectinload(Contact.conversions))
                    .where(Contact.id == contact_id, Contact.tenant_id == tenant_id)
                )
                contact = result.scalar_one_or_none()
                if contact is None:
                    raise ContactNotFound(contact_id)
                await session.delete(contact)

        logger.info(f"✅ Contact deleted: {contact_id}")

    # ========================================================================
    # MAINTENANCE
    # ========================================================================

    @store_call("cleanup_duplicates")
    async def cleanup_duplicates(self, tenant_id: UUID) -> Dict[str, int]:
        """
        Collapse legacy rows that share a normalized email.

        Keeps the oldest contact of each group, deletes the rest, and rewrites
        the survivor's email into normalized form.
        """
        async with self.session_factory() as session:
            async with session.begin():
                await require_tenant(session, tenant_id)
                result = await session.execute(
                    select(Contact)
                    .options(selectinload(Contact.pipeline_state), selectinload(Contact.conversions))
                    .where(Contact.tenant_id == tenant_id, Contact.email.isnot(None))
                    .order_by(Contact.created_at.asc())
                )

                groups = defaultdict(list)
                for contact in result.scalars().all():
                    key = normalization_service.normalize_email(contact.email)
                    if key:
                        groups[key].append(contact)

                deleted = 0
                for email, group in groups.items():
                    keep, duplicates = group[0], group[1:]
                    for duplicate in duplicates:
                        await session.delete(duplicate)
                        deleted += 1
                    if duplicates:
                        logger.info(f"📧 Email {email}: keeping {keep.id}, deleting {len(duplicates)} duplicates")
                        # Flush deletes before the survivor takes the normalized email
                        await session.flush()
                    if keep.email != email:
                        keep.email = email

        logger.info(f"✅ Cleanup complete: deleted {deleted} duplicates, kept {len(groups)} unique contacts")
        return {"deleted": deleted, "kept": len(groups)}
