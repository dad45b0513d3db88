# backend/crm/services/company_resolver.py
"""
Company Resolver

Finds or creates the company a contact works for. Organization names arrive
as free text from several entry points, so lookups go through a normalized
key (trimmed, whitespace-collapsed, case-folded) backed by the
(tenant_id, name_key) unique constraint.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm.exceptions import DuplicateKeyRace, InvalidCompanyName
from crm.models import Company
from crm.services.normalization import normalization_service
from crm.services.store_access import StorePolicy, store_call
from crm.services.tenant_registry import require_tenant

logger = logging.getLogger(__name__)


@dataclass
class CompanyResolution:
    company: Company
    created: bool
    backfilled: tuple = ()

    @property
    def company_id(self) -> UUID:
        return self.company.id


class CompanyResolver:
    """Find-or-create companies by normalized name within a tenant."""

    def __init__(self, session_factory: async_sessionmaker, policy: Optional[StorePolicy] = None):
        self.session_factory = session_factory
        self.policy = policy or StorePolicy()

    @staticmethod
    async def _find_by_key(session: AsyncSession, tenant_id: UUID, name_key: str) -> Optional[Company]:
        result = await session.execute(
            select(Company).where(
                Company.tenant_id == tenant_id,
                Company.name_key == name_key
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _backfill(company: Company, fallback_fields: Dict[str, Any]) -> tuple:
        """Fill empty optional fields; existing values are never overwritten."""
        filled = []
        for field_name in Company.ENRICHMENT_FIELDS:
            value = fallback_fields.get(field_name)
            if value is None:
                continue
            if getattr(company, field_name) in (None, ""):
                setattr(company, field_name, value)
                filled.append(field_name)
        return tuple(filled)

    @store_call("find_company")
    async def find_company(self, tenant_id: UUID, name: str) -> Optional[Company]:
        """Look up a company by name under normalization, without creating it."""
        name_key = normalization_service.company_name_key(name)
        if not name_key:
            return None
        async with self.session_factory() as session:
            await require_tenant(session, tenant_id)
            return await self._find_by_key(session, tenant_id, name_key)

    @store_call("resolve_company")
    async def resolve_company(
        self,
        tenant_id: UUID,
        name: str,
        fallback_fields: Optional[Dict[str, Any]] = None
    ) -> CompanyResolution:
        """
        Return the tenant's company matching `name`, creating it if unseen.

        Args:
            tenant_id: Owning tenant (must exist)
            name: Free-text organization name
            fallback_fields: Optional address/industry/revenue/years_in_business/website
                used to create the company or backfill its empty fields

        Raises:
            InvalidCompanyName: name is empty after trimming
            TenantNotFound: tenant does not exist
            DuplicateKeyRace: a concurrent request created the same company first
        """
        display_name = normalization_service.normalize_company_name(name)
        if not display_name:
            raise InvalidCompanyName(name)
        name_key = normalization_service.company_name_key(display_name)
        fallback = normalization_service.normalize_company_fields(fallback_fields or {})

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await require_tenant(session, tenant_id)

                    company = await self._find_by_key(session, tenant_id, name_key)
                    if company is not None:
                        filled = self._backfill(company, fallback)
                        if filled:
                            logger.info(f"Backfilled company {company.id} fields: {', '.join(filled)}")
                        else:
                            logger.debug(f"Found existing company: {company.name} (id: {company.id})")
                        return CompanyResolution(company=company, created=False, backfilled=filled)

                    company = Company(
                        tenant_id=tenant_id,
                        name=display_name,
                        name_key=name_key,
                        **{k: v for k, v in fallback.items() if k in Company.ENRICHMENT_FIELDS}
                    )
                    session.add(company)
                    await session.flush()

                logger.info(f"✅ Created new company: {display_name} for tenant {tenant_id}")
                return CompanyResolution(company=company, created=True)

        except IntegrityError as e:
            logger.warning(f"Company insert lost a race for '{name_key}' (tenant {tenant_id}): {e.orig}")
            raise DuplicateKeyRace("company", {"tenant_id": str(tenant_id), "name_key": name_key}) from e
