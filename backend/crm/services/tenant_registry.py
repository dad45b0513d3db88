"""Read-only tenant lookups used to scope every write."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm.exceptions import TenantNotFound
from crm.models import Tenant
from crm.services.store_access import StorePolicy, store_call

logger = logging.getLogger(__name__)


async def require_tenant(session: AsyncSession, tenant_id: UUID) -> Tenant:
    """Load a tenant inside an open session or raise TenantNotFound."""
    result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
    tenant = result.scalar_one_or_none()
    if tenant is None:
        logger.warning(f"Tenant lookup failed: {tenant_id}")
        raise TenantNotFound(tenant_id)
    return tenant


class TenantRegistry:
    """Tenants are created out-of-band; the engine only reads them."""

    def __init__(self, session_factory: async_sessionmaker, policy: Optional[StorePolicy] = None):
        self.session_factory = session_factory
        self.policy = policy or StorePolicy()

    @store_call("get_tenant")
    async def get_tenant(self, tenant_id: UUID) -> Tenant:
        async with self.session_factory() as session:
            return await require_tenant(session, tenant_id)
