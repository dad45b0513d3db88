# tests/services/test_company_resolver.py
"""
Tests for CompanyResolver

Coverage:
- Find-or-create under case/whitespace normalization
- Empty-field backfill without overwriting
- Tenant scoping
- Unique-key race translated to DuplicateKeyRace

Run with: pytest tests/services/test_company_resolver.py -v
"""

from unittest.mock import patch
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from crm.exceptions import DuplicateKeyRace, InvalidCompanyName, TenantNotFound
from crm.models import Company
from crm.services.company_resolver import CompanyResolver


@pytest.fixture
def resolver(session_factory, policy):
    return CompanyResolver(session_factory, policy)


async def count_companies(session_factory, tenant_id):
    async with session_factory() as session:
        result = await session.execute(
            select(func.count(Company.id)).where(Company.tenant_id == tenant_id)
        )
        return result.scalar_one()


class TestResolveCompany:

    @pytest.mark.asyncio
    async def test_creates_unseen_company(self, resolver, tenant):
        resolution = await resolver.resolve_company(tenant.id, "  Acme   Corp ")

        assert resolution.created is True
        assert resolution.company.name == "Acme Corp"
        assert resolution.company.name_key == "acme corp"
        assert resolution.company.tenant_id == tenant.id

    @pytest.mark.asyncio
    async def test_same_name_modulo_case_and_whitespace_is_one_company(self, resolver, tenant, session_factory):
        first = await resolver.resolve_company(tenant.id, "Acme")
        second = await resolver.resolve_company(tenant.id, "  ACME ")

        assert second.created is False
        assert second.company_id == first.company_id
        assert await count_companies(session_factory, tenant.id) == 1

    @pytest.mark.asyncio
    async def test_fallback_fields_used_on_create(self, resolver, tenant):
        resolution = await resolver.resolve_company(
            tenant.id, "Acme", {"industry": "Software", "website": "acme.com"}
        )

        assert resolution.company.industry == "Software"
        assert resolution.company.website == "https://acme.com"

    @pytest.mark.asyncio
    async def test_backfill_only_fills_empty_fields(self, resolver, tenant):
        await resolver.resolve_company(tenant.id, "Acme", {"industry": "Software"})

        resolution = await resolver.resolve_company(
            tenant.id, "acme", {"industry": "Retail", "website": "https://www.acme.com"}
        )

        assert resolution.created is False
        assert resolution.backfilled == ("website",)
        assert resolution.company.industry == "Software"
        assert resolution.company.website == "https://www.acme.com"

    @pytest.mark.asyncio
    async def test_companies_are_tenant_scoped(self, resolver, tenant, other_tenant):
        ours = await resolver.resolve_company(tenant.id, "Acme")
        theirs = await resolver.resolve_company(other_tenant.id, "Acme")

        assert theirs.created is True
        assert theirs.company_id != ours.company_id

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self, resolver, tenant):
        with pytest.raises(InvalidCompanyName):
            await resolver.resolve_company(tenant.id, "   ")

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, resolver):
        with pytest.raises(TenantNotFound):
            await resolver.resolve_company(uuid4(), "Acme")

    @pytest.mark.asyncio
    async def test_integrity_error_becomes_duplicate_key_race(self, resolver, tenant):
        error = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

        with patch.object(CompanyResolver, "_find_by_key", side_effect=error):
            with pytest.raises(DuplicateKeyRace) as exc_info:
                await resolver.resolve_company(tenant.id, "Acme")

        assert exc_info.value.entity == "company"
        assert exc_info.value.key["name_key"] == "acme"


class TestFindCompany:

    @pytest.mark.asyncio
    async def test_find_does_not_create(self, resolver, tenant, session_factory):
        assert await resolver.find_company(tenant.id, "Acme") is None
        assert await count_companies(session_factory, tenant.id) == 0

    @pytest.mark.asyncio
    async def test_find_matches_normalized_name(self, resolver, tenant):
        created = await resolver.resolve_company(tenant.id, "Acme Corp")

        found = await resolver.find_company(tenant.id, "acme  CORP")

        assert found.id == created.company_id
