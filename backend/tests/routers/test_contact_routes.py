# tests/routers/test_contact_routes.py
"""
HTTP tests for contact and pipeline routes

Coverage:
- Universal create (201) and merge (200)
- List/get/update/delete
- Error mapping (404/409/422)
- Pipeline config endpoint

Run with: pytest tests/routers/test_contact_routes.py -v
"""

from uuid import uuid4

import httpx
import pytest
import pytest_asyncio

from crm.main import app


@pytest_asyncio.fixture
async def client(orchestrator):
    app.state.orchestrator = orchestrator
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def write_payload(tenant_id, **overrides):
    payload = {
        "tenantId": str(tenant_id),
        "contact": {"email": "j@x.com", "firstName": "J"},
        "company": {"companyName": "Acme"},
        "pipeline": {"pipelineType": "prospect", "stage": "interest"},
    }
    payload.update(overrides)
    return payload


class TestCreateOrUpdate:

    @pytest.mark.asyncio
    async def test_create_then_merge(self, client, tenant):
        created = await client.post("/api/v1/contacts", json=write_payload(tenant.id))

        assert created.status_code == 201
        body = created.json()
        assert body["success"] is True
        assert body["created"] is True
        assert body["company_created"] is True
        assert body["contact"]["email"] == "j@x.com"
        assert body["contact"]["pipeline"]["stage"] == "interest"

        merged = await client.post("/api/v1/contacts", json=write_payload(
            tenant.id,
            contact={"email": "J@X.com"},
            company=None,
            pipeline={"pipeline_type": "prospect", "stage": "contract-signed"},
        ))

        assert merged.status_code == 200
        body = merged.json()
        assert body["created"] is False
        assert body["triggered"] is True
        assert body["contact"]["id"] == created.json()["contact"]["id"]
        assert body["contact"]["pipeline"]["pipeline_type"] == "client"
        assert body["contact"]["pipeline"]["stage"] == "kickoff"
        assert body["transition"]["previous"] == {"pipeline_type": "prospect", "stage": "interest"}

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, client):
        response = await client.post("/api/v1/contacts", json=write_payload(uuid4()))

        body = response.json()
        assert response.status_code == 404
        assert body["success"] is False
        assert body["error"] == "tenant_not_found"

    @pytest.mark.asyncio
    async def test_invalid_stage(self, client, tenant):
        response = await client.post("/api/v1/contacts", json=write_payload(
            tenant.id, pipeline={"pipelineType": "client", "stage": "interest"}
        ))

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_stage_for_pipeline"

    @pytest.mark.asyncio
    async def test_other_tenants_company_id_is_404(self, client, tenant, other_tenant):
        theirs = await client.post("/api/v1/contacts", json=write_payload(
            other_tenant.id, contact={"email": "spy@globex.com"}, company={"companyName": "Globex Secret"}
        ))

        response = await client.post("/api/v1/contacts", json=write_payload(
            tenant.id,
            contact={"email": "me@acme.com", "companyId": theirs.json()["contact"]["company_id"]},
            company=None,
        ))

        assert response.status_code == 404
        assert response.json()["error"] == "company_not_found"

    @pytest.mark.asyncio
    async def test_blank_company_name(self, client, tenant):
        response = await client.post("/api/v1/contacts", json=write_payload(
            tenant.id, company={"companyName": "   "}
        ))

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_company_name"


class TestReadUpdateDelete:

    @pytest.mark.asyncio
    async def test_list_and_filter(self, client, tenant):
        await client.post("/api/v1/contacts", json=write_payload(tenant.id))
        await client.post("/api/v1/contacts", json=write_payload(
            tenant.id, contact={"email": "k@x.com"}, pipeline={"pipelineType": "client", "stage": "active"}
        ))

        everyone = await client.get("/api/v1/contacts", params={"tenant_id": str(tenant.id)})
        clients = await client.get(
            "/api/v1/contacts", params={"tenant_id": str(tenant.id), "pipeline": "client"}
        )

        assert everyone.json()["total"] == 2
        assert clients.json()["total"] == 1
        assert clients.json()["contacts"][0]["email"] == "k@x.com"

    @pytest.mark.asyncio
    async def test_get_from_other_tenant_is_404(self, client, tenant, other_tenant):
        created = (await client.post("/api/v1/contacts", json=write_payload(tenant.id))).json()
        contact_id = created["contact"]["id"]

        ours = await client.get(f"/api/v1/contacts/{contact_id}", params={"tenant_id": str(tenant.id)})
        theirs = await client.get(f"/api/v1/contacts/{contact_id}", params={"tenant_id": str(other_tenant.id)})

        assert ours.status_code == 200
        assert ours.json()["contact"]["company"]["name"] == "Acme"
        assert theirs.status_code == 404
        assert theirs.json()["error"] == "contact_not_found"

    @pytest.mark.asyncio
    async def test_update_conflicting_email(self, client, tenant):
        await client.post("/api/v1/contacts", json=write_payload(tenant.id, contact={"email": "taken@x.com"}))
        created = (await client.post("/api/v1/contacts", json=write_payload(tenant.id))).json()

        response = await client.put(
            f"/api/v1/contacts/{created['contact']['id']}",
            params={"tenant_id": str(tenant.id)},
            json={"contact": {"email": "TAKEN@x.com"}},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_contact_email"

    @pytest.mark.asyncio
    async def test_update_stage_and_history(self, client, tenant):
        created = (await client.post("/api/v1/contacts", json=write_payload(tenant.id))).json()
        contact_id = created["contact"]["id"]

        updated = await client.put(
            f"/api/v1/contacts/{contact_id}",
            params={"tenant_id": str(tenant.id)},
            json={"contact": {"title": "CTO"}, "pipeline": {"stage": "contract-signed"}},
        )
        history = await client.get(
            f"/api/v1/contacts/{contact_id}/conversions", params={"tenant_id": str(tenant.id)}
        )

        assert updated.status_code == 200
        assert updated.json()["contact"]["title"] == "CTO"
        assert updated.json()["contact"]["pipeline"]["stage"] == "kickoff"
        assert len(history.json()) == 1
        assert history.json()[0]["to_pipeline_type"] == "client"

    @pytest.mark.asyncio
    async def test_delete(self, client, tenant):
        created = (await client.post("/api/v1/contacts", json=write_payload(tenant.id))).json()
        contact_id = created["contact"]["id"]

        deleted = await client.delete(f"/api/v1/contacts/{contact_id}", params={"tenant_id": str(tenant.id)})
        again = await client.delete(f"/api/v1/contacts/{contact_id}", params={"tenant_id": str(tenant.id)})

        assert deleted.status_code == 200
        assert deleted.json()["success"] is True
        assert again.status_code == 404

    @pytest.mark.asyncio
    async def test_cleanup_duplicates(self, client, tenant):
        await client.post("/api/v1/contacts", json=write_payload(tenant.id))

        response = await client.post("/api/v1/contacts/cleanup-duplicates", params={"tenant_id": str(tenant.id)})

        assert response.status_code == 200
        assert response.json() == {"success": True, "deleted": 0, "kept": 1}


class TestMisc:

    @pytest.mark.asyncio
    async def test_pipeline_config(self, client):
        response = await client.get("/api/v1/pipelines/config")

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["pipelines"]["client"][0] == "kickoff"
        assert body["triggers"][0]["to"] == {"pipeline_type": "client", "stage": "kickoff"}

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.json() == {"status": "healthy"}
