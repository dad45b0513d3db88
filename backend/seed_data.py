"""Seed database with a demo tenant and contacts - Async version."""

import asyncio

from sqlalchemy import select

from crm.database import AsyncSessionLocal, engine, init_models
from crm.models import Tenant
from crm.schemas.contact import CompanyFields, ContactFields, PipelineFields
from crm.services.contact_orchestrator import ContactWriteOrchestrator


DEMO_CONTACTS = [
    {
        "contact": {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@analyticalengines.com", "title": "CTO"},
        "company": {"company_name": "Analytical Engines", "industry": "Computing"},
        "pipeline": {"pipeline_type": "prospect", "stage": "interest"},
    },
    {
        "contact": {"first_name": "Grace", "last_name": "Hopper", "email": "grace@cobol.dev", "how_met": "event-conference"},
        "company": {"company_name": "Cobol Labs"},
        "pipeline": {"pipeline_type": "prospect", "stage": "contract-signed"},
    },
    {
        "contact": {"first_name": "Alan", "last_name": "Turing", "email": "alan@bletchley.org", "buyer_decision": "senior-person"},
        "company": {"company_name": "Bletchley Park", "years_in_business": 85},
        "pipeline": {"pipeline_type": "institution", "stage": "awareness"},
    },
]


async def seed_contacts():
    """Seed a demo tenant with a handful of contacts."""
    await init_models(engine)

    async with AsyncSessionLocal() as db:
        result = await db.execute(select(Tenant).where(Tenant.name == "Demo Tenant"))
        tenant = result.scalar_one_or_none()

        if not tenant:
            tenant = Tenant(name="Demo Tenant", status="active")
            db.add(tenant)
            await db.commit()
            print(f"✅ Created tenant: {tenant.name} ({tenant.id})")
        else:
            print(f"✅ Using tenant: {tenant.name} ({tenant.id})")

    orchestrator = ContactWriteOrchestrator.build(AsyncSessionLocal)

    print("🌱 Seeding contacts...")
    for row in DEMO_CONTACTS:
        result = await orchestrator.create_or_update_contact(
            tenant.id,
            ContactFields(**row["contact"]),
            CompanyFields(**row["company"]),
            PipelineFields(**row["pipeline"]),
        )
        state = result.contact.pipeline_state
        action = "Created" if result.created else "Updated"
        print(f"  {action} {result.contact.full_name} -> {state.pipeline_type}/{state.stage}"
              f"{' (converted)' if result.triggered else ''}")

    await engine.dispose()
    print("✅ Seeding complete")


if __name__ == "__main__":
    asyncio.run(seed_contacts())
