# backend/crm/models.py
"""
SQLAlchemy ORM models.

Uniqueness invariants live in the schema, not in application code:
1. One company per (tenant, normalized name)
2. One contact per (tenant, normalized email) - NULL emails never collide
3. One pipeline state per contact
"""

from sqlalchemy import (
    Column, String, Text, DateTime, ForeignKey, CheckConstraint, UniqueConstraint, Index, Uuid
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from crm.database import Base
from datetime import datetime, timezone
import uuid


def utcnow():
    return datetime.now(timezone.utc)


# ============================================================================
# TENANT MODEL
# ============================================================================

class Tenant(Base):
    """Tenant account - the isolation boundary for every other row."""
    __tablename__ = "tenants"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    status = Column(String(50), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('active', 'suspended', 'trial')", name="chk_tenant_status"),
    )

    def __repr__(self):
        return f"<Tenant(id={self.id}, name='{self.name}')>"


# ============================================================================
# COMPANY MODEL
# ============================================================================

class Company(Base):
    """Organization a contact works for, scoped to a tenant."""
    __tablename__ = "companies"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    name_key = Column(String(255), nullable=False)  # trimmed + lowercased lookup key

    # Optional enrichment fields - backfilled, never overwritten
    address = Column(String(500))
    industry = Column(String(255))
    revenue = Column(String(100))
    years_in_business = Column(String(50))
    website = Column(String(500))

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name_key", name="uq_company_tenant_name_key"),
    )

    ENRICHMENT_FIELDS = ("address", "industry", "revenue", "years_in_business", "website")

    def __repr__(self):
        return f"<Company(id={self.id}, name='{self.name}')>"


# ============================================================================
# CONTACT MODEL
# ============================================================================

class Contact(Base):
    """A person, scoped to a tenant."""
    __tablename__ = "contacts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(Uuid(as_uuid=True), ForeignKey("companies.id", ondelete="SET NULL"), index=True)

    # ========================================================================
    # IDENTITY
    # ========================================================================
    first_name = Column(String(100))
    last_name = Column(String(100))
    goes_by = Column(String(100))
    email = Column(String(255))  # stored normalized
    phone = Column(String(50))
    title = Column(String(255))

    # ========================================================================
    # SCAFFOLD FIELDS
    # ========================================================================
    buyer_decision = Column(String(100))
    how_met = Column(String(100))
    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    # ========================================================================
    # RELATIONSHIPS
    # ========================================================================
    company = relationship("Company", foreign_keys=[company_id])
    pipeline_state = relationship(
        "PipelineState",
        back_populates="contact",
        uselist=False,
        cascade="all, delete-orphan"
    )
    conversions = relationship(
        "PipelineConversion",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_contact_tenant_email"),
    )

    MUTABLE_FIELDS = (
        "first_name", "last_name", "goes_by", "email", "phone", "title",
        "company_id", "buyer_decision", "how_met", "notes",
    )

    def __repr__(self):
        return f"<Contact(id={self.id}, email='{self.email}')>"

    @property
    def full_name(self):
        """Get full name"""
        parts = []
        if self.first_name:
            parts.append(self.first_name)
        if self.last_name:
            parts.append(self.last_name)
        return " ".join(parts) if parts else None


# ============================================================================
# PIPELINE MODELS
# ============================================================================

class PipelineState(Base):
    """Current funnel position of a contact - exactly one per contact."""
    __tablename__ = "pipeline_states"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    contact_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )
    pipeline_type = Column(String(50), nullable=False, index=True)
    stage = Column(String(50), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    contact = relationship("Contact", back_populates="pipeline_state")

    def __repr__(self):
        return f"<PipelineState(contact={self.contact_id}, {self.pipeline_type}/{self.stage})>"


class PipelineConversion(Base):
    """
    Audit trail of automatic pipeline conversions.

    One row per triggered transition that changed a contact's pipeline state.
    """
    __tablename__ = "pipeline_conversions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_id = Column(Uuid(as_uuid=True), ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)

    # State before the write (NULL when the contact had no pipeline yet)
    from_pipeline_type = Column(String(50))
    from_stage = Column(String(50))

    # Rule that fired
    trigger_pipeline_type = Column(String(50), nullable=False)
    trigger_stage = Column(String(50), nullable=False)

    to_pipeline_type = Column(String(50), nullable=False)
    to_stage = Column(String(50), nullable=False)

    occurred_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_pipeline_conversions_contact_time", "contact_id", "occurred_at"),
    )

    def __repr__(self):
        return (
            f"<PipelineConversion(contact={self.contact_id}, "
            f"{self.trigger_pipeline_type}/{self.trigger_stage} -> {self.to_pipeline_type}/{self.to_stage})>"
        )

    def to_dict(self):
        """Convert to dictionary"""
        return {
            "id": str(self.id),
            "tenant_id": str(self.tenant_id),
            "contact_id": str(self.contact_id),
            "from_pipeline_type": self.from_pipeline_type,
            "from_stage": self.from_stage,
            "trigger_pipeline_type": self.trigger_pipeline_type,
            "trigger_stage": self.trigger_stage,
            "to_pipeline_type": self.to_pipeline_type,
            "to_stage": self.to_stage,
            "occurred_at": self.occurred_at.isoformat() if self.occurred_at else None,
        }
