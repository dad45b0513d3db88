# backend/crm/services/conversion_audit.py
"""
Conversion Audit - records triggered pipeline transitions.

Conversions triggered by a contact write are persisted by PipelineStateStore
in the same transaction as the state change, then published here: logged and
fanned out to listeners (e.g. an outreach system that wants to know a
prospect became a client).
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from crm.models import PipelineConversion
from crm.pipeline_config import PipelinePosition, TriggerRule
from crm.services.store_access import StorePolicy, store_call

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversionEvent:
    """A triggered transition: who moved, from where, to where, and why."""
    tenant_id: uuid.UUID
    contact_id: uuid.UUID
    from_position: Optional[PipelinePosition]
    to_position: PipelinePosition
    trigger: PipelinePosition
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_rule(cls, tenant_id, contact_id, previous: Optional[PipelinePosition], rule: TriggerRule):
        return cls(
            tenant_id=tenant_id,
            contact_id=contact_id,
            from_position=previous,
            to_position=rule.target,
            trigger=rule.source,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": str(self.tenant_id),
            "contact_id": str(self.contact_id),
            "from": self.from_position.as_dict() if self.from_position else None,
            "to": self.to_position.as_dict(),
            "trigger": self.trigger.as_dict(),
            "occurred_at": self.occurred_at.isoformat(),
        }


ConversionListener = Callable[[ConversionEvent], Awaitable[None]]


def conversion_row(event: ConversionEvent) -> PipelineConversion:
    """Audit row for an event; added to the session that commits the transition."""
    return PipelineConversion(
        tenant_id=event.tenant_id,
        contact_id=event.contact_id,
        from_pipeline_type=event.from_position.pipeline_type if event.from_position else None,
        from_stage=event.from_position.stage if event.from_position else None,
        trigger_pipeline_type=event.trigger.pipeline_type,
        trigger_stage=event.trigger.stage,
        to_pipeline_type=event.to_position.pipeline_type,
        to_stage=event.to_position.stage,
        occurred_at=event.occurred_at,
    )


class ConversionAuditLogger:
    """Persists conversion events and notifies registered listeners."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        policy: Optional[StorePolicy] = None,
        listeners: Optional[List[ConversionListener]] = None
    ):
        self.session_factory = session_factory
        self.policy = policy or StorePolicy()
        self.listeners: List[ConversionListener] = list(listeners or [])

    def add_listener(self, listener: ConversionListener) -> None:
        self.listeners.append(listener)

    @staticmethod
    def _to_uuid(value):
        """Safely convert to UUID"""
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))

    async def record(self, event: ConversionEvent) -> PipelineConversion:
        """Persist the event in its own transaction, then publish it."""
        conversion = await self._persist(event)
        await self.publish(event)
        return conversion

    async def publish(self, event: ConversionEvent) -> None:
        """Log an already committed conversion and notify listeners."""
        from_label = str(event.from_position) if event.from_position else "none"
        logger.info(
            f"✅ Pipeline conversion: contact {event.contact_id} converted from {from_label} "
            f"via {event.trigger} to {event.to_position}"
        )

        await self._notify(event)

    @store_call("record_conversion")
    async def _persist(self, event: ConversionEvent) -> PipelineConversion:
        async with self.session_factory() as session:
            async with session.begin():
                conversion = conversion_row(event)
                session.add(conversion)
                await session.flush()
            return conversion

    async def _notify(self, event: ConversionEvent) -> None:
        # The transition is already committed; a failing listener must not undo it
        for listener in self.listeners:
            try:
                await listener(event)
            except Exception as e:
                logger.error(f"Conversion listener {getattr(listener, '__name__', listener)!r} failed: {e}")

    @store_call("conversion_history")
    async def history(self, tenant_id, contact_id) -> List[PipelineConversion]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PipelineConversion)
                .where(
                    PipelineConversion.tenant_id == self._to_uuid(tenant_id),
                    PipelineConversion.contact_id == self._to_uuid(contact_id)
                )
                .order_by(PipelineConversion.occurred_at)
            )
            return list(result.scalars().all())
