# backend/crm/services/pipeline_state.py
"""
Pipeline State

Exactly one pipeline state row per contact (unique contact_id). Writes are
upserts: update in place when the row exists, insert otherwise. An insert
that loses a race on the unique key re-reads the winner's row and updates it.

Contact writes reach this store through the ConversionTriggerEngine, never
directly. When the engine passes the trigger rule that produced the position,
a changed state and its PipelineConversion audit row commit together.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm.config import settings
from crm.exceptions import ContactNotFound, InvalidPipelineType, InvalidStageForPipeline
from crm.models import Contact, PipelineState
from crm.pipeline_config import PipelineConfig, PipelinePosition, TriggerRule
from crm.services.conversion_audit import ConversionEvent, conversion_row
from crm.services.store_access import StorePolicy, store_call

logger = logging.getLogger(__name__)


@dataclass
class PipelineWrite:
    """Outcome of a pipeline state upsert."""
    state: PipelineState
    tenant_id: UUID
    previous: Optional[PipelinePosition]
    created: bool
    changed: bool
    event: Optional[ConversionEvent] = None  # set when a trigger conversion was recorded

    @property
    def position(self) -> PipelinePosition:
        return PipelinePosition(self.state.pipeline_type, self.state.stage)


class PipelineStateStore:
    """Get/upsert the pipeline state of a contact."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        config: PipelineConfig,
        policy: Optional[StorePolicy] = None,
        enforce_stage_membership: Optional[bool] = None
    ):
        self.session_factory = session_factory
        self.config = config
        self.policy = policy or StorePolicy()
        if enforce_stage_membership is None:
            enforce_stage_membership = settings.ENFORCE_STAGE_MEMBERSHIP
        self.enforce_stage_membership = enforce_stage_membership

    def validate(self, pipeline_type: str, stage: str) -> None:
        """Reject positions outside the configured pipelines."""
        if not self.enforce_stage_membership:
            return
        if not self.config.is_valid_pipeline(pipeline_type):
            raise InvalidPipelineType(pipeline_type, self.config.pipeline_types)
        if not self.config.is_valid_stage(pipeline_type, stage):
            raise InvalidStageForPipeline(pipeline_type, stage, self.config.stages_for(pipeline_type))

    @staticmethod
    async def _current(session: AsyncSession, contact_id: UUID) -> Optional[PipelineState]:
        result = await session.execute(
            select(PipelineState).where(PipelineState.contact_id == contact_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _require_contact(session: AsyncSession, contact_id: UUID) -> UUID:
        """Return the owning tenant id of an existing contact."""
        result = await session.execute(select(Contact.tenant_id).where(Contact.id == contact_id))
        tenant_id = result.scalar_one_or_none()
        if tenant_id is None:
            raise ContactNotFound(contact_id)
        return tenant_id

    @store_call("get_pipeline_state")
    async def get_pipeline_state(self, contact_id: UUID) -> Optional[PipelineState]:
        async with self.session_factory() as session:
            await self._require_contact(session, contact_id)
            return await self._current(session, contact_id)

    @store_call("set_pipeline_state")
    async def set_pipeline_state(
        self,
        contact_id: UUID,
        pipeline_type: str,
        stage: str,
        rule: Optional[TriggerRule] = None
    ) -> PipelineWrite:
        """
        Upsert the contact's pipeline state.

        When `rule` is given and the state changes, the conversion audit row is
        written in the same transaction.

        Raises:
            InvalidStageForPipeline: position is not in the configured stage lists
            ContactNotFound: contact does not exist
        """
        self.validate(pipeline_type, stage)

        try:
            return await self._upsert(contact_id, pipeline_type, stage, rule)
        except IntegrityError:
            # Another writer created the row between our read and insert
            logger.warning(f"Pipeline state insert raced for contact {contact_id}; retrying as update")
            return await self._upsert(contact_id, pipeline_type, stage, rule)

    async def _upsert(
        self,
        contact_id: UUID,
        pipeline_type: str,
        stage: str,
        rule: Optional[TriggerRule]
    ) -> PipelineWrite:
        async with self.session_factory() as session:
            async with session.begin():
                tenant_id = await self._require_contact(session, contact_id)
                state = await self._current(session, contact_id)

                if state is None:
                    state = PipelineState(contact_id=contact_id, pipeline_type=pipeline_type, stage=stage)
                    session.add(state)
                    await session.flush()
                    event = await self._record_conversion(session, tenant_id, contact_id, None, rule)
                    logger.info(f"Pipeline created for contact {contact_id}: {pipeline_type}/{stage}")
                    return PipelineWrite(
                        state=state, tenant_id=tenant_id, previous=None, created=True, changed=True, event=event
                    )

                previous = PipelinePosition(state.pipeline_type, state.stage)
                if previous == PipelinePosition(pipeline_type, stage):
                    return PipelineWrite(state=state, tenant_id=tenant_id, previous=previous, created=False, changed=False)

                state.pipeline_type = pipeline_type
                state.stage = stage
                await session.flush()
                event = await self._record_conversion(session, tenant_id, contact_id, previous, rule)
                logger.info(f"Pipeline updated for contact {contact_id}: {previous} -> {pipeline_type}/{stage}")
                return PipelineWrite(
                    state=state, tenant_id=tenant_id, previous=previous, created=False, changed=True, event=event
                )

    @staticmethod
    async def _record_conversion(
        session: AsyncSession,
        tenant_id: UUID,
        contact_id: UUID,
        previous: Optional[PipelinePosition],
        rule: Optional[TriggerRule]
    ) -> Optional[ConversionEvent]:
        if rule is None:
            return None
        event = ConversionEvent.from_rule(tenant_id, contact_id, previous, rule)
        session.add(conversion_row(event))
        await session.flush()
        return event
