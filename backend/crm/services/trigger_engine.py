# backend/crm/services/trigger_engine.py
"""
Conversion Trigger Engine

Every pipeline write for a contact passes through here. The proposed
(pipeline, stage) pair is checked against the configured trigger rules:
- Match: the rule's target pair is written instead (e.g. prospect/contract-signed
  -> client/kickoff) and the conversion is recorded in the same transaction
- No match: the proposed pair is written unchanged

Rules are keyed on the proposed pair only, so the outcome does not depend on
the contact's prior state.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import UUID

from crm.exceptions import InvalidPipelineType, InvalidStageForPipeline
from crm.pipeline_config import PipelineConfig, PipelinePosition, TriggerRule
from crm.services.conversion_audit import ConversionAuditLogger
from crm.services.pipeline_state import PipelineStateStore

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    """What happened to a contact's pipeline state."""
    applied: bool                 # row created or changed
    triggered: bool               # a trigger rule replaced the proposal
    final_pipeline_type: str
    final_stage: str
    previous: Optional[PipelinePosition] = None
    rule: Optional[TriggerRule] = None

    @property
    def final_position(self) -> PipelinePosition:
        return PipelinePosition(self.final_pipeline_type, self.final_stage)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied": self.applied,
            "triggered": self.triggered,
            "final_pipeline_type": self.final_pipeline_type,
            "final_stage": self.final_stage,
            "previous": self.previous.as_dict() if self.previous else None,
        }


class ConversionTriggerEngine:
    """Evaluates trigger rules and commits the resulting pipeline state."""

    def __init__(
        self,
        config: PipelineConfig,
        pipeline_store: PipelineStateStore,
        audit: ConversionAuditLogger
    ):
        self.config = config
        self.pipeline_store = pipeline_store
        self.audit = audit

    def resolve_proposal(
        self,
        current: Optional[PipelinePosition],
        pipeline_type: Optional[str],
        stage: Optional[str]
    ) -> PipelinePosition:
        """
        Fill the missing half of a partial proposal.

        - No pipeline type: keep the current one, else the default pipeline
        - No stage: keep the current stage if the pipeline is unchanged,
          else start at the pipeline's entry stage
        """
        if pipeline_type is None:
            pipeline_type = current.pipeline_type if current else self.config.default_pipeline_type

        if stage is None:
            if current and current.pipeline_type == pipeline_type:
                stage = current.stage
            else:
                stage = self.config.entry_stage(pipeline_type)

        if stage is None:
            raise InvalidStageForPipeline(pipeline_type, None, self.config.stages_for(pipeline_type))

        return PipelinePosition(pipeline_type, stage)

    def check_proposal(self, pipeline_type: Optional[str], stage: Optional[str]) -> None:
        """
        Reject proposals that are invalid whatever the contact's current state.

        Stage-only proposals depend on the current pipeline and are checked
        when they are applied.
        """
        if pipeline_type is None:
            return
        if stage is None:
            if not self.config.is_valid_pipeline(pipeline_type):
                raise InvalidPipelineType(pipeline_type, self.config.pipeline_types)
            return
        proposed = PipelinePosition(pipeline_type, stage)
        rule = self.config.rule_for(proposed)
        target = rule.target if rule else proposed
        self.pipeline_store.validate(target.pipeline_type, target.stage)

    async def evaluate_transition(
        self,
        contact_id: UUID,
        proposed_pipeline_type: str,
        proposed_stage: str
    ) -> TransitionResult:
        """
        Apply a proposed pipeline position, honoring trigger rules.

        Raises:
            ContactNotFound: contact does not exist
            InvalidStageForPipeline: the final position is not configured
        """
        proposed = PipelinePosition(proposed_pipeline_type, proposed_stage)
        rule = self.config.rule_for(proposed)
        target = rule.target if rule else proposed

        if rule:
            logger.info(f"Trigger matched for contact {contact_id}: {proposed} -> {target}")

        # State change and audit row commit together; listeners hear about it afterwards
        write = await self.pipeline_store.set_pipeline_state(
            contact_id, target.pipeline_type, target.stage, rule=rule
        )

        if write.event is not None:
            await self.audit.publish(write.event)

        return TransitionResult(
            applied=write.changed,
            triggered=rule is not None,
            final_pipeline_type=target.pipeline_type,
            final_stage=target.stage,
            previous=write.previous,
            rule=rule,
        )

    async def apply_partial(
        self,
        contact_id: UUID,
        pipeline_type: Optional[str] = None,
        stage: Optional[str] = None
    ) -> TransitionResult:
        """Merge a partial proposal with the current state, then evaluate it."""
        state = await self.pipeline_store.get_pipeline_state(contact_id)
        current = PipelinePosition(state.pipeline_type, state.stage) if state else None
        proposed = self.resolve_proposal(current, pipeline_type, stage)
        return await self.evaluate_transition(contact_id, proposed.pipeline_type, proposed.stage)
