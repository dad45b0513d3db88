# backend/crm/pipeline_config.py
"""
Pipeline configuration - single source of truth for contact pipelines.

Pipeline types: prospect, client, collaborator, institution.
Each pipeline has its own ordered stages. Trigger rules map a proposed
(pipeline, stage) pair to the pair that is actually stored; a rule source
stage may be transitional (it never rests in a pipeline state).

The configuration is built once per process and is read-only afterwards.
"""

import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from crm.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelinePosition:
    """A (pipeline type, stage) pair."""
    pipeline_type: str
    stage: str

    def as_dict(self) -> Dict[str, str]:
        return {"pipeline_type": self.pipeline_type, "stage": self.stage}

    def __str__(self):
        return f"{self.pipeline_type}/{self.stage}"


@dataclass(frozen=True)
class TriggerRule:
    """One-way funnel promotion."""
    source: PipelinePosition
    target: PipelinePosition

    def as_dict(self) -> Dict[str, Any]:
        return {"from": self.source.as_dict(), "to": self.target.as_dict()}


# ============================================================================
# DEFAULTS
# ============================================================================

DEFAULT_PIPELINE_STAGES = {
    "prospect": (
        "interest",        # Initial interest expressed
        "meeting",         # Meeting scheduled/held
        "proposal",        # Proposal sent
        "negotiation",     # Negotiating terms
        "qualified",       # Qualified lead
    ),
    "client": (
        "kickoff",         # Contract signed, engagement starting
        "onboarding",
        "active",
        "renewal",
        "upsell",
    ),
    "collaborator": (
        "initial",
        "active",
        "partnership",
    ),
    "institution": (
        "awareness",
        "engagement",
        "partnership",
    ),
}

DEFAULT_TRIGGER_RULES = (
    TriggerRule(
        source=PipelinePosition("prospect", "contract-signed"),
        target=PipelinePosition("client", "kickoff"),
    ),
)

BUYER_DECISION_LABELS = {
    "senior-person": "Senior Person",
    "product-user": "Product User",
    "has-money": "Has Money",
}

HOW_MET_LABELS = {
    "personal-relationship": "Personal Relationship",
    "referral": "Referral",
    "event-conference": "Met at Event/Conference",
    "cold-outreach": "Cold Outreach",
}


# ============================================================================
# CONFIG OBJECT
# ============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """Immutable pipeline types, stages and trigger rules."""

    stages: Mapping[str, Tuple[str, ...]]
    trigger_rules: Tuple[TriggerRule, ...] = ()
    default_pipeline_type: str = "prospect"
    buyer_decisions: Mapping[str, str] = field(default_factory=dict)
    how_met_types: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze the mappings so callers cannot mutate shared configuration
        object.__setattr__(
            self, "stages",
            MappingProxyType({name: tuple(stages) for name, stages in self.stages.items()})
        )
        object.__setattr__(self, "trigger_rules", tuple(self.trigger_rules))
        object.__setattr__(self, "buyer_decisions", MappingProxyType(dict(self.buyer_decisions)))
        object.__setattr__(self, "how_met_types", MappingProxyType(dict(self.how_met_types)))
        object.__setattr__(
            self, "_rules_by_source",
            MappingProxyType({rule.source: rule for rule in self.trigger_rules})
        )
        self._validate()

    def _validate(self):
        if not self.stages:
            raise ValueError("At least one pipeline type is required")
        for name, stages in self.stages.items():
            if not stages:
                raise ValueError(f"Pipeline '{name}' has no stages")
        if self.default_pipeline_type not in self.stages:
            raise ValueError(f"Default pipeline '{self.default_pipeline_type}' is not configured")
        if len(self._rules_by_source) != len(self.trigger_rules):
            raise ValueError("Trigger rules must have unique source positions")
        for rule in self.trigger_rules:
            if rule.source.pipeline_type not in self.stages:
                raise ValueError(f"Trigger source pipeline '{rule.source.pipeline_type}' is not configured")
            if not self.is_valid_stage(rule.target.pipeline_type, rule.target.stage):
                raise ValueError(f"Trigger target {rule.target} is not a valid pipeline position")
            if rule.target in self._rules_by_source:
                raise ValueError(f"Trigger target {rule.target} would chain into another trigger")

    # ------------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------------

    @property
    def pipeline_types(self) -> Tuple[str, ...]:
        return tuple(self.stages.keys())

    def is_valid_pipeline(self, pipeline_type: Optional[str]) -> bool:
        return pipeline_type in self.stages

    def stages_for(self, pipeline_type: str) -> Tuple[str, ...]:
        return self.stages.get(pipeline_type, ())

    def is_valid_stage(self, pipeline_type: str, stage: Optional[str]) -> bool:
        return stage in self.stages_for(pipeline_type)

    def entry_stage(self, pipeline_type: str) -> Optional[str]:
        stages = self.stages_for(pipeline_type)
        return stages[0] if stages else None

    def rule_for(self, position: PipelinePosition) -> Optional[TriggerRule]:
        return self._rules_by_source.get(position)

    def all_stages(self) -> Tuple[str, ...]:
        seen = []
        for stages in self.stages.values():
            for stage in stages:
                if stage not in seen:
                    seen.append(stage)
        return tuple(seen)

    def as_dict(self) -> Dict[str, Any]:
        """Pipeline config for API responses"""
        return {
            "pipelines": {name: list(stages) for name, stages in self.stages.items()},
            "officialPipelines": list(self.pipeline_types),
            "allStages": list(self.all_stages()),
            "triggers": [rule.as_dict() for rule in self.trigger_rules],
            "defaultPipeline": self.default_pipeline_type,
            "buyerDecisions": dict(self.buyer_decisions),
            "howMet": dict(self.how_met_types),
        }


# ============================================================================
# LOADING
# ============================================================================

def default_pipeline_config() -> PipelineConfig:
    return PipelineConfig(
        stages=DEFAULT_PIPELINE_STAGES,
        trigger_rules=DEFAULT_TRIGGER_RULES,
        buyer_decisions=BUYER_DECISION_LABELS,
        how_met_types=HOW_MET_LABELS,
    )


def _parse_rules(raw_rules: Iterable[Dict[str, Any]]) -> Tuple[TriggerRule, ...]:
    rules = []
    for raw in raw_rules:
        source = raw["from"]
        target = raw["to"]
        rules.append(TriggerRule(
            source=PipelinePosition(source["pipeline_type"], source["stage"]),
            target=PipelinePosition(target["pipeline_type"], target["stage"]),
        ))
    return tuple(rules)


def pipeline_config_from_dict(data: Dict[str, Any]) -> PipelineConfig:
    """
    Build a config from a JSON-style document.

    Expected keys: "pipelines" (type -> stage list), optional "triggers"
    (list of {"from": {...}, "to": {...}}), "defaultPipeline",
    "buyerDecisions" and "howMet".
    """
    return PipelineConfig(
        stages=data["pipelines"],
        trigger_rules=_parse_rules(data.get("triggers", [])),
        default_pipeline_type=data.get("defaultPipeline", "prospect"),
        buyer_decisions=data.get("buyerDecisions", BUYER_DECISION_LABELS),
        how_met_types=data.get("howMet", HOW_MET_LABELS),
    )


def load_pipeline_config(path: Optional[str] = None) -> PipelineConfig:
    """Load the configuration from a JSON file, or the built-in defaults."""
    if not path:
        return default_pipeline_config()

    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)

    config = pipeline_config_from_dict(data)
    logger.info(
        f"Loaded pipeline config from {path}: "
        f"{len(config.pipeline_types)} pipelines, {len(config.trigger_rules)} triggers"
    )
    return config


@lru_cache(maxsize=1)
def get_pipeline_config() -> PipelineConfig:
    """Process-wide configuration, loaded on first use."""
    return load_pipeline_config(settings.PIPELINE_CONFIG_PATH)
