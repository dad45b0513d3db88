# tests/services/test_pipeline_config.py
"""
Tests for PipelineConfig

Coverage:
- Default pipelines, stages and trigger rules
- Stage membership lookups
- Construction-time validation
- Loading from dict / JSON file

Run with: pytest tests/services/test_pipeline_config.py -v
"""

import json

import pytest

from crm.pipeline_config import (
    PipelineConfig,
    PipelinePosition,
    TriggerRule,
    default_pipeline_config,
    load_pipeline_config,
    pipeline_config_from_dict,
)


class TestDefaults:

    def test_official_pipelines(self, config):
        assert config.pipeline_types == ("prospect", "client", "collaborator", "institution")

    def test_stage_membership(self, config):
        assert config.is_valid_stage("prospect", "interest")
        assert config.is_valid_stage("client", "kickoff")
        assert not config.is_valid_stage("client", "interest")
        assert not config.is_valid_stage("unknown", "interest")

    def test_contract_signed_is_a_trigger_source_only(self, config):
        source = PipelinePosition("prospect", "contract-signed")
        assert not config.is_valid_stage("prospect", "contract-signed")
        rule = config.rule_for(source)
        assert rule.target == PipelinePosition("client", "kickoff")

    def test_no_rule_for_resident_positions(self, config):
        assert config.rule_for(PipelinePosition("client", "renewal")) is None

    def test_entry_stage(self, config):
        assert config.entry_stage("client") == "kickoff"
        assert config.entry_stage("nope") is None

    def test_all_stages_deduplicated(self, config):
        stages = config.all_stages()
        assert stages.count("active") == 1
        assert stages.count("partnership") == 1

    def test_as_dict(self, config):
        data = config.as_dict()
        assert data["defaultPipeline"] == "prospect"
        assert data["triggers"] == [{
            "from": {"pipeline_type": "prospect", "stage": "contract-signed"},
            "to": {"pipeline_type": "client", "stage": "kickoff"},
        }]
        assert data["pipelines"]["client"][0] == "kickoff"

    def test_config_is_immutable(self, config):
        with pytest.raises(TypeError):
            config.stages["prospect"] = ("x",)


class TestValidation:

    def test_rule_target_must_be_resident(self):
        with pytest.raises(ValueError):
            PipelineConfig(
                stages={"prospect": ("interest",), "client": ("onboarding",)},
                trigger_rules=(TriggerRule(
                    PipelinePosition("prospect", "contract-signed"),
                    PipelinePosition("client", "kickoff"),
                ),),
            )

    def test_duplicate_rule_sources_rejected(self):
        rule = TriggerRule(PipelinePosition("prospect", "won"), PipelinePosition("client", "kickoff"))
        with pytest.raises(ValueError):
            PipelineConfig(stages={"prospect": ("interest",), "client": ("kickoff",)}, trigger_rules=(rule, rule))

    def test_default_pipeline_must_exist(self):
        with pytest.raises(ValueError):
            PipelineConfig(stages={"client": ("kickoff",)})

    def test_empty_pipeline_rejected(self):
        with pytest.raises(ValueError):
            PipelineConfig(stages={"prospect": ()})


class TestLoading:

    def test_without_path_uses_defaults(self):
        config = load_pipeline_config(None)
        assert config.pipeline_types == default_pipeline_config().pipeline_types
        assert config.trigger_rules == default_pipeline_config().trigger_rules

    def test_from_dict(self):
        config = pipeline_config_from_dict({
            "pipelines": {"lead": ["new", "won"], "customer": ["active"]},
            "triggers": [{
                "from": {"pipeline_type": "lead", "stage": "signed"},
                "to": {"pipeline_type": "customer", "stage": "active"},
            }],
            "defaultPipeline": "lead",
        })
        assert config.default_pipeline_type == "lead"
        assert config.rule_for(PipelinePosition("lead", "signed")).target.stage == "active"

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "pipelines.json"
        path.write_text(json.dumps({"pipelines": {"prospect": ["interest"]}}))

        config = load_pipeline_config(str(path))

        assert config.pipeline_types == ("prospect",)
        assert config.trigger_rules == ()
