"""
Tests for engine configuration loading.
"""

import json
from pathlib import Path

import pytest

from migration_engine.config import DedupSettings, EngineConfig, ExecutionOptions, IdentityFields
from migration_engine.models.conditional import ActionType

EXAMPLE_CONFIG = Path(__file__).parent.parent / "config" / "engine.example.json"


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()
        assert config.mapping.weights.total == pytest.approx(1.0)
        assert config.mapping.min_confidence == 0.4
        assert config.quality.ready_threshold == 85.0
        assert config.snapshots.retention_days == 30
        assert config.dedup.auto_merge_enabled is False
        assert config.execution.dry_run is False
        assert config.execution.stop_on_error is False
        assert config.mapping.auto_execution_threshold is None
        assert config.conditional_mappings == []

    def test_example_file(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        config = EngineConfig.from_json_file(str(EXAMPLE_CONFIG))

        assert config.mapping.weights.pattern == 0.35
        assert config.dedup.identity_tables["hc_staff"].email_field == "email"
        assert config.retry.max_attempts == 5
        assert config.snapshots.storage_dir == "./output/snapshots"
        assert config.execution.chunk_size == 500
        assert config.llm.enabled is False
        assert config.llm.api_key is None
        assert [r.rule_id for r in config.conditional_mappings] == ["group-npi", "npi-prescribers-only"]
        assert config.conditional_mappings[1].action.type == ActionType.SKIP

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")
        config = EngineConfig.from_dict({"llm": {"provider": "anthropic"}})
        assert config.llm.api_key == "from-env"

    def test_to_dict_drops_secrets(self, tmp_path):
        config = EngineConfig.from_dict({"llm": {"api_key": "secret"}})
        data = config.to_dict()
        assert "api_key" not in data["llm"]

        path = tmp_path / "config.json"
        path.write_text(json.dumps(data))
        reloaded = EngineConfig.from_json_file(str(path))
        assert reloaded.mapping == config.mapping
        assert reloaded.dedup == config.dedup

    def test_conditional_rules_round_trip(self):
        config = EngineConfig.from_json_file(str(EXAMPLE_CONFIG))
        reloaded = EngineConfig.from_dict(config.to_dict())
        assert reloaded.conditional_mappings == config.conditional_mappings


class TestSections:
    def test_identity_fields_partial(self):
        settings = DedupSettings.from_dict({
            "identity_tables": {"hc_patient": {"phone_field": "mobile"}, "hc_staff": None},
            "review_threshold": 0.85,
        })
        assert settings.identity_tables["hc_patient"].phone_field == "mobile"
        assert settings.identity_tables["hc_patient"].name_fields == ["first_name", "last_name"]
        assert settings.identity_tables["hc_staff"] == IdentityFields()
        assert settings.review_threshold == 0.85

    def test_execution_options_ignore_unknown_keys(self):
        options = ExecutionOptions.from_dict({"dry_run": True, "turbo": True})
        assert options.dry_run is True
        assert options.to_dict()["worker_count"] == 4
