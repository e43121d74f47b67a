"""
Settings: defaults, YAML files and WAGERTRACE_* environment overrides.
"""

from datetime import timedelta

import pytest

from wagertrace.core.config import Settings
from wagertrace.core.exceptions import ValidationError


class TestDefaults:

    def test_defaults(self):
        settings = Settings()
        assert settings.provisional_window == timedelta(minutes=10)
        assert settings.full_token_ttl == timedelta(days=30)
        assert settings.dispute_grace_ms == 100
        assert settings.latency_fault_ms == 100
        assert settings.ledger_path is None


class TestYaml:

    def test_sectioned_file(self, tmp_path):
        path = tmp_path / "wagertrace.yaml"
        path.write_text(
            "provisional_window_seconds: 120\n"
            "facilitator_agent: agent-7\n"
            "ledger_path: /var/lib/wagertrace\n"
            "dispute:\n"
            "  grace_ms: 50\n"
            "  latency_fault_ms: 200\n"
        )
        settings = Settings.from_yaml(path)

        assert settings.provisional_window == timedelta(minutes=2)
        assert settings.facilitator_agent == "agent-7"
        assert settings.ledger_path == "/var/lib/wagertrace"
        assert settings.dispute_grace_ms == 50
        assert settings.latency_fault_ms == 200

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert Settings.from_yaml(path) == Settings()

    def test_unknown_key_rejected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("provisonal_window_seconds: 60\n")
        with pytest.raises(ValidationError) as exc_info:
            Settings.from_yaml(path)
        assert exc_info.value.reason == "invalid_config"

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValidationError):
            Settings.from_yaml(path)

    @pytest.mark.parametrize("data", [
        {"provisional_window_seconds": 0},
        {"dispute": {"grace_ms": -1}},
        {"trusted_success_rate": 1.5},
        {"dispatch_workers": 0},
    ])
    def test_out_of_range_values_rejected(self, data):
        with pytest.raises(ValidationError):
            Settings.from_mapping(data)


class TestEnv:

    def test_env_overrides_are_coerced(self):
        settings = Settings().from_env({
            "WAGERTRACE_PROVISIONAL_WINDOW_SECONDS": "30",
            "WAGERTRACE_TRUSTED_SUCCESS_RATE":       "0.9",
            "WAGERTRACE_LEDGER_PATH":                "/tmp/ledger",
            "UNRELATED":                             "x",
        })
        assert settings.provisional_window_seconds == 30
        assert settings.trusted_success_rate == 0.9
        assert settings.ledger_path == "/tmp/ledger"

    def test_env_applies_on_top_of_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "wagertrace.yaml"
        path.write_text("facilitator_agent: from-yaml\ndispatch_workers: 2\n")
        monkeypatch.setenv("WAGERTRACE_DISPATCH_WORKERS", "8")

        settings = Settings.load(path)

        assert settings.facilitator_agent == "from-yaml"
        assert settings.dispatch_workers == 8

    def test_no_overrides_returns_same_settings(self):
        settings = Settings()
        assert settings.from_env({}) is settings

    def test_bad_number_rejected(self):
        with pytest.raises(ValidationError):
            Settings().from_env({"WAGERTRACE_DISPATCH_WORKERS": "many"})
