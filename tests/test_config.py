"""Tests for config loading, validation and the config singleton."""

import os
import time
from pathlib import Path
from typing import Any

import pytest

from envoy.config import (
    apply_env_overrides,
    get_config,
    load_config,
    reload_config_if_changed,
    validate_config_file,
)
from envoy.config_schema import DEFAULT_FINGERPRINT_FIELDS, AppConfig
from envoy.core.errors import ConfigLoadError, ConfigValidationError


class TestSchemaDefaults:
    """Tests for AppConfig defaults."""

    def test_empty_config_uses_defaults(self) -> None:
        """Test that an empty mapping validates with sensible defaults."""
        config = AppConfig()
        assert config.assistant_name == "Envoy"
        assert config.autonomy.default_tier == "guardian"
        assert config.approval.default_threshold == 3
        assert config.agent.context_limit == 5
        assert config.agent.history_turns == 10
        assert config.style.max_attempts == 3
        assert config.style.score_threshold == 70
        assert config.gateway.base_url == "http://127.0.0.1:8765"

    def test_default_fingerprint_fields(self) -> None:
        """Test that the default fingerprint table is applied."""
        config = AppConfig()
        assert config.approval.fingerprint_fields == DEFAULT_FINGERPRINT_FIELDS

    def test_tier_permissions_defaults(self) -> None:
        """Test default risk classes per tier."""
        perms = AppConfig().autonomy.tier_permissions
        assert perms.for_tier("guardian") == []
        assert perms.for_tier("partner") == ["read", "write"]
        assert perms.for_tier("alter_ego") == ["read", "write", "execute"]


class TestSchemaValidation:
    """Tests for field validators."""

    def test_invalid_tier_rejected(self, sample_config_dict: dict[str, Any]) -> None:
        sample_config_dict["autonomy"] = {"default_tier": "overlord"}
        with pytest.raises(ValueError):
            AppConfig(**sample_config_dict)

    def test_communicate_cannot_be_tier_permission(self) -> None:
        """Test that outbound communication is never auto-approved by tier."""
        with pytest.raises(ValueError, match="communicate"):
            AppConfig(
                autonomy={"tier_permissions": {"alter_ego": ["read", "communicate"]}},
            )

    def test_unknown_fingerprint_transform_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown fingerprint transform"):
            AppConfig(approval={"fingerprint_fields": {"email.send": ["to:upper"]}})

    def test_domain_threshold_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            AppConfig(approval={"domain_thresholds": {"email": 0}})

    def test_gateway_url_scheme_required(self) -> None:
        with pytest.raises(ValueError, match="http"):
            AppConfig(gateway={"base_url": "localhost:8765"})

    def test_gateway_url_trailing_slash_stripped(self) -> None:
        config = AppConfig(gateway={"base_url": "http://localhost:8765/"})
        assert config.gateway.base_url == "http://localhost:8765"

    def test_database_path_traversal_rejected(self) -> None:
        with pytest.raises(ValueError, match="path traversal"):
            AppConfig(database={"path": "../outside.db"})

    def test_style_attempts_capped_at_three(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            AppConfig(style={"max_attempts": 4})

    def test_escalation_consecutive_cannot_exceed_total(self) -> None:
        with pytest.raises(ValueError, match="cannot exceed"):
            AppConfig(
                escalation={
                    "partner_to_alter_ego_approvals": 4,
                    "partner_to_alter_ego_consecutive": 5,
                }
            )


class TestLoadConfig:
    """Tests for loading config files."""

    def test_load_valid_file(self, config_file: Path) -> None:
        config = load_config(config_file)
        assert config.autonomy.domain_overrides == {"web": "partner"}

    def test_missing_file_raises_load_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigLoadError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml_raises_load_error(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("autonomy: [unclosed")
        with pytest.raises(ConfigLoadError, match="parse YAML"):
            load_config(path)

    def test_non_mapping_raises_load_error(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigLoadError, match="mapping"):
            load_config(path)

    def test_validation_error_names_field(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("approval:\n  default_threshold: many\n")
        with pytest.raises(ConfigValidationError, match="approval.default_threshold"):
            load_config(path)

    def test_newer_schema_version_rejected(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("schema_version: 99\n")
        with pytest.raises(ConfigValidationError, match="newer"):
            load_config(path)


class TestConfigSingleton:
    """Tests for get_config and hot reload."""

    def test_get_config_uses_env_path(self, set_config_env: None) -> None:
        config = get_config()
        assert config.autonomy.domain_overrides == {"web": "partner"}
        assert get_config() is config

    def test_reload_picks_up_changes(self, set_config_env: None, config_file: Path) -> None:
        get_config()
        config_file.write_text("assistant_name: Jeeves\n")
        future = time.time() + 5
        os.utime(config_file, (future, future))

        assert reload_config_if_changed() is True
        assert get_config().assistant_name == "Jeeves"

    def test_reload_keeps_previous_on_invalid_edit(
        self, set_config_env: None, config_file: Path
    ) -> None:
        original = get_config()
        config_file.write_text("approval:\n  default_threshold: 0\n")
        future = time.time() + 5
        os.utime(config_file, (future, future))

        assert reload_config_if_changed() is False
        assert get_config() is original

    def test_reload_without_load_is_noop(self) -> None:
        assert reload_config_if_changed() is False


class TestValidateConfigFile:
    """Tests for the validate-config summary."""

    def test_valid_file_summary(self, config_file: Path) -> None:
        is_valid, message = validate_config_file(config_file)
        assert is_valid
        assert "default tier: guardian" in message
        assert "web=partner" in message

    def test_invalid_file_reports_error(self, tmp_path: Path) -> None:
        is_valid, message = validate_config_file(tmp_path / "nope.yaml")
        assert not is_valid
        assert message.startswith("Load error")


class TestEnvOverrides:
    """Tests for environment variables replacing single config values."""

    def test_override_creates_missing_section(self) -> None:
        merged = apply_env_overrides({}, {"ENVOY_GATEWAY_URL": "http://gw:9000/"})
        assert merged == {"gateway": {"base_url": "http://gw:9000/"}}

    def test_override_keeps_sibling_keys(self) -> None:
        raw = {"gateway": {"base_url": "http://old", "timeout_seconds": 5}}
        merged = apply_env_overrides(raw, {"ENVOY_GATEWAY_URL": "http://new"})
        assert merged["gateway"] == {"base_url": "http://new", "timeout_seconds": 5}
        assert raw["gateway"]["base_url"] == "http://old"

    def test_empty_value_ignored(self) -> None:
        assert apply_env_overrides({"database": {"path": "a.db"}}, {"ENVOY_DB_PATH": ""}) == {
            "database": {"path": "a.db"}
        }

    def test_load_config_applies_overrides(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("ENVOY_DEFAULT_TIER", "partner")
        monkeypatch.setenv("ENVOY_DB_PATH", "data/override.db")

        config = load_config(config_file)

        assert config.autonomy.default_tier == "partner"
        assert config.autonomy.domain_overrides == {"web": "partner"}
        assert config.database.path == "data/override.db"

    def test_invalid_override_is_a_validation_error(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("ENVOY_DEFAULT_TIER", "overlord")
        with pytest.raises(ConfigValidationError, match="autonomy.default_tier"):
            load_config(config_file)
