"""Tests for the configuration layer."""

import pytest

from rentflow.config import (
    ConfigError,
    ConfigManager,
    ConfigValidationError,
    ConfigValue,
    get_config,
    get_config_manager,
)


class TestConfigValue:
    """Tests for single values."""

    def test_default(self):
        value = ConfigValue(default=3)
        assert value.get() == 3

    def test_string_coercion(self):
        value = ConfigValue(default=3)
        value.set("7")
        assert value.get() == 7

        flag = ConfigValue(default=False)
        flag.set("yes")
        assert flag.get() is True

    def test_env_wins_over_override(self, monkeypatch):
        value = ConfigValue(default=3, env_var="RENTFLOW_TEST_VALUE")
        value.set(4)
        monkeypatch.setenv("RENTFLOW_TEST_VALUE", "9")
        assert value.get() == 9

    def test_validator(self):
        value = ConfigValue(default=1, validator=lambda x: x > 0)
        with pytest.raises(ConfigValidationError):
            value.set(0)
        assert value.get() == 1

    def test_bad_coercion(self):
        value = ConfigValue(default=1)
        with pytest.raises(ConfigValidationError):
            value.set("many")

    def test_change_callback(self):
        seen = []
        value = ConfigValue(default="a")
        value.on_change(lambda old, new: seen.append((old, new)))
        value.set("b")
        assert seen == [(None, "b")]


class TestConfigManager:
    """Tests for the process-wide manager."""

    def test_singleton(self):
        assert ConfigManager() is get_config_manager()
        assert get_config() is get_config_manager().config

    def test_defaults(self):
        cfg = get_config_manager()
        assert cfg.get("program.program_id") == "RentF1ow11111111111111111111111111111111111"
        assert cfg.get("program.namespace_tag") == "lease"
        assert cfg.get("store.backend") == "file"
        assert cfg.get("client.currency_decimals") == 6
        assert cfg.get("security.nonce_ttl_seconds") == 300
        assert cfg.get("observability.log_format") == "json"

    def test_get_group(self):
        assert get_config_manager().get("security") == {
            "nonce_ttl_seconds": 300,
            "max_clock_skew_seconds": 60,
        }

    def test_set_by_path(self):
        cfg = get_config_manager()
        cfg.set("client.currency_decimals", "2")
        assert cfg.get("client.currency_decimals") == 2

    @pytest.mark.parametrize("path", ["store", "store.nope", "", "store._value", "program.program_id.default"])
    def test_invalid_paths(self, path):
        with pytest.raises(ConfigError):
            get_config_manager().set(path, "x")

    @pytest.mark.parametrize("path,value", [
        ("store.backend", "s3"),
        ("program.program_id", "not-base58-0OIl"),
        ("program.namespace_tag", "x" * 33),
        ("client.currency_decimals", 19),
    ])
    def test_rejected_values(self, path, value):
        with pytest.raises(ConfigValidationError):
            get_config_manager().set(path, value)

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("RENTFLOW_STORE_BACKEND", "memory")
        monkeypatch.setenv("RENTFLOW_SECURITY_CLOCK_SKEW", "15")
        cfg = get_config_manager()
        assert cfg.get("store.backend") == "memory"
        assert cfg.get("security.max_clock_skew_seconds") == 15

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "rentflow.yaml"
        path.write_text(
            "store:\n"
            "  backend: memory\n"
            "client:\n"
            "  currency_decimals: 2\n",
            encoding="utf-8",
        )
        cfg = get_config_manager()
        cfg.load_from_file(path)
        assert cfg.get("store.backend") == "memory"
        assert cfg.get("client.currency_decimals") == 2

    def test_reload(self, tmp_path):
        path = tmp_path / "rentflow.yaml"
        path.write_text("store:\n  path: first\n", encoding="utf-8")
        cfg = get_config_manager()
        cfg.load_from_file(path)

        path.write_text("store:\n  path: second\n", encoding="utf-8")
        cfg.reload()
        assert cfg.get("store.path") == "second"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        get_config_manager().load_from_file(path)
        assert get_config_manager().get("store.backend") == "file"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            get_config_manager().load_from_file(tmp_path / "absent.yaml")

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="mapping"):
            get_config_manager().load_from_file(path)

    def test_unknown_key_in_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("store:\n  flavour: vanilla\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="store.flavour"):
            get_config_manager().load_from_file(path)

    def test_validate_reports_bad_environment(self, monkeypatch):
        cfg = get_config_manager()
        assert cfg.validate() == []

        monkeypatch.setenv("RENTFLOW_STORE_BACKEND", "s3")
        monkeypatch.setenv("RENTFLOW_CURRENCY_DECIMALS", "lots")
        errors = cfg.validate()
        assert any(e.startswith("store.backend") for e in errors)
        assert any(e.startswith("client.currency_decimals") for e in errors)

    def test_validate_nonce_ttl_covers_skew_window(self, monkeypatch):
        cfg = get_config_manager()
        monkeypatch.setenv("RENTFLOW_SECURITY_NONCE_TTL", "30")
        errors = cfg.validate()
        assert len(errors) == 1
        assert errors[0].startswith("security.nonce_ttl_seconds")

        monkeypatch.setenv("RENTFLOW_SECURITY_NONCE_TTL", "120")
        assert cfg.validate() == []

    def test_watch(self):
        seen = []
        cfg = get_config_manager()
        cfg.watch(lambda c: seen.append(c.store.backend.get()))
        cfg.set("store.backend", "memory")
        assert seen == ["memory"]

    def test_reset(self):
        cfg = get_config_manager()
        cfg.set("store.backend", "memory")
        cfg.reset()
        assert cfg.get("store.backend") == "file"

    def test_export_schema(self):
        schema = get_config_manager().export_schema()
        backend = schema["properties"]["store"]["backend"]
        assert backend["type"] == "str"
        assert backend["default"] == "file"
        assert backend["env_var"] == "RENTFLOW_STORE_BACKEND"

    def test_to_yaml(self):
        text = get_config().to_yaml()
        assert "namespace_tag: lease" in text
