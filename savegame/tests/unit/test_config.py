"""Unit tests for settings loading."""

import json
import logging

import pytest
import yaml

from savegame.config.loader import (
    EnvironmentLoader,
    TypeConversionError,
    load_settings,
    load_settings_file,
    settings_schema,
)
from savegame.config.settings import SaveSystemConfig
from savegame.errors import ConfigurationError
from savegame.utils.logging import setup_logging


@pytest.mark.unit()
class TestSaveSystemConfig:
    """Test the settings model."""

    def test_defaults(self):
        config = SaveSystemConfig()
        assert config.max_backups == 3
        assert config.max_load_retries == 3
        assert config.retry_backoff_seconds == 1.0
        assert config.discovery_cache_ttl == 120.0
        assert config.shutdown_save_timeout == 5.0
        assert config.auto_save_interval == 300.0

    def test_derived_directories(self, temp_dir):
        config = SaveSystemConfig(save_directory=temp_dir)
        assert config.backups_directory == temp_dir / "Backups"
        assert config.temp_directory == temp_dir / "Temp"

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            SaveSystemConfig(unknown_option=True)

    @pytest.mark.parametrize(
        "values",
        [
            {"max_backups": 0},
            {"max_load_retries": 0},
            {"app_version": "one.two"},
            {"log_level": "LOUD"},
        ],
    )
    def test_invalid_values(self, values):
        with pytest.raises(ValueError):
            SaveSystemConfig(**values)

    def test_log_level_normalized(self):
        assert SaveSystemConfig(log_level="debug").log_level == "DEBUG"


@pytest.mark.unit()
class TestEnvironmentLoader:
    """Test environment variable loading."""

    def test_prefix_filtering(self, monkeypatch):
        monkeypatch.setenv("SAVEGAME_MAX_BACKUPS", "5")
        monkeypatch.setenv("OTHER_MAX_BACKUPS", "9")

        settings = EnvironmentLoader(prefix="SAVEGAME_").load_environment()

        assert settings["max_backups"] == 5
        assert "other_max_backups" not in settings

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("true", True),
            ("off", False),
            ("42", 42),
            ("-3", -3),
            ("2.5", 2.5),
            ('{"a": 1}', {"a": 1}),
            ("SaveData", "SaveData"),
        ],
    )
    def test_type_inference(self, monkeypatch, raw, expected):
        monkeypatch.setenv("TESTPFX_VALUE", raw)
        settings = EnvironmentLoader(prefix="TESTPFX_").load_environment()
        assert settings["value"] == expected

    def test_schema_conversion(self, monkeypatch):
        monkeypatch.setenv("TESTPFX_APP_VERSION", "1")
        monkeypatch.setenv("TESTPFX_AUTO_SAVE_INTERVAL", "60")

        settings = EnvironmentLoader(prefix="TESTPFX_").load_environment(
            settings_schema()
        )

        assert settings["app_version"] == "1"
        assert settings["auto_save_interval"] == 60.0
        assert isinstance(settings["auto_save_interval"], float)

    def test_conversion_failure(self, monkeypatch):
        monkeypatch.setenv("TESTPFX_CREATE_BACKUPS", "maybe")
        with pytest.raises(TypeConversionError):
            EnvironmentLoader(prefix="TESTPFX_").load_environment(settings_schema())

    def test_get_env_var(self, monkeypatch):
        loader = EnvironmentLoader(prefix="TESTPFX_")
        monkeypatch.setenv("TESTPFX_MAX_SAVE_SLOTS", "7")

        assert loader.get_env_var("max_save_slots", value_type="int") == 7
        assert loader.get_env_var("missing", default="x") == "x"


@pytest.mark.unit()
class TestLoadSettings:
    """Test layered settings loading."""

    def test_yaml_file_with_section(self, temp_dir):
        config_file = temp_dir / "settings.yaml"
        config_file.write_text(
            yaml.safe_dump({"save_system": {"max_backups": 5, "app_version": "1.3.0"}})
        )

        config = load_settings(config_file, env_prefix="TESTPFX_")

        assert config.max_backups == 5
        assert config.app_version == "1.3.0"

    def test_json_file(self, temp_dir):
        config_file = temp_dir / "settings.json"
        config_file.write_text(json.dumps({"max_save_slots": 4}))
        assert load_settings_file(config_file) == {"max_save_slots": 4}

    def test_environment_overrides_file(self, temp_dir, monkeypatch):
        config_file = temp_dir / "settings.json"
        config_file.write_text(json.dumps({"max_backups": 5}))
        monkeypatch.setenv("TESTPFX_MAX_BACKUPS", "2")

        config = load_settings(config_file, env_prefix="TESTPFX_")
        assert config.max_backups == 2

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("TESTPFX_MAX_BACKUPS", "2")
        config = load_settings(env_prefix="TESTPFX_", overrides={"max_backups": 8})
        assert config.max_backups == 8

    def test_missing_file(self, temp_dir):
        with pytest.raises(ConfigurationError):
            load_settings(temp_dir / "missing.yaml")

    def test_invalid_file(self, temp_dir):
        config_file = temp_dir / "settings.yaml"
        config_file.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError):
            load_settings(config_file)

    def test_invalid_value(self, monkeypatch):
        monkeypatch.setenv("TESTPFX_MAX_BACKUPS", "0")
        with pytest.raises(ConfigurationError):
            load_settings(env_prefix="TESTPFX_")


@pytest.mark.unit()
class TestSetupLogging:
    """Test logging configuration."""

    def setup_method(self):
        self.root_handlers = list(logging.getLogger().handlers)
        self.root_level = logging.getLogger().level

    def teardown_method(self):
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            if handler not in self.root_handlers:
                root_logger.removeHandler(handler)
                handler.close()
        root_logger.setLevel(self.root_level)

    def test_default_logging_creates_files(self, temp_dir, monkeypatch):
        monkeypatch.delenv("LOG_CFG", raising=False)
        setup_logging(default_level="WARNING", log_dir=temp_dir / "logs")

        logging.getLogger("savegame.test").error("written to error log")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert (temp_dir / "logs" / "savegame.log").exists()
        assert "written to error log" in (temp_dir / "logs" / "error.log").read_text()

    def test_yaml_config_from_environment(self, temp_dir, monkeypatch):
        config_file = temp_dir / "logging.yaml"
        config_file.write_text(
            yaml.safe_dump(
                {
                    "version": 1,
                    "disable_existing_loggers": False,
                    "loggers": {"savegame.yamltest": {"level": "ERROR"}},
                }
            )
        )
        monkeypatch.setenv("LOG_CFG", str(config_file))

        setup_logging(log_dir=temp_dir / "logs")

        assert logging.getLogger("savegame.yamltest").level == logging.ERROR
