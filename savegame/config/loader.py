"""Settings loading from files and environment variables.

Settings are layered: model defaults, then a JSON or YAML settings file,
then environment variables carrying the configured prefix
(``SAVEGAME_MAX_BACKUPS=5``).
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Optional, Union

import yaml
from pydantic import ValidationError

from ..errors import ConfigurationError
from .settings import SaveSystemConfig

logger = logging.getLogger(__name__)

DEFAULT_ENV_PREFIX = "SAVEGAME_"


class TypeConversionError(ConfigurationError):
    """Exception raised when type conversion fails."""

    pass


class EnvironmentLoader:
    """Environment variable settings loader.

    Supports:
    - Prefix filtering
    - Automatic type conversion
    - Typed conversion against a field schema
    """

    def __init__(
        self,
        prefix: str = DEFAULT_ENV_PREFIX,
        type_converters: Optional[dict[str, Callable]] = None,
    ):
        """Initialize the environment loader.

        Args:
            prefix: Prefix that marks relevant variables
            type_converters: Custom type conversion functions
        """
        self.prefix = prefix
        self.type_converters = type_converters or {}

        self._default_converters = {
            "str": str,
            "int": int,
            "float": float,
            "bool": self._convert_bool,
            "json": self._convert_json,
        }

    def load_environment(
        self, schema: Optional[dict[str, str]] = None
    ) -> dict[str, Any]:
        """Load settings from environment variables.

        Args:
            schema: Optional mapping of setting name to type name. Names not in
                the schema fall back to type inference.

        Returns:
            Settings dictionary keyed by lower-case setting name
        """
        settings = {}

        for env_key, env_value in os.environ.items():
            if not env_key.startswith(self.prefix):
                continue

            key = self._env_key_to_setting(env_key)
            try:
                if schema and key in schema:
                    value = self._convert_value_with_type(env_value, schema[key])
                else:
                    value = self._convert_value(env_value)
            except (ValueError, TypeConversionError) as e:
                raise TypeConversionError(f"Failed to convert {env_key}: {e}")

            settings[key] = value
            logger.debug(f"Loaded env var: {env_key} -> {key} = {value}")

        if settings:
            logger.info(f"Loaded {len(settings)} environment variables")
        return settings

    def get_env_var(
        self,
        key: str,
        default: Any = None,
        value_type: Optional[Union[str, type]] = None,
    ) -> Any:
        """Get a single setting from the environment with type conversion."""
        env_value = os.environ.get(self._setting_to_env_key(key))
        if env_value is None:
            return default

        if value_type is None:
            return self._convert_value(env_value)
        return self._convert_value_with_type(env_value, value_type)

    def _env_key_to_setting(self, env_key: str) -> str:
        return env_key[len(self.prefix) :].lower()

    def _setting_to_env_key(self, key: str) -> str:
        return f"{self.prefix}{key.upper()}"

    def _convert_value(self, value: str) -> Any:
        """Convert string value with automatic type inference."""
        value = value.strip()

        if value.lower() in ("true", "false", "yes", "no", "on", "off"):
            return self._convert_bool(value)

        if value.isdigit() or (value.startswith("-") and value[1:].isdigit()):
            return int(value)

        try:
            return float(value)
        except ValueError:
            pass

        if value.startswith(("{", "[")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    def _convert_value_with_type(self, value: str, value_type: Union[str, type]) -> Any:
        """Convert value with explicit type."""
        if isinstance(value_type, str):
            converter = self.type_converters.get(
                value_type
            ) or self._default_converters.get(value_type)
            if converter:
                return converter(value.strip())
            raise TypeConversionError(f"Unknown type: {value_type}")
        return value_type(value)

    def _convert_bool(self, value: str) -> bool:
        """Convert string to boolean."""
        value = value.lower().strip()
        if value in ("true", "yes", "on", "1"):
            return True
        elif value in ("false", "no", "off", "0"):
            return False
        else:
            raise ValueError(f"Cannot convert '{value}' to boolean")

    def _convert_json(self, value: str) -> Any:
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e}")


def settings_schema() -> dict[str, str]:
    """Map each settings field to the converter name used for env values."""
    schema = {}
    for name, field in SaveSystemConfig.model_fields.items():
        annotation = field.annotation
        if annotation is bool:
            schema[name] = "bool"
        elif annotation is int:
            schema[name] = "int"
        elif annotation is float:
            schema[name] = "float"
        else:
            schema[name] = "str"
    return schema


def load_settings_file(config_path: Path) -> dict[str, Any]:
    """Read a JSON or YAML settings file.

    Args:
        config_path: Path to the settings file

    Returns:
        Settings dictionary (empty for an empty file)

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(f"Settings file not found: {config_path}")

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to read settings file {config_path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file must contain a mapping: {config_path}")

    # Allow the settings to be nested under a "save_system" key
    return data.get("save_system", data)


def load_settings(
    config_path: Optional[Union[str, Path]] = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    overrides: Optional[dict[str, Any]] = None,
) -> SaveSystemConfig:
    """Build settings from defaults, a settings file and the environment.

    Args:
        config_path: Optional JSON/YAML settings file
        env_prefix: Prefix of relevant environment variables
        overrides: Values applied last, after the environment

    Returns:
        Validated settings

    Raises:
        ConfigurationError: If a layer cannot be read or a value is invalid
    """
    values: dict[str, Any] = {}

    if config_path is not None:
        values.update(load_settings_file(Path(config_path)))

    env_loader = EnvironmentLoader(prefix=env_prefix)
    values.update(env_loader.load_environment(settings_schema()))

    if overrides:
        values.update(overrides)

    try:
        return SaveSystemConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid save system settings: {e}")
