"""Logging configuration for the save system."""

import logging
import logging.config
import logging.handlers
import os
from pathlib import Path
from typing import Optional, Union

import yaml

DEFAULT_CONFIG_ENV_KEY = "LOG_CFG"
DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
SIMPLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5


def setup_logging(
    config_path: Optional[Union[str, Path]] = None,
    default_level: Union[int, str] = logging.INFO,
    env_key: str = DEFAULT_CONFIG_ENV_KEY,
    environment: Optional[str] = None,
    log_dir: Optional[Union[str, Path]] = None,
) -> None:
    """Setup logging configuration.

    A YAML ``dictConfig`` file is used when one is given or named by the
    ``env_key`` environment variable. Otherwise a console handler and
    rotating ``savegame.log``/``error.log`` file handlers are installed.

    Args:
        config_path: Path to the logging configuration file
        default_level: Level for the default configuration
        env_key: Environment variable that can override the config path
        environment: Section of the config file holding overrides
        log_dir: Directory for log files
    """
    if isinstance(default_level, str):
        default_level = getattr(logging, default_level.upper(), logging.INFO)

    logs_dir = Path(log_dir or "logs")
    logs_dir.mkdir(exist_ok=True, parents=True)

    config_path = os.getenv(env_key, config_path)
    if config_path is None:
        _setup_default_logging(default_level, logs_dir)
        return

    config_path = Path(config_path)
    if not config_path.exists():
        print(
            f"Logging config file {config_path} not found. Using default configuration."
        )
        _setup_default_logging(default_level, logs_dir)
        return

    try:
        with open(config_path, encoding="utf-8") as config_file:
            config = yaml.safe_load(config_file)

        if environment and environment in config:
            env_config = config.pop(environment)
            for section in ("formatters", "handlers", "loggers"):
                if section in env_config:
                    config.setdefault(section, {}).update(env_config[section])

        logging.config.dictConfig(config)

    except (OSError, yaml.YAMLError, ValueError, TypeError) as e:
        print(f"Error loading logging configuration from {config_path}: {e}")
        print("Using default logging configuration")
        _setup_default_logging(default_level, logs_dir)


def _setup_default_logging(level: int, logs_dir: Path) -> None:
    """Setup default logging with both console and file handlers.

    Args:
        level: Logging level
        logs_dir: Directory for log files
    """
    detailed_formatter = logging.Formatter(DETAILED_FORMAT, datefmt=DATE_FORMAT)
    simple_formatter = logging.Formatter(SIMPLE_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(simple_formatter)

    # Rotating file handler for all logs
    file_handler = logging.handlers.RotatingFileHandler(
        logs_dir / "savegame.log",
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(detailed_formatter)

    # Rotating file handler for errors only
    error_handler = logging.handlers.RotatingFileHandler(
        logs_dir / "error.log",
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(detailed_formatter)

    # Capture everything, handlers will filter
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(error_handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
