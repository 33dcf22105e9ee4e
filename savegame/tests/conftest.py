"""Shared test configuration and fixtures for the save system."""

import tempfile
from pathlib import Path

import pytest

from savegame.config.settings import SaveSystemConfig
from savegame.events.manager import EventManager
from savegame.system.context import create_save_system


@pytest.fixture()
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture()
def save_config(temp_dir):
    """Settings with all delays removed and autosave disabled."""
    return SaveSystemConfig(
        save_directory=temp_dir / "SaveData",
        log_dir=temp_dir / "logs",
        auto_save_enabled=False,
        retry_backoff_seconds=0.0,
        apply_settle_delay=0.0,
        streaming_chunk_delay=0.0,
    )


@pytest.fixture()
def event_manager():
    return EventManager()


@pytest.fixture()
def save_system(save_config, event_manager):
    """Connected save system services."""
    system = create_save_system(save_config, event_manager=event_manager)
    yield system
    system.load_manager.shutdown()
