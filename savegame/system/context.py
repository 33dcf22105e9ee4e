"""Save system wiring.

``create_save_system`` builds one of each service and hands them out
together, so consumers receive the managers explicitly instead of reaching
for global instances.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..config.settings import SaveSystemConfig
from ..events.manager import EventManager
from ..managers.load_manager import LoadManager
from ..managers.save_manager import SaveManager
from ..models.save_data import SaveData
from ..storage.persistence import SaveFileStorage
from ..storage.watcher import SaveDirectoryWatcher
from ..validation.validator import SaveValidator

logger = logging.getLogger(__name__)


@dataclass
class SaveSystem:
    """The save system services, constructed together."""

    config: SaveSystemConfig
    event_manager: EventManager
    storage: SaveFileStorage
    validator: SaveValidator
    save_manager: SaveManager
    load_manager: LoadManager
    watcher: Optional[SaveDirectoryWatcher] = None
    _started: bool = field(default=False, repr=False)

    @property
    def is_running(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start autosave and, when configured, directory watching."""
        if self._started:
            return

        self.storage.cleanup_temp_files()
        if self.config.auto_save_enabled:
            self.save_manager.start_auto_save()
        if self.watcher is not None:
            self.watcher.start_watching()

        self._started = True
        logger.info(f"Save system started at {self.config.save_directory}")

    async def shutdown(self) -> bool:
        """Stop background work and attempt one bounded final save.

        Returns:
            True if the final save completed
        """
        if self.watcher is not None:
            self.watcher.stop_watching()

        self.load_manager.shutdown()
        saved = await self.save_manager.shutdown()

        self._started = False
        logger.info("Save system shut down")
        return saved


def create_save_system(
    config: Optional[SaveSystemConfig] = None,
    event_manager: Optional[EventManager] = None,
    state_provider: Optional[Callable[[], Optional[SaveData]]] = None,
    on_apply: Optional[Callable[[SaveData], Any]] = None,
) -> SaveSystem:
    """Construct and connect the save system services.

    Args:
        config: Save system settings (defaults apply when omitted)
        event_manager: Event channel to publish on (a new one when omitted)
        state_provider: Returns the current game state for saves made
            without an explicit record
        on_apply: Receives each record a load applies

    Returns:
        The connected services
    """
    config = config or SaveSystemConfig()
    event_manager = event_manager or EventManager()

    storage = SaveFileStorage(
        config.save_directory,
        event_manager=event_manager,
        max_backups=config.max_backups,
    )
    validator = SaveValidator(app_version=config.app_version)
    save_manager = SaveManager(
        config,
        storage,
        validator,
        event_manager,
        state_provider=state_provider,
    )
    load_manager = LoadManager(
        config,
        save_manager,
        storage,
        validator,
        event_manager,
        on_apply=on_apply,
    )

    watcher = None
    if config.watch_save_directory:
        watcher = SaveDirectoryWatcher(config.save_directory, event_manager)

    return SaveSystem(
        config=config,
        event_manager=event_manager,
        storage=storage,
        validator=validator,
        save_manager=save_manager,
        load_manager=load_manager,
        watcher=watcher,
    )
