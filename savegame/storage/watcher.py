"""Save directory watching.

Translates external creation and deletion of slot payload files into the
same ``save_file_created``/``save_file_deleted`` notifications the storage
layer publishes for its own writes.
"""

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ..events.manager import EventType
from .persistence import PAYLOAD_FILE_NAME, RESERVED_DIR_NAMES

if TYPE_CHECKING:
    from ..events.manager import EventManager

logger = logging.getLogger(__name__)


class SaveFileHandler(FileSystemEventHandler):
    """Handles file system events for slot payload files."""

    def __init__(self, watcher: "SaveDirectoryWatcher", debounce_delay: float = 0.1):
        self.watcher = watcher
        self.debounce_delay = debounce_delay
        self.last_seen: dict[tuple[str, str], float] = {}

    def _slot_for(self, path: str) -> Optional[str]:
        file_path = Path(path)
        if file_path.name != PAYLOAD_FILE_NAME:
            return None
        slot_dir = file_path.parent
        if slot_dir.parent != self.watcher.save_directory:
            return None
        if slot_dir.name in RESERVED_DIR_NAMES:
            return None
        return slot_dir.name

    def _dispatch(self, event_type: EventType, path: str) -> None:
        slot_name = self._slot_for(path)
        if slot_name is None:
            return

        # Debounce editors and copy tools that emit several events per change
        key = (event_type.value, slot_name)
        now = time.time()
        if now - self.last_seen.get(key, 0.0) < self.debounce_delay:
            return
        self.last_seen[key] = now

        self.watcher.notify(event_type, slot_name)

    def on_created(self, event):
        if not event.is_directory:
            self._dispatch(EventType.SAVE_FILE_CREATED, event.src_path)

    def on_deleted(self, event):
        if not event.is_directory:
            self._dispatch(EventType.SAVE_FILE_DELETED, event.src_path)

    def on_moved(self, event):
        if event.is_directory:
            return
        # Atomic writes arrive as a rename of a temp file onto the payload
        self._dispatch(EventType.SAVE_FILE_CREATED, event.dest_path)
        self._dispatch(EventType.SAVE_FILE_DELETED, event.src_path)


class SaveDirectoryWatcher:
    """Watches the save root for slot payload changes."""

    def __init__(self, save_directory: Path, event_manager: "EventManager"):
        self.save_directory = Path(save_directory).resolve()
        self.event_manager = event_manager
        self._observer: Optional[Observer] = None
        self._is_watching = False

    @property
    def is_watching(self) -> bool:
        return self._is_watching

    def notify(self, event_type: EventType, slot_name: str) -> None:
        logger.debug(f"External change detected: {event_type.value} for {slot_name}")
        self.event_manager.emit_event(
            event_type, {"slot_name": slot_name, "external": True}
        )

    def start_watching(self) -> bool:
        """Start monitoring the save directory.

        Returns:
            True if watching started successfully, False otherwise
        """
        if self._is_watching:
            logger.warning("Watcher is already running")
            return True

        try:
            self.save_directory.mkdir(parents=True, exist_ok=True)
            self._observer = Observer()
            self._observer.schedule(
                SaveFileHandler(self), str(self.save_directory), recursive=True
            )
            self._observer.start()
        except OSError as e:
            logger.error(f"Failed to start save directory watching: {e}")
            self._observer = None
            return False

        self._is_watching = True
        logger.info(f"Watching save directory: {self.save_directory}")
        return True

    def stop_watching(self) -> None:
        if not self._is_watching:
            return

        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None

        self._is_watching = False
        logger.info("Stopped save directory watching")
