"""Event management for save and load notifications.

Delivery is synchronous and follows subscription order. A subscriber that
raises is logged and skipped; the remaining subscribers still receive the
event.
"""

import asyncio
import inspect
import logging
import threading
import time
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Union

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Save system event types."""

    # Save events
    SAVE_STARTED = "save_started"
    SAVE_COMPLETED = "save_completed"
    SAVE_ERROR = "save_error"
    SAVE_PROGRESS = "save_progress"

    # Single-slot load events raised by the save manager
    SLOT_LOAD_STARTED = "slot_load_started"
    SLOT_LOAD_COMPLETED = "slot_load_completed"
    SLOT_LOAD_ERROR = "slot_load_error"
    SLOT_LOAD_PROGRESS = "slot_load_progress"

    # Orchestrated load events raised by the load manager
    LOAD_STARTED = "load_started"
    LOAD_COMPLETED = "load_completed"
    LOAD_FAILED = "load_failed"
    LOAD_PROGRESS = "load_progress"
    LOAD_OPERATION_CHANGED = "load_operation_changed"
    SAVE_SLOT_DISCOVERY_COMPLETED = "save_slot_discovery_completed"
    SAVE_FILE_VALIDATED = "save_file_validated"

    # Storage change notifications
    SAVE_FILE_CREATED = "save_file_created"
    SAVE_FILE_DELETED = "save_file_deleted"
    SAVE_FILE_ERROR = "save_file_error"


@dataclass
class Event:
    """Record of an emitted event."""

    type: str
    data: dict[str, Any]
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data, "timestamp": self.timestamp}


def _event_key(event_type: Union[EventType, str]) -> str:
    return event_type.value if isinstance(event_type, EventType) else event_type


class EventManager:
    """Thread-safe synchronous event channel.

    Callbacks are invoked as ``callback(event_type, data)`` where
    ``event_type`` is the string value of the event.
    """

    def __init__(self, max_history_size: int = 200):
        self._subscribers: dict[str, dict[str, Callable]] = defaultdict(dict)
        self._lock = threading.RLock()
        self.event_history: deque = deque(maxlen=max_history_size)
        self.stats = {"events_emitted": 0, "errors": 0}
        self._pending_tasks: set[asyncio.Task] = set()

    def subscribe_to_events(
        self, event_type: Union[EventType, str], callback: Callable
    ) -> str:
        """Subscribe to an event type.

        Args:
            event_type: Type of event to subscribe to
            callback: Function to call when the event occurs

        Returns:
            Subscription ID for unsubscribing
        """
        key = _event_key(event_type)
        subscription_id = str(uuid.uuid4())

        with self._lock:
            self._subscribers[key][subscription_id] = callback

        logger.debug(f"Subscribed to {key} with ID {subscription_id}")
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Unsubscribe from events.

        Args:
            subscription_id: ID returned from subscribe_to_events

        Returns:
            True if successfully unsubscribed
        """
        with self._lock:
            for event_type, subscribers in self._subscribers.items():
                if subscription_id in subscribers:
                    del subscribers[subscription_id]
                    logger.debug(f"Unsubscribed {subscription_id} from {event_type}")
                    return True

        logger.warning(f"Subscription ID {subscription_id} not found")
        return False

    def emit_event(
        self, event_type: Union[EventType, str], data: Optional[dict[str, Any]] = None
    ) -> None:
        """Emit an event to all subscribers, in subscription order.

        Args:
            event_type: Type of event being emitted
            data: Event data passed to callbacks
        """
        key = _event_key(event_type)
        data = data or {}

        with self._lock:
            subscribers = list(self._subscribers[key].items())
            self.event_history.append(Event(type=key, data=data))
            self.stats["events_emitted"] += 1

        if not subscribers:
            logger.debug(f"No subscribers for event type: {key}")
            return

        # Call subscribers outside lock to prevent deadlocks
        for subscription_id, callback in subscribers:
            try:
                if inspect.iscoroutinefunction(callback):
                    # Coroutine subscribers are scheduled on the running loop
                    task = asyncio.get_running_loop().create_task(
                        callback(key, data), name=f"{key}:{subscription_id}"
                    )
                    self._pending_tasks.add(task)
                    task.add_done_callback(self._on_task_done)
                else:
                    callback(key, data)
            except Exception as e:
                with self._lock:
                    self.stats["errors"] += 1
                logger.error(
                    f"Error in event callback {subscription_id} for {key}: {e}"
                )

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            with self._lock:
                self.stats["errors"] += 1
            logger.error(f"Error in async event callback {task.get_name()}: {error}")

    def get_subscriber_count(
        self, event_type: Union[EventType, str, None] = None
    ) -> int:
        """Get number of subscribers for an event type, or in total."""
        with self._lock:
            if event_type:
                return len(self._subscribers[_event_key(event_type)])
            return sum(len(subs) for subs in self._subscribers.values())

    def clear_subscribers(self, event_type: Union[EventType, str, None] = None) -> None:
        with self._lock:
            if event_type:
                self._subscribers[_event_key(event_type)].clear()
                logger.info(f"Cleared subscribers for {_event_key(event_type)}")
            else:
                self._subscribers.clear()
                logger.info("Cleared all event subscribers")

    def get_recent_events(
        self, event_type: Union[EventType, str, None] = None, limit: int = 50
    ) -> list[Event]:
        """Return the most recent events, newest last."""
        with self._lock:
            events = list(self.event_history)
        if event_type:
            key = _event_key(event_type)
            events = [e for e in events if e.type == key]
        return events[-limit:]
