"""Typed publish/subscribe channel for save system events."""

from .manager import Event, EventManager, EventType

__all__ = ["Event", "EventManager", "EventType"]
