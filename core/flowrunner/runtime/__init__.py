"""Runtime integrations for the flow runner."""

from flowrunner.runtime.event_bus import (
    EventBus,
    EventBusObserver,
    FlowEvent,
    FlowEventType,
)

__all__ = ["EventBus", "EventBusObserver", "FlowEvent", "FlowEventType"]
