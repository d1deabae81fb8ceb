"""Event system for formtree nodes.

Nodes announce every observable change (prop commits, message additions and
removals, structural changes, validity changes) as a typed NodeEvent. The
rendering layer subscribes to these through an EventEmitter to re-render
incrementally.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import uuid

import structlog

from formtree.types import NodeEventType

logger = structlog.get_logger()


@dataclass(frozen=True)
class NodeEvent:
    """A single change notification emitted by a node.

    Attributes:
        type: Event type from NodeEventType
        origin: Id of the node where the change happened
        payload: Event-specific data (prop name and value, message, child id...)
        event_id: Unique event identifier (e.g., "evt_3f2a...")
        ts: UTC timestamp when the event was created
        bubbled: True when delivered to an ancestor of the origin node

    Examples:
        >>> event = NodeEvent(type=NodeEventType.PROP, origin="input_1",
        ...                   payload={"prop": "label", "value": "Name"})
        >>> event.type
        <NodeEventType.PROP: 'prop'>
    """
    type: NodeEventType
    origin: str
    payload: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: f"evt_{uuid.uuid4().hex[:16]}")
    ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    bubbled: bool = False

    def __post_init__(self):
        if isinstance(self.type, str) and not isinstance(self.type, NodeEventType):
            object.__setattr__(self, "type", NodeEventType(self.type))

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization."""
        return {
            "eventId": self.event_id,
            "type": self.type.value,
            "origin": self.origin,
            "ts": self.ts.isoformat(),
            "bubbled": self.bubbled,
            "payload": self.payload,
        }


EventListener = Callable[[NodeEvent], None]
"""Type alias for event listener callbacks.

Listeners are called synchronously when events are emitted.
"""


class EventEmitter:
    """Dispatches node events to registered listeners.

    Features:
    - Type-specific subscriptions
    - Wildcard subscriptions (listen to all events)
    - Synchronous dispatch in registration order
    - Error isolation (a raising listener is logged and skipped)

    Examples:
        >>> emitter = EventEmitter()
        >>> seen = []
        >>> emitter.on(NodeEventType.PROP, seen.append)
        >>> emitter.emit(NodeEvent(type=NodeEventType.PROP, origin="input_1"))
        >>> len(seen)
        1
    """

    def __init__(self):
        self._listeners: Dict[NodeEventType, List[EventListener]] = {}
        self._any_listeners: List[EventListener] = []

    def on(self, event_type: NodeEventType, listener: EventListener) -> None:
        """Subscribe to a specific event type."""
        event_type = NodeEventType(event_type)
        if event_type not in self._listeners:
            self._listeners[event_type] = []
        self._listeners[event_type].append(listener)

    def on_any(self, listener: EventListener) -> None:
        """Subscribe to all event types."""
        self._any_listeners.append(listener)

    def off(self, event_type: NodeEventType, listener: EventListener) -> None:
        """Unsubscribe from a specific event type."""
        event_type = NodeEventType(event_type)
        if event_type in self._listeners:
            try:
                self._listeners[event_type].remove(listener)
            except ValueError:
                pass  # Listener not registered, ignore

    def off_any(self, listener: EventListener) -> None:
        """Unsubscribe from the wildcard subscription."""
        try:
            self._any_listeners.remove(listener)
        except ValueError:
            pass  # Listener not registered, ignore

    def emit(self, event: NodeEvent) -> None:
        """Dispatch an event to all registered listeners.

        Type-specific listeners run first, then wildcard listeners. A listener
        that raises is logged and does not prevent the remaining listeners
        from running.
        """
        listeners = list(self._listeners.get(event.type, [])) + list(self._any_listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.error(
                    "event_listener_failed",
                    event_type=event.type.value,
                    origin=event.origin,
                    exc_info=True,
                )

    def clear(self) -> None:
        """Remove all event listeners."""
        self._listeners.clear()
        self._any_listeners.clear()

    def listener_count(self, event_type: Optional[NodeEventType] = None) -> int:
        """Get count of registered listeners.

        Args:
            event_type: If provided, count listeners for this type only.
                        If None, count all listeners (including wildcard).
        """
        if event_type is not None:
            return len(self._listeners.get(NodeEventType(event_type), []))
        total = len(self._any_listeners)
        for listeners in self._listeners.values():
            total += len(listeners)
        return total


__all__ = [
    "NodeEvent",
    "EventListener",
    "EventEmitter",
]
