"""Unit tests for the event system.

Tests cover:
- NodeEvent creation, normalization and serialization
- EventEmitter subscriptions, dispatching and error isolation
- Events emitted by nodes and bubbling to ancestors and the runtime
- Structural events (node, child-added, child-removed, destroyed)
"""

from datetime import datetime, timezone

import pytest

from formtree.errors import FormTreeError
from formtree.events import EventEmitter, NodeEvent
from formtree.runtime import FormRuntime
from formtree.types import NodeEventType


class TestNodeEvent:
    """Test NodeEvent creation."""

    def test_defaults(self):
        """Should generate an id and a UTC timestamp."""
        event = NodeEvent(type=NodeEventType.PROP, origin="input_1")

        assert event.event_id.startswith("evt_")
        assert event.ts.tzinfo == timezone.utc
        assert event.payload == {}
        assert event.bubbled is False

    def test_string_type_is_normalized(self):
        """Should accept the plain string form of an event type."""
        event = NodeEvent(type="message-added", origin="input_1")
        assert event.type == NodeEventType.MESSAGE_ADDED

    def test_is_immutable(self):
        """Should prevent modification of event fields (frozen dataclass)."""
        event = NodeEvent(type=NodeEventType.PROP, origin="input_1")
        with pytest.raises(Exception):
            event.origin = "input_2"

    def test_to_dict(self):
        """Should serialize with camelCase keys."""
        ts = datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)
        event = NodeEvent(
            type=NodeEventType.COMMIT,
            origin="input_1",
            payload={"value": "x"},
            event_id="evt_001",
            ts=ts,
        )

        assert event.to_dict() == {
            "eventId": "evt_001",
            "type": "commit",
            "origin": "input_1",
            "ts": "2024-01-15T10:30:00+00:00",
            "bubbled": False,
            "payload": {"value": "x"},
        }


class TestEventEmitter:
    """Test EventEmitter subscriptions and dispatching."""

    def test_type_specific_listener(self):
        """Should only deliver events of the subscribed type."""
        emitter = EventEmitter()
        received = []
        emitter.on(NodeEventType.PROP, received.append)

        emitter.emit(NodeEvent(type=NodeEventType.PROP, origin="a"))
        emitter.emit(NodeEvent(type=NodeEventType.COMMIT, origin="a"))

        assert [e.type for e in received] == [NodeEventType.PROP]

    def test_wildcard_listener_runs_after_typed(self):
        """Should call typed listeners before wildcard listeners."""
        emitter = EventEmitter()
        order = []
        emitter.on_any(lambda e: order.append("any"))
        emitter.on(NodeEventType.PROP, lambda e: order.append("typed"))

        emitter.emit(NodeEvent(type=NodeEventType.PROP, origin="a"))

        assert order == ["typed", "any"]

    def test_off_and_off_any(self):
        """Should unsubscribe and tolerate unknown listeners."""
        emitter = EventEmitter()
        received = []
        emitter.on("prop", received.append)
        emitter.on_any(received.append)

        emitter.off(NodeEventType.PROP, received.append)
        emitter.off_any(received.append)
        emitter.off(NodeEventType.COMMIT, received.append)
        emitter.emit(NodeEvent(type=NodeEventType.PROP, origin="a"))

        assert received == []

    def test_listener_errors_are_isolated(self):
        """A raising listener should not stop the others."""
        emitter = EventEmitter()
        received = []

        def broken(event):
            raise ValueError("listener failure")

        emitter.on(NodeEventType.PROP, broken)
        emitter.on(NodeEventType.PROP, received.append)

        emitter.emit(NodeEvent(type=NodeEventType.PROP, origin="a"))

        assert len(received) == 1

    def test_listener_count_and_clear(self):
        """Should count listeners per type and in total."""
        emitter = EventEmitter()
        emitter.on(NodeEventType.PROP, lambda e: None)
        emitter.on(NodeEventType.COMMIT, lambda e: None)
        emitter.on_any(lambda e: None)

        assert emitter.listener_count(NodeEventType.PROP) == 1
        assert emitter.listener_count() == 3

        emitter.clear()

        assert emitter.listener_count() == 0


class TestNodeEvents:
    """Test events emitted by nodes."""

    def test_node_event_fires_once_before_props(self):
        """The node event should fire once, before any prop is applied."""
        runtime = FormRuntime()
        created = []
        seen_props = []
        runtime.on(NodeEventType.NODE_CREATED, created.append)

        node = runtime.create_node(
            {"label": "Email", "id": "email_field"},
            on_node=lambda n: seen_props.append(dict(n.props)),
        )

        assert len(created) == 1
        assert created[0].origin == "email_field"
        assert seen_props == [{}]
        assert node.props["label"] == "Email"

    def test_generated_ids_and_names(self):
        """Nodes without an id should get input_<n>."""
        runtime = FormRuntime()
        first = runtime.create_node({})
        second = runtime.create_node({"type": "email"})

        assert first.id.startswith("input_")
        assert first.id != second.id
        assert second.name.startswith("email_")
        assert runtime.get_node(first.id) is first

    def test_events_bubble_to_ancestors_and_runtime(self):
        """Events should reach every ancestor and the runtime, marked as bubbled."""
        runtime = FormRuntime()
        form = runtime.create_node({"type": "group"})
        inner = runtime.create_node({"type": "group"}, parent=form)
        leaf = runtime.create_node({}, parent=inner)
        at_form, at_runtime = [], []
        form.on(NodeEventType.PROP, at_form.append)
        runtime.on(NodeEventType.PROP, at_runtime.append)

        leaf.props["help"] = "Some help"

        assert [e.origin for e in at_form] == [leaf.id]
        assert at_form[0].bubbled is True
        assert at_runtime[0].event_id == at_form[0].event_id

    def test_own_listener_sees_unbubbled_event(self):
        runtime = FormRuntime()
        node = runtime.create_node({})
        received = []
        node.on(NodeEventType.BLUR, received.append)

        node.blur()
        node.blur()

        assert [e.payload["first"] for e in received] == [True, False]
        assert received[0].bubbled is False

    def test_child_added_and_removed(self):
        """Should announce structural changes on the parent."""
        runtime = FormRuntime()
        form = runtime.create_node({"type": "group"})
        added, removed = [], []
        form.on(NodeEventType.CHILD_ADDED, added.append)
        form.on(NodeEventType.CHILD_REMOVED, removed.append)

        child = runtime.create_node({"name": "email"}, parent=form)
        form.remove_child(child)

        assert added[0].payload == {"child": child.id, "name": "email", "index": 0}
        assert removed[0].payload == {"child": child.id, "name": "email", "index": 0}
        assert child.parent is None
        assert form.children == []

    def test_inputs_cannot_have_children(self):
        """Should refuse to nest a node under an input."""
        runtime = FormRuntime()
        leaf = runtime.create_node({})
        with pytest.raises(FormTreeError):
            runtime.create_node({}, parent=leaf)

    def test_destroy_unregisters_subtree(self):
        """Destroying a node should detach it and drop it from the runtime."""
        runtime = FormRuntime()
        form = runtime.create_node({"type": "group"})
        group = runtime.create_node({"type": "group"}, parent=form)
        leaf = runtime.create_node({"errors": ["x"]}, parent=group)
        destroyed = []
        form.on(NodeEventType.DESTROYED, destroyed.append)

        group.destroy()

        assert form.children == []
        assert runtime.get_node(group.id) is None
        assert runtime.get_node(leaf.id) is None
        assert leaf.messages == []
        assert [e.origin for e in destroyed] == [leaf.id, group.id]

    def test_renaming_id_updates_registry(self):
        runtime = FormRuntime()
        node = runtime.create_node({})
        old_id = node.id

        node.props["id"] = "renamed"

        assert runtime.get_node("renamed") is node
        assert runtime.get_node(old_id) is None
