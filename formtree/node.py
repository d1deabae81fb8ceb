"""The formtree Node: a field, group or list in a form tree.

A Node composes the other engine components:

- a ConfigScope chained to its parent's scope (config cascade)
- a Hooks set whose ``prop`` chain every prop assignment passes through
- a Validator running its rule chain and driving its validation state
- a MessageStore holding its validation, error and info messages
- an EventEmitter announcing every change (events bubble to ancestors)

Creation order:

1. the node object exists and the ``node`` event fires
2. libraries and plugins are applied (may ``define`` the node)
3. the node joins its parent, chaining its config scope
4. every initial prop passes through the prop pipeline
5. the validation chain is parsed and run once

Usage:
    >>> from formtree.runtime import FormRuntime
    >>> runtime = FormRuntime()
    >>> node = runtime.create_node({"label": "Email", "validation": "required",
    ...                             "validationBehavior": "live"})
    >>> [m.text for m in node.store.visible()]
    ['Email is required.']
"""

import asyncio
from dataclasses import replace
import itertools
import re
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterator,
    List,
    MutableMapping,
    Optional,
    Union,
)

import structlog

from formtree.classes import SECTIONS, compose_classes
from formtree.config import DEFAULT_OPTIONS, ConfigScope
from formtree.errors import FormTreeError, PluginError
from formtree.events import EventEmitter, EventListener, NodeEvent
from formtree.hooks import Hooks, PropRecord
from formtree.messages import Message, MessageStore
from formtree.plugins import Definition, apply_plugins, define, inputs, plugin_name
from formtree.state_machine import messages_visible
from formtree.types import MessageKind, NodeEventType, NodeType, ValidationBehavior, ValidationState
from formtree.validation import Validator

if TYPE_CHECKING:
    from formtree.runtime import FormRuntime

logger = structlog.get_logger()

_sequence = itertools.count(1)

CORE_PROPS = frozenset({
    "id",
    "name",
    "type",
    "value",
    "label",
    "help",
    "delay",
    "errors",
    "classes",
    "config",
    "plugins",
    "validation",
    "validationRules",
    "validationMessages",
    "validationLabel",
    "validationBehavior",
})

# Props whose change invalidates the parsed rule chain.
CHAIN_PROPS = frozenset({"validation", "validationRules"})
# Props whose change only requires re-running the chain.
RERUN_PROPS = frozenset({"validationMessages", "validationLabel"})
VISIBILITY_PROPS = frozenset({"validationBehavior", "errorBehavior"})

EXTERNAL_SOURCE = "external"

_missing = object()


def camel(key: str) -> str:
    """Normalize ``validation-label`` / ``validation_label`` to ``validationLabel``."""
    parts = re.split(r"[-_]", key)
    if len(parts) == 1:
        return key
    return parts[0] + "".join(part[:1].upper() + part[1:] for part in parts[1:])


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class Props(MutableMapping):
    """A node's resolved props.

    Reading a key the node never set falls back to the config cascade, so
    ``node.props["errorBehavior"]`` reflects the nearest ancestor's option.
    Writing goes through the node's prop pipeline.
    """

    def __init__(self, node: "Node"):
        self._node = node
        self._values: Dict[str, Any] = {}

    def __getitem__(self, key: str) -> Any:
        key = camel(key)
        if key in self._values:
            return self._values[key]
        value = self._node.config.resolve(key, _missing)
        if value is _missing:
            raise KeyError(key)
        return value

    def __setitem__(self, key: str, value: Any) -> None:
        self._node.set_prop(key, value)

    def __delitem__(self, key: str) -> None:
        if camel(key) not in self._values:
            raise KeyError(key)
        self._node.remove_prop(key)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._values))

    def __len__(self) -> int:
        return len(self._values)

    def explicit(self, key: str) -> bool:
        """True when the node itself set ``key`` (no cascade fallback)."""
        return camel(key) in self._values

    def __repr__(self) -> str:
        return f"Props({self._values!r})"


class Node:
    """A stateful node in a form tree.

    Attributes:
        id: Process-unique identifier (``input_<n>`` unless given)
        name: Name used as the key in a parent group's value
        type: Structural type (input, group, list)
        input_type: The requested type name (``text``, ``group``...)
        parent: Owning node, or None for a root
        children: Owned child nodes, in order
        props: Resolved props (see Props)
        attrs: Undeclared props, passed through untouched
        config: This node's configuration scope
        hook: Hook chains (prop, input, commit, message, classes)
        store: Message store
        emitter: Event emitter for this node's (and bubbled) events
        definition: Installed Definition, if any
        plugin_errors: PluginErrors recorded while applying plugins
        dirty: True once the value has differed from its initial value
        blurred: True once a blur has been reported
    """

    def __init__(
        self,
        props: Optional[Dict[str, Any]] = None,
        parent: Optional["Node"] = None,
        runtime: Optional["FormRuntime"] = None,
        on_node: Optional[Callable[["Node"], Any]] = None,
    ):
        if parent is not None and parent.type == NodeType.INPUT:
            raise FormTreeError(f"Input node '{parent.id}' cannot have children")
        props = dict(props or {})
        sequence = next(_sequence)
        self.input_type: str = str(props.get("type") or "text")
        self.id: str = str(props.get("id") or f"input_{sequence}")
        self.name: str = str(props.get("name") or f"{self.input_type}_{sequence}")
        self.type: NodeType = NodeType.INPUT
        self.schema: Any = None
        self.definition: Optional[Definition] = None
        self.declared_props: FrozenSet[str] = frozenset()
        self.parent: Optional[Node] = None
        self.children: List[Node] = []
        self.attrs: Dict[str, Any] = {}
        self.plugin_errors: List[Exception] = []
        self.dirty = False
        self.blurred = False

        self._runtime = runtime
        self._initializing = True
        self._value: Any = None
        self._initial: Any = None
        self._commit_handle: Optional[asyncio.TimerHandle] = None
        self._valid = False
        self._validity_scheduled = False
        self._settle_waiters: List[asyncio.Future] = []

        self.props = Props(self)
        self.hook = Hooks(on_error=self._hook_failed)
        self.emitter = EventEmitter()
        self.store = MessageStore(
            hook=self.hook.message,
            on_added=self._message_added,
            on_removed=self._message_removed,
        )
        self.validator = Validator(self)
        self.config = ConfigScope(parent=runtime.config if runtime is not None else None)
        self.config.on_invalidate(self._option_invalidated)

        own_plugins = list(props.pop("plugins", None) or [])
        if parent is not None:
            inherited, inherited_libraries = parent.plugins, parent._libraries
        elif runtime is not None:
            inherited, inherited_libraries = runtime.plugins, runtime.plugins
        else:
            inherited, inherited_libraries = [inputs], [inputs]
        self.plugins: List[Any] = list(inherited) + own_plugins
        # Libraries closest to the node resolve its type first.
        self._libraries: List[Any] = own_plugins + list(inherited_libraries)

        if runtime is not None:
            runtime._register(self)
        logger.debug("node_created", node_id=self.id, input_type=self.input_type)
        if on_node is not None:
            on_node(self)
        self.emit(NodeEventType.NODE_CREATED, {"id": self.id, "type": self.input_type})

        apply_plugins(self, self.plugins, self._libraries)

        if parent is not None:
            parent.add_child(self)
            seed = parent._value if parent.type == NodeType.GROUP else None
            if "value" not in props and isinstance(seed, dict) and self.name in seed:
                props["value"] = seed[self.name]

        for key, value in props.items():
            self.set_prop(key, value)

        self._initializing = False
        self.validator.parse()
        self.validator.run()

    # -- definition -----------------------------------------------------

    def define(self, descriptor: Union[Definition, Dict[str, Any]]) -> Definition:
        """Install a type definition (see ``formtree.plugins.define``)."""
        return define(self, descriptor)

    def _hook_failed(self, handler: Any, exc: Exception) -> None:
        error = PluginError(plugin_name(handler), self.id, f"Hook '{plugin_name(handler)}' failed: {exc}")
        error.__cause__ = exc
        self.plugin_errors.append(error)

    # -- events ---------------------------------------------------------

    def on(self, event_type: NodeEventType, listener: EventListener) -> None:
        self.emitter.on(event_type, listener)

    def off(self, event_type: NodeEventType, listener: EventListener) -> None:
        self.emitter.off(event_type, listener)

    def emit(self, event_type: NodeEventType, payload: Optional[Dict[str, Any]] = None, bubble: bool = True) -> None:
        """Emit an event here, then on each ancestor and the runtime."""
        event = NodeEvent(type=event_type, origin=self.id, payload=payload or {})
        self.emitter.emit(event)
        if not bubble:
            return
        bubbled = NodeEvent(
            type=event.type,
            origin=event.origin,
            payload=event.payload,
            event_id=event.event_id,
            ts=event.ts,
            bubbled=True,
        )
        ancestor = self.parent
        while ancestor is not None:
            ancestor.emitter.emit(bubbled)
            ancestor = ancestor.parent
        if self._runtime is not None:
            self._runtime.emitter.emit(bubbled)

    # -- props ----------------------------------------------------------

    def declares(self, name: str) -> bool:
        """Whether ``name`` is a prop (as opposed to a pass-through attr)."""
        return (
            name in CORE_PROPS
            or name in self.declared_props
            or name in DEFAULT_OPTIONS
            or name.endswith("Class")
            or self.config.resolve(name, _missing) is not _missing
        )

    def set_prop(self, key: str, value: Any) -> bool:
        """Assign a prop through the ``prop`` hook chain.

        Returns:
            False when a hook swallowed the assignment, True otherwise.
        """
        name = camel(key)
        target = name if self.declares(name) else key
        completed, record = self.hook.prop.dispatch(PropRecord(prop=target, value=value, raw=value))
        if not completed:
            return False
        if not self.declares(camel(record.prop)):
            self.attrs[record.prop] = record.value
            self.emit(NodeEventType.PROP, {"prop": record.prop, "value": record.value, "attr": True})
            return True
        name = camel(record.prop)
        previous = self.props._values.get(name)
        self.props._values[name] = record.value
        self.emit(NodeEventType.PROP, {"prop": name, "value": record.value, "previous": previous})
        self._prop_committed(name, record.value, previous)
        return True

    def remove_prop(self, key: str) -> None:
        name = camel(key)
        previous = self.props._values.pop(name, None)
        self.emit(NodeEventType.PROP, {"prop": name, "value": None, "previous": previous, "removed": True})
        self._prop_committed(name, None, previous)

    def set_validation(self, validation: Any) -> bool:
        """Replace the rule chain (string or structured list) and re-run it."""
        return self.set_prop("validation", validation)

    def _prop_committed(self, name: str, value: Any, previous: Any) -> None:
        if name == "id" and value:
            self._rename(str(value))
        elif name == "name" and value:
            self.name = str(value)
        elif name == "value":
            if self._initializing:
                self._seed(value)
            else:
                self.set_value(value, delay=0)
        elif name == "errors":
            self.set_errors(value)
        elif name == "config":
            for option, option_value in (value or {}).items():
                self.set_option(option, option_value)
        elif name in CHAIN_PROPS and not self._initializing:
            self.validator.parse()
            self.validator.run()
        elif name in RERUN_PROPS and not self._initializing:
            self.validator.run()
        elif name in VISIBILITY_PROPS:
            self._refresh_visibility()

        if name == "classes" or name.endswith("Class"):
            self._classes_changed(name, value, previous)

    def _rename(self, new_id: str) -> None:
        if new_id == self.id:
            return
        old_id, self.id = self.id, new_id
        self.validator.machine.node_id = new_id
        if self._runtime is not None:
            self._runtime._reregister(old_id, self)

    def _classes_changed(self, name: str, value: Any, previous: Any) -> None:
        if name == "classes":
            sections = set()
            for source in (value, previous):
                if isinstance(source, dict):
                    sections.update(source)
        else:
            sections = {name[: -len("Class")]}
        if sections:
            self.emit(
                NodeEventType.CLASSES,
                {section: compose_classes(self, section) for section in sorted(sections)},
            )

    # -- config ---------------------------------------------------------

    def set_option(self, key: str, value: Any) -> bool:
        """Write an option into this node's scope; descendants see it at once."""
        stored = self.config.set(key, value)
        if stored:
            self.emit(NodeEventType.CONFIG, {"key": key, "value": value})
        return stored

    def option(self, key: str, default: Any = None) -> Any:
        """Resolve an option through the cascade."""
        return self.config.resolve(key, default)

    def _option_invalidated(self, key: str) -> None:
        if key in VISIBILITY_PROPS and not self.props.explicit(key):
            self._refresh_visibility()

    # -- classes --------------------------------------------------------

    def resolve_classes(self, section: str) -> str:
        """Compose the class string for one section, freshly."""
        return compose_classes(self, section)

    @property
    def classes(self) -> Dict[str, str]:
        return {section: compose_classes(self, section) for section in SECTIONS}

    # -- value ----------------------------------------------------------

    @property
    def value(self) -> Any:
        if self.type == NodeType.GROUP:
            return {child.name: child.value for child in self.children}
        if self.type == NodeType.LIST:
            return [child.value for child in self.children]
        return self._value

    def _seed(self, value: Any) -> None:
        completed, value = self.hook.commit.dispatch(value)
        if completed:
            self._value = value
            self._initial = value

    def _delay(self, override: Optional[float]) -> float:
        delay = override if override is not None else self.props.get("delay")
        try:
            return max(float(delay), 0.0)
        except (TypeError, ValueError):
            return float(DEFAULT_OPTIONS["delay"])

    def set_value(self, value: Any, delay: Optional[float] = None) -> None:
        """Report new input.

        The value passes the ``input`` hook immediately and is committed
        after ``delay`` milliseconds (per-call override, then the ``delay``
        prop/option). Input arriving within the window replaces the pending
        value. Without a running event loop the commit is immediate.

        Group and list nodes hand the value to their children instead. A
        list value longer than the list's children is truncated to them
        and a ``list_values_dropped`` warning is logged.
        """
        completed, value = self.hook.input.dispatch(value)
        if not completed:
            return
        self.emit(NodeEventType.INPUT, {"value": value})
        if self.type != NodeType.INPUT:
            self._distribute(value, delay)
            return
        if self._commit_handle is not None:
            self._commit_handle.cancel()
            self._commit_handle = None
        wait = self._delay(delay)
        loop = _running_loop()
        if wait > 0 and loop is not None:
            self._commit_handle = loop.call_later(wait / 1000, self._commit, value)
            logger.debug("commit_scheduled", node_id=self.id, delay=wait)
            self._update_settled()
        else:
            self._commit(value)

    def _distribute(self, value: Any, delay: Optional[float]) -> None:
        if self.type == NodeType.GROUP and isinstance(value, dict):
            self._value = dict(value)
            for child in self.children:
                if child.name in value:
                    child.set_value(value[child.name], delay)
        elif self.type == NodeType.LIST and isinstance(value, (list, tuple)):
            # Lists never grow from input; values past the last child are dropped.
            if len(value) > len(self.children):
                logger.warning(
                    "list_values_dropped",
                    node_id=self.id,
                    children=len(self.children),
                    dropped=len(value) - len(self.children),
                )
            for child, child_value in zip(self.children, value):
                child.set_value(child_value, delay)

    def _commit(self, value: Any) -> None:
        self._commit_handle = None
        completed, value = self.hook.commit.dispatch(value)
        if not completed:
            self._update_settled()
            return
        previous, self._value = self._value, value
        if not self.dirty and value != self._initial:
            self.dirty = True
            self._refresh_visibility()
        self.emit(NodeEventType.COMMIT, {"value": value, "previous": previous})
        if self.parent is not None:
            self.parent._child_committed(self)
        self.validator.run()
        self._update_settled()

    def _child_committed(self, child: "Node") -> None:
        for sibling in self.children:
            if sibling is not child and sibling.validator.watches(child.name):
                sibling.validator.run()
        if self.validator.chain:
            self.validator.run()
        if self.parent is not None:
            self.parent._child_committed(self)

    def blur(self) -> None:
        """Report that the input lost focus."""
        first = not self.blurred
        self.blurred = True
        self.emit(NodeEventType.BLUR, {"first": first})
        if first:
            self._refresh_visibility()

    # -- messages -------------------------------------------------------

    def _errors_visible(self) -> bool:
        behavior = self.props.get("errorBehavior")
        if behavior in (ValidationBehavior.DIRTY.value, ValidationBehavior.BLUR.value):
            return messages_visible(behavior, dirty=self.dirty, blurred=self.blurred)
        return True

    def _refresh_visibility(self) -> None:
        self.validator.refresh_visibility()
        visible = self._errors_visible()
        for message in self.store.filter(MessageKind.ERROR):
            if message.meta.get("source") == EXTERNAL_SOURCE and message.visible != visible:
                self.store.set(replace(message, visible=visible))

    def set_errors(self, errors: Union[None, str, List[str]]) -> None:
        """Replace the externally supplied errors.

        Identical strings collapse into one message. Errors that remain in
        the new list are left untouched; only additions and removals emit
        events.
        """
        if errors is None:
            texts: List[str] = []
        elif isinstance(errors, str):
            texts = [errors]
        else:
            texts = [str(e) for e in errors]
        wanted = list(dict.fromkeys(texts))
        for message in self.store.filter(MessageKind.ERROR):
            if message.meta.get("source") == EXTERNAL_SOURCE and message.key not in wanted:
                self.store.remove(message.key, MessageKind.ERROR)
        visible = self._errors_visible()
        for text in wanted:
            self.store.set(Message(
                key=text,
                kind=MessageKind.ERROR,
                text=text,
                visible=visible,
                meta={"source": EXTERNAL_SOURCE},
            ))

    @property
    def messages(self) -> List[Message]:
        return list(self.store)

    def _message_added(self, message: Message) -> None:
        self.emit(NodeEventType.MESSAGE_ADDED, {"message": message.to_dict()})
        self._validity_changed()

    def _message_removed(self, message: Message) -> None:
        self.emit(NodeEventType.MESSAGE_REMOVED, {"message": message.to_dict()})
        self._validity_changed()

    # -- validity -------------------------------------------------------

    @property
    def valid(self) -> bool:
        """True when this node and every descendant settled without blocking messages."""
        return self._valid

    def _own_valid(self) -> bool:
        return self.validator.machine.is_settled() and not self.store.has_blocking()

    def _validation_transition(self, old: ValidationState, new: ValidationState) -> None:
        if new == ValidationState.SETTLED:
            self.emit(NodeEventType.SETTLED, {"valid": self._own_valid()}, bubble=False)
        self._validity_changed()
        self._update_settled()

    def _validity_changed(self) -> None:
        if self._initializing:
            return
        if self.children:
            self._schedule_validity()
        else:
            self._recompute_validity()

    def _schedule_validity(self) -> None:
        """Coalesce recomputation of aggregate validity into one per loop tick."""
        if self._validity_scheduled:
            return
        loop = _running_loop()
        if loop is None:
            self._recompute_validity()
            return
        self._validity_scheduled = True
        loop.call_soon(self._recompute_validity)

    def _recompute_validity(self) -> None:
        self._validity_scheduled = False
        valid = self._own_valid() and all(child.valid for child in self.children)
        if valid != self._valid:
            self._valid = valid
            self.emit(NodeEventType.VALIDITY, {"valid": valid}, bubble=False)
            if self.parent is not None:
                self.parent._schedule_validity()
        self._update_settled()

    # -- settling -------------------------------------------------------

    @property
    def is_settled(self) -> bool:
        """No pending commit, no in-flight validation, here or below."""
        return (
            self._commit_handle is None
            and self.validator.machine.is_settled()
            and not self._validity_scheduled
            and all(child.is_settled for child in self.children)
        )

    async def settled(self) -> None:
        """Wait until ``is_settled`` holds."""
        while not self.is_settled:
            waiter = asyncio.get_running_loop().create_future()
            self._settle_waiters.append(waiter)
            await waiter

    def _update_settled(self) -> None:
        if self._settle_waiters and self.is_settled:
            waiters, self._settle_waiters = self._settle_waiters, []
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(None)
        if self.parent is not None:
            self.parent._update_settled()

    # -- tree -----------------------------------------------------------

    def add_child(self, child: "Node", index: Optional[int] = None) -> None:
        """Adopt ``child``, re-chaining its config scope under this node."""
        if self.type == NodeType.INPUT:
            raise FormTreeError(f"Input node '{self.id}' cannot have children")
        if child.parent is self:
            return
        if child.parent is not None:
            child.parent.remove_child(child)
        if index is None:
            self.children.append(child)
            index = len(self.children) - 1
        else:
            self.children.insert(index, child)
        child.parent = self
        child.config.attach(self.config)
        self.emit(NodeEventType.CHILD_ADDED, {"child": child.id, "name": child.name, "index": index})
        self._validity_changed()
        self._update_settled()

    def remove_child(self, child: "Node") -> None:
        if child.parent is not self:
            return
        index = self.children.index(child)
        self.children.remove(child)
        child.parent = None
        child.config.attach(self._runtime.config if self._runtime is not None else None)
        self.emit(NodeEventType.CHILD_REMOVED, {"child": child.id, "name": child.name, "index": index})
        self._validity_changed()
        self._update_settled()

    def child(self, name: str) -> Optional["Node"]:
        for candidate in self.children:
            if candidate.name == name:
                return candidate
        return None

    def walk(self) -> Iterator["Node"]:
        """Yield every descendant, depth first."""
        for child in list(self.children):
            yield child
            yield from child.walk()

    def destroy(self) -> None:
        """Tear the node (and its subtree) down and detach it."""
        for child in list(self.children):
            child.destroy()
        if self._commit_handle is not None:
            self._commit_handle.cancel()
            self._commit_handle = None
        self.validator.invalidate()
        self.emit(NodeEventType.DESTROYED, {"id": self.id})
        if self.parent is not None:
            self.parent.remove_child(self)
        self.store.discard()
        self.config.detach()
        if self._runtime is not None:
            self._runtime._unregister(self)

    def __repr__(self) -> str:
        return f"<Node id={self.id!r} name={self.name!r} type={self.type.value!r}>"


__all__ = [
    "CORE_PROPS",
    "Node",
    "Props",
    "camel",
]
