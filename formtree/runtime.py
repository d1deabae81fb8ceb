"""FormRuntime: the entry point the rendering layer talks to.

The runtime owns the root configuration scope, the runtime-wide plugin list
(with the built-in input library last, so user libraries win), a registry of
live nodes by id, and an event emitter that receives every node event.

Usage:
    >>> from formtree.runtime import FormRuntime
    >>> runtime = FormRuntime(config={"classes": {"label": "foo-bar"}})
    >>> form = runtime.create_node({"type": "group", "name": "signup"})
    >>> email = runtime.create_node({"name": "email", "validation": "required|email"}, parent=form)
    >>> runtime.get_node(email.id) is email
    True
    >>> email.resolve_classes("label")
    'formtree-label foo-bar'
"""

from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog

from formtree.config import ConfigScope
from formtree.events import EventEmitter, EventListener
from formtree.node import Node
from formtree.plugins import inputs
from formtree.types import NodeEventType

logger = structlog.get_logger()


class FormRuntime:
    """Creates and tracks nodes.

    Attributes:
        config: Root configuration scope every root node chains to
        plugins: Runtime-wide plugins, applied to every node
        emitter: Receives every event emitted by any node

    Args:
        config: Initial root options (e.g. ``classes``, ``rootClasses``)
        plugins: Plugins to apply to every node, in order
        defaults: Append the built-in input library after ``plugins``
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        plugins: Optional[Iterable[Any]] = None,
        defaults: bool = True,
    ):
        self.config = ConfigScope(options=config or {})
        self.plugins: List[Any] = list(plugins or [])
        if defaults and inputs not in self.plugins:
            self.plugins.append(inputs)
        self.emitter = EventEmitter()
        self._nodes: Dict[str, Node] = {}

    def create_node(
        self,
        props: Optional[Dict[str, Any]] = None,
        parent: Optional[Node] = None,
        on_node: Optional[Callable[[Node], Any]] = None,
    ) -> Node:
        """Create a node from an initial prop bag.

        ``on_node`` (and every ``node`` listener on the runtime) receives the
        node synchronously as soon as it exists, before plugins, config and
        props are applied.
        """
        return Node(props=props, parent=parent, runtime=self, on_node=on_node)

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    def set_option(self, key: str, value: Any) -> bool:
        """Set a root option; every node without a closer override sees it."""
        return self.config.set(key, value)

    def on(self, event_type: NodeEventType, listener: EventListener) -> None:
        self.emitter.on(event_type, listener)

    def on_any(self, listener: EventListener) -> None:
        self.emitter.on_any(listener)

    def _register(self, node: Node) -> None:
        if node.id in self._nodes:
            logger.warning("node_id_reused", node_id=node.id)
        self._nodes[node.id] = node

    def _reregister(self, old_id: str, node: Node) -> None:
        if self._nodes.get(old_id) is node:
            del self._nodes[old_id]
        self._register(node)

    def _unregister(self, node: Node) -> None:
        if self._nodes.get(node.id) is node:
            del self._nodes[node.id]


__all__ = [
    "FormRuntime",
]
