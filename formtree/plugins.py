"""Plugin and feature registration for formtree nodes.

A plugin is a callable applied to every node created beneath the point it
was registered (runtime-wide or through a node's ``plugins`` prop). It may
register hooks, read or write props, and call ``node.define`` to install a
type definition. Returning ``False`` (or ``PluginSignal.HALT``) stops any
later plugin from running against that node. A plugin that raises is
recorded on ``node.plugin_errors`` and its hooks and definition are rolled
back; props it already wrote stay. The next plugin still runs.

A library plugin carries a ``library`` attribute. Libraries run before
general plugins and resolve the node's concrete type: the first library
that defines the node wins.

A Definition's ``features`` are type-scoped plugins: they run inside
``define`` and are rolled back together with the definition if any of
them raises.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

import jsonschema
from jsonschema import Draft7Validator
import structlog

from formtree.errors import DefinitionError, PluginError
from formtree.types import NodeType, PluginSignal

if TYPE_CHECKING:
    from formtree.node import Node

logger = structlog.get_logger()

Plugin = Callable[["Node"], Any]
Feature = Callable[["Node"], Any]

DESCRIPTOR_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"enum": [t.value for t in NodeType]},
        "props": {"type": "array", "items": {"type": "string", "minLength": 1}},
    },
    "required": ["type"],
}

_descriptor_validator = Draft7Validator(DESCRIPTOR_SCHEMA)


def plugin_name(plugin: Any) -> str:
    return getattr(plugin, "__name__", None) or type(plugin).__name__


@dataclass(frozen=True)
class Definition:
    """What a node is: its type, schema, declared props and features.

    Attributes:
        type: Structural node type
        schema: Opaque rendering schema, passed through untouched
        props: Names of props this type declares (others land in attrs)
        features: Type-scoped plugins run when the definition is installed
    """
    type: NodeType
    schema: Any = None
    props: Tuple[str, ...] = ()
    features: Tuple[Feature, ...] = ()

    @classmethod
    def from_descriptor(cls, descriptor: Union["Definition", Dict[str, Any]]) -> "Definition":
        """Build a Definition from a dict descriptor.

        Raises:
            DefinitionError: If the descriptor is malformed
        """
        if isinstance(descriptor, Definition):
            return descriptor
        if not isinstance(descriptor, dict):
            raise DefinitionError("define", None, f"Definition must be a dict, got {type(descriptor).__name__}")
        node_type = descriptor.get("type")
        checked = {
            "type": node_type.value if isinstance(node_type, NodeType) else node_type,
            "props": list(descriptor.get("props") or []),
        }
        try:
            _descriptor_validator.validate(checked)
        except jsonschema.ValidationError as exc:
            raise DefinitionError("define", None, f"Malformed definition: {exc.message}") from exc
        features = tuple(descriptor.get("features") or ())
        for feature in features:
            if not callable(feature):
                raise DefinitionError("define", None, f"Feature {feature!r} is not callable")
        return cls(
            type=NodeType(checked["type"]),
            schema=descriptor.get("schema"),
            props=tuple(checked["props"]),
            features=features,
        )


NodeState = Tuple[Any, Any, NodeType, Any, FrozenSet[str]]


def snapshot_node(node: "Node") -> NodeState:
    """Capture the hooks and definition state a plugin may change."""
    return (node.hook.snapshot(), node.definition, node.type, node.schema, node.declared_props)


def restore_node(node: "Node", state: NodeState) -> None:
    hooks, node.definition, node.type, node.schema, node.declared_props = state
    node.hook.restore(hooks)


def define(node: "Node", descriptor: Union[Definition, Dict[str, Any]]) -> Definition:
    """Install a definition on a node, all or nothing.

    Raises:
        DefinitionError: If the node is already defined, the descriptor is
            malformed, or a feature raised (the node is restored first)
    """
    if node.definition is not None:
        raise DefinitionError("define", node.id, f"Node '{node.id}' is already defined as '{node.type.value}'")
    try:
        definition = Definition.from_descriptor(descriptor)
    except DefinitionError as exc:
        exc.node_id = node.id
        raise

    previous = snapshot_node(node)
    node.definition = definition
    node.type = definition.type
    node.schema = definition.schema
    node.declared_props = frozenset(definition.props)
    for feature in definition.features:
        try:
            feature(node)
        except Exception as exc:
            restore_node(node, previous)
            logger.error(
                "definition_rolled_back",
                node_id=node.id,
                feature=plugin_name(feature),
                exc_info=True,
            )
            raise DefinitionError(
                plugin_name(feature), node.id, f"Feature '{plugin_name(feature)}' failed: {exc}"
            ) from exc
    logger.debug("node_defined", node_id=node.id, type=definition.type.value, props=list(definition.props))
    return definition


def to_signal(result: Any) -> PluginSignal:
    """Map a plugin's return value to a signal; only False/HALT halt."""
    if isinstance(result, PluginSignal):
        return result
    if result is False:
        return PluginSignal.HALT
    return PluginSignal.CONTINUE


def record_failure(node: "Node", plugin: Any, exc: Exception) -> None:
    """Record a contained plugin, feature or hook failure on the node."""
    error = exc if isinstance(exc, PluginError) else PluginError(plugin_name(plugin), node.id, str(exc))
    if error is not exc:
        error.__cause__ = exc
    node.plugin_errors.append(error)
    logger.error("plugin_failed", plugin=plugin_name(plugin), node_id=node.id, exc_info=exc)


def apply_plugins(
    node: "Node",
    plugins: Iterable[Plugin],
    libraries: Optional[Iterable[Any]] = None,
) -> List[PluginSignal]:
    """Apply libraries, then plugins, to a freshly created node.

    Args:
        node: The node being created
        plugins: General plugins, in registration order
        libraries: Candidates for type resolution, in priority order
            (defaults to ``plugins``)

    Returns:
        The signal of each general plugin that ran
    """
    plugins = list(plugins)
    candidates = plugins if libraries is None else list(libraries)
    for candidate in candidates:
        if node.definition is not None:
            break
        library = getattr(candidate, "library", None)
        if not callable(library):
            continue
        previous = snapshot_node(node)
        try:
            library(node)
        except Exception as exc:
            restore_node(node, previous)
            record_failure(node, candidate, exc)

    signals: List[PluginSignal] = []
    for plugin in plugins:
        if not callable(plugin):
            continue
        previous = snapshot_node(node)
        try:
            signal = to_signal(plugin(node))
        except Exception as exc:
            restore_node(node, previous)
            record_failure(node, plugin, exc)
            signal = PluginSignal.CONTINUE
        signals.append(signal)
        if signal == PluginSignal.HALT:
            logger.debug("plugin_chain_halted", plugin=plugin_name(plugin), node_id=node.id)
            break
    return signals


INPUT_LIBRARY: Dict[str, Definition] = {
    "text": Definition(type=NodeType.INPUT),
    "email": Definition(type=NodeType.INPUT),
    "password": Definition(type=NodeType.INPUT),
    "search": Definition(type=NodeType.INPUT),
    "tel": Definition(type=NodeType.INPUT),
    "url": Definition(type=NodeType.INPUT),
    "date": Definition(type=NodeType.INPUT),
    "hidden": Definition(type=NodeType.INPUT),
    "number": Definition(type=NodeType.INPUT, props=("min", "max", "step")),
    "textarea": Definition(type=NodeType.INPUT, props=("rows", "cols")),
    "checkbox": Definition(type=NodeType.INPUT, props=("options", "onValue", "offValue")),
    "select": Definition(type=NodeType.INPUT, props=("options", "placeholder")),
    "group": Definition(type=NodeType.GROUP),
    "form": Definition(type=NodeType.GROUP, props=("submitLabel",)),
    "list": Definition(type=NodeType.LIST),
}


def _define_input(node: "Node") -> None:
    definition = INPUT_LIBRARY.get(node.input_type)
    if definition is not None:
        node.define(definition)


def inputs(node: "Node") -> None:
    """The built-in input library (``text``, ``group``, ``list``...)."""


inputs.library = _define_input


__all__ = [
    "Definition",
    "INPUT_LIBRARY",
    "apply_plugins",
    "define",
    "inputs",
    "plugin_name",
    "record_failure",
    "restore_node",
    "snapshot_node",
    "to_signal",
]
