"""Core type definitions for the formtree node engine.

This module defines the fundamental enumerations used throughout formtree:
- NodeType: Structural kind of a node (input, group, list)
- MessageKind: Category of a message held in a node's message store
- ValidationBehavior: Display policy controlling when validation messages show
- ValidationState: States of the per-node validation state machine
- NodeEventType: Change events emitted by nodes to the rendering layer
- PluginSignal: Continue/halt signal returned by plugin applications
- HookStage: Named stages of the interceptable hook pipelines

Every enum is string-valued so values compare equal to their plain string
forms, which is how props and config options usually arrive.
"""

from enum import Enum


class NodeType(str, Enum):
    """Structural kind of a node.

    Inputs hold a scalar value, groups hold a mapping of child name to
    value, and lists hold an ordered list of child values.
    """
    INPUT = "input"
    GROUP = "group"
    LIST = "list"


class MessageKind(str, Enum):
    """Message categories stored per node."""
    ERROR = "error"
    VALIDATION = "validation"
    SUCCESS = "success"
    INFO = "info"


class ValidationBehavior(str, Enum):
    """When validation messages become visible.

    - live: as soon as a validation run settles
    - dirty: after the value has changed from its initial value once
    - blur: after the input has lost focus once
    """
    LIVE = "live"
    DIRTY = "dirty"
    BLUR = "blur"


class ValidationState(str, Enum):
    """States of the per-node validation state machine."""
    PENDING = "pending"
    VALIDATING = "validating"
    SETTLED = "settled"


class NodeEventType(str, Enum):
    """Change events emitted by nodes.

    Events bubble from the originating node up through its ancestors so a
    rendering layer may subscribe once at the root.
    """
    NODE_CREATED = "node"
    PROP = "prop"
    INPUT = "input"
    COMMIT = "commit"
    BLUR = "blur"
    CLASSES = "classes"
    CONFIG = "config"
    MESSAGE_ADDED = "message-added"
    MESSAGE_REMOVED = "message-removed"
    CHILD_ADDED = "child-added"
    CHILD_REMOVED = "child-removed"
    SETTLED = "settled"
    VALIDITY = "validity"
    DESTROYED = "destroyed"


class PluginSignal(str, Enum):
    """Outcome of applying a plugin to a node."""
    CONTINUE = "continue"
    HALT = "halt"


class HookStage(str, Enum):
    """Named hook pipelines available on every node."""
    PROP = "prop"
    INPUT = "input"
    COMMIT = "commit"
    MESSAGE = "message"
    CLASSES = "classes"


__all__ = [
    "NodeType",
    "MessageKind",
    "ValidationBehavior",
    "ValidationState",
    "NodeEventType",
    "PluginSignal",
    "HookStage",
]
