"""Exception hierarchy for formtree.

Validation failures are never raised: they become messages in a node's
message store. The exceptions here cover the infrastructure around that:
malformed configuration values and misbehaving plugins. Both are contained
at the node that triggered them; neither aborts the surrounding tree.
"""

from typing import Any, Optional


class FormTreeError(Exception):
    """Base class for all formtree errors."""


class ConfigError(FormTreeError):
    """Raised when a configuration option value is malformed.

    The cascade treats this as advisory: the offending value is not stored
    and reads fall back to ancestor scopes or process-wide defaults.

    Attributes:
        key: The option name
        value: The rejected value
        reason: Human-readable description of the problem
    """

    def __init__(self, key: str, value: Any, reason: str):
        self.key = key
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid value for option '{key}': {reason}")


class PluginError(FormTreeError):
    """Raised (and recorded) when a plugin or feature fails on a node.

    Attributes:
        plugin: Name of the failing plugin or feature
        node_id: Id of the node the plugin was applied to
    """

    def __init__(self, plugin: str, node_id: Optional[str], message: str):
        self.plugin = plugin
        self.node_id = node_id
        super().__init__(message)


class DefinitionError(PluginError):
    """Raised when a node definition is malformed or installed twice."""


__all__ = [
    "FormTreeError",
    "ConfigError",
    "PluginError",
    "DefinitionError",
]
