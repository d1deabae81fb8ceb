"""formtree: a headless form-node engine.

formtree models a form as a tree of stateful nodes (inputs, groups, lists)
and computes everything a renderer needs, independent of any UI toolkit:
- Configuration that cascades down the tree with per-node overrides
- An interceptable hook pipeline every prop assignment passes through
- Class composition per section with priority and ``$reset`` support
- Rule-chain validation with debounced, supersedable async runs,
  live/dirty/blur message visibility and tree-wide aggregate validity
- Plugins and type-scoped features that define node types and add hooks

Basic usage:
    >>> from formtree import FormRuntime
    >>> runtime = FormRuntime()
    >>> node = runtime.create_node({
    ...     "name": "email",
    ...     "validation": "required|email",
    ...     "validationBehavior": "live",
    ... })
    >>> node.valid
    False
    >>> [m.text for m in node.store.visible()]
    ['Email is required.']
"""

__version__ = "0.1.0"

# Version info
VERSION = (0, 1, 0)

# Core exports
from formtree.node import Node
from formtree.runtime import FormRuntime

# Package metadata
__all__ = [
    "__version__",
    "VERSION",
    "FormRuntime",
    "Node",
]
