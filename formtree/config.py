"""Cascading configuration scopes.

Every node owns a ConfigScope chained to its parent's scope (root nodes
chain to the runtime's scope). Reading an option walks up the chain to the
nearest scope that set it, falling back to DEFAULT_OPTIONS. Reads are lazy,
so a node created before an ancestor sets an option still sees it.

Resolved values are cached per scope. A write invalidates the key in the
writing scope and walks down through child scopes, stopping at any scope
that shadows the key. Re-parenting a scope clears its whole subtree's cache.

Option values are checked against OPTION_SCHEMAS with jsonschema. A
malformed value is rejected with a warning and the key resolves as if it
had never been written. Unknown keys are accepted and cascade untouched.
"""

from typing import Any, Callable, Dict, Iterator, List, Optional

import jsonschema
from jsonschema import Draft7Validator
import structlog

from formtree.errors import ConfigError
from formtree.types import ValidationBehavior

logger = structlog.get_logger()


DEFAULT_OPTIONS: Dict[str, Any] = {
    "errorBehavior": "live",
    "validationBehavior": ValidationBehavior.BLUR.value,
    "delay": 20,
    "flavor": None,
    "classes": {},
    "rootClasses": None,
}


# JSON Schema fragments for the recognized options. Callable-valued options
# (rootClasses) are checked separately since JSON Schema cannot express them.
OPTION_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "errorBehavior": {"type": "string"},
    "validationBehavior": {"enum": [b.value for b in ValidationBehavior]},
    "delay": {"type": "number", "minimum": 0},
    "classes": {"type": "object"},
    "flavor": {},
}

_VALIDATORS: Dict[str, Draft7Validator] = {
    key: Draft7Validator(schema) for key, schema in OPTION_SCHEMAS.items()
}

_MISSING = object()

InvalidationListener = Callable[[str], None]


def validate_option(key: str, value: Any) -> None:
    """Check a recognized option value.

    Raises:
        ConfigError: If the value does not match the option's schema
    """
    if key == "rootClasses":
        if value is not None and not callable(value):
            raise ConfigError(key, value, "expected a callable or None")
        return
    validator = _VALIDATORS.get(key)
    if validator is None:
        return
    if isinstance(value, ValidationBehavior):
        value = value.value
    try:
        validator.validate(value)
    except jsonschema.ValidationError as exc:
        raise ConfigError(key, value, exc.message) from exc


class ConfigScope:
    """One link in the configuration cascade.

    Examples:
        >>> root = ConfigScope(options={"errorBehavior": "foobar"})
        >>> child = ConfigScope(parent=root)
        >>> child.resolve("errorBehavior")
        'foobar'
        >>> child.set("errorBehavior", "live")
        True
        >>> child.resolve("errorBehavior"), root.resolve("errorBehavior")
        ('live', 'foobar')
    """

    def __init__(
        self,
        parent: Optional["ConfigScope"] = None,
        options: Optional[Dict[str, Any]] = None,
        defaults: Optional[Dict[str, Any]] = None,
    ):
        self.parent: Optional[ConfigScope] = None
        self._children: List[ConfigScope] = []
        self._local: Dict[str, Any] = {}
        self._cache: Dict[str, Any] = {}
        self._defaults = DEFAULT_OPTIONS if defaults is None else defaults
        self._listeners: List[InvalidationListener] = []
        if parent is not None:
            self.attach(parent)
        for key, value in (options or {}).items():
            self.set(key, value)

    def resolve(self, key: str, default: Any = None) -> Any:
        """Resolve an option from the nearest scope (inclusive) that set it."""
        value = self._lookup(key)
        return default if value is _MISSING else value

    def _lookup(self, key: str) -> Any:
        if key in self._local:
            return self._local[key]
        if key in self._cache:
            return self._cache[key]
        if self.parent is not None:
            value = self.parent._lookup(key)
        else:
            value = self._defaults.get(key, _MISSING)
        self._cache[key] = value
        return value

    def set(self, key: str, value: Any) -> bool:
        """Store an option in this scope and invalidate it downstream.

        Returns:
            True if the value was stored, False if it was rejected.
        """
        try:
            validate_option(key, value)
        except ConfigError as exc:
            logger.warning("config_value_rejected", key=key, reason=exc.reason)
            return False
        self._local[key] = value
        self._invalidate(key, origin=True)
        return True

    def unset(self, key: str) -> None:
        """Remove a local override so the key resolves from ancestors again."""
        if key in self._local:
            del self._local[key]
            self._invalidate(key, origin=True)

    def defines(self, key: str) -> bool:
        return key in self._local

    def local(self) -> Dict[str, Any]:
        return dict(self._local)

    def on_invalidate(self, listener: InvalidationListener) -> None:
        """Register a callback fired when a key may have changed for this scope."""
        self._listeners.append(listener)

    def _invalidate(self, key: str, origin: bool = False) -> None:
        if not origin and key in self._local:
            return
        self._cache.pop(key, None)
        for listener in list(self._listeners):
            listener(key)
        for child in list(self._children):
            child._invalidate(key)

    def _invalidate_all(self) -> None:
        keys = set(self._cache) | set(self._defaults)
        self._cache.clear()
        for listener in list(self._listeners):
            for key in keys:
                listener(key)
        for child in list(self._children):
            child._invalidate_all()

    def attach(self, parent: Optional["ConfigScope"]) -> None:
        """Chain this scope under a new parent and re-resolve its subtree."""
        if self.parent is parent:
            return
        self.detach()
        self.parent = parent
        if parent is not None:
            parent._children.append(self)
        self._invalidate_all()

    def detach(self) -> None:
        if self.parent is not None:
            try:
                self.parent._children.remove(self)
            except ValueError:
                pass
        self.parent = None
        self._cache.clear()

    def chain(self) -> Iterator["ConfigScope"]:
        """Yield this scope and each ancestor, nearest first."""
        scope: Optional[ConfigScope] = self
        while scope is not None:
            yield scope
            scope = scope.parent


__all__ = [
    "DEFAULT_OPTIONS",
    "OPTION_SCHEMAS",
    "ConfigScope",
    "validate_option",
]
