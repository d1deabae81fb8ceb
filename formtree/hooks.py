"""Interceptable hook pipelines for formtree nodes.

Every prop assignment, user input, value commit, message, and class
composition passes through an ordered middleware chain before taking
effect. Each handler receives the in-flight payload and a continuation:

    >>> def shout(record, next):
    ...     if record.prop == "label":
    ...         record.value = record.value.upper()
    ...     return next(record)

Calling ``next`` (possibly with a replaced payload) continues the chain.
Returning without calling it swallows the payload: the dispatch reports
nothing reached the end of the chain and the caller drops the change.

Handlers run in registration order. Plugins and features register their
handlers while being applied, so the order follows plugin order and stays
stable for the node's lifetime.

A handler that raises is logged, reported to the chain's ``on_error``
callback, and skipped: the chain continues with the payload the handler
received. If the handler had already called ``next``, the rest of the
chain has run and its result stands.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

import structlog

from formtree.types import HookStage

logger = structlog.get_logger()

T = TypeVar("T")

Next = Callable[[T], Any]
Handler = Callable[[T, Next], Any]
ErrorCallback = Callable[[Handler, Exception], None]


@dataclass
class PropRecord:
    """A prop assignment travelling through the ``prop`` hook chain.

    Attributes:
        prop: Normalized (camelCase) prop name
        value: Value resolved so far; handlers may rewrite it
        raw: The value originally assigned, never rewritten
    """
    prop: str
    value: Any
    raw: Any = None


@dataclass
class ClassRecord:
    """A composed class list travelling through the ``classes`` hook chain."""
    section: str
    classes: List[str] = field(default_factory=list)


class Dispatcher(Generic[T]):
    """An ordered middleware chain for one hook stage.

    Examples:
        >>> d = Dispatcher()
        >>> _ = d.use(lambda value, next: next(value * 2))
        >>> d.dispatch(21)
        (True, 42)
        >>> _ = d.use(lambda value, next: None)
        >>> d.dispatch(21)
        (False, 42)
    """

    def __init__(self, on_error: Optional[ErrorCallback] = None) -> None:
        self._handlers: List[Handler] = []
        self._on_error = on_error

    def use(self, handler: Handler) -> Handler:
        """Append a handler to the chain and return it."""
        self._handlers.append(handler)
        return handler

    def unuse(self, handler: Handler) -> None:
        """Remove a previously registered handler."""
        try:
            self._handlers.remove(handler)
        except ValueError:
            pass

    def __call__(self, handler: Handler) -> Handler:
        return self.use(handler)

    def __len__(self) -> int:
        return len(self._handlers)

    def dispatch(self, payload: T) -> Tuple[bool, T]:
        """Run the payload through every handler.

        Returns:
            ``(completed, payload)`` where ``completed`` is False when some
            handler swallowed the payload, and ``payload`` is the last value
            seen by the chain.
        """
        handlers = list(self._handlers)
        state = {"completed": False, "payload": payload}

        def run(index: int, current: T) -> T:
            state["payload"] = current
            if index >= len(handlers):
                state["completed"] = True
                return current
            continued = []

            def proceed(nxt: T) -> T:
                continued.append(True)
                return run(index + 1, nxt)

            try:
                return handlers[index](current, proceed)
            except Exception as exc:
                self._failed(handlers[index], exc)
                if continued:
                    return state["payload"]
                return run(index + 1, current)

        run(0, payload)
        return state["completed"], state["payload"]

    def _failed(self, handler: Handler, exc: Exception) -> None:
        logger.error("hook_failed", handler=getattr(handler, "__name__", repr(handler)), exc_info=exc)
        if self._on_error is not None:
            self._on_error(handler, exc)

    def snapshot(self) -> List[Handler]:
        return list(self._handlers)

    def restore(self, handlers: List[Handler]) -> None:
        self._handlers = list(handlers)


class Hooks:
    """The set of hook chains owned by a single node.

    Attributes:
        prop: Every prop assignment (PropRecord)
        input: Raw user input, before the debounce delay
        commit: A value about to be committed to the node
        message: A Message about to enter the message store
        classes: A ClassRecord with the composed tokens for one section
    """

    def __init__(self, on_error: Optional[ErrorCallback] = None) -> None:
        self.prop: Dispatcher[PropRecord] = Dispatcher(on_error)
        self.input: Dispatcher[Any] = Dispatcher(on_error)
        self.commit: Dispatcher[Any] = Dispatcher(on_error)
        self.message: Dispatcher[Any] = Dispatcher(on_error)
        self.classes: Dispatcher[ClassRecord] = Dispatcher(on_error)

    def stage(self, stage: HookStage) -> Dispatcher:
        return getattr(self, HookStage(stage).value)

    def snapshot(self) -> Dict[HookStage, List[Handler]]:
        """Capture every chain so a failed definition can be rolled back."""
        return {stage: self.stage(stage).snapshot() for stage in HookStage}

    def restore(self, snapshot: Dict[HookStage, List[Handler]]) -> None:
        for stage, handlers in snapshot.items():
            self.stage(stage).restore(handlers)


__all__ = [
    "PropRecord",
    "ClassRecord",
    "Dispatcher",
    "Hooks",
]
