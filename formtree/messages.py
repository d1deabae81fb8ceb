"""Per-node message store.

Messages are the single user-facing error channel of formtree: validation
failures, externally supplied errors (for example from a server round trip),
and informational notes all live here. Messages are keyed; two messages with
the same key and kind collapse into one.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from formtree.hooks import Dispatcher
from formtree.types import MessageKind


@dataclass(frozen=True)
class Message:
    """A unit of user-facing state attached to a node.

    Attributes:
        key: Identifier unique within its kind on a node, used for dedup
        kind: Category of message
        text: Text to render
        visible: Whether the rendering layer should currently show it
        blocking: Whether the message makes its node invalid
        meta: Arbitrary extra data (e.g., the failing rule and its args)

    Examples:
        >>> msg = Message(key="rule_required", kind=MessageKind.VALIDATION,
        ...               text="Email is required.")
        >>> msg.blocking
        True
    """
    key: str
    kind: MessageKind
    text: str
    visible: bool = True
    blocking: bool = True
    meta: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        if not isinstance(self.kind, MessageKind):
            object.__setattr__(self, "kind", MessageKind(self.kind))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "key": self.key,
            "kind": self.kind.value,
            "text": self.text,
            "visible": self.visible,
            "blocking": self.blocking,
        }
        if self.meta:
            result["meta"] = self.meta
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Create a Message from dict."""
        return cls(
            key=data["key"],
            kind=MessageKind(data["kind"]),
            text=data["text"],
            visible=data.get("visible", True),
            blocking=data.get("blocking", True),
            meta=data.get("meta", {}),
        )


MessageCallback = Callable[[Message], None]


class MessageStore:
    """Keyed, deduplicated messages owned by exactly one node.

    The store runs every incoming message through the owning node's
    ``message`` hook chain, which may rewrite or swallow it. Additions and
    removals are reported through the callbacks so the node can emit
    ``message-added`` / ``message-removed`` events.

    Examples:
        >>> store = MessageStore()
        >>> store.set(Message(key="a", kind="error", text="Boom"))
        True
        >>> store.set(Message(key="a", kind="error", text="Boom"))
        False
        >>> len(store)
        1
    """

    def __init__(
        self,
        hook: Optional[Dispatcher] = None,
        on_added: Optional[MessageCallback] = None,
        on_removed: Optional[MessageCallback] = None,
    ):
        self._messages: Dict[Tuple[MessageKind, str], Message] = {}
        self._hook = hook
        self._on_added = on_added
        self._on_removed = on_removed

    def set(self, message: Message) -> bool:
        """Add or replace a message.

        Returns:
            True if the store changed, False if an identical message was
            already present or the message hook swallowed it.
        """
        if self._hook is not None:
            completed, message = self._hook.dispatch(message)
            if not completed:
                return False
        slot = (message.kind, message.key)
        if self._messages.get(slot) == message:
            return False
        self._messages[slot] = message
        if self._on_added is not None:
            self._on_added(message)
        return True

    def get(self, key: str, kind: Optional[MessageKind] = None) -> Optional[Message]:
        for (msg_kind, msg_key), message in self._messages.items():
            if msg_key == key and (kind is None or msg_kind == kind):
                return message
        return None

    def remove(self, key: str, kind: Optional[MessageKind] = None) -> List[Message]:
        """Remove messages with the given key (optionally of one kind only)."""
        removed = []
        for slot in list(self._messages):
            msg_kind, msg_key = slot
            if msg_key == key and (kind is None or msg_kind == kind):
                removed.append(self._messages.pop(slot))
        for message in removed:
            if self._on_removed is not None:
                self._on_removed(message)
        return removed

    def filter(
        self,
        kind: Optional[MessageKind] = None,
        predicate: Optional[Callable[[Message], bool]] = None,
    ) -> List[Message]:
        """Messages in insertion order, narrowed by kind and/or predicate."""
        return [
            m for m in self._messages.values()
            if (kind is None or m.kind == kind) and (predicate is None or predicate(m))
        ]

    def clear(self, kind: Optional[MessageKind] = None) -> List[Message]:
        """Remove every message, or every message of one kind."""
        removed = []
        for message in self.filter(kind):
            removed.extend(self.remove(message.key, message.kind))
        return removed

    def discard(self) -> None:
        """Drop every message without notifying (node teardown)."""
        self._messages.clear()

    def set_visibility(self, kind: MessageKind, visible: bool) -> None:
        """Flip visibility on every message of a kind, re-announcing changes."""
        for message in self.filter(kind):
            if message.visible != visible:
                self.set(replace(message, visible=visible))

    def visible(self) -> List[Message]:
        return self.filter(predicate=lambda m: m.visible)

    def has_blocking(self) -> bool:
        return any(m.blocking for m in self._messages.values())

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages.values()))

    def __contains__(self, key: object) -> bool:
        return any(msg_key == key for (_, msg_key) in self._messages)


__all__ = [
    "Message",
    "MessageStore",
]
