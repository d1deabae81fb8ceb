"""Class composition for node sections.

A node's render-ready class string for a section ("outer", "input",
"label"...) is built from four sources in ascending priority:

1. the root classes for the section (``rootClasses`` option, or the
   built-in ``formtree-<section>`` default)
2. the cascaded ``classes`` option entry for the section
3. the node's ``classes`` prop entry for the section
4. the node's ``<section>Class`` prop

Each source is a string of tokens, a list of tokens, a mapping of class name
to bool, or a callable of the node returning one of those. Callables are
evaluated on every composition. A source whose first token is ``$reset``
discards everything accumulated from lower-priority sources for that section.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from typing_extensions import Literal

from formtree.hooks import ClassRecord

if TYPE_CHECKING:
    from formtree.node import Node

RESET_TOKEN = "$reset"

ClassSection = Literal[
    "outer", "wrapper", "label", "inner", "input", "help", "messages", "message"
]

SECTIONS: Tuple[ClassSection, ...] = (
    "outer",
    "wrapper",
    "label",
    "inner",
    "input",
    "help",
    "messages",
    "message",
)

DEFAULT_PREFIX = "formtree"


class ClassSourceKind(str, Enum):
    TOKENS = "tokens"
    FLAG_MAP = "flag_map"
    FN = "fn"


@dataclass(frozen=True)
class ClassSource:
    """A normalized class source.

    Raw values are classified once by ``ClassSource.of`` and evaluated through
    ``evaluate``; nothing downstream inspects raw shapes.

    Examples:
        >>> ClassSource.of("a  b").evaluate(None)
        ['a', 'b']
        >>> ClassSource.of({"a": True, "b": False}).evaluate(None)
        ['a']
    """
    kind: ClassSourceKind
    value: Any

    @classmethod
    def of(cls, raw: Any) -> Optional["ClassSource"]:
        if raw is None:
            return None
        if isinstance(raw, ClassSource):
            return raw
        if callable(raw):
            return cls(ClassSourceKind.FN, raw)
        if isinstance(raw, dict):
            return cls(ClassSourceKind.FLAG_MAP, dict(raw))
        if isinstance(raw, str):
            return cls(ClassSourceKind.TOKENS, tuple(raw.split()))
        if isinstance(raw, (list, tuple)):
            return cls(ClassSourceKind.TOKENS, tuple(str(token) for token in raw if token))
        return None

    def evaluate(self, node: Optional["Node"]) -> List[str]:
        """Resolve to a token list; a function's result is classified again."""
        if self.kind == ClassSourceKind.FN:
            inner = ClassSource.of(self.value(node))
            if inner is None or inner.kind == ClassSourceKind.FN:
                return []
            return inner.evaluate(node)
        if self.kind == ClassSourceKind.FLAG_MAP:
            return [name for name, enabled in self.value.items() if enabled]
        return list(self.value)


def default_root_classes(section: str, node: Optional["Node"] = None) -> Dict[str, bool]:
    return {f"{DEFAULT_PREFIX}-{section}": True}


def merge_tokens(sources: Iterable[Optional[ClassSource]], node: Optional["Node"]) -> List[str]:
    """Accumulate tokens in priority order, honoring ``$reset``."""
    accumulated: List[str] = []
    for source in sources:
        if source is None:
            continue
        tokens = source.evaluate(node)
        if tokens and tokens[0] == RESET_TOKEN:
            accumulated = []
            tokens = tokens[1:]
        accumulated.extend(t for t in tokens if t != RESET_TOKEN)
    seen = set()
    unique = []
    for token in accumulated:
        if token not in seen:
            seen.add(token)
            unique.append(token)
    return unique


def section_prop(section: str) -> str:
    """Name of the section-specific convenience prop (e.g. ``outerClass``)."""
    return f"{section}Class"


def section_sources(node: "Node", section: str) -> Sequence[Optional[ClassSource]]:
    """The four class sources for a section, lowest priority first."""
    root_classes: Callable = node.config.resolve("rootClasses") or default_root_classes
    config_classes = node.config.resolve("classes") or {}
    # Only the node's own prop; the cascaded option is already level 2.
    prop_classes = node.props["classes"] if node.props.explicit("classes") else {}
    return (
        ClassSource.of(root_classes(section, node)),
        ClassSource.of(config_classes.get(section)),
        ClassSource.of(prop_classes.get(section) if isinstance(prop_classes, dict) else None),
        ClassSource.of(node.props.get(section_prop(section))),
    )


def compose_classes(node: "Node", section: str) -> str:
    """Compose the class string for one section of a node.

    The result passes through the node's ``classes`` hook chain before being
    joined; a swallowing handler yields an empty string.
    """
    tokens = merge_tokens(section_sources(node, section), node)
    completed, record = node.hook.classes.dispatch(ClassRecord(section=section, classes=tokens))
    if not completed:
        return ""
    return " ".join(merge_tokens([ClassSource.of(record.classes)], node))


__all__ = [
    "RESET_TOKEN",
    "SECTIONS",
    "ClassSource",
    "ClassSourceKind",
    "ClassSection",
    "compose_classes",
    "default_root_classes",
    "merge_tokens",
    "section_prop",
]
