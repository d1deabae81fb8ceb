"""Built-in validation rules and their default messages.

A rule is a callable ``rule(node, *args)`` returning a bool, or an awaitable
resolving to one. Arguments parsed from a rule string (``"length:5:10"``)
arrive as strings; each rule coerces what it needs.

Rules are skipped when the node's value is empty unless they are marked
with ``skip_empty=False`` (``required`` is the only built-in so marked).

Default messages are callables of a MessageContext and return sentence-cased
text, e.g. ``"Email is required."``.
"""

from dataclasses import dataclass, field
from datetime import datetime
import math
import re
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Sequence
from urllib.parse import urlparse

from dateutil import parser as date_parser

if TYPE_CHECKING:
    from formtree.node import Node

RuleFunction = Callable[..., Any]

RULES: Dict[str, RuleFunction] = {}

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def rule(name: Optional[str] = None, skip_empty: bool = True, blocking: bool = True):
    """Register a built-in rule and record its default hints on the function."""

    def decorator(fn: RuleFunction) -> RuleFunction:
        fn.skip_empty = skip_empty
        fn.blocking = blocking
        RULES[name or fn.__name__] = fn
        return fn

    return decorator


def is_empty(value: Any) -> bool:
    """True for None, empty strings, and empty collections."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _number(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def _date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    try:
        return date_parser.parse(str(value))
    except (ValueError, OverflowError):
        return None


@rule(skip_empty=False)
def required(node: "Node", action: str = "default") -> bool:
    value = node.value
    if action == "trim" and isinstance(value, str):
        value = value.strip()
    return not is_empty(value)


@rule()
def length(node: "Node", first: Any = 0, second: Any = math.inf) -> bool:
    value = node.value
    if isinstance(value, (dict, set)):
        size = len(value)
    elif isinstance(value, (list, tuple, str)):
        size = len(value)
    else:
        size = len(str(value))
    low, high = _number(first) or 0, _number(second)
    high = math.inf if high is None else high
    if low > high:
        low, high = high, low
    return low <= size <= high


@rule(name="min")
def minimum_value(node: "Node", minimum: Any = 1) -> bool:
    bound = _number(minimum)
    if isinstance(node.value, (list, tuple)):
        return bound is not None and len(node.value) >= bound
    value = _number(node.value)
    return value is not None and bound is not None and value >= bound


@rule(name="max")
def maximum_value(node: "Node", maximum: Any = 10) -> bool:
    bound = _number(maximum)
    if isinstance(node.value, (list, tuple)):
        return bound is not None and len(node.value) <= bound
    value = _number(node.value)
    return value is not None and bound is not None and value <= bound


@rule()
def between(node: "Node", first: Any = None, second: Any = None) -> bool:
    value, low, high = _number(node.value), _number(first), _number(second)
    if value is None or low is None or high is None:
        return False
    if low > high:
        low, high = high, low
    return low <= value <= high


@rule()
def number(node: "Node") -> bool:
    return not isinstance(node.value, bool) and _number(node.value) is not None


@rule()
def alpha(node: "Node") -> bool:
    return str(node.value).isalpha()


@rule()
def alphanumeric(node: "Node") -> bool:
    return str(node.value).isalnum()


@rule()
def email(node: "Node") -> bool:
    return bool(EMAIL_PATTERN.match(str(node.value)))


@rule()
def url(node: "Node", *protocols: str) -> bool:
    parsed = urlparse(str(node.value))
    allowed = protocols or ("http", "https")
    return parsed.scheme in allowed and bool(parsed.netloc)


@rule()
def matches(node: "Node", *patterns: Any) -> bool:
    value = str(node.value)
    for pattern in patterns:
        if isinstance(pattern, re.Pattern):
            if pattern.search(value):
                return True
        elif isinstance(pattern, str) and len(pattern) > 1 and pattern.startswith("/") and pattern.endswith("/"):
            if re.search(pattern[1:-1], value):
                return True
        elif value == str(pattern):
            return True
    return False


@rule()
def starts_with(node: "Node", *prefixes: str) -> bool:
    return any(str(node.value).startswith(prefix) for prefix in prefixes)


@rule()
def ends_with(node: "Node", *suffixes: str) -> bool:
    return any(str(node.value).endswith(suffix) for suffix in suffixes)


@rule(name="is")
def is_one_of(node: "Node", *options: Any) -> bool:
    return any(node.value == option or str(node.value) == str(option) for option in options)


@rule(name="not")
def is_not(node: "Node", *options: Any) -> bool:
    return not is_one_of(node, *options)


@rule()
def accepted(node: "Node") -> bool:
    return node.value in (True, 1, "1", "yes", "on", "true")


def confirm_target(node: "Node", other: Optional[str] = None) -> str:
    """Name of the sibling a ``confirm`` rule compares against."""
    if other is not None:
        return str(other)
    return node.name[: -len("_confirm")] if node.name.endswith("_confirm") else f"{node.name}_confirm"


@rule()
def confirm(node: "Node", other: Optional[str] = None) -> bool:
    """Match the value of a sibling (``<name>_confirm`` pairing by default)."""
    target = confirm_target(node, other)
    sibling = node.parent.child(target) if node.parent is not None else None
    return sibling is not None and sibling.value == node.value


# A rule with ``watches`` re-runs when the named sibling commits.
confirm.watches = confirm_target


@rule()
def date_after(node: "Node", compare: Optional[str] = None) -> bool:
    value = _date(node.value)
    bound = _date(compare) if compare else datetime.now()
    return value is not None and bound is not None and value > bound


@rule()
def date_before(node: "Node", compare: Optional[str] = None) -> bool:
    value = _date(node.value)
    bound = _date(compare) if compare else datetime.now()
    return value is not None and bound is not None and value < bound


@rule()
def date_between(node: "Node", start: Optional[str] = None, end: Optional[str] = None) -> bool:
    value, low, high = _date(node.value), _date(start), _date(end)
    return None not in (value, low, high) and low <= value <= high


@dataclass(frozen=True)
class MessageContext:
    """Data available to a message template.

    Attributes:
        name: The resolved validation label
        args: Rule arguments as written in the rule expression
        node: The node being validated
        value: The value that failed
    """
    name: str
    args: Sequence[Any] = field(default_factory=tuple)
    node: Any = None
    value: Any = None


def sentence(text: str) -> str:
    """Uppercase the first character, leave the rest untouched."""
    return text[:1].upper() + text[1:] if text else text


def _list(items: Sequence[Any], conjunction: str = "or") -> str:
    items = [str(i) for i in items]
    if len(items) <= 1:
        return "".join(items)
    return f"{', '.join(items[:-1])} {conjunction} {items[-1]}"


def _length_message(ctx: MessageContext) -> str:
    args = list(ctx.args)
    first = args[0] if args else "0"
    second = args[1] if len(args) > 1 else None
    if second is None:
        return f"{sentence(ctx.name)} must be at least {first} characters."
    if str(first) in ("0", ""):
        return f"{sentence(ctx.name)} must be less than or equal to {second} characters."
    return f"{sentence(ctx.name)} must be between {first} and {second} characters."


DEFAULT_MESSAGES: Dict[str, Callable[[MessageContext], str]] = {
    "required": lambda ctx: f"{sentence(ctx.name)} is required.",
    "length": _length_message,
    "min": lambda ctx: f"{sentence(ctx.name)} must be at least {(list(ctx.args) or [1])[0]}.",
    "max": lambda ctx: f"{sentence(ctx.name)} must be less than or equal to {(list(ctx.args) or [10])[0]}.",
    "between": lambda ctx: f"{sentence(ctx.name)} must be between {_list(ctx.args, 'and')}.",
    "number": lambda ctx: f"{sentence(ctx.name)} must be a number.",
    "alpha": lambda ctx: f"{sentence(ctx.name)} can only contain alphabetical characters.",
    "alphanumeric": lambda ctx: f"{sentence(ctx.name)} can only contain letters and numbers.",
    "email": lambda ctx: "Please enter a valid email address.",
    "url": lambda ctx: "Please include a valid url.",
    "matches": lambda ctx: f"{sentence(ctx.name)} is not an allowed value.",
    "starts_with": lambda ctx: f"{sentence(ctx.name)} must start with {_list(ctx.args)}.",
    "ends_with": lambda ctx: f"{sentence(ctx.name)} must end with {_list(ctx.args)}.",
    "is": lambda ctx: f"{sentence(ctx.name)} must be {_list(ctx.args)}.",
    "not": lambda ctx: f"\"{ctx.value}\" is not an allowed {ctx.name}.",
    "accepted": lambda ctx: f"Please accept the {ctx.name}.",
    "confirm": lambda ctx: f"{sentence(ctx.name)} does not match.",
    "date_after": lambda ctx: (
        f"{sentence(ctx.name)} must be after {ctx.args[0]}."
        if ctx.args else f"{sentence(ctx.name)} must be in the future."
    ),
    "date_before": lambda ctx: (
        f"{sentence(ctx.name)} must be before {ctx.args[0]}."
        if ctx.args else f"{sentence(ctx.name)} must be in the past."
    ),
    "date_between": lambda ctx: f"{sentence(ctx.name)} must be between {_list(ctx.args, 'and')}.",
}


def fallback_message(ctx: MessageContext) -> str:
    return f"{sentence(ctx.name)} is not valid."


__all__ = [
    "RULES",
    "DEFAULT_MESSAGES",
    "MessageContext",
    "fallback_message",
    "is_empty",
    "rule",
    "sentence",
]
