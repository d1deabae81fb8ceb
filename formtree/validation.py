"""Validation engine for formtree nodes.

A node's ``validation`` prop is parsed into a chain of rules, either from a
string::

    "required|length:5|?email"

or from a structured list::

    [["required"], ["length", 5], "email"]

Each rule name may carry hint prefixes:

- ``?`` non-blocking: a failure produces a message but does not stop the
  chain and does not invalidate the node
- ``+`` run even when the value is empty
- ``*`` run even after an earlier blocking failure

Rules are looked up in the node's ``validationRules`` prop first, then in the
built-in registry. Unknown rules are skipped with a warning.

Runs are numbered. A rule returning an awaitable suspends only its own
node's chain; when it resumes, the run is dropped if a newer run has been
started in the meantime, so the message store always reflects the most
recently submitted value.
"""

import asyncio
from dataclasses import dataclass
import inspect
import re
from typing import TYPE_CHECKING, Any, Awaitable, Dict, List, Optional, Set, Tuple

import jsonschema
from jsonschema import Draft7Validator
import structlog

from formtree.messages import Message
from formtree.rules import DEFAULT_MESSAGES, RULES, MessageContext, fallback_message, is_empty
from formtree.state_machine import ValidationStateMachine, messages_visible
from formtree.types import MessageKind, ValidationState

if TYPE_CHECKING:
    from formtree.node import Node

logger = structlog.get_logger()

HINTS = "?+*"

STRUCTURED_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "items": {
        "anyOf": [
            {"type": "string", "minLength": 1},
            {
                "type": "array",
                "minItems": 1,
                "items": [{"type": "string", "minLength": 1}],
            },
        ]
    },
}

_structured_validator = Draft7Validator(STRUCTURED_SCHEMA)


@dataclass(frozen=True)
class RuleSpec:
    """One parsed rule expression.

    ``blocking`` and ``skip_empty`` are None when no hint overrides the
    rule's own default.
    """
    name: str
    args: Tuple[Any, ...] = ()
    blocking: Optional[bool] = None
    skip_empty: Optional[bool] = None
    force: bool = False


@dataclass(frozen=True)
class BoundRule:
    """A RuleSpec resolved against a rule registry."""
    spec: RuleSpec
    fn: Any
    blocking: bool
    skip_empty: bool
    force: bool

    @property
    def name(self) -> str:
        return self.spec.name


def _split_hints(token: str) -> Tuple[str, Dict[str, Any]]:
    hints: Dict[str, Any] = {}
    while token and token[0] in HINTS:
        hint, token = token[0], token[1:]
        if hint == "?":
            hints["blocking"] = False
        elif hint == "+":
            hints["skip_empty"] = False
        else:
            hints["force"] = True
    return token, hints


def parse_rule_string(expression: str) -> List[RuleSpec]:
    """Parse ``"required|length:5:10"`` into RuleSpecs.

    Examples:
        >>> [(r.name, r.args) for r in parse_rule_string("required|length:5")]
        [('required', ()), ('length', ('5',))]
    """
    specs = []
    for part in expression.split("|"):
        part = part.strip()
        if not part:
            continue
        name, *args = part.split(":")
        name, hints = _split_hints(name.strip())
        if name:
            specs.append(RuleSpec(name=name, args=tuple(args), **hints))
    return specs


def parse_rules(spec: Any) -> List[RuleSpec]:
    """Parse a validation prop (string or structured list) into RuleSpecs.

    A malformed structured spec is logged and yields an empty chain.
    """
    if spec is None or spec == "":
        return []
    if isinstance(spec, str):
        return parse_rule_string(spec)
    if isinstance(spec, tuple):
        spec = list(spec)
    if not isinstance(spec, list):
        logger.warning("validation_spec_malformed", reason=f"unsupported type {type(spec).__name__}")
        return []
    try:
        _structured_validator.validate([list(i) if isinstance(i, tuple) else i for i in spec])
    except (jsonschema.ValidationError, TypeError) as exc:
        logger.warning("validation_spec_malformed", reason=getattr(exc, "message", str(exc)))
        return []
    specs = []
    for item in spec:
        if isinstance(item, str):
            specs.extend(parse_rule_string(item))
            continue
        name, hints = _split_hints(item[0])
        specs.append(RuleSpec(name=name, args=tuple(item[1:]), **hints))
    return specs


def bind_rules(specs: List[RuleSpec], registry: Dict[str, Any]) -> List[BoundRule]:
    """Resolve RuleSpecs against a registry, skipping unknown names."""
    chain = []
    for spec in specs:
        fn = registry.get(spec.name)
        if fn is None:
            logger.warning("validation_rule_unknown", rule=spec.name)
            continue
        chain.append(
            BoundRule(
                spec=spec,
                fn=fn,
                blocking=spec.blocking if spec.blocking is not None else getattr(fn, "blocking", True),
                skip_empty=spec.skip_empty if spec.skip_empty is not None else getattr(fn, "skip_empty", True),
                force=spec.force or getattr(fn, "force", False),
            )
        )
    return chain


def label_from_name(name: str) -> str:
    """Turn a node name into a readable label: ``firstName`` -> ``first name``."""
    words = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", name)
    return re.sub(r"[_\-\s]+", " ", words).strip().lower()


async def _resolve(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class Validator:
    """Runs a node's rule chain and keeps its validation messages current.

    Attributes:
        node: The owning node
        chain: The bound rule chain
        machine: The node's validation state machine
        generation: Number of the most recently started run
    """

    def __init__(self, node: "Node"):
        self.node = node
        self.chain: List[BoundRule] = []
        self.machine = ValidationStateMachine(node_id=node.id, on_transition=node._validation_transition)
        self.generation = 0
        self._tasks: Set[asyncio.Task] = set()

    def parse(self) -> None:
        """Rebuild the rule chain from the node's current props."""
        registry = dict(RULES)
        registry.update(self.node.props.get("validationRules") or {})
        self.chain = bind_rules(parse_rules(self.node.props.get("validation")), registry)
        self.machine.reset()

    @property
    def visible(self) -> bool:
        """Whether validation messages should currently be shown."""
        return messages_visible(
            self.node.props.get("validationBehavior"),
            dirty=self.node.dirty,
            blurred=self.node.blurred,
        )

    def refresh_visibility(self) -> None:
        self.node.store.set_visibility(MessageKind.VALIDATION, self.visible)

    def label(self) -> str:
        """Resolve the label interpolated into messages.

        ``validationLabel`` (string or callable of the node) wins over
        ``label``, which wins over a label derived from the node name.
        """
        custom = self.node.props.get("validationLabel")
        if callable(custom):
            custom = custom(self.node)
        if custom:
            return str(custom)
        label = self.node.props.get("label")
        if label:
            return str(label)
        return label_from_name(self.node.name)

    def message_for(self, bound: BoundRule, value: Any) -> str:
        context = MessageContext(name=self.label(), args=bound.spec.args, node=self.node, value=value)
        overrides = self.node.props.get("validationMessages") or {}
        template = overrides.get(bound.name)
        if template is None:
            template = DEFAULT_MESSAGES.get(bound.name, fallback_message)
        if callable(template):
            return str(template(context))
        return str(template)

    def watches(self, name: str) -> bool:
        """Whether a rule in the chain compares against the sibling ``name``."""
        for bound in self.chain:
            target = getattr(bound.fn, "watches", None)
            if callable(target) and target(self.node, *bound.spec.args) == name:
                return True
        return False

    def invalidate(self) -> None:
        """Drop any in-flight run without starting a new one."""
        self.generation += 1

    def run(self) -> None:
        """Start a new run against the node's current value."""
        self.generation += 1
        self.machine.transition_to(ValidationState.VALIDATING)
        self._advance(self.generation, 0, [], False)

    def _advance(self, generation: int, index: int, failures: List[BoundRule], blocked: bool) -> None:
        value = self.node.value
        while index < len(self.chain):
            bound = self.chain[index]
            index += 1
            if blocked and not bound.force:
                continue
            if bound.skip_empty and is_empty(value):
                continue
            result = self._call(bound)
            if inspect.isawaitable(result):
                self._suspend(generation, result, bound, index, failures, blocked)
                return
            blocked = self._record(bound, result, failures) or blocked
        self._settle(generation, failures)

    def _call(self, bound: BoundRule) -> Any:
        try:
            return bound.fn(self.node, *bound.spec.args)
        except Exception:
            logger.error("validation_rule_failed", rule=bound.name, node_id=self.node.id, exc_info=True)
            return False

    @staticmethod
    def _record(bound: BoundRule, passed: Any, failures: List[BoundRule]) -> bool:
        if passed:
            return False
        failures.append(bound)
        return bound.blocking

    def _suspend(
        self,
        generation: int,
        awaitable: Awaitable[Any],
        bound: BoundRule,
        index: int,
        failures: List[BoundRule],
        blocked: bool,
    ) -> None:
        loop = _running_loop()
        if loop is None:
            # No loop to suspend on: drive the rule to completion in place.
            try:
                passed = asyncio.run(_resolve(awaitable))
            except Exception:
                logger.error("validation_rule_failed", rule=bound.name, node_id=self.node.id, exc_info=True)
                passed = False
            blocked = self._record(bound, passed, failures) or blocked
            self._advance(generation, index, failures, blocked)
            return
        task = loop.create_task(self._resume(generation, awaitable, bound, index, failures, blocked))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _resume(
        self,
        generation: int,
        awaitable: Awaitable[Any],
        bound: BoundRule,
        index: int,
        failures: List[BoundRule],
        blocked: bool,
    ) -> None:
        try:
            passed = await awaitable
        except Exception:
            logger.error("validation_rule_failed", rule=bound.name, node_id=self.node.id, exc_info=True)
            passed = False
        if generation != self.generation:
            logger.debug("validation_run_discarded", node_id=self.node.id, generation=generation)
            return
        blocked = self._record(bound, passed, failures) or blocked
        self._advance(generation, index, failures, blocked)

    def _settle(self, generation: int, failures: List[BoundRule]) -> None:
        if generation != self.generation:
            return
        store = self.node.store
        visible = self.visible
        value = self.node.value
        wanted: Dict[str, Message] = {}
        for bound in failures:
            key = f"rule_{bound.name}"
            wanted.setdefault(
                key,
                Message(
                    key=key,
                    kind=MessageKind.VALIDATION,
                    text=self.message_for(bound, value),
                    visible=visible,
                    blocking=bound.blocking,
                    meta={"rule": bound.name, "args": list(bound.spec.args)},
                ),
            )
        for existing in store.filter(MessageKind.VALIDATION):
            if existing.key not in wanted:
                store.remove(existing.key, MessageKind.VALIDATION)
        for message in wanted.values():
            store.set(message)
        self.machine.transition_to(ValidationState.SETTLED)


__all__ = [
    "RuleSpec",
    "BoundRule",
    "Validator",
    "bind_rules",
    "label_from_name",
    "parse_rule_string",
    "parse_rules",
]
