"""Validation state machine for formtree nodes.

Each node's validator owns a ValidationStateMachine tracking where its
current validation run stands:

    pending --> validating --> settled
                   ^  |           |
                   +--+-----------+

- pending: the rule chain was (re)parsed and has not run yet
- validating: a run is in flight (possibly suspended on an async rule)
- settled: the latest run finished and its messages are in the store

A run superseding an in-flight one re-enters ``validating``. Visibility of
the resulting messages is decided separately by ``messages_visible``, driven
by the node's display behavior.

Usage:
    >>> sm = ValidationStateMachine(node_id="input_1")
    >>> sm.state
    <ValidationState.PENDING: 'pending'>
    >>> sm.transition_to(ValidationState.VALIDATING)
    >>> sm.transition_to(ValidationState.SETTLED)
    >>> sm.is_settled()
    True
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from formtree.errors import FormTreeError
from formtree.types import ValidationBehavior, ValidationState


class InvalidStateTransitionError(FormTreeError):
    """Raised when attempting an invalid validation state transition.

    Attributes:
        current_state: The state before the attempted transition
        target_state: The target state that was attempted
    """

    def __init__(self, current_state: ValidationState, target_state: ValidationState, message: str):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(message)


# Maps each state to the set of states it can transition to
VALID_TRANSITIONS: Dict[ValidationState, Set[ValidationState]] = {
    ValidationState.PENDING: {
        ValidationState.VALIDATING,
    },
    ValidationState.VALIDATING: {
        ValidationState.VALIDATING,
        ValidationState.SETTLED,
        ValidationState.PENDING,
    },
    ValidationState.SETTLED: {
        ValidationState.VALIDATING,
        ValidationState.PENDING,
    },
}

TransitionListener = Callable[[ValidationState, ValidationState], None]


@dataclass
class ValidationStateMachine:
    """Per-node validation lifecycle.

    Attributes:
        node_id: Id of the node whose validation this tracks
        state: Current validation state
        on_transition: Optional callback receiving ``(old, new)``
    """

    node_id: str
    state: ValidationState = ValidationState.PENDING
    on_transition: Optional[TransitionListener] = field(default=None, repr=False)
    _history: List[Tuple[ValidationState, ValidationState]] = field(
        default_factory=list, init=False, repr=False
    )

    def can_transition_to(self, target_state: ValidationState) -> bool:
        return target_state in VALID_TRANSITIONS.get(self.state, set())

    def transition_to(self, target_state: ValidationState) -> None:
        """Move to a new state.

        Raises:
            InvalidStateTransitionError: If the transition is not allowed
        """
        target_state = ValidationState(target_state)
        if not self.can_transition_to(target_state):
            raise InvalidStateTransitionError(
                current_state=self.state,
                target_state=target_state,
                message=(
                    f"Invalid validation state transition: cannot transition from "
                    f"'{self.state.value}' to '{target_state.value}'. "
                    f"Valid transitions from '{self.state.value}' are: "
                    f"{', '.join(sorted(s.value for s in VALID_TRANSITIONS[self.state]))}"
                ),
            )
        old_state = self.state
        self.state = target_state
        self._history.append((old_state, target_state))
        if self.on_transition is not None:
            self.on_transition(old_state, target_state)

    def reset(self) -> None:
        """Return to ``pending`` after the rule chain changes."""
        if self.state != ValidationState.PENDING:
            self.transition_to(ValidationState.PENDING)

    def is_settled(self) -> bool:
        return self.state == ValidationState.SETTLED

    def history(self) -> List[Tuple[ValidationState, ValidationState]]:
        """All transitions taken so far as ``(from, to)`` pairs."""
        return list(self._history)

    def to_dict(self) -> Dict[str, Any]:
        return {"nodeId": self.node_id, "state": self.state.value}


def messages_visible(behavior: Any, dirty: bool, blurred: bool) -> bool:
    """Whether messages gated by ``behavior`` should currently be shown.

    Unrecognized behaviors are treated as ``live``.

    Examples:
        >>> messages_visible("live", dirty=False, blurred=False)
        True
        >>> messages_visible("dirty", dirty=False, blurred=True)
        False
        >>> messages_visible("blur", dirty=False, blurred=True)
        True
    """
    try:
        behavior = ValidationBehavior(behavior)
    except ValueError:
        return True
    if behavior == ValidationBehavior.DIRTY:
        return dirty
    if behavior == ValidationBehavior.BLUR:
        return blurred
    return True


__all__ = [
    "ValidationStateMachine",
    "InvalidStateTransitionError",
    "VALID_TRANSITIONS",
    "messages_visible",
]
