"""Unit tests for the validation state machine.

Tests cover:
- Initialization and defaults
- Valid and invalid transitions
- Transition callbacks and history
- Message visibility per display behavior
"""

import pytest

from formtree.state_machine import (
    InvalidStateTransitionError,
    ValidationStateMachine,
    VALID_TRANSITIONS,
    messages_visible,
)
from formtree.types import ValidationBehavior, ValidationState


class TestStateMachineInitialization:
    """Test state machine initialization and defaults."""

    def test_init_with_node_id(self):
        """Should initialize with node_id and default to PENDING state."""
        sm = ValidationStateMachine(node_id="input_1")
        assert sm.node_id == "input_1"
        assert sm.state == ValidationState.PENDING
        assert sm.history() == []

    def test_init_with_custom_state(self):
        """Should initialize with custom state if provided."""
        sm = ValidationStateMachine(node_id="input_2", state=ValidationState.SETTLED)
        assert sm.is_settled()


class TestTransitions:
    """Test allowed and rejected transitions."""

    def test_pending_to_validating_to_settled(self):
        """Should follow the normal run lifecycle."""
        sm = ValidationStateMachine(node_id="input_3")
        sm.transition_to(ValidationState.VALIDATING)
        sm.transition_to(ValidationState.SETTLED)
        assert sm.state == ValidationState.SETTLED

    def test_superseding_run_reenters_validating(self):
        """Should allow VALIDATING to VALIDATING for a newer run."""
        sm = ValidationStateMachine(node_id="input_4", state=ValidationState.VALIDATING)
        sm.transition_to(ValidationState.VALIDATING)
        assert sm.state == ValidationState.VALIDATING

    def test_pending_to_settled_is_rejected(self):
        """Should not settle without running."""
        sm = ValidationStateMachine(node_id="input_5")
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            sm.transition_to(ValidationState.SETTLED)

        assert exc_info.value.current_state == ValidationState.PENDING
        assert exc_info.value.target_state == ValidationState.SETTLED
        assert "validating" in str(exc_info.value)

    def test_accepts_string_states(self):
        """Should normalize plain string targets."""
        sm = ValidationStateMachine(node_id="input_6")
        sm.transition_to("validating")
        assert sm.state == ValidationState.VALIDATING

    def test_reset_returns_to_pending(self):
        """Should return to PENDING from any state and be a no-op there."""
        sm = ValidationStateMachine(node_id="input_7", state=ValidationState.SETTLED)
        sm.reset()
        sm.reset()
        assert sm.state == ValidationState.PENDING
        assert len(sm.history()) == 1

    def test_every_state_has_transitions(self):
        """Should define outgoing transitions for every state."""
        assert set(VALID_TRANSITIONS) == set(ValidationState)
        for targets in VALID_TRANSITIONS.values():
            assert ValidationState.VALIDATING in targets


class TestCallbacks:
    """Test transition callbacks and history."""

    def test_on_transition_receives_old_and_new(self):
        """Should call the listener after each transition."""
        seen = []
        sm = ValidationStateMachine(node_id="input_8", on_transition=lambda old, new: seen.append((old, new)))

        sm.transition_to(ValidationState.VALIDATING)
        sm.transition_to(ValidationState.SETTLED)

        assert seen == [
            (ValidationState.PENDING, ValidationState.VALIDATING),
            (ValidationState.VALIDATING, ValidationState.SETTLED),
        ]
        assert sm.history() == seen

    def test_to_dict(self):
        """Should serialize with camelCase keys."""
        sm = ValidationStateMachine(node_id="input_9")
        assert sm.to_dict() == {"nodeId": "input_9", "state": "pending"}


class TestMessagesVisible:
    """Test visibility per display behavior."""

    @pytest.mark.parametrize(
        "behavior,dirty,blurred,expected",
        [
            (ValidationBehavior.LIVE, False, False, True),
            ("dirty", False, True, False),
            ("dirty", True, False, True),
            ("blur", True, False, False),
            ("blur", False, True, True),
            ("barfoo", False, False, True),
            (None, False, False, True),
        ],
    )
    def test_visibility(self, behavior, dirty, blurred, expected):
        assert messages_visible(behavior, dirty=dirty, blurred=blurred) is expected
