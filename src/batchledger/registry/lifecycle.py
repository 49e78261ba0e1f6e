"""Batch lifecycle state machine: enforces the transition table.

Batch lifecycle:
    REGISTERED → IN_TRANSIT, IN_STORAGE
    IN_TRANSIT → IN_STORAGE
    IN_STORAGE → FOR_SALE
    FOR_SALE   → SOLD
    Any non-terminal state → EXPIRED

RECALLED is reached only through recall, which bypasses this table.
SOLD, RECALLED and EXPIRED are terminal.

Fail-closed: a transition not listed here is invalid, including a
"transition" to the current state.
"""

from __future__ import annotations

from batchledger.models.batch import TERMINAL_STATES, Batch, BatchState


# Valid transitions: {from_state: {allowed_to_states}}
_TRANSITIONS: dict[BatchState, set[BatchState]] = {
    BatchState.REGISTERED: {
        BatchState.IN_TRANSIT,
        BatchState.IN_STORAGE,
        BatchState.EXPIRED,
    },
    BatchState.IN_TRANSIT: {BatchState.IN_STORAGE, BatchState.EXPIRED},
    BatchState.IN_STORAGE: {BatchState.FOR_SALE, BatchState.EXPIRED},
    BatchState.FOR_SALE: {BatchState.SOLD, BatchState.EXPIRED},
    # Terminal states: no outgoing transitions
    BatchState.SOLD: set(),
    BatchState.RECALLED: set(),
    BatchState.EXPIRED: set(),
}


class BatchStateMachine:
    """Validates and applies batch lifecycle transitions.

    Pure computation: side effects (event records, authorisation) are
    handled by the registry.
    """

    @staticmethod
    def validate_transition(batch: Batch, target: BatchState) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        current = batch.state
        allowed = _TRANSITIONS.get(current, set())

        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            return [
                f"Invalid batch transition: {current.value} -> {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def apply_transition(batch: Batch, target: BatchState) -> list[str]:
        """Validate and apply a state transition.

        Returns errors if transition is invalid. On success,
        mutates batch.state and returns empty list.
        """
        errors = BatchStateMachine.validate_transition(batch, target)
        if errors:
            return errors
        batch.state = target
        return []

    @staticmethod
    def is_terminal(state: BatchState) -> bool:
        """Check if a state is terminal (no further transitions)."""
        return state in TERMINAL_STATES

    @staticmethod
    def valid_transitions(state: BatchState) -> set[BatchState]:
        """Return the set of valid target states from the given state."""
        return set(_TRANSITIONS.get(state, set()))
