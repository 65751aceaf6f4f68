from enum import Enum
from typing import Dict, Set


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


class SessionStateMachine:
    """State machine for an exam attempt session.

    SUBMITTED is terminal: it has no outgoing transitions, so nothing can
    move a submitted session back into IN_PROGRESS.
    """

    def __init__(self, initial: SessionState = SessionState.NOT_STARTED):
        self.current_state = initial
        self._transitions: Dict[SessionState, Set[SessionState]] = {
            SessionState.NOT_STARTED: {SessionState.IN_PROGRESS},
            SessionState.IN_PROGRESS: {SessionState.SUBMITTING},
            SessionState.SUBMITTING: {SessionState.SUBMITTED},
            SessionState.SUBMITTED: set(),
        }

    def can_transition(self, target_state: SessionState) -> bool:
        """Check if transition to target state is allowed"""
        allowed = self._transitions.get(self.current_state, set())
        return target_state in allowed

    def transition(self, target_state: SessionState) -> bool:
        """Attempt to transition to target state"""
        if self.can_transition(target_state):
            self.current_state = target_state
            return True
        return False

    def get_state(self) -> SessionState:
        """Get current state"""
        return self.current_state

    def is_terminal(self) -> bool:
        return not self._transitions.get(self.current_state)
