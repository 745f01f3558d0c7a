from enum import Enum
from dataclasses import dataclass


class ServerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    REMOVED = "removed"


# Display-only overlay; never persisted.
PAUSED = "paused"


class TransitionError(Exception):
    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)


@dataclass
class Transition:
    from_state: ServerState
    to_state: ServerState
    action: str


class ServerStateMachine:
    TRANSITIONS = [
        Transition(ServerState.STOPPED, ServerState.RUNNING, "start"),
        Transition(ServerState.RUNNING, ServerState.STOPPED, "stop"),
        Transition(ServerState.STOPPED, ServerState.REMOVED, "remove"),
        Transition(ServerState.RUNNING, ServerState.REMOVED, "remove"),
    ]

    def __init__(self, initial_state: ServerState = ServerState.STOPPED):
        self._state = initial_state

    @property
    def state(self) -> ServerState:
        return self._state

    def transition(self, action: str) -> ServerState:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                self._state = t.to_state
                return self._state

        raise TransitionError(
            self._state.value,
            "unknown",
            f"No valid transition for action '{action}' from state '{self._state.value}'"
        )

    @classmethod
    def from_state_string(cls, state_str: str) -> "ServerStateMachine":
        try:
            state = ServerState(state_str)
        except ValueError:
            state = ServerState.STOPPED
        return cls(initial_state=state)
