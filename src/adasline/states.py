from enum import Enum

OPEN_PHASES = {"connecting", "configured", "active"}
TERMINAL_PHASES = {"transferring", "closed"}


class AssistantKind(Enum):
    OPS = "ops"
    TECH = "tech"

    @property
    def voice(self) -> str:
        return "shimmer" if self is AssistantKind.OPS else "cedar"


class CallPhase(Enum):
    CONNECTING = "connecting"
    CONFIGURED = "configured"
    ACTIVE = "active"
    TRANSFERRING = "transferring"
    CLOSED = "closed"

    @property
    def is_open(self) -> bool:
        return self.value in OPEN_PHASES

    @property
    def is_terminal(self) -> bool:
        return self.value in TERMINAL_PHASES
