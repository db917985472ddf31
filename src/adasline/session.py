import time
from dataclasses import dataclass, field

from adasline.config import DEDUP_PRUNE_AGE_S, DEDUP_PRUNE_SIZE
from adasline.states import AssistantKind, CallPhase


@dataclass(frozen=True)
class TranscriptTurn:
    role: str  # "user" | "assistant"
    text: str
    timestamp: float = field(default_factory=time.time)

    def to_log_entry(self, phase: str = "") -> dict:
        return {
            "role": self.role,
            "content": self.text,
            "timestamp": self.timestamp,
            "state": phase,
        }


def prune_expired(
    entries: dict[str, float],
    now: float,
    max_age: float = DEDUP_PRUNE_AGE_S,
    max_size: int = DEDUP_PRUNE_SIZE,
) -> dict[str, float]:
    """Drop entries older than max_age, but only once the map exceeds max_size.

    Returns a new dict; the input is not modified.
    """
    if len(entries) <= max_size:
        return dict(entries)
    return {k: ts for k, ts in entries.items() if now - ts <= max_age}


@dataclass
class ExpiringMap:
    """Key -> last-seen time map bounded by prune_expired()."""

    max_age: float = DEDUP_PRUNE_AGE_S
    max_size: int = DEDUP_PRUNE_SIZE
    _entries: dict = field(default_factory=dict, repr=False)

    def seen_within(self, key: str, window: float, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        last = self._entries.get(key)
        return last is not None and (now - last) < window

    def touch(self, key: str, now: float | None = None) -> None:
        now = time.monotonic() if now is None else now
        self._entries[key] = now
        self._entries = prune_expired(self._entries, now, self.max_age, self.max_size)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries


@dataclass
class LanguageState:
    language: str = "en"
    locked: bool = False
    other_count: int = 0


@dataclass
class OpsState:
    awaiting_override: bool = False
    pending_ro: str = ""
    confirmation_pending: bool = False
    last_looked_up_ro: str = ""
    last_lookup_found: bool = False


@dataclass
class TechState:
    current_ro: str = ""
    ro_data: dict | None = None
    existing_notes: str = ""
    tech_name: str = ""

    # Tracked while the technician talks
    calibration_required: list = field(default_factory=list)
    calibration_performed: list = field(default_factory=list)
    calibration_type: str = ""
    assistance_summaries: list = field(default_factory=list)
    calibration_passed: bool = False
    asked_for_calibration_info: bool = False


@dataclass
class CallSession:
    kind: AssistantKind
    call_sid: str = ""
    stream_sid: str = ""
    phase: CallPhase = CallPhase.CONNECTING
    start_time: float = field(default_factory=time.time)

    transcript: list = field(default_factory=list)
    tool_log: list = field(default_factory=list)

    # Response lifecycle
    response_in_progress: bool = False
    last_response_id: str = ""

    lang: LanguageState = field(default_factory=LanguageState)

    # Carried across vehicles handled in one call
    carried_shop: str = ""
    carried_scheduled: str = ""

    logged_ros: set = field(default_factory=set)
    recent_tool_calls: ExpiringMap = field(default_factory=ExpiringMap)
    transfer_requested: bool = False

    ops: OpsState = field(default_factory=OpsState)
    tech: TechState = field(default_factory=TechState)

    @property
    def language(self) -> str:
        return self.lang.language

    @property
    def is_spanish(self) -> bool:
        return self.lang.language == "es"

    @property
    def is_active(self) -> bool:
        return self.phase.is_open

    def add_turn(self, role: str, text: str) -> TranscriptTurn:
        turn = TranscriptTurn(role=role, text=text)
        self.transcript.append(turn)
        return turn

    def last_assistant_text(self) -> str:
        for turn in reversed(self.transcript):
            if turn.role == "assistant":
                return turn.text
        return ""

    def is_logged(self, ro: str) -> bool:
        return ro in self.logged_ros

    def mark_logged(self, ro: str) -> None:
        self.logged_ros.add(ro)

    def transcript_log(self) -> list[dict]:
        entries = [t.to_log_entry(self.phase.value) for t in self.transcript]
        entries.extend(self.tool_log)
        return sorted(entries, key=lambda e: e.get("timestamp", 0.0))
