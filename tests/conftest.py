import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from adasline.orchestrator import CallOrchestrator
from adasline.session import CallSession, TranscriptTurn
from adasline.states import AssistantKind, CallPhase


def turns(*pairs):
    """[("assistant", "..."), ("user", "...")] -> TranscriptTurn list."""
    return [TranscriptTurn(role=role, text=text, timestamp=float(i)) for i, (role, text) in enumerate(pairs)]


class FakeTelephony:
    """Stands in for the Twilio websocket: scripted inbound, recorded outbound."""

    def __init__(self, inbound=None):
        self.inbound = [json.dumps(m) if isinstance(m, dict) else m for m in (inbound or [])]
        self.sent = []

    async def iter_text(self):
        for raw in self.inbound:
            yield raw

    async def send_text(self, data: str):
        self.sent.append(json.loads(data))


class FakeRealtime:
    """Stands in for RealtimeConnection."""

    def __init__(self, events=None):
        self._events = list(events or [])
        self.sent = []
        self.closed = False

    async def send(self, event: dict):
        if self.closed:
            return
        self.sent.append(event)

    async def events(self):
        for event in self._events:
            yield event
        self.closed = True

    async def close(self):
        self.closed = True

    def types(self) -> list[str]:
        return [e["type"] for e in self.sent]

    def instructions(self) -> list[str]:
        return [
            e["response"]["instructions"]
            for e in self.sent
            if e["type"] == "response.create" and "response" in e
        ]


def make_store():
    store = MagicMock()
    store.lookup_ro = AsyncMock(return_value=None)
    store.jobs_for_tech = AsyncMock(return_value=[])
    store.upsert_ro = AsyncMock(return_value={"success": True})
    store.update_ro = AsyncMock(return_value={"success": True})
    store.set_schedule = AsyncMock(return_value={"success": True})
    store.log_ops_data = AsyncMock(return_value={"success": True})
    store.update_tech_data = AsyncMock(return_value={"success": True})
    return store


@pytest.fixture
def ops_session():
    return CallSession(kind=AssistantKind.OPS, call_sid="CA123", stream_sid="MZ123")


@pytest.fixture
def tech_session():
    return CallSession(kind=AssistantKind.TECH, call_sid="CA456", stream_sid="MZ456")


@pytest.fixture
def fake_store():
    return make_store()


@pytest.fixture
def make_orchestrator():
    """Build an orchestrator wired to fakes, already "connected" and active."""

    def _make(kind=AssistantKind.OPS, store=None, bridge_result=None, inbound=None):
        session = CallSession(kind=kind, call_sid="CA789", stream_sid="MZ789")
        session.phase = CallPhase.ACTIVE
        bridge = MagicMock()
        bridge.execute = AsyncMock(return_value=bridge_result or {"success": True})
        twilio = MagicMock()
        twilio.redirect_call = AsyncMock(return_value=True)
        orch = CallOrchestrator(
            session,
            telephony=FakeTelephony(inbound),
            bridge=bridge,
            store=store or make_store(),
            twilio=twilio,
            host="test.example.com",
        )
        orch.ai = FakeRealtime()
        return orch

    return _make
