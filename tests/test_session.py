from adasline.session import CallSession, ExpiringMap, TranscriptTurn, prune_expired
from adasline.states import AssistantKind, CallPhase


def test_new_session_starts_connecting():
    s = CallSession(kind=AssistantKind.OPS)
    assert s.phase == CallPhase.CONNECTING
    assert s.is_active is True


def test_session_defaults_to_english():
    s = CallSession(kind=AssistantKind.TECH)
    assert s.language == "en"
    assert s.is_spanish is False
    assert s.lang.locked is False


def test_per_assistant_state_defaults():
    s = CallSession(kind=AssistantKind.OPS)
    assert s.ops.awaiting_override is False
    assert s.ops.confirmation_pending is False
    assert s.tech.current_ro == ""
    assert s.tech.calibration_required == []


def test_sessions_do_not_share_state():
    a = CallSession(kind=AssistantKind.OPS)
    b = CallSession(kind=AssistantKind.OPS)
    a.mark_logged("24567")
    a.tech.calibration_required.append("radar")
    assert not b.is_logged("24567")
    assert b.tech.calibration_required == []


def test_last_assistant_text():
    s = CallSession(kind=AssistantKind.OPS)
    s.add_turn("assistant", "What's the RO?")
    s.add_turn("user", "24567")
    assert s.last_assistant_text() == "What's the RO?"


def test_transcript_log_merges_tool_entries_in_time_order():
    s = CallSession(kind=AssistantKind.OPS)
    s.transcript.append(TranscriptTurn("assistant", "Hello.", 1000.0))
    s.transcript.append(TranscriptTurn("user", "Hi.", 1002.0))
    s.tool_log.append({"role": "tool", "name": "get_ro_summary", "result": {}, "timestamp": 1001.0})
    log = s.transcript_log()
    assert [e["role"] for e in log] == ["assistant", "tool", "user"]
    assert log[0]["content"] == "Hello."
    assert log[0]["state"] == "connecting"


class TestExpiringMap:
    def test_seen_within_window(self):
        m = ExpiringMap()
        m.touch("set_schedule:24567", now=100.0)
        assert m.seen_within("set_schedule:24567", 3.0, now=102.0) is True
        assert m.seen_within("set_schedule:24567", 3.0, now=103.5) is False
        assert m.seen_within("set_schedule:31245", 3.0, now=100.0) is False

    def test_prunes_old_entries_past_size(self):
        m = ExpiringMap(max_age=30.0, max_size=2)
        m.touch("a", now=0.0)
        m.touch("b", now=1.0)
        m.touch("c", now=50.0)
        assert "a" not in m
        assert "b" not in m
        assert len(m) == 1

    def test_prune_keeps_small_maps(self):
        entries = {"a": 0.0}
        assert prune_expired(entries, now=1000.0, max_age=30.0, max_size=20) == {"a": 0.0}
