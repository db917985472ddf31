import json
import os
import sys

# Add scripts to path so we can import the module
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))
from call_transcript import extract_from_dump, format_transcript, parse_transcript_lines, render


def _dump(call_sid="CA_test", assistant="ops", entries=None, **extra):
    return {
        "call_sid": call_sid,
        "assistant": assistant,
        "final_state": "closed",
        "duration_s": 10.0,
        "entries": entries or [],
        **extra,
    }


def _line(dump, n=1, total=1):
    return f"2025-12-10T19:00:00Z app[abc] mia [info]TRANSCRIPT_DUMP|{n}/{total}|{json.dumps(dump)}"


class TestParseTranscriptLines:
    def test_single_chunk(self):
        dump = _dump(entries=[
            {"t": 0.0, "role": "assistant", "state": "active", "content": "Hello."},
            {"t": 2.3, "role": "user", "state": "active", "content": "Hi."},
        ])
        result = parse_transcript_lines([_line(dump)])
        assert len(result) == 1
        assert result[0]["call_sid"] == "CA_test"
        assert len(result[0]["entries"]) == 2

    def test_multi_chunk_reassembly(self):
        first = _dump(call_sid="CA_multi", entries=[{"t": 0.0, "role": "assistant", "content": "A"}])
        second = {"entries": [{"t": 5.0, "role": "user", "content": "B"}]}
        result = parse_transcript_lines([_line(first, 1, 2), _line(second, 2, 2)])
        assert len(result) == 1
        assert [e["content"] for e in result[0]["entries"]] == ["A", "B"]

    def test_call_sid_filter(self):
        lines = [_line(_dump(call_sid="CA_first")), _line(_dump(call_sid="CA_second"))]
        result = parse_transcript_lines(lines, call_sid="CA_first")
        assert [t["call_sid"] for t in result] == ["CA_first"]

    def test_assistant_filter(self):
        lines = [_line(_dump(call_sid="CA_ops")), _line(_dump(call_sid="CA_tech", assistant="tech"))]
        result = parse_transcript_lines(lines, assistant="tech")
        assert [t["call_sid"] for t in result] == ["CA_tech"]

    def test_no_transcript_lines_returns_empty(self):
        assert parse_transcript_lines(["some random log line", "another line"]) == []

    def test_corrupted_json_skipped(self):
        lines = ["TRANSCRIPT_DUMP|1/1|{not valid json", _line(_dump(call_sid="CA_ok"))]
        result = parse_transcript_lines(lines)
        assert [t["call_sid"] for t in result] == ["CA_ok"]


class TestFormatTranscript:
    def test_basic_formatting(self):
        transcript = _dump(call_sid="CA_fmt", entries=[
            {"t": 0.0, "role": "assistant", "state": "active", "content": "Hello."},
            {"t": 1.0, "role": "user", "state": "active", "content": "Hi."},
        ])
        output = format_transcript(transcript)
        assert "CA_fmt" in output
        assert "ops" in output
        assert "Assistant: Hello." in output
        assert "Caller: Hi." in output
        assert "Call ended" in output

    def test_gap_annotations(self):
        transcript = _dump(entries=[
            {"t": 0.0, "role": "assistant", "content": "Hello."},
            {"t": 3.5, "role": "user", "content": "Hi."},
            {"t": 33.5, "role": "assistant", "content": "Still there?"},
        ])
        output = format_transcript(transcript, gap_threshold=2.0)
        assert "+3.5s" in output
        assert "SLOW" in output

    def test_gap_threshold_respected(self):
        transcript = _dump(entries=[
            {"t": 0.0, "role": "assistant", "content": "Hello."},
            {"t": 2.5, "role": "user", "content": "Hi."},
        ])
        output = format_transcript(transcript, gap_threshold=3.0)
        assert not [l for l in output.split("\n") if l.strip().startswith("┆")]

    def test_tool_entry_truncated(self):
        transcript = _dump(entries=[
            {"t": 1.0, "role": "tool", "name": "get_ro_summary", "result": {"notes": "x" * 200}},
        ])
        output = format_transcript(transcript)
        assert "get_ro_summary" in output
        assert "..." in output

    def test_logged_ros_listed(self):
        output = format_transcript(_dump(logged_ros=["24567", "31245"]))
        assert "Logged ROs: 24567, 31245" in output


class TestExtractFromDump:
    def test_tech_dump(self):
        transcript = _dump(assistant="tech", entries=[
            {"t": 0.0, "role": "user", "content": "This is Mike, RO 24567, front radar done"},
        ])
        payload = extract_from_dump(transcript)
        assert payload["ro_number"] == "24567"
        assert payload["technician"] == "Mike"

    def test_ops_dump(self):
        transcript = _dump(entries=[
            {"t": 0.0, "role": "assistant", "content": "What's the RO number?"},
            {"t": 1.0, "role": "user", "content": "24567"},
        ])
        assert extract_from_dump(transcript)["ro_number"] == "24567"


class TestRender:
    ENTRIES = [
        {"t": 0.0, "role": "assistant", "content": "Hello."},
        {"t": 1.0, "role": "user", "content": "RO 24567."},
        {"t": 2.0, "role": "tool", "name": "get_ro_summary", "result": {"found": True}},
    ]

    def test_plain_text(self):
        output = render(_dump(entries=self.ENTRIES), "text")
        assert output == "Assistant: Hello.\nCaller: RO 24567.\n[Tool: get_ro_summary]"

    def test_json_messages(self):
        messages = json.loads(render(_dump(entries=self.ENTRIES), "json"))
        assert messages[1] == {"role": "user", "content": "RO 24567."}
        assert messages[2]["name"] == "get_ro_summary"

    def test_pretty_is_default(self):
        assert "Call ended" in render(_dump(entries=self.ENTRIES))
