#!/usr/bin/env python3
"""Pull the timestamped transcript of the last ops or tech call from Fly.io logs.

Usage:
    python scripts/call_transcript.py                    # last call, human-readable
    python scripts/call_transcript.py --raw              # last call, raw JSON
    python scripts/call_transcript.py --format text      # plain Assistant/Caller lines
    python scripts/call_transcript.py --call-sid CA...   # specific call
    python scripts/call_transcript.py --assistant tech   # last tech-line call
    python scripts/call_transcript.py --extract          # re-run field extraction
    python scripts/call_transcript.py --since 2h         # look back 2 hours
"""

import argparse
import json
import shutil
import subprocess
import sys

MARKER = "TRANSCRIPT_DUMP|"


def _split_chunk(line: str) -> tuple[int, str] | None:
    """(chunk number, json body) for one dump line, or None."""
    parts = line[line.index(MARKER):].split("|", 2)
    if len(parts) < 3:
        return None
    try:
        number, _total = parts[1].split("/")
        return int(number), parts[2]
    except ValueError:
        return None


def parse_transcript_lines(
    lines: list[str],
    call_sid: str | None = None,
    assistant: str | None = None,
) -> list[dict]:
    """Reassemble TRANSCRIPT_DUMP chunks into transcript dicts, oldest first.

    A chunk numbered 1 starts a new dump.  Dumps can be filtered by call SID
    and by assistant line ("ops" / "tech").
    """
    groups: list[dict[int, str]] = []
    for line in lines:
        if MARKER not in line:
            continue
        chunk = _split_chunk(line)
        if chunk is None:
            continue
        number, body = chunk
        if number == 1 or not groups:
            groups.append({})
        groups[-1][number] = body

    transcripts = []
    for chunks in groups:
        try:
            first = json.loads(chunks.get(1, "{}"))
        except json.JSONDecodeError:
            continue
        if call_sid and first.get("call_sid") != call_sid:
            continue
        if assistant and first.get("assistant") != assistant:
            continue

        entries = list(first.get("entries", []))
        for number in sorted(n for n in chunks if n != 1):
            try:
                entries.extend(json.loads(chunks[number]).get("entries", []))
            except json.JSONDecodeError:
                continue
        first["entries"] = entries
        transcripts.append(first)

    return transcripts


def format_transcript(transcript: dict, gap_threshold: float = 2.0) -> str:
    """Human-readable transcript with pause annotations."""
    sid = transcript.get("call_sid", "unknown")
    assistant = transcript.get("assistant", "unknown")
    duration = transcript.get("duration_s", 0)
    final_state = transcript.get("final_state", "unknown")
    lines = [f"Call {sid} | {assistant} | {duration}s | {final_state}", "═" * 55, ""]

    entries = transcript.get("entries", [])
    prev_t = None
    for entry in entries:
        t = entry.get("t", 0.0)
        role = entry.get("role", "")

        if prev_t is not None and t - prev_t >= gap_threshold:
            gap = t - prev_t
            slow = " ⚠ SLOW" if gap >= 5.0 else ""
            lines.append(f"      ┆ +{gap:.1f}s{slow}")

        prefix = f"{t:5.1f}s {entry.get('state', ''):<13}"
        if role == "assistant":
            lines.append(f"{prefix} Assistant: {entry.get('content', '')}")
        elif role == "user":
            lines.append(f"{prefix} Caller: {entry.get('content', '')}")
        elif role == "tool":
            result = json.dumps(entry.get("result", {}))
            if len(result) >= 80:
                result = result[:77] + "..."
            lines.append(f"{prefix} ⚙ {entry.get('name', 'unknown')} → {result}")
        prev_t = t

    if entries:
        lines.append(f"{duration:5.1f}s {'':13} ☎ Call ended")
    logged = transcript.get("logged_ros")
    if logged:
        lines.append(f"Logged ROs: {', '.join(logged)}")

    return "\n".join(lines)


def render(transcript: dict, fmt: str = "pretty", gap_threshold: float = 2.0) -> str:
    """Render one transcript as pretty timeline, plain text or a JSON message list."""
    from adasline.transcript import to_json_array, to_plain_text

    entries = transcript.get("entries", [])
    if fmt == "text":
        return to_plain_text(entries)
    if fmt == "json":
        return json.dumps(to_json_array(entries), indent=2, ensure_ascii=False)
    return format_transcript(transcript, gap_threshold=gap_threshold)


def extract_from_dump(transcript: dict) -> dict:
    """Re-run the field extractor for the dump's assistant line."""
    from adasline.extraction import extract_ops_record
    from adasline.session import TranscriptTurn
    from adasline.tech_extraction import extract_tech_record

    turns = [
        TranscriptTurn(role=e["role"], text=e.get("content", ""), timestamp=e.get("t", 0.0))
        for e in transcript.get("entries", [])
        if e.get("role") in ("user", "assistant")
    ]
    if transcript.get("assistant") == "tech":
        return extract_tech_record(turns).to_payload()
    return extract_ops_record(turns).to_dict()


def fetch_log_lines(app: str, since: str) -> list[str]:
    fly_cmd = shutil.which("fly") or shutil.which("flyctl")
    if not fly_cmd:
        print("Error: flyctl not found. Install: https://fly.io/docs/flyctl/install/", file=sys.stderr)
        sys.exit(1)

    try:
        result = subprocess.run(
            [fly_cmd, "logs", "-a", app, "--no-tail", "--since", since],
            capture_output=True,
            text=True,
            timeout=30,
        )
    except subprocess.TimeoutExpired:
        print("Error: fly logs timed out after 30s", file=sys.stderr)
        sys.exit(1)

    if result.returncode != 0:
        stderr = result.stderr.strip()
        if "not authenticated" in stderr.lower() or "login" in stderr.lower():
            print("Error: Not authenticated with Fly.io. Run: fly auth login", file=sys.stderr)
        else:
            print(f"Error: fly logs failed: {stderr}", file=sys.stderr)
        sys.exit(1)
    return result.stdout.strip().split("\n")


def main():
    parser = argparse.ArgumentParser(description="Pull timestamped transcript from last call")
    parser.add_argument("--raw", action="store_true", help="Output raw JSON")
    parser.add_argument(
        "--format", choices=["pretty", "text", "json"], default="pretty",
        help="pretty timeline, plain text, or JSON message list",
    )
    parser.add_argument("--call-sid", type=str, default=None, help="Filter by specific call SID")
    parser.add_argument("--assistant", choices=["ops", "tech"], default=None, help="Filter by line")
    parser.add_argument("--extract", action="store_true", help="Re-run field extraction on the call")
    parser.add_argument("--gap-threshold", type=float, default=2.0, help="Gap threshold in seconds (default: 2.0)")
    parser.add_argument("--since", type=str, default="1h", help="How far back to search (default: 1h)")
    parser.add_argument("--app", type=str, default="adasline", help="Fly.io app name")
    args = parser.parse_args()

    lines = fetch_log_lines(args.app, args.since)
    transcripts = parse_transcript_lines(lines, call_sid=args.call_sid, assistant=args.assistant)
    if not transcripts:
        print(f"No recent calls found in the last {args.since}. Try --since 2h", file=sys.stderr)
        sys.exit(1)

    transcript = transcripts[-1]
    if args.raw:
        print(json.dumps(transcript, indent=2))
    else:
        print(render(transcript, args.format, args.gap_threshold))
    if args.extract:
        print()
        print(json.dumps(extract_from_dump(transcript), indent=2))


if __name__ == "__main__":
    main()
