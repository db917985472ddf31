import json


def to_plain_text(log: list[dict]) -> str:
    """Convert transcript log to plain text format.

    Assistant lines prefixed with "Assistant:", caller lines with "Caller:",
    tool invocations shown as "[Tool: name]".
    """
    if not log:
        return ""

    lines = []
    for entry in log:
        role = entry.get("role", "")
        if role == "assistant":
            lines.append(f"Assistant: {entry['content']}")
        elif role == "user":
            lines.append(f"Caller: {entry['content']}")
        elif role == "tool":
            lines.append(f"[Tool: {entry['name']}]")
    return "\n".join(lines)


def to_json_array(log: list[dict]) -> list[dict]:
    """Structured {role, content} list; tool entries carry name and result."""
    if not log:
        return []

    result = []
    for entry in log:
        role = entry.get("role", "")
        if role in ("assistant", "user"):
            result.append({"role": role, "content": entry["content"]})
        elif role == "tool":
            result.append({
                "role": "tool",
                "name": entry["name"],
                "result": entry.get("result", {}),
            })
    return result


def to_timestamped_dump(
    log: list[dict],
    start_time: float,
    call_sid: str,
    assistant: str,
    final_phase: str,
    duration_s: float = 0.0,
) -> dict:
    """Build a timestamped transcript dump dict for structured logging.

    Timestamps are converted to relative seconds from call start.
    If start_time is 0, uses the first entry's timestamp as base.
    Entries missing a timestamp key are skipped.
    """
    base_time = start_time
    if base_time <= 0 and log:
        for entry in log:
            if "timestamp" in entry:
                base_time = entry["timestamp"]
                break

    entries = []
    for entry in log:
        if "timestamp" not in entry:
            continue
        e = {
            "t": round(entry["timestamp"] - base_time, 1),
            "role": entry["role"],
            "state": entry.get("state", ""),
        }
        for key in ("content", "name", "result"):
            if key in entry:
                e[key] = entry[key]
        entries.append(e)

    return {
        "call_sid": call_sid,
        "assistant": assistant,
        "duration_s": round(duration_s, 1),
        "final_state": final_phase,
        "entries": entries,
    }


def chunk_transcript_dump(dump: dict, max_bytes: int = 3500) -> list[str]:
    """Split a transcript dump into log-line sized chunks.

    Each chunk is TRANSCRIPT_DUMP|N/M|{json}.  The first chunk carries the
    header fields; later chunks carry only entries.
    """
    header = {k: v for k, v in dump.items() if k != "entries"}
    entries = dump.get("entries", [])

    if not entries:
        return [f"TRANSCRIPT_DUMP|1/1|{json.dumps({**header, 'entries': []})}"]

    groups: list[list[dict]] = []
    current: list[dict] = []
    size = len(json.dumps({**header, "entries": []}).encode("utf-8"))

    for entry in entries:
        entry_size = len(json.dumps(entry).encode("utf-8")) + 2
        if current and size + entry_size > max_bytes:
            groups.append(current)
            current = []
            size = len(json.dumps({"entries": []}).encode("utf-8"))
        current.append(entry)
        size += entry_size
    groups.append(current)

    total = len(groups)
    result = []
    for i, group in enumerate(groups):
        body = {**header, "entries": group} if i == 0 else {"entries": group}
        result.append(f"TRANSCRIPT_DUMP|{i + 1}/{total}|{json.dumps(body)}")
    return result
