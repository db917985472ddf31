"""Technician assignment, readiness and slot suggestion.

Everything here except suggest_time_slot() is a pure function of its
arguments (plus the wall clock when no scheduled time is given).  Time
windows are evaluated in the business timezone:

    morning   08:00-12:00
    afternoon 12:00-17:00
    off_hours otherwise

Martin works weekday afternoons from 12:30 and all day Saturday; every
other technician is assumed available whenever the shop routes to them.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import date, datetime

from adasline.validation import _now_et

logger = logging.getLogger(__name__)

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

# Business hours for customer-facing scheduling, decimal hours
EARLIEST_SCHEDULE_HOUR = 8.5
LATEST_SCHEDULE_HOUR = 16.0

MAX_JOBS_PER_DAY = 5

TIME_SLOTS = {
    "morning": ["9:00 AM", "10:00 AM", "11:00 AM"],
    "afternoon": ["1:00 PM", "2:00 PM", "3:00 PM", "4:00 PM"],
}

# weekday() -> (start, end) in decimal hours; missing day means off
RESTRICTED_TECH_HOURS = {
    "martin": {
        0: (12.5, 16.0),
        1: (12.5, 16.0),
        2: (12.5, 16.0),
        3: (12.5, 16.0),
        4: (12.5, 16.0),
        5: (8.5, 16.0),
    },
}

# Shop -> {"all_day"|"morning"|"afternoon"|"fallback": [technicians]}
DEFAULT_ROUTING = {
    "JMD Body Shop": {"all_day": ["Randy"], "fallback": ["Felipe"]},
    "CCNM": {"all_day": ["Anthony"], "fallback": ["Randy"]},
    "AutoSport": {
        "morning": ["Felipe"],
        "afternoon": ["Felipe", "Martin"],
        "fallback": ["Randy"],
    },
    "PaintMax": {
        "morning": ["Felipe"],
        "afternoon": ["Martin"],
        "fallback": ["Felipe", "Randy"],
    },
    "Reinaldo Body Shop": {
        "morning": ["Felipe"],
        "afternoon": ["Martin", "Felipe"],
        "fallback": ["Randy"],
    },
}

# Codes that must be cleared before any calibration is attempted
BLOCKER_DTCS = {
    "U0100": "Lost communication with ECM/PCM",
    "U0121": "Lost communication with ABS control module",
    "U0126": "Lost communication with steering angle sensor module",
    "U0131": "Lost communication with power steering control module",
    "U0151": "Lost communication with restraints control module",
    "U0155": "Lost communication with instrument panel cluster",
    "U0235": "Lost communication with cruise control front distance range sensor",
    "U0428": "Invalid data received from steering angle sensor module",
    "C0051": "Steering wheel position sensor",
    "C0455": "Steering wheel position sensor circuit",
    "C1A67": "Steering angle sensor not calibrated",
    "B1318": "Battery voltage low",
    "B1325": "Control module voltage out of range",
}

_DTC_IN_TEXT = re.compile(r"[UBCP][0-9A-F]{4}", re.IGNORECASE)
_PRE_SECTION = re.compile(r"PRE:\s*([^|]+)", re.IGNORECASE)
_DTC_CODE = re.compile(r"^[PBCU][0-9A-F]{4}$", re.IGNORECASE)
_CLOCK_12 = re.compile(r"^(\d{1,2}):?(\d{2})?\s*(AM|PM)?$", re.IGNORECASE)
_CLOCK_24 = re.compile(r"^(\d{1,2}):(\d{2})$")

ATTENTION_FLAGS = ("ATTENTION REQUIRED", "MISSING CALIBRATIONS")


# --- Time helpers ---


def parse_time_to_decimal_hours(time_str) -> float | None:
    """'2:30 PM' -> 14.5, '14:00' -> 14.0.  Ranges use their start time."""
    if not time_str:
        return None
    text = str(time_str).strip().upper()
    text = text.split(" - ")[0].strip()

    m = _CLOCK_12.match(text)
    if m:
        hours = int(m.group(1))
        minutes = int(m.group(2)) if m.group(2) else 0
        if m.group(3) == "PM" and hours != 12:
            hours += 12
        if m.group(3) == "AM" and hours == 12:
            hours = 0
        return hours + minutes / 60

    m = _CLOCK_24.match(text)
    if m:
        return int(m.group(1)) + int(m.group(2)) / 60
    return None


def format_decimal_hours(value: float) -> str:
    hours = int(value)
    minutes = round((value - hours) * 60)
    ampm = "PM" if hours >= 12 else "AM"
    display = hours - 12 if hours > 12 else (12 if hours == 0 else hours)
    return f"{display}:{minutes:02d} {ampm}"


def window_for_hour(hour: float) -> str:
    if 8 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    return "off_hours"


def get_time_window(scheduled_time: str | None = None, now: datetime | None = None) -> str:
    """A scheduled time splits on noon only; without one the wall clock is bucketed."""
    hour = parse_time_to_decimal_hours(scheduled_time)
    if hour is not None:
        return "morning" if hour < 12 else "afternoon"
    now = now or _now_et()
    return window_for_hour(now.hour + now.minute / 60)


def _parse_date(value) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def validate_scheduling_time(time_str: str | None) -> tuple[bool, str]:
    """Check a requested time against the 8:30 AM - 4:00 PM booking window.

    Unparseable input is let through; the caller will be read back the
    normalized time anyway.
    """
    hour = parse_time_to_decimal_hours(time_str)
    if hour is None:
        return True, ""
    if hour < EARLIEST_SCHEDULE_HOUR:
        return False, (
            "Scheduling only available 8:30 AM to 4:00 PM. The requested time is too early."
        )
    if hour >= LATEST_SCHEDULE_HOUR:
        return False, (
            "Scheduling only available 8:30 AM to 4:00 PM. The requested time is too late."
        )
    return True, ""


def is_tech_available(tech: str, weekday: int, hour: float | None) -> tuple[bool, str]:
    """Whether a technician can take a job on `weekday` at `hour`.

    Only technicians listed in RESTRICTED_TECH_HOURS are ever unavailable.
    """
    hours = RESTRICTED_TECH_HOURS.get(tech.lower())
    if hours is None:
        return True, ""
    window = hours.get(weekday)
    if window is None:
        return False, f"{tech} does not work on {DAY_NAMES[weekday]}s"
    if hour is None:
        return True, ""
    start, end = window
    if hour < start:
        return False, f"{tech} is only available after {format_decimal_hours(start)}"
    if hour >= end:
        return False, f"{tech} is not available after {format_decimal_hours(end)}"
    return True, ""


# --- Technician routing ---


@dataclass
class DispatchDecision:
    technician: str | None
    time_window: str | None
    day_of_week: str = ""
    reasoning: str = ""
    no_available_tech: bool = False

    def to_dict(self) -> dict:
        result = {
            "technician": self.technician,
            "timeWindow": self.time_window,
            "dayOfWeek": self.day_of_week,
            "reasoning": self.reasoning,
        }
        if self.no_available_tech:
            result["noAvailableTech"] = True
        return result


def load_routing_table(path: str | None = None) -> dict:
    """Load the shop routing table, falling back to DEFAULT_ROUTING.

    `path` defaults to $TECH_ROUTING_PATH.  A missing or malformed file is
    logged and the built-in table is used.
    """
    path = path or os.getenv("TECH_ROUTING_PATH")
    if not path:
        return dict(DEFAULT_ROUTING)
    try:
        with open(path, encoding="utf-8") as f:
            table = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Failed to load routing table from %s: %s", path, e)
        return dict(DEFAULT_ROUTING)
    if not isinstance(table, dict):
        logger.error("Routing table at %s is not an object, using built-in table", path)
        return dict(DEFAULT_ROUTING)
    logger.info("Loaded technician routing for %d shops from %s", len(table), path)
    return table


def find_shop_config(table: dict, shop_name: str):
    """Exact, then case-insensitive, then substring match in either direction."""
    name = shop_name.strip()
    if name in table:
        return table[name]
    lower = name.lower()
    for key, value in table.items():
        if key.lower() == lower:
            return value
    for key, value in table.items():
        k = key.lower()
        if k in lower or lower in k:
            return value
    return None


class TechRouter:
    """Routes a shop's job to a technician.

    Owns the routing table and the per-(shop, window) round-robin counters.
    One router is shared by the whole process so that rotation is fair
    across calls.
    """

    def __init__(self, table: dict | None = None):
        self.table = table if table is not None else load_routing_table()
        self._rotation: dict[str, int] = {}

    def assign(
        self,
        shop_name: str | None,
        scheduled_time: str | None = None,
        scheduled_date=None,
        now: datetime | None = None,
    ) -> DispatchDecision:
        if not shop_name:
            logger.info("No shop name provided for technician assignment")
            return DispatchDecision(None, None, reasoning="No shop name provided")

        now = now or _now_et()
        time_window = get_time_window(scheduled_time, now)
        day = _parse_date(scheduled_date) or now.date()
        weekday = day.weekday()
        hour = parse_time_to_decimal_hours(scheduled_time)
        if hour is None:
            hour = now.hour + now.minute / 60
        logger.info(
            "Assigning technician for %s: %s %s (scheduled %s)",
            shop_name, DAY_NAMES[weekday], time_window, scheduled_time or "now",
        )

        config = find_shop_config(self.table, shop_name)
        if config is None:
            logger.info("No technician assignment found for shop: %s", shop_name)
            return DispatchDecision(
                None, time_window,
                reasoning=f"No technician assignment configured for shop: {shop_name}",
            )

        candidates, reasoning = self._candidates(config, shop_name, time_window)
        if not candidates:
            return DispatchDecision(
                None, time_window, DAY_NAMES[weekday],
                reasoning=f"No technicians available for {shop_name} during {time_window}",
            )

        available = self._filter(candidates, weekday, hour)
        if not available and isinstance(config, dict) and config.get("fallback"):
            available = self._filter(config["fallback"], weekday, hour)
            if available:
                reasoning += " (primary techs unavailable, using fallback)"

        if not available:
            logger.info("No available techs for %s after schedule filtering", shop_name)
            return DispatchDecision(
                None, time_window, DAY_NAMES[weekday],
                reasoning=(
                    f"No technician available for {shop_name} at scheduled time "
                    f"{scheduled_time or 'current time'}. Dispatch must assign manually."
                ),
                no_available_tech=True,
            )

        if len(available) == 1:
            tech = available[0]
        else:
            key = f"{shop_name.strip().lower()}_{time_window}"
            index = self._rotation.get(key, 0) % len(available)
            self._rotation[key] = self._rotation.get(key, 0) + 1
            tech = available[index]
            reasoning += f" (rotation {index + 1}/{len(available)})"

        logger.info("Assigned tech: %s - %s", tech, reasoning)
        return DispatchDecision(tech, time_window, DAY_NAMES[weekday], reasoning)

    @staticmethod
    def _candidates(config, shop_name: str, time_window: str) -> tuple[list, str]:
        if isinstance(config, list):
            return list(config), f"Legacy assignment for {shop_name}"
        if config.get("all_day"):
            return list(config["all_day"]), f"All-day assignment for {shop_name}"
        if time_window == "morning" and config.get("morning"):
            return list(config["morning"]), f"Morning window (08:00-12:00) assignment for {shop_name}"
        if time_window == "afternoon" and config.get("afternoon"):
            return (
                list(config["afternoon"]),
                f"Afternoon window (12:00-17:00) assignment for {shop_name}",
            )
        if config.get("fallback"):
            return list(config["fallback"]), f"Fallback assignment for {shop_name} ({time_window})"
        return [], ""

    @staticmethod
    def _filter(techs: list, weekday: int, hour: float) -> list:
        kept = []
        for tech in techs:
            ok, reason = is_tech_available(tech, weekday, hour)
            if ok:
                kept.append(tech)
            else:
                logger.info("Skipping %s: %s", tech, reason)
        return kept


# --- Readiness ---


def extract_dtc_codes(dtcs) -> list[str]:
    """Accepts a list of codes, a list of {"code": ...} dicts, or free text."""
    if not dtcs:
        return []
    if isinstance(dtcs, (list, tuple)):
        codes = []
        for d in dtcs:
            code = d.get("code") if isinstance(d, dict) else d
            if code:
                codes.append(str(code).upper())
        return codes
    if isinstance(dtcs, str):
        return [m.upper() for m in _DTC_IN_TEXT.findall(dtcs)]
    return []


def has_blocker_dtcs(pre_scan=None, post_scan=None, blockers: dict | None = None) -> dict:
    blockers = BLOCKER_DTCS if blockers is None else blockers
    found = []
    for code in extract_dtc_codes(pre_scan) + extract_dtc_codes(post_scan):
        if code in blockers:
            found.append({"code": code, "description": blockers.get(code) or "Unknown blocker DTC"})
    logger.debug("Blocker DTCs found: %d", len(found))
    return {"hasBlockers": bool(found), "blockers": found}


def parse_pre_scan_dtcs(dtcs: str | None) -> list[str]:
    """Codes from the PRE section of a 'PRE: P0171, U0100 | POST: None' column."""
    if not dtcs:
        return []
    m = _PRE_SECTION.search(dtcs)
    if not m:
        return []
    part = m.group(1).strip()
    if part.lower() == "none":
        return []
    return [c.strip().upper() for c in part.split(",") if _DTC_CODE.match(c.strip())]


@dataclass
class ReadinessResult:
    ready: bool = True
    can_schedule_with_override: bool = True
    needs_attention_reason: str | None = None
    reasons: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ready": self.ready,
            "canScheduleWithOverride": self.can_schedule_with_override,
            "needsAttentionReason": self.needs_attention_reason,
            "reasons": list(self.reasons),
        }

    def hard_block(self, reason: str) -> None:
        self.ready = False
        self.can_schedule_with_override = False
        self.reasons.append(reason)

    def soft_block(self, reason: str, why: str | None = None) -> None:
        self.ready = False
        self.reasons.append(reason)
        if why and not self.needs_attention_reason:
            self.needs_attention_reason = why


def _has_attention_flag(notes) -> bool:
    return isinstance(notes, str) and any(flag in notes for flag in ATTENTION_FLAGS)


def build_readiness(
    required_calibrations=None,
    pre_scan=None,
    post_scan=None,
    structural: dict | None = None,
    module_replacements=None,
    status: str | None = None,
    estimate_scrub: dict | None = None,
    notes: str | None = None,
) -> ReadinessResult:
    """Evaluate whether a vehicle can be calibrated.

    Hard blockers (DTCs, structural work, bumper, alignment, modules and an
    explicit shop "not ready") disallow an override.  Soft blockers
    (estimate mismatches, "needs attention") leave scheduling possible once
    the shop confirms.
    """
    result = ReadinessResult()
    structural = structural or {}

    dtc = has_blocker_dtcs(pre_scan, post_scan)
    if dtc["hasBlockers"]:
        codes = ", ".join(b["code"] for b in dtc["blockers"])
        result.hard_block(
            f"Blocker DTCs present: {codes}. These must be resolved before calibration."
        )

    pending = structural.get("pending_repairs") or []
    if pending:
        result.hard_block(f"Pending structural repairs: {', '.join(pending)}")

    if structural.get("bumper_status") in ("removed", "partial"):
        result.hard_block("Front or rear bumper must be fully installed for calibration.")

    if structural.get("alignment_needed") and not structural.get("alignment_completed"):
        result.hard_block("Wheel alignment must be completed before ADAS calibration.")

    for mod in module_replacements or []:
        if isinstance(mod, dict):
            if mod.get("status") in ("installed", "complete"):
                continue
            label = mod.get("module") or mod.get("name") or str(mod)
        else:
            label = str(mod)
        result.hard_block(f"Module replacement pending: {label}")

    if estimate_scrub and estimate_scrub.get("needsAttention"):
        missing = estimate_scrub.get("missingCalibrations") or []
        if missing:
            msg = f"Estimate scrub found calibrations not in RevvADAS: {', '.join(missing[:3])}"
            if len(missing) > 3:
                msg += f" (+{len(missing) - 3} more)"
            result.soft_block(msg, "estimate_vs_revv_mismatch")
        else:
            result.soft_block(
                "Estimate scrub requires attention - review notes for details.",
                "estimate_scrub_flag",
            )

    if _has_attention_flag(notes) and not any("Estimate scrub" in r for r in result.reasons):
        result.soft_block(
            "Estimate scrub flagged attention required - review notes.", "estimate_scrub_flag"
        )

    status_lower = (status or "").strip().lower()
    if status_lower == "not ready":
        result.hard_block("Shop has marked vehicle as not ready.")
    elif status_lower == "needs attention":
        if not any("attention" in r for r in result.reasons):
            result.soft_block("Vehicle status indicates attention needed.", "status_needs_attention")

    if not required_calibrations:
        result.reasons.append("No calibrations have been identified as required yet.")

    if result.ready and not result.reasons:
        result.reasons.append("Vehicle appears ready for calibration.")

    logger.info(
        "Readiness: %s, canScheduleWithOverride: %s (%d notes)",
        "READY" if result.ready else "NOT READY",
        result.can_schedule_with_override,
        len(result.reasons),
    )
    return result


def _first(row: dict, *keys, default=""):
    for key in keys:
        value = row.get(key)
        if value:
            return value
    return default


def readiness_for_row(row: dict) -> ReadinessResult:
    return build_readiness(
        required_calibrations=_first(row, "required_calibrations", "required_calibrations_text"),
        pre_scan=_first(row, "dtcs", "pre_scan_dtcs_text", default=None),
        post_scan=_first(row, "post_scan_dtcs_text", default=None),
        status=row.get("status"),
        notes=row.get("notes"),
    )


def determine_workflow_status(row: dict | None) -> str:
    if not row:
        return "Unknown"
    status = row.get("status") or ""
    if status == "Completed":
        return "Completed"
    if row.get("invoice_number") and row.get("invoice_amount"):
        return "Completed"
    if status == "Needs Attention" or _has_attention_flag(row.get("notes")):
        return "Needs Attention"
    if row.get("technician") and status == "In Progress":
        return "In Progress"
    if row.get("technician"):
        return "Ready"
    return "Ready" if readiness_for_row(row).ready else "Not Ready"


def vehicle_description(row: dict) -> str:
    if row.get("vehicle"):
        return str(row["vehicle"])
    parts = [row.get("vehicle_year"), row.get("vehicle_make"), row.get("vehicle_model")]
    return " ".join(str(p) for p in parts if p).strip()


def build_ro_summary(row: dict | None) -> dict:
    """Flatten a record-store row into what the ops assistant reads back."""
    if not row:
        return {"found": False, "message": "RO not found in system"}

    vin = str(row.get("vin") or "")
    summary = {
        "found": True,
        "roPo": row.get("ro_po"),
        "shopName": _first(row, "shop_name", "shop"),
        "vehicle": vehicle_description(row),
        "vin": vin,
        "vinLast4": vin[-4:] if vin else "",
        "status": row.get("status") or "",
        "technician": row.get("technician") or "Not assigned",
        "requiredCalibrations": _first(
            row, "required_calibrations", "required_calibrations_text", default="Not specified"
        ),
        "completedCalibrations": row.get("completed_calibrations_text") or "None",
        "notes": row.get("notes") or "None",
        "workflowStatus": determine_workflow_status(row),
    }

    readiness = readiness_for_row(row)
    summary["ready"] = readiness.ready
    summary["canScheduleWithOverride"] = readiness.can_schedule_with_override
    summary["needsAttentionReason"] = readiness.needs_attention_reason
    summary["readinessNotes"] = readiness.reasons
    return summary


_VIN_CHARS = re.compile(r"^[A-HJ-NPR-Z0-9]{4,17}$", re.IGNORECASE)


def validate_ro_data(data: dict) -> list[str]:
    """Errors that should stop an ops log write; empty when the data is usable."""
    errors = []
    if not data.get("ro_number"):
        errors.append("RO/PO number is required")
    if not data.get("shop"):
        errors.append("Shop name is required")
    vin = re.sub(r"\s", "", data.get("vin") or "")
    if vin and not _VIN_CHARS.match(vin):
        errors.append("VIN format appears invalid")
    return errors


# --- Slot suggestion ---


@dataclass
class SlotSuggestion:
    available: bool
    suggested_time: str | None = None
    job_count: int = 0
    technician: str | None = None
    date: str = ""
    reasoning: str = ""


def _is_booked(slot: str, booked_times: list[str]) -> bool:
    """Compare start times as decimal hours; ranges count from their start."""
    wanted = parse_time_to_decimal_hours(slot)
    if wanted is None:
        return False
    for booked in booked_times:
        start = parse_time_to_decimal_hours(booked)
        if start is not None and abs(start - wanted) < 1e-6:
            return True
    return False


async def suggest_time_slot(
    store,
    shop_name: str | None,
    technician: str | None,
    requested_date: str,
    router: TechRouter | None = None,
) -> SlotSuggestion:
    """Propose the first open slot for a technician on `requested_date`.

    `store` only needs an async jobs_for_tech(technician, date) returning
    the technician's booked rows for that date.
    """
    logger.info(
        "Suggesting time slot for %s, tech: %s, date: %s", shop_name, technician, requested_date
    )
    tech = technician
    if not tech and shop_name:
        router = router or TechRouter()
        tech = router.assign(shop_name, scheduled_date=requested_date).technician
        if not tech:
            return SlotSuggestion(False, reasoning=f"No technician assigned to shop: {shop_name}")
    if not tech:
        return SlotSuggestion(False, reasoning="No technician specified or determinable from shop")

    day = _parse_date(requested_date)
    if day is None:
        return SlotSuggestion(False, technician=tech, reasoning=f"Could not read date: {requested_date}")

    restricted = RESTRICTED_TECH_HOURS.get(tech.lower())
    if restricted is not None and day.weekday() not in restricted:
        return SlotSuggestion(
            False, technician=tech, date=requested_date,
            reasoning=f"{tech} is not available on {DAY_NAMES[day.weekday()]}s",
        )

    jobs = await store.jobs_for_tech(tech, requested_date)
    job_count = len(jobs)
    logger.info("%s has %d jobs on %s", tech, job_count, requested_date)

    if job_count >= MAX_JOBS_PER_DAY:
        return SlotSuggestion(
            False, job_count=job_count, technician=tech, date=requested_date,
            reasoning=(
                f"{tech} is fully booked on {requested_date} "
                f"({job_count}/{MAX_JOBS_PER_DAY} jobs)"
            ),
        )

    booked = [str(job.get("scheduled_time") or "") for job in jobs]
    afternoon_only = restricted is not None and restricted[day.weekday()][0] >= 12
    if afternoon_only:
        slots = list(TIME_SLOTS["afternoon"])
    else:
        slots = TIME_SLOTS["morning"] + TIME_SLOTS["afternoon"]

    suggested = next((s for s in slots if not _is_booked(s, booked)), None)
    if suggested is None:
        if afternoon_only:
            suggested = "2:30 PM"
        else:
            suggested = "10:30 AM" if job_count < 3 else "2:30 PM"

    return SlotSuggestion(
        True, suggested, job_count, tech, requested_date,
        reasoning=(
            f"{tech} has {job_count}/{MAX_JOBS_PER_DAY} jobs on {requested_date}. "
            f"Suggested: {suggested}"
        ),
    )
