"""Function tools exposed to the speech model, and their handlers.

The manifests are sent in session.update; ToolBridge.execute() runs one
call.  Handlers never raise for expected failures: a missing RO, a bad
time or a store rejection comes back as {"success": False, ...} so the
assistant can say what is needed next.
"""

import logging

from adasline.dispatch import (
    TechRouter,
    build_ro_summary,
    parse_pre_scan_dtcs,
    readiness_for_row,
    suggest_time_slot,
    validate_ro_data,
    validate_scheduling_time,
)
from adasline.normalizers import format_schedule_datetime, translate_to_english
from adasline.oem import handle_oem_lookup
from adasline.states import AssistantKind
from adasline.store import RecordStoreClient, est_timestamp
from adasline.validation import validate_ro_po

logger = logging.getLogger(__name__)


def _fn(name: str, description: str, properties: dict, required: list) -> dict:
    return {
        "type": "function",
        "name": name,
        "description": description,
        "parameters": {"type": "object", "properties": properties, "required": required},
    }


def _s(description: str, **extra) -> dict:
    return {"type": "string", "description": description, **extra}


_RO = _s("RO or PO number")

_CANCEL_RO = _fn(
    "cancel_ro",
    "Cancel a job. A reason is required and is logged in the flow history. "
    "Always offer to reschedule before cancelling.",
    {"roPo": _RO, "reason": _s("Reason for cancellation (required)")},
    ["roPo", "reason"],
)

_OEM_LOOKUP = _fn(
    "oem_lookup",
    "Look up OEM ADAS calibration requirements: prerequisites, quirks, target specs, "
    "tools and programming requirements for a brand or system.",
    {
        "brand": _s("Vehicle brand/make (e.g., Toyota, Honda, BMW, Nissan, Subaru)"),
        "system": _s("Optional: specific ADAS system (e.g., camera, radar, BSM, EyeSight, ACC)"),
        "query": _s("Optional: free-text search across all OEM data"),
    },
    [],
)

OPS_TOOLS = [
    _fn(
        "log_ro_to_sheet",
        "Log a new RO/PO to the schedule or update an existing entry. "
        "Use when a shop calls to schedule a calibration.",
        {
            "shopName": _s("Name of the body shop"),
            "roPo": _RO,
            "vin": _s("VIN or last 4 digits of VIN"),
            "year": _s("Vehicle year"),
            "make": _s("Vehicle make (e.g., Toyota, Ford)"),
            "model": _s("Vehicle model (e.g., Camry, F-150)"),
            "notes": _s("Any notes about the vehicle or job"),
        },
        ["shopName", "roPo"],
    ),
    _fn(
        "update_ro_status",
        "Update the status of an existing RO. For cancellations use cancel_ro, "
        "for rescheduling use reschedule_ro.",
        {
            "roPo": _RO,
            "status": _s(
                "New status",
                enum=["New", "Ready", "Scheduled", "Rescheduled", "Completed"],
            ),
            "notes": _s("Additional notes to append"),
        },
        ["roPo", "status"],
    ),
    _fn(
        "get_ro_summary",
        "Look up an existing RO/PO. Returns shop, vehicle, status, technician, notes, "
        "isNoCalRequired, hasPreScanDTCs and preScanDTCsList. ALWAYS call before scheduling.",
        {"roPo": _s("RO or PO number to look up")},
        ["roPo"],
    ),
    _fn(
        "compute_readiness",
        "Check if a vehicle is ready for ADAS calibration. Returns ready status and reasons if not.",
        {"roPo": _s("RO or PO number to check")},
        ["roPo"],
    ),
    _fn(
        "assign_technician",
        "Assign a technician to an RO based on the shop's routing. "
        "The RO must already have a scheduled date and time.",
        {"roPo": _s("RO or PO number to assign")},
        ["roPo"],
    ),
    _fn(
        "set_schedule",
        "Schedule a calibration appointment for an RO. Sets date and time, "
        "or suggests an open slot when suggestSlot is true.",
        {
            "roPo": _s("RO or PO number to schedule"),
            "scheduledDate": _s("Date in YYYY-MM-DD format (e.g., 2024-12-15)"),
            "scheduledTime": _s("Time or range (e.g., '10:00 AM' or '9:00 AM - 10:00 AM')"),
            "suggestSlot": {
                "type": "boolean",
                "description": "If true, suggest an available time slot instead of a specific time",
            },
            "override": {
                "type": "boolean",
                "description": "True only after the caller confirmed scheduling a Needs Attention job",
            },
        },
        ["roPo", "scheduledDate"],
    ),
    _fn(
        "reschedule_ro",
        "Reschedule an existing appointment. Status becomes 'Rescheduled'.",
        {
            "roPo": _RO,
            "newDate": _s("New date in YYYY-MM-DD format"),
            "newTime": _s("New time (e.g., '10:00 AM' or 'afternoon')"),
            "reason": _s("Reason for rescheduling"),
        },
        ["roPo", "newDate", "reason"],
    ),
    _CANCEL_RO,
    _OEM_LOOKUP,
]

TECH_TOOLS = [
    _fn(
        "tech_get_ro",
        "Look up RO details. Returns vehicle, shop, status, required calibrations and notes.",
        {"roPo": _s("RO or PO number to look up")},
        ["roPo"],
    ),
    _fn(
        "tech_update_notes",
        "Add notes to an RO. Appends to existing notes with a timestamp.",
        {"roPo": _RO, "notes": _s("Notes to append")},
        ["roPo", "notes"],
    ),
    _CANCEL_RO,
    _OEM_LOOKUP,
]


def tools_for(kind: AssistantKind) -> list[dict]:
    return TECH_TOOLS if kind is AssistantKind.TECH else OPS_TOOLS


def _shop(row: dict) -> str:
    return row.get("shop_name") or row.get("shop") or ""


def _failure(result: dict, default: str) -> dict:
    return {"success": False, "error": result.get("error") or default}


_MISSING_RO = {"success": False, "error": "RO/PO number is required"}


class ToolBridge:
    """Runs tool calls against the record store and the dispatch engine."""

    def __init__(self, store: RecordStoreClient, router: TechRouter):
        self.store = store
        self.router = router
        self._ops = {
            "log_ro_to_sheet": self.log_ro_to_sheet,
            "update_ro_status": self.update_ro_status,
            "get_ro_summary": self.get_ro_summary,
            "compute_readiness": self.compute_readiness,
            "assign_technician": self.assign_technician,
            "set_schedule": self.set_schedule,
            "reschedule_ro": self.reschedule_ro,
            "cancel_ro": self.cancel_ro,
            "oem_lookup": self.oem_lookup,
        }
        self._tech = {
            "tech_get_ro": self.tech_get_ro,
            "tech_update_notes": self.tech_update_notes,
            "cancel_ro": self.cancel_ro,
            "oem_lookup": self.oem_lookup,
        }

    async def execute(self, kind: AssistantKind, name: str, args: dict) -> dict:
        logger.info("[%s] tool %s %s", kind.value, name, args)
        handlers = self._tech if kind is AssistantKind.TECH else self._ops
        handler = handlers.get(name)
        if handler is None:
            return {"success": False, "error": f"Unknown tool: {name}"}

        args = dict(args or {})
        if kind is AssistantKind.TECH and args.get("roPo"):
            ok, digits, error = validate_ro_po(args["roPo"])
            if not ok:
                logger.warning("Invalid RO format rejected: %r", args["roPo"])
                return {"success": False, "error": error}
            args["roPo"] = digits
        return await handler(args)

    # --- Ops ---

    async def log_ro_to_sheet(self, args: dict) -> dict:
        ro = args.get("roPo", "")
        errors = validate_ro_data({"ro_number": ro, "shop": args.get("shopName"), "vin": args.get("vin")})
        if errors:
            logger.warning("Rejected log_ro_to_sheet for RO %s: %s", ro, errors)
            return {"success": False, "error": "; ".join(errors)}
        result = await self.store.upsert_ro(
            ro,
            {
                "shop_name": args.get("shopName"),
                "vin": args.get("vin"),
                "vehicle_year": args.get("year"),
                "vehicle_make": args.get("make"),
                "vehicle_model": args.get("model"),
                "notes": args.get("notes"),
                "status": "New",
            },
        )
        if result.get("success"):
            return {"success": True, "message": f"RO {ro} logged successfully"}
        return _failure(result, "Failed to log RO")

    async def update_ro_status(self, args: dict) -> dict:
        status = args.get("status")
        result = await self.store.update_ro(
            args.get("roPo", ""), {"status": status, "notes": args.get("notes")}
        )
        if result.get("success"):
            return {"success": True, "message": f"Status updated to {status}"}
        return _failure(result, "Failed to update status")

    async def get_ro_summary(self, args: dict) -> dict:
        ro = str(args.get("roPo", ""))
        row = await self.store.lookup_ro(ro)
        if not row:
            return {"found": False, "message": f"RO {ro} not found in system"}

        summary = build_ro_summary(row)
        actual = str(row.get("ro_po") or ro)
        summary["actualRoPo"] = actual
        summary["searchedRoPo"] = ro
        summary["wasPartialMatch"] = actual.lower() != ro.lower()
        summary["isNoCalRequired"] = (row.get("status") or "").lower() == "no cal"

        pre_scan = parse_pre_scan_dtcs(row.get("dtcs"))
        summary["hasPreScanDTCs"] = bool(pre_scan)
        summary["preScanDTCsList"] = ", ".join(pre_scan)
        return summary

    async def compute_readiness(self, args: dict) -> dict:
        ro = args.get("roPo", "")
        row = await self.store.lookup_ro(ro)
        if not row:
            return {"found": False, "ready": False, "reasons": [f"RO {ro} not found in system"]}
        result = readiness_for_row(row).to_dict()
        result["found"] = True
        result["status"] = row.get("status") or ""
        return result

    async def assign_technician(self, args: dict) -> dict:
        ro = args.get("roPo", "")
        row = await self.store.lookup_ro(ro)
        if not row:
            return {"success": False, "error": f"RO {ro} not found"}

        scheduled_date = row.get("scheduled_date")
        scheduled_time = row.get("scheduled_time")
        if not scheduled_date or not scheduled_time:
            logger.info("Blocked technician assignment: schedule missing for RO %s", ro)
            return {
                "success": False,
                "needsScheduleFirst": True,
                "message": (
                    "No scheduled date/time found for this RO. Ask the caller for the date "
                    "and time before assigning a technician."
                ),
            }

        decision = self.router.assign(
            _shop(row), scheduled_time=scheduled_time, scheduled_date=scheduled_date
        )
        if decision.technician:
            result = await self.store.update_ro(
                ro,
                {
                    "technician": decision.technician,
                    "status": "Ready",
                    "assignment_time": est_timestamp(),
                },
            )
            if not result.get("success"):
                return _failure(result, "Failed to save technician assignment")
            return {"success": True, **decision.to_dict()}

        if decision.no_available_tech:
            return {
                "success": True,
                "technician": None,
                "reason": "no_available_tech_for_slot",
                "message": decision.reasoning,
            }
        return {"success": False, "error": decision.reasoning or "No technician assignment for this shop"}

    async def set_schedule(self, args: dict) -> dict:
        ro = args.get("roPo", "")
        date = args.get("scheduledDate", "")
        time = args.get("scheduledTime")

        row = await self.store.lookup_ro(ro)
        if not row:
            return {"success": False, "error": f"RO {ro} not found"}

        status = row.get("status") or ""
        if status.lower() == "no cal":
            logger.info("Blocked scheduling for No Cal RO %s", ro)
            return {
                "success": False,
                "isNoCalRequired": True,
                "error": (
                    f"RO {ro} does not require ADAS calibration based on the RevvADAS report. "
                    "No scheduling needed."
                ),
            }

        if time:
            ok, error = validate_scheduling_time(time)
            if not ok:
                return {"success": False, "error": error}

        shop = _shop(row)
        existing_tech = row.get("technician") or None
        override = bool(args.get("override")) and status == "Needs Attention"
        if override and not readiness_for_row(row).can_schedule_with_override:
            logger.info("Override refused for RO %s: hard blockers present", ro)
            return {
                "success": False,
                "canScheduleWithOverride": False,
                "error": (
                    f"RO {ro} has blockers that must be resolved before calibration. "
                    "It cannot be scheduled with an override."
                ),
            }
        override_note = ""
        if override:
            override_note = f"Scheduled under Needs Attention override by OPS on {est_timestamp()}"
            logger.info("Scheduling with override for RO %s", ro)
        suffix = " (override applied)" if override else ""

        if args.get("suggestSlot"):
            suggestion = await suggest_time_slot(
                self.store, shop, existing_tech, date, router=self.router
            )
            if not suggestion.available:
                return {"success": False, "error": suggestion.reasoning}
            result = await self.store.set_schedule(
                ro, date, suggestion.suggested_time, suggestion.technician,
                override=override, notes=override_note,
            )
            if not result.get("success"):
                return _failure(result, "Failed to set schedule")
            return {
                "success": True,
                "scheduledDate": date,
                "scheduledTime": suggestion.suggested_time,
                "technician": suggestion.technician,
                "jobCount": suggestion.job_count,
                "override": override,
                "message": (
                    f"Scheduled for {date} at {suggestion.suggested_time}. "
                    f"{suggestion.technician} will be assigned.{suffix}"
                ),
            }

        if time:
            decision = self.router.assign(shop, scheduled_time=time, scheduled_date=date)
            tech = decision.technician or existing_tech
            reasoning = decision.reasoning or "existing"
        else:
            tech = existing_tech
            reasoning = "no time yet, assignment deferred"
        logger.info("Technician for RO %s: %s (%s)", ro, tech or "None", reasoning)
        result = await self.store.set_schedule(
            ro, date, time, tech, override=override, notes=override_note
        )
        if not result.get("success"):
            return _failure(result, "Failed to set schedule")

        message = f"Scheduled for {date}"
        if time:
            message += f" at {time}"
        if tech:
            message += f". {tech} will be assigned."
        message += suffix
        return {
            "success": True,
            "scheduledDate": date,
            "scheduledTime": time or "Not specified",
            "technician": tech or "Not assigned",
            "override": override,
            "message": message,
        }

    async def reschedule_ro(self, args: dict) -> dict:
        ro = args.get("roPo", "")
        new_date = args.get("newDate", "")
        new_time = args.get("newTime") or ""
        current = await self.store.lookup_ro(ro)
        if not current:
            return {"success": False, "error": f"RO {ro} not found"}

        old = format_schedule_datetime(current.get("scheduled_date"), current.get("scheduled_time"))
        new = format_schedule_datetime(new_date, new_time)
        reason = translate_to_english(args.get("reason") or "")
        result = await self.store.update_ro(
            ro,
            {
                "status": "Rescheduled",
                "scheduled_date": new_date,
                "scheduled_time": new_time,
                "status_change_note": f"Rescheduled from {old} to {new}: {reason}",
            },
        )
        if result.get("success"):
            return {"success": True, "message": f"Rescheduled to {new}. Previous: {old}"}
        return _failure(result, "Failed to reschedule")

    async def cancel_ro(self, args: dict) -> dict:
        ro = args.get("roPo", "")
        reason = (args.get("reason") or "").strip()
        if not reason:
            return {"success": False, "error": "Cancellation reason is required"}
        result = await self.store.update_ro(
            ro,
            {"status": "Cancelled", "status_change_note": f"Cancelled: {translate_to_english(reason)}"},
        )
        if result.get("success"):
            return {"success": True, "message": f"Job {ro} cancelled. Reason: {reason}"}
        return _failure(result, "Failed to cancel")

    async def oem_lookup(self, args: dict) -> dict:
        return handle_oem_lookup(args)

    # --- Tech ---

    async def tech_get_ro(self, args: dict) -> dict:
        ro = args.get("roPo", "")
        if not ro:
            return dict(_MISSING_RO)
        row = await self.store.lookup_ro(ro)
        if not row:
            return {"found": False, "message": f"RO {ro} not found"}
        actual = str(row.get("ro_po") or ro)
        return {
            "found": True,
            "roPo": actual,
            "actualRoPo": actual,
            "searchedRoPo": ro,
            "wasPartialMatch": actual.lower() != ro.lower(),
            "shopName": _shop(row),
            "vehicle": row.get("vehicle") or row.get("vehicle_info"),
            "vin": row.get("vin"),
            "status": row.get("status"),
            "technician": row.get("technician"),
            "scheduledDate": row.get("scheduled_date"),
            "scheduledTime": row.get("scheduled_time"),
            "requiredCalibrations": row.get("required_calibrations"),
            "notes": row.get("notes"),
            "flowHistory": row.get("flow_history") or "",
        }

    async def tech_update_notes(self, args: dict) -> dict:
        ro = args.get("roPo", "")
        if not ro:
            return dict(_MISSING_RO)
        row = await self.store.lookup_ro(ro)
        existing = (row or {}).get("notes") or ""
        note = f"[{est_timestamp()}] {args.get('notes', '')}"
        notes = f"{existing} | {note}" if existing else note
        result = await self.store.update_ro(ro, {"notes": notes})
        if result.get("success"):
            return {"success": True, "message": "Notes updated"}
        return _failure(result, "Failed to update notes")
