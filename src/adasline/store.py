"""Client for the schedule record store (Google Apps Script webhook).

Every request is a POST of {"token", "action", "data"} to one URL.  The
script answers {"success": bool, "data": ..., "error": ...}.  Network
failures and script-side rejections are both returned as
{"success": False, "error": ...}; nothing here raises to the caller.
"""

import logging

import httpx

from adasline.circuit_breaker import CircuitBreaker
from adasline.extraction import OpsRecord
from adasline.normalizers import normalize_notes, normalize_scheduled, normalize_shop_name
from adasline.validation import _now_et

logger = logging.getLogger(__name__)

UNAVAILABLE = "Record store unavailable"


def est_timestamp() -> str:
    """'12/10/2025, 2:05:09 PM' in business time, as the sheet stores it."""
    now = _now_et()
    hour12 = now.hour % 12 or 12
    ampm = "PM" if now.hour >= 12 else "AM"
    return f"{now.month}/{now.day}/{now.year}, {hour12}:{now.minute:02d}:{now.second:02d} {ampm}"


class RecordStoreClient:
    """Async client for the schedule sheet webhook.

    Wrapped in a circuit breaker: after 3 consecutive failures the store is
    skipped for 60s and structured failures are returned immediately so the
    assistant can tell the caller instead of stalling.
    """

    def __init__(
        self,
        webhook_url: str,
        token: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.webhook_url = webhook_url
        self.token = token
        self.timeout = timeout
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="record store",
        )
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
                follow_redirects=True,
            )

    async def close(self):
        await self._client.aclose()

    async def _post(self, action: str, data: dict) -> dict:
        if not self._circuit.should_try():
            logger.warning("Record store circuit breaker open, skipping %s", action)
            return {"success": False, "error": UNAVAILABLE}
        try:
            resp = await self._client.post(
                self.webhook_url,
                json={"token": self.token, "action": action, "data": data},
            )
            resp.raise_for_status()
            self._circuit.record_success()
            body = resp.json()
        except Exception as e:
            self._circuit.record_failure()
            logger.error("%s failed: %s", action, e)
            return {"success": False, "error": str(e)}

        if not isinstance(body, dict):
            logger.error("%s returned a non-object body: %r", action, body)
            return {"success": False, "error": "Unexpected response from record store"}
        if body.get("success") is False:
            logger.error("Record store rejected %s: %s", action, body.get("error"))
        return body

    # --- Reads ---

    async def lookup_ro(self, ro_number: str) -> dict | None:
        """The stored row for an RO, or None when it is absent or unreachable."""
        logger.info("Looking up RO %s", ro_number)
        result = await self._post("lookup_ro", {"ro_number": ro_number})
        if result.get("success") and result.get("data"):
            return result["data"]
        logger.info("RO %s not found: %s", ro_number, result.get("error") or "no data")
        return None

    async def jobs_for_tech(self, technician: str, date: str) -> list[dict]:
        result = await self._post("jobs_for_tech", {"technician": technician, "date": date})
        if not result.get("success"):
            return []
        jobs = result.get("data") or []
        return jobs if isinstance(jobs, list) else []

    # --- Writes ---

    async def upsert_ro(self, ro_number: str, fields: dict) -> dict:
        return await self._post("upsert_ro", {"ro_number": ro_number, **fields})

    async def update_ro(self, ro_number: str, fields: dict) -> dict:
        """Partial update; a `status_change_note` is appended to the flow history."""
        return await self._post("update_ro", {"ro_number": ro_number, **fields})

    async def set_schedule(
        self,
        ro_number: str,
        scheduled_date: str,
        scheduled_time: str | None,
        technician: str | None,
        override: bool = False,
        notes: str = "",
    ) -> dict:
        return await self._post(
            "set_schedule",
            {
                "ro_number": ro_number,
                "scheduled_date": scheduled_date,
                "scheduled_time": scheduled_time or "",
                "technician": technician or "",
                "override": override,
                "notes": notes,
            },
        )

    async def log_ops_data(self, record: OpsRecord, language: str = "en") -> dict:
        """Write one normalized ops record.  The caller enforces once-per-RO."""
        missing = record.missing_required()
        if missing:
            logger.warning("Skipping log_ro, missing required fields: %s", ", ".join(missing))
            return {"success": False, "error": f"Missing required fields: {', '.join(missing)}"}

        shop = normalize_shop_name(record.shop) or record.shop
        scheduled = normalize_scheduled(record.scheduled)
        notes = normalize_notes(record.notes, record.caller_name)
        logger.info(
            "Ops normalization: shop %r -> %r, scheduled %r -> %r, notes %r -> %r",
            record.shop, shop, record.scheduled, scheduled, record.notes, notes,
        )
        return await self._post(
            "log_ro",
            {
                "date_logged": est_timestamp(),
                "ro_number": record.ro_number,
                "shop": shop,
                "vehicle_info": record.vehicle_info,
                "status_from_shop": record.status,
                "scheduled": scheduled,
                "shop_notes": notes,
                "language": language,
            },
        )

    async def update_tech_data(self, payload: dict, existing_notes: str = "") -> dict:
        """Send a tech_update; only ro_number is required, the rest may be partial."""
        if not payload.get("ro_number"):
            logger.warning("Skipping tech_update: missing ro_number")
            return {"success": False, "error": "Missing ro_number"}

        notes = existing_notes or ""
        new_notes = payload.get("tech_notes")
        if new_notes and new_notes != "none":
            notes = f"{notes} {new_notes}".strip()

        status = payload.get("status_from_tech") or ""
        return await self._post(
            "tech_update",
            {
                "ro_number": payload["ro_number"],
                "technician": payload.get("technician") or "",
                "calibration_required": payload.get("calibration_required") or "",
                "calibration_performed": payload.get("calibration_performed") or "",
                "status_from_tech": status,
                "completion": est_timestamp() if status == "Completed" else "",
                "tech_notes": notes or "none",
            },
        )
