"""One live call: Twilio Media Stream <-> OpenAI Realtime.

The orchestrator owns a CallSession and runs three tasks:

- the telephony pump reads Twilio messages and forwards caller audio,
- the AI pump reads Realtime events, relays assistant audio and keeps the
  response lifecycle (at most one response in flight),
- the turn worker handles finished transcripts and tool calls one at a
  time, in arrival order, so that slow record-store calls never block the
  audio relay and never interleave with each other.

Either leg closing ends the call.
"""

import asyncio
import json
import logging
import os
import time

from adasline import config
from adasline.dispatch import vehicle_description
from adasline.extraction import (
    extract_ops_record,
    is_complete_confirmation_summary,
    looks_like_record_summary,
)
from adasline.language import update_language
from adasline.prompts import (
    GREETINGS,
    SPANISH_FIRST_LOCK,
    SPANISH_SWITCH,
    TRANSFER_LINE,
    get_instructions,
    line,
    say_exactly,
)
from adasline.realtime import (
    RealtimeConnection,
    function_output,
    response_create,
    session_update,
    system_message,
)
from adasline.session import CallSession
from adasline.states import AssistantKind, CallPhase
from adasline.store import RecordStoreClient
from adasline.tech_extraction import TechTracker, extract_tech_record, mentions_calibration_info
from adasline.telephony import TwilioClient, clear_message, media_message, stop_message
from adasline.tools import ToolBridge, tools_for
from adasline.transcript import chunk_transcript_dump, to_timestamped_dump
from adasline.validation import (
    ASSISTANT_TRANSFER_TRIGGERS,
    classify_override_answer,
    contains_any,
    extract_ro_from_text,
    is_confirmation,
    is_goodbye,
    is_noise_utterance,
    is_transfer_request,
)

logger = logging.getLogger(__name__)

SPANISH_SWITCH_DELAY_S = 0.15

_CACHED_LOOKUP = {"found": True, "cached": True, "message": "RO already looked up in this session"}
_DEDUPLICATED = {"success": True, "message": "Already processed", "deduplicated": True}


async def connect_realtime() -> RealtimeConnection:
    return await RealtimeConnection.connect(os.getenv("OPENAI_API_KEY", ""), config.openai_model())


class CallOrchestrator:
    def __init__(
        self,
        session: CallSession,
        telephony,
        bridge: ToolBridge,
        store: RecordStoreClient,
        twilio: TwilioClient,
        connect=connect_realtime,
        host: str | None = None,
    ):
        self.session = session
        self.telephony = telephony
        self.bridge = bridge
        self.store = store
        self.twilio = twilio
        self._connect = connect
        self.host = host or config.public_host()

        self.ai: RealtimeConnection | None = None
        self.tracker = TechTracker(session.tech)
        self._turns: asyncio.Queue = asyncio.Queue()
        self._background: set[asyncio.Task] = set()
        self._greeted = False
        self._send_lock = asyncio.Lock()

    @property
    def kind(self) -> AssistantKind:
        return self.session.kind

    @property
    def language(self) -> str:
        return self.session.language

    # --- Lifecycle ---

    async def run(self) -> None:
        s = self.session
        logger.info("[%s] Call %s starting (stream %s)", self.kind.value, s.call_sid, s.stream_sid)
        try:
            self.ai = await self._connect()
        except Exception as e:
            logger.error("[%s] Could not connect to Realtime API: %s", self.kind.value, e)
            s.phase = CallPhase.CLOSED
            return

        await self.ai.send(session_update(self.kind, get_instructions(self.kind), tools_for(self.kind)))

        worker = asyncio.create_task(self._turn_worker())
        ai_pump = asyncio.create_task(self._ai_pump())
        telephony_pump = asyncio.create_task(self._telephony_pump())
        try:
            await asyncio.wait({ai_pump, telephony_pump}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if s.phase is not CallPhase.TRANSFERRING:
                s.phase = CallPhase.CLOSED
            await self.ai.close()
            telephony_pump.cancel()
            await asyncio.gather(ai_pump, telephony_pump, return_exceptions=True)
            await self._turns.put(None)
            await worker
            for task in list(self._background):
                task.cancel()
            self._log_transcript()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # --- Sending ---

    async def _send_ai(self, event: dict) -> None:
        if self.ai is None:
            return
        await self.ai.send(event)

    async def _send_twilio(self, message: dict) -> None:
        async with self._send_lock:
            await self.telephony.send_text(json.dumps(message))

    async def _cancel_response(self) -> None:
        if self.session.response_in_progress:
            await self._send_ai({"type": "response.cancel"})
            self.session.response_in_progress = False

    async def _respond(self, instructions: str | None = None) -> None:
        """Start a response, cancelling the one in flight first."""
        await self._cancel_response()
        await self._send_ai(response_create(instructions))

    async def _say(self, text: str) -> None:
        await self._respond(say_exactly(text))

    # --- Telephony leg ---

    async def _telephony_pump(self) -> None:
        s = self.session
        async for raw in self.telephony.iter_text():
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Undecodable Twilio message: %.200r", raw)
                continue

            event = msg.get("event")
            if event == "start":
                start = msg.get("start") or {}
                s.stream_sid = start.get("streamSid") or s.stream_sid
                s.call_sid = start.get("callSid") or s.call_sid
                logger.info("Call started: %s", s.call_sid)
            elif event == "media":
                payload = (msg.get("media") or {}).get("payload")
                if payload and self._accepting_audio():
                    await self._send_ai({"type": "input_audio_buffer.append", "audio": payload})
            elif event == "stop":
                logger.info("[%s] Twilio stream stopped", self.kind.value)
                if s.phase is not CallPhase.TRANSFERRING:
                    s.phase = CallPhase.CLOSED
                return
        logger.info("[%s] Twilio connection closed", self.kind.value)

    def _accepting_audio(self) -> bool:
        s = self.session
        return (
            s.phase in (CallPhase.CONFIGURED, CallPhase.ACTIVE)
            and not s.transfer_requested
            and self.ai is not None
            and not self.ai.closed
        )

    # --- AI leg ---

    async def _ai_pump(self) -> None:
        async for event in self.ai.events():
            await self.handle_ai_event(event)
            if self.session.phase.is_terminal:
                break
        logger.info("[%s] Realtime event stream ended", self.kind.value)

    async def handle_ai_event(self, event: dict) -> None:
        s = self.session
        etype = event.get("type", "")

        if etype == "session.created":
            logger.info("[%s] Realtime session created", self.kind.value)
        elif etype == "session.updated":
            if s.phase is CallPhase.CONNECTING:
                s.phase = CallPhase.CONFIGURED
            if not self._greeted:
                self._greeted = True
                self._spawn(self._safe_greet())
        elif etype == "response.created":
            s.response_in_progress = True
            s.last_response_id = (event.get("response") or {}).get("id", "")
        elif etype in ("response.done", "response.cancelled"):
            s.response_in_progress = False
            s.last_response_id = ""
        elif etype == "response.audio.delta":
            if event.get("delta") and s.stream_sid and s.is_active and not s.transfer_requested:
                await self._send_twilio(media_message(s.stream_sid, event["delta"]))
        elif etype == "input_audio_buffer.speech_started":
            await self.handle_barge_in()
        elif etype == "response.audio_transcript.done":
            await self._turns.put(("assistant", event.get("transcript") or ""))
        elif etype == "conversation.item.input_audio_transcription.completed":
            await self._turns.put(("user", event.get("transcript") or ""))
        elif etype == "response.function_call_arguments.done":
            await self._turns.put(("tool", event))
        elif etype == "error":
            logger.error("[%s] Realtime error: %s", self.kind.value, event.get("error"))

    async def handle_barge_in(self) -> None:
        s = self.session
        if s.response_in_progress:
            logger.info("[%s] Caller interrupted, cancelling response", self.kind.value)
            await self._send_ai({"type": "response.cancel"})
            s.response_in_progress = False
        if s.stream_sid:
            await self._send_twilio(clear_message(s.stream_sid))

    async def _safe_greet(self) -> None:
        try:
            await asyncio.sleep(config.GREETING_DELAY_S)
            if not self.session.is_active:
                return
            await self._respond(GREETINGS[self.kind])
            self.session.phase = CallPhase.ACTIVE
        except Exception as e:
            logger.error("[%s] Greeting failed: %s", self.kind.value, e)

    # --- Turn worker ---

    async def _turn_worker(self) -> None:
        while True:
            item = await self._turns.get()
            if item is None:
                return
            kind, payload = item
            if self.session.phase is CallPhase.CLOSED and kind != "assistant":
                continue
            try:
                if kind == "user":
                    await self.handle_user_turn(payload)
                elif kind == "assistant":
                    await self.handle_assistant_turn(payload)
                else:
                    await self.handle_function_call(payload)
            except Exception:
                logger.exception("[%s] Failed handling %s turn", self.kind.value, kind)

    async def handle_assistant_turn(self, text: str) -> None:
        s = self.session
        if not text.strip():
            return
        s.add_turn("assistant", text)
        logger.info("[%s] Assistant: %s", self.kind.value, text)

        if self.kind is AssistantKind.OPS and is_complete_confirmation_summary(text):
            s.ops.confirmation_pending = True
            logger.info("Confirmation summary detected, waiting for caller")

        if not s.transfer_requested and contains_any(text, ASSISTANT_TRANSFER_TRIGGERS):
            await self.transfer_to_dispatch()

    async def transfer_to_dispatch(self) -> None:
        s = self.session
        s.transfer_requested = True
        s.phase = CallPhase.TRANSFERRING
        logger.info("[%s] Transferring call %s to dispatch", self.kind.value, s.call_sid)
        if self.ai is not None:
            await self.ai.close()
        if s.stream_sid:
            await self._send_twilio(stop_message(s.stream_sid))
        await self.twilio.redirect_call(s.call_sid, f"https://{self.host}/transfer-randy")

    async def handle_user_turn(self, text: str) -> None:
        s = self.session
        text = text.strip()
        if is_noise_utterance(text):
            logger.debug("Dropping noise utterance: %r", text)
            return
        s.add_turn("user", text)
        logger.info("[%s] Caller: %s", self.kind.value, text)

        if self.kind is AssistantKind.OPS and s.ops.awaiting_override:
            await self._answer_override(text)
            return

        if await self._update_language(text):
            return

        if is_goodbye(text):
            await self._respond(say_exactly(line("goodbye", self.language)))
            return

        if is_transfer_request(text):
            logger.info("[%s] Caller asked for a transfer", self.kind.value)
            await self._respond(TRANSFER_LINE)
            return

        if self.kind is AssistantKind.TECH:
            await self._tech_turn(text)
        else:
            await self._ops_turn(text)

    async def _update_language(self, text: str) -> bool:
        """Apply the language lock; True when this turn was answered here."""
        decision = update_language(self.session.lang, text)
        if decision.forced_spanish:
            await self._cancel_response()
            await asyncio.sleep(SPANISH_SWITCH_DELAY_S)
            await self._say(SPANISH_SWITCH)
            return True
        if decision.first_lock and decision.language == "es" and self.kind is AssistantKind.OPS:
            await self._cancel_response()
            await asyncio.sleep(SPANISH_SWITCH_DELAY_S)
            await self._respond(SPANISH_FIRST_LOCK)
            return True
        return False

    async def _answer_override(self, text: str) -> None:
        ops = self.session.ops
        answer = classify_override_answer(text)
        logger.info("Override answer for RO %s: %s", ops.pending_ro, answer)
        if answer == "yes":
            ops.awaiting_override = False
            await self._say(line("override_proceed", self.language))
        elif answer == "no":
            ops.awaiting_override = False
            ops.pending_ro = ""
            await self._say(line("override_decline", self.language))
        else:
            await self._say(line("override_clarify", self.language))

    # --- Tech turns ---

    async def _tech_turn(self, text: str) -> None:
        s = self.session
        tech = s.tech

        if not tech.current_ro:
            ro = extract_ro_from_text(text)
            if ro and len(ro) >= 4:
                await self._tech_lookup(ro)
                return

        obs = self.tracker.observe(text)
        if not tech.current_ro or s.is_logged(tech.current_ro):
            return

        if obs.closure_request:
            if not self.tracker.has_calibration_data() and not tech.asked_for_calibration_info:
                tech.asked_for_calibration_info = True
                ask = line("tech_ask_calibration_info", self.language)
                logger.info("No calibration details for RO %s, asking technician", tech.current_ro)
                await self._send_ai(system_message(f"ASK FOR CALIBRATION INFO: {ask}"))
                await self._say(ask)
                return
            await self._close_tech_ro()
            return

        if tech.asked_for_calibration_info and (mentions_calibration_info(text) or is_confirmation(text)):
            await self._close_tech_ro()

    async def _tech_lookup(self, ro: str) -> None:
        tech = self.session.tech
        logger.info("Technician mentioned RO %s, looking it up", ro)
        await self._say(line("tech_looking_up", self.language, ro=ro))

        row = await self.store.lookup_ro(ro)
        if not row:
            await self._say(line("tech_ro_not_found", self.language, ro=ro))
            return

        tech.current_ro = ro
        tech.ro_data = row
        tech.existing_notes = row.get("tech_notes") or ""
        vehicle = row.get("vehicle_info") or vehicle_description(row) or "vehicle"
        shop = row.get("shop") or row.get("shop_name") or "the shop"
        logger.info("Loaded RO %s: %s from %s", ro, vehicle, shop)
        await self._respond(
            "LOOKUP COMPLETE. "
            + say_exactly(line("tech_ro_found", self.language, ro=ro, vehicle=vehicle, shop=shop))
            + " Do NOT invent or guess any other information."
        )

    async def _close_tech_ro(self) -> None:
        s = self.session
        ro = s.tech.current_ro
        payload = self.tracker.build_closure_payload(self.language)
        logger.info("Closing RO %s: %s", ro, payload)
        result = await self.store.update_tech_data(payload, s.tech.existing_notes)
        if result.get("success"):
            s.mark_logged(ro)
            await self._say(line("tech_closed", self.language, ro=ro))
        else:
            await self._say(line("tech_close_failed", self.language))

    # --- Ops turns ---

    async def _ops_turn(self, text: str) -> None:
        s = self.session
        if not (s.ops.confirmation_pending and is_confirmation(text)):
            return
        # the confirmed summary is the assistant turn before this one
        previous = [t for t in s.transcript[:-1] if t.role == "assistant"]
        if not previous or not looks_like_record_summary(previous[-1].text):
            return

        record = extract_ops_record(
            s.transcript, {"shop": s.carried_shop, "scheduled": s.carried_scheduled}
        )
        if not record.ro_number:
            logger.warning("Caller confirmed but no RO could be extracted, keeping confirmation pending")
            return

        if s.is_logged(record.ro_number):
            s.ops.confirmation_pending = False
            await self._say(line("ops_already_logged", self.language))
            return

        result = await self.store.log_ops_data(record, self.language)
        if result.get("success"):
            s.mark_logged(record.ro_number)
            s.ops.confirmation_pending = False
            s.carried_shop = record.shop or s.carried_shop
            s.carried_scheduled = record.scheduled or s.carried_scheduled
            logger.info("Logged RO %s", record.ro_number)
            await self._say(line("ops_logged", self.language))
        else:
            logger.error("Logging RO %s failed: %s", record.ro_number, result.get("error"))
            await self._say(line("ops_log_failed", self.language))

    # --- Tools ---

    async def handle_function_call(self, event: dict) -> None:
        s = self.session
        name = event.get("name", "")
        call_id = event.get("call_id", "")
        try:
            args = json.loads(event.get("arguments") or "{}")
        except json.JSONDecodeError:
            logger.warning("Bad arguments for %s: %r", name, event.get("arguments"))
            args = {}
        ro = str(args.get("roPo") or "")

        if name == "set_schedule":
            key = f"{name}:{ro}"
            if s.recent_tool_calls.seen_within(key, config.TOOL_DEDUP_WINDOW_S):
                logger.info("Duplicate %s within %.0fs, skipping", key, config.TOOL_DEDUP_WINDOW_S)
                await self._tool_output(call_id, name, dict(_DEDUPLICATED))
                await self._respond()
                return
            s.recent_tool_calls.touch(key)

        ops = s.ops
        if (
            self.kind is AssistantKind.OPS
            and name == "get_ro_summary"
            and ro
            and ro == ops.last_looked_up_ro
            and ops.last_lookup_found
        ):
            logger.info("RO %s already looked up, answering from cache", ro)
            await self._tool_output(call_id, name, dict(_CACHED_LOOKUP))
            await self._respond()
            return

        try:
            result = await self.bridge.execute(self.kind, name, args)
        except Exception as e:
            logger.error("Tool %s failed: %s", name, e)
            await self._tool_output(call_id, name, {"success": False, "error": str(e)})
            await self._respond()
            return

        if self.kind is AssistantKind.OPS and name == "get_ro_summary" and ro:
            ops.last_looked_up_ro = ro
            ops.last_lookup_found = result.get("found") is True

        if self.kind is AssistantKind.OPS and name == "compute_readiness":
            self._flag_override(ro, result)

        await self._tool_output(call_id, name, result)
        if name == "set_schedule" and result.get("success"):
            await self._respond(line("scheduled_followup", self.language))
        else:
            await self._respond()

    def _flag_override(self, ro: str, result: dict) -> None:
        ops = self.session.ops
        if result.get("ready") is not False or ops.awaiting_override:
            return
        if result.get("canScheduleWithOverride") is True:
            ops.awaiting_override = True
            ops.pending_ro = ro
            result["awaitingConfirmation"] = True
            result["confirmationMessage"] = line("override_question", self.language)
            logger.info("RO %s needs an override confirmation", ro)

    async def _tool_output(self, call_id: str, name: str, result: dict) -> None:
        self.session.tool_log.append({
            "role": "tool",
            "name": name,
            "result": result,
            "timestamp": time.time(),
            "state": self.session.phase.value,
        })
        await self._send_ai(function_output(call_id, result))

    # --- Teardown ---

    def _log_transcript(self) -> None:
        s = self.session
        if self.kind is AssistantKind.TECH:
            extracted = extract_tech_record(s.transcript).to_payload()
        else:
            extracted = extract_ops_record(s.transcript).to_dict()
        dump = to_timestamped_dump(
            s.transcript_log(),
            s.start_time,
            s.call_sid,
            self.kind.value,
            s.phase.value,
            duration_s=time.time() - s.start_time,
        )
        dump["logged_ros"] = sorted(s.logged_ros)
        dump["extracted"] = extracted
        for chunk in chunk_transcript_dump(dump):
            logger.info(chunk)
        logger.info(
            "[%s] Call %s ended after %.0fs, %d turns, logged %s",
            self.kind.value, s.call_sid, dump["duration_s"], len(s.transcript),
            ", ".join(dump["logged_ros"]) or "nothing",
        )
