import asyncio
import json
import logging
from datetime import datetime
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx
from adasline.prompts import GREETINGS, LINES, SPANISH_SWITCH
from adasline.states import AssistantKind, CallPhase
from adasline.store import RecordStoreClient
from conftest import FakeRealtime, make_store

SUMMARY = (
    "Let me confirm: RO 24567, shop AutoSport, vehicle 2022 Toyota Camry, VIN ending 4821, "
    "status ready, scheduled for tomorrow at 10 AM, notes none. Is that correct?"
)


def _call(name, args, call_id="call_1"):
    return {
        "type": "response.function_call_arguments.done",
        "name": name,
        "call_id": call_id,
        "arguments": json.dumps(args),
    }


def _outputs(fake: FakeRealtime) -> list[dict]:
    return [
        json.loads(e["item"]["output"])
        for e in fake.sent
        if e["type"] == "conversation.item.create" and e["item"]["type"] == "function_call_output"
    ]


class TestResponseLifecycle:
    @pytest.mark.asyncio
    async def test_response_flags(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.handle_ai_event({"type": "response.created", "response": {"id": "resp_1"}})
        assert orch.session.response_in_progress is True
        assert orch.session.last_response_id == "resp_1"
        await orch.handle_ai_event({"type": "response.done"})
        assert orch.session.response_in_progress is False

    @pytest.mark.asyncio
    async def test_cancelled_clears_flag(self, make_orchestrator):
        orch = make_orchestrator()
        orch.session.response_in_progress = True
        await orch.handle_ai_event({"type": "response.cancelled"})
        assert orch.session.response_in_progress is False

    @pytest.mark.asyncio
    async def test_new_response_cancels_in_flight(self, make_orchestrator):
        orch = make_orchestrator()
        orch.session.response_in_progress = True
        await orch._respond("Say hi")
        assert orch.ai.types() == ["response.cancel", "response.create"]

    @pytest.mark.asyncio
    async def test_idle_response_not_cancelled(self, make_orchestrator):
        orch = make_orchestrator()
        await orch._respond()
        assert orch.ai.types() == ["response.create"]


class TestAudioRelay:
    @pytest.mark.asyncio
    async def test_assistant_audio_to_twilio(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.handle_ai_event({"type": "response.audio.delta", "delta": "AAAA"})
        assert orch.telephony.sent == [
            {"event": "media", "streamSid": "MZ789", "media": {"payload": "AAAA"}}
        ]

    @pytest.mark.asyncio
    async def test_no_audio_after_transfer(self, make_orchestrator):
        orch = make_orchestrator()
        orch.session.transfer_requested = True
        await orch.handle_ai_event({"type": "response.audio.delta", "delta": "AAAA"})
        assert orch.telephony.sent == []

    @pytest.mark.asyncio
    async def test_barge_in_cancels_and_clears(self, make_orchestrator):
        orch = make_orchestrator()
        orch.session.response_in_progress = True
        await orch.handle_ai_event({"type": "input_audio_buffer.speech_started"})
        assert orch.ai.types() == ["response.cancel"]
        assert orch.telephony.sent == [{"event": "clear", "streamSid": "MZ789"}]
        assert orch.session.response_in_progress is False

    @pytest.mark.asyncio
    async def test_barge_in_while_idle_only_clears(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.handle_barge_in()
        assert orch.ai.types() == []
        assert orch.telephony.sent == [{"event": "clear", "streamSid": "MZ789"}]

    @pytest.mark.asyncio
    async def test_telephony_pump(self, make_orchestrator):
        orch = make_orchestrator(inbound=[
            {"event": "start", "start": {"streamSid": "MZ_new", "callSid": "CA_new"}},
            {"event": "media", "media": {"payload": "BBBB"}},
            "not json",
            {"event": "stop"},
            {"event": "media", "media": {"payload": "CCCC"}},
        ])
        await orch._telephony_pump()
        assert orch.session.stream_sid == "MZ_new"
        assert orch.session.call_sid == "CA_new"
        assert orch.ai.sent == [{"type": "input_audio_buffer.append", "audio": "BBBB"}]
        assert orch.session.phase is CallPhase.CLOSED


class TestGreeting:
    @pytest.mark.asyncio
    async def test_session_updated_greets_once(self, make_orchestrator):
        orch = make_orchestrator(kind=AssistantKind.TECH)
        orch.session.phase = CallPhase.CONNECTING
        with patch("adasline.config.GREETING_DELAY_S", 0):
            await orch.handle_ai_event({"type": "session.updated"})
            await orch.handle_ai_event({"type": "session.updated"})
            await asyncio.gather(*orch._background)
        assert orch.ai.instructions() == [GREETINGS[AssistantKind.TECH]]
        assert orch.session.phase is CallPhase.ACTIVE


class TestTurnQueue:
    @pytest.mark.asyncio
    async def test_transcripts_queued_in_order(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.handle_ai_event({"type": "response.audio_transcript.done", "transcript": "What's the RO?"})
        await orch.handle_ai_event(
            {"type": "conversation.item.input_audio_transcription.completed", "transcript": "24567"}
        )
        assert orch._turns.get_nowait() == ("assistant", "What's the RO?")
        assert orch._turns.get_nowait() == ("user", "24567")

    @pytest.mark.asyncio
    async def test_noise_dropped(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.handle_user_turn("uh")
        assert orch.session.transcript == []
        assert orch.ai.sent == []


class TestCallerTurns:
    @pytest.mark.asyncio
    async def test_spanish_request_switches(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.handle_user_turn("¿Hablas español?")
        assert orch.session.is_spanish
        assert orch.ai.instructions()[-1] == f'Say EXACTLY: "{SPANISH_SWITCH}"'

    @pytest.mark.asyncio
    async def test_spanish_first_utterance_locks_ops(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.handle_user_turn("Buenas tardes, necesito ayuda")
        assert orch.session.lang.locked
        assert "RO o PO" in orch.ai.instructions()[-1]

    @pytest.mark.asyncio
    async def test_goodbye(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.handle_user_turn("Bye!")
        assert LINES["goodbye"]["en"] in orch.ai.instructions()[-1]

    @pytest.mark.asyncio
    async def test_transfer_request_prompts_phrase(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.handle_user_turn("Can I talk to Randy please")
        assert "Transferring you to Randy now." in orch.ai.instructions()[-1]


class TestTransfer:
    @pytest.mark.asyncio
    async def test_assistant_phrase_triggers_redirect(self, make_orchestrator):
        orch = make_orchestrator()
        fake = orch.ai
        await orch.handle_assistant_turn("Transferring you to Randy now.")
        s = orch.session
        assert s.transfer_requested is True
        assert s.phase is CallPhase.TRANSFERRING
        assert fake.closed is True
        assert orch.telephony.sent == [{"event": "stop", "streamSid": "MZ789"}]
        orch.twilio.redirect_call.assert_awaited_once_with(
            "CA789", "https://test.example.com/transfer-randy"
        )

    @pytest.mark.asyncio
    async def test_transfers_once(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.handle_assistant_turn("Transferring you to Randy now.")
        await orch.handle_assistant_turn("Transferring you to Randy now.")
        assert orch.twilio.redirect_call.await_count == 1


class TestOpsLogging:
    @pytest.mark.asyncio
    async def test_confirmed_summary_is_logged_once(self, make_orchestrator):
        store = make_store()
        orch = make_orchestrator(store=store)
        await orch.handle_assistant_turn(SUMMARY)
        assert orch.session.ops.confirmation_pending is True

        await orch.handle_user_turn("yeah that's right")
        store.log_ops_data.assert_awaited_once()
        record, language = store.log_ops_data.await_args.args
        assert record.ro_number == "24567"
        assert language == "en"
        assert orch.session.is_logged("24567")
        assert orch.session.ops.confirmation_pending is False
        assert orch.session.carried_shop == "AutoSport"
        assert LINES["ops_logged"]["en"] in orch.ai.instructions()[-1]

        await orch.handle_assistant_turn(SUMMARY)
        await orch.handle_user_turn("yeah that's right")
        assert store.log_ops_data.await_count == 1
        assert LINES["ops_already_logged"]["en"] in orch.ai.instructions()[-1]

    @pytest.mark.asyncio
    async def test_confirmed_summary_reaches_store_normalized(self, make_orchestrator):
        webhook = "https://script.example.com/exec"
        summary = (
            "Let me confirm: RO 3095, shop AutoSport, 2024 Honda Accord, VIN ending 1186, "
            "status ready, scheduled today at 2 PM, notes none. Is that correct?"
        )
        with respx.mock:
            route = respx.post(webhook).mock(return_value=httpx.Response(200, json={"success": True}))
            store = RecordStoreClient(webhook, token="t0k")
            orch = make_orchestrator(store=store)
            with patch("adasline.normalizers._now_et", return_value=datetime(2025, 12, 10, 9, 0)), \
                    patch("adasline.store.est_timestamp", return_value="12/10/2025, 9:00:00 AM"):
                await orch.handle_assistant_turn(summary)
                await orch.handle_user_turn("yeah that's right")
                await orch.handle_assistant_turn(summary)
                await orch.handle_user_turn("yeah that's right")
            await store.close()

        assert route.call_count == 1
        body = json.loads(route.calls[0].request.content)
        assert body["token"] == "t0k"
        assert body["action"] == "log_ro"
        assert body["data"] == {
            "date_logged": "12/10/2025, 9:00:00 AM",
            "ro_number": "3095",
            "shop": "AutoSport",
            "vehicle_info": "2024 Honda Accord (VIN ending 1186)",
            "status_from_shop": "ready",
            "scheduled": "Wednesday, December 10, 2025 at 2:00 PM",
            "shop_notes": "Caller: Unknown. Notes: none.",
            "language": "en",
        }
        assert orch.session.is_logged("3095")

    @pytest.mark.asyncio
    async def test_confirmation_without_summary_ignored(self, make_orchestrator):
        store = make_store()
        orch = make_orchestrator(store=store)
        await orch.handle_assistant_turn("Would you like to schedule it?")
        await orch.handle_user_turn("yeah that's right")
        store.log_ops_data.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_log_keeps_pending(self, make_orchestrator):
        store = make_store()
        store.log_ops_data.return_value = {"success": False, "error": "Missing status"}
        orch = make_orchestrator(store=store)
        await orch.handle_assistant_turn(SUMMARY)
        await orch.handle_user_turn("yeah that's right")
        assert not orch.session.is_logged("24567")
        assert orch.session.ops.confirmation_pending is True
        assert LINES["ops_log_failed"]["en"] in orch.ai.instructions()[-1]


class TestFunctionCalls:
    @pytest.mark.asyncio
    async def test_result_sent_then_response(self, make_orchestrator):
        orch = make_orchestrator(bridge_result={"success": True, "message": "Status updated to Ready"})
        await orch.handle_function_call(_call("update_ro_status", {"roPo": "24567", "status": "Ready"}))
        orch.bridge.execute.assert_awaited_once_with(
            AssistantKind.OPS, "update_ro_status", {"roPo": "24567", "status": "Ready"}
        )
        assert orch.ai.types() == ["conversation.item.create", "response.create"]
        assert orch.ai.sent[0]["item"]["call_id"] == "call_1"
        assert orch.session.tool_log[0]["name"] == "update_ro_status"

    @pytest.mark.asyncio
    async def test_bad_arguments_become_empty(self, make_orchestrator):
        orch = make_orchestrator()
        event = _call("oem_lookup", {})
        event["arguments"] = "{broken"
        await orch.handle_function_call(event)
        orch.bridge.execute.assert_awaited_once_with(AssistantKind.OPS, "oem_lookup", {})

    @pytest.mark.asyncio
    async def test_bridge_exception_reported(self, make_orchestrator):
        orch = make_orchestrator()
        orch.bridge.execute = AsyncMock(side_effect=RuntimeError("boom"))
        await orch.handle_function_call(_call("get_ro_summary", {"roPo": "24567"}))
        assert _outputs(orch.ai) == [{"success": False, "error": "boom"}]

    @pytest.mark.asyncio
    async def test_set_schedule_deduplicated(self, make_orchestrator):
        orch = make_orchestrator(bridge_result={"success": True, "message": "Scheduled"})
        args = {"roPo": "24567", "scheduledDate": "2025-12-08", "scheduledTime": "10:00 AM"}
        await orch.handle_function_call(_call("set_schedule", args, "call_1"))
        await orch.handle_function_call(_call("set_schedule", args, "call_2"))
        assert orch.bridge.execute.await_count == 1
        assert _outputs(orch.ai)[1]["deduplicated"] is True

    @pytest.mark.asyncio
    async def test_set_schedule_other_ro_not_deduplicated(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.handle_function_call(_call("set_schedule", {"roPo": "24567", "scheduledDate": "2025-12-08"}))
        await orch.handle_function_call(_call("set_schedule", {"roPo": "31245", "scheduledDate": "2025-12-08"}))
        assert orch.bridge.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_successful_schedule_follow_up(self, make_orchestrator):
        orch = make_orchestrator(bridge_result={"success": True})
        await orch.handle_function_call(_call("set_schedule", {"roPo": "24567", "scheduledDate": "2025-12-08"}))
        assert orch.ai.instructions() == [LINES["scheduled_followup"]["en"]]

    @pytest.mark.asyncio
    async def test_summary_lookup_cached(self, make_orchestrator):
        orch = make_orchestrator(bridge_result={"found": True, "roPo": "24567"})
        await orch.handle_function_call(_call("get_ro_summary", {"roPo": "24567"}))
        await orch.handle_function_call(_call("get_ro_summary", {"roPo": "24567"}))
        assert orch.bridge.execute.await_count == 1
        assert _outputs(orch.ai)[1]["cached"] is True

    @pytest.mark.asyncio
    async def test_not_found_lookup_not_cached(self, make_orchestrator):
        orch = make_orchestrator(bridge_result={"found": False, "message": "RO 24567 not found in system"})
        await orch.handle_function_call(_call("get_ro_summary", {"roPo": "24567"}))
        await orch.handle_function_call(_call("get_ro_summary", {"roPo": "24567"}))
        assert orch.bridge.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_readiness_never_cached(self, make_orchestrator):
        orch = make_orchestrator(bridge_result={"found": True, "ready": True})
        await orch.handle_function_call(_call("compute_readiness", {"roPo": "24567"}))
        await orch.handle_function_call(_call("compute_readiness", {"roPo": "24567"}))
        assert orch.bridge.execute.await_count == 2


class TestOverride:
    NEEDS_ATTENTION = {
        "found": True,
        "ready": False,
        "canScheduleWithOverride": True,
        "status": "Needs Attention",
        "reasons": ["Vehicle status indicates attention needed."],
    }

    @pytest.mark.asyncio
    async def test_flags_and_asks(self, make_orchestrator):
        orch = make_orchestrator(bridge_result=dict(self.NEEDS_ATTENTION))
        await orch.handle_function_call(_call("compute_readiness", {"roPo": "24567"}))
        ops = orch.session.ops
        assert ops.awaiting_override is True
        assert ops.pending_ro == "24567"
        output = _outputs(orch.ai)[0]
        assert output["awaitingConfirmation"] is True
        assert output["confirmationMessage"] == LINES["override_question"]["en"]

    @pytest.mark.asyncio
    async def test_hard_block_not_flagged(self, make_orchestrator):
        result = {"found": True, "ready": False, "canScheduleWithOverride": False, "status": "Ready"}
        orch = make_orchestrator(bridge_result=result)
        await orch.handle_function_call(_call("compute_readiness", {"roPo": "24567"}))
        assert orch.session.ops.awaiting_override is False

    @pytest.mark.asyncio
    async def test_needs_attention_with_blocker_not_flagged(self, make_orchestrator):
        result = dict(self.NEEDS_ATTENTION, canScheduleWithOverride=False)
        orch = make_orchestrator(bridge_result=result)
        await orch.handle_function_call(_call("compute_readiness", {"roPo": "24567"}))
        assert orch.session.ops.awaiting_override is False
        assert "awaitingConfirmation" not in _outputs(orch.ai)[0]

    @pytest.mark.asyncio
    async def test_yes_proceeds(self, make_orchestrator):
        orch = make_orchestrator(bridge_result=dict(self.NEEDS_ATTENTION))
        await orch.handle_function_call(_call("compute_readiness", {"roPo": "24567"}))
        await orch.handle_user_turn("Yes, go ahead")
        assert orch.session.ops.awaiting_override is False
        assert orch.session.ops.pending_ro == "24567"
        assert LINES["override_proceed"]["en"] in orch.ai.instructions()[-1]

    @pytest.mark.asyncio
    async def test_no_declines(self, make_orchestrator):
        orch = make_orchestrator(bridge_result=dict(self.NEEDS_ATTENTION))
        await orch.handle_function_call(_call("compute_readiness", {"roPo": "24567"}))
        await orch.handle_user_turn("No, wait")
        assert orch.session.ops.awaiting_override is False
        assert orch.session.ops.pending_ro == ""
        assert LINES["override_decline"]["en"] in orch.ai.instructions()[-1]

    @pytest.mark.asyncio
    async def test_unclear_asks_again(self, make_orchestrator):
        orch = make_orchestrator(bridge_result=dict(self.NEEDS_ATTENTION))
        await orch.handle_function_call(_call("compute_readiness", {"roPo": "24567"}))
        await orch.handle_user_turn("hmm let me check with the manager")
        assert orch.session.ops.awaiting_override is True
        assert LINES["override_clarify"]["en"] in orch.ai.instructions()[-1]


class TestTechFlow:
    ROW = {
        "ro_po": "24567",
        "shop_name": "AutoSport",
        "vehicle_info": "2022 Toyota Camry",
        "tech_notes": "Arrived 9am.",
    }

    @pytest.mark.asyncio
    async def test_ro_lookup(self, make_orchestrator):
        store = make_store()
        store.lookup_ro.return_value = dict(self.ROW)
        orch = make_orchestrator(kind=AssistantKind.TECH, store=store)
        await orch.handle_user_turn("it's RO 24567")
        store.lookup_ro.assert_awaited_once_with("24567")
        tech = orch.session.tech
        assert tech.current_ro == "24567"
        assert tech.existing_notes == "Arrived 9am."
        said = orch.ai.instructions()
        assert "looking up RO 24567" in said[0]
        assert "2022 Toyota Camry from AutoSport" in said[-1]

    @pytest.mark.asyncio
    async def test_ro_not_found(self, make_orchestrator):
        orch = make_orchestrator(kind=AssistantKind.TECH)
        await orch.handle_user_turn("it's RO 24567")
        assert orch.session.tech.current_ro == ""
        assert "I don't see RO 24567" in orch.ai.instructions()[-1]

    @pytest.mark.asyncio
    async def test_closure_asks_once_then_closes(self, make_orchestrator):
        store = make_store()
        store.lookup_ro.return_value = dict(self.ROW)
        orch = make_orchestrator(kind=AssistantKind.TECH, store=store)
        await orch.handle_user_turn("it's RO 24567")

        await orch.handle_user_turn("it's done, close it out")
        assert orch.session.tech.asked_for_calibration_info is True
        store.update_tech_data.assert_not_called()
        system = [e for e in orch.ai.sent if e.get("item", {}).get("role") == "system"]
        assert system[0]["item"]["content"][0]["text"].startswith("ASK FOR CALIBRATION INFO:")

        await orch.handle_user_turn("front radar, static")
        store.update_tech_data.assert_awaited_once()
        payload, existing = store.update_tech_data.await_args.args
        assert payload["ro_number"] == "24567"
        assert payload["calibration_performed"] == "radar (static)"
        assert existing == "Arrived 9am."
        assert orch.session.is_logged("24567")
        assert "RO 24567 is now marked as completed" in orch.ai.instructions()[-1]

    @pytest.mark.asyncio
    async def test_closure_with_data_closes_immediately(self, make_orchestrator):
        store = make_store()
        store.lookup_ro.return_value = dict(self.ROW)
        orch = make_orchestrator(kind=AssistantKind.TECH, store=store)
        await orch.handle_user_turn("it's RO 24567")
        await orch.handle_user_turn("blind spot passed, close it out")
        store.update_tech_data.assert_awaited_once()
        assert orch.session.tech.asked_for_calibration_info is False

    @pytest.mark.asyncio
    async def test_close_failure(self, make_orchestrator):
        store = make_store()
        store.lookup_ro.return_value = dict(self.ROW)
        store.update_tech_data.return_value = {"success": False, "error": "down"}
        orch = make_orchestrator(kind=AssistantKind.TECH, store=store)
        await orch.handle_user_turn("it's RO 24567")
        await orch.handle_user_turn("blind spot passed, close it out")
        assert not orch.session.is_logged("24567")
        assert LINES["tech_close_failed"]["en"] in orch.ai.instructions()[-1]


class TestRun:
    @pytest.mark.asyncio
    async def test_connect_failure_closes(self, make_orchestrator):
        orch = make_orchestrator()
        orch._connect = AsyncMock(side_effect=OSError("refused"))
        await orch.run()
        assert orch.session.phase is CallPhase.CLOSED

    @pytest.mark.asyncio
    async def test_full_call_logs_transcript(self, make_orchestrator, caplog):
        fake = FakeRealtime([
            {"type": "session.created"},
            {"type": "response.audio_transcript.done", "transcript": "What's the RO number?"},
        ])
        orch = make_orchestrator(inbound=[{"event": "stop"}])
        orch._connect = AsyncMock(return_value=fake)
        with caplog.at_level(logging.INFO, logger="adasline.orchestrator"):
            await orch.run()

        assert fake.sent[0]["type"] == "session.update"
        assert fake.sent[0]["session"]["voice"] == "shimmer"
        assert orch.session.phase is CallPhase.CLOSED
        assert [t.text for t in orch.session.transcript] == ["What's the RO number?"]
        dumps = [r.getMessage() for r in caplog.records if r.getMessage().startswith("TRANSCRIPT_DUMP|")]
        assert dumps
        body = json.loads(dumps[0].split("|", 2)[2])
        assert body["assistant"] == "ops"
        assert body["call_sid"] == "CA789"
        assert "extracted" in body
