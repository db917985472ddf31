"""Connection to the OpenAI Realtime API."""

import json
import logging

import websockets

from adasline.states import AssistantKind

logger = logging.getLogger(__name__)

REALTIME_URL = "wss://api.openai.com/v1/realtime"

TURN_DETECTION = {
    "type": "server_vad",
    "threshold": 0.85,
    "prefix_padding_ms": 400,
    "silence_duration_ms": 1000,
    "create_response": True,
}


def session_update(kind: AssistantKind, instructions: str, tools: list[dict]) -> dict:
    return {
        "type": "session.update",
        "session": {
            "modalities": ["text", "audio"],
            "instructions": instructions,
            "voice": kind.voice,
            "input_audio_format": "g711_ulaw",
            "output_audio_format": "g711_ulaw",
            "input_audio_transcription": {"model": "whisper-1"},
            "turn_detection": dict(TURN_DETECTION),
            "tools": tools,
            "tool_choice": "auto",
            "temperature": 0.7,
            "max_response_output_tokens": 2048,
        },
    }


def response_create(instructions: str | None = None) -> dict:
    event = {"type": "response.create"}
    if instructions:
        event["response"] = {"modalities": ["text", "audio"], "instructions": instructions}
    return event


def function_output(call_id: str, output: dict) -> dict:
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "function_call_output",
            "call_id": call_id,
            "output": json.dumps(output),
        },
    }


def system_message(text: str) -> dict:
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "message",
            "role": "system",
            "content": [{"type": "input_text", "text": text}],
        },
    }


class RealtimeConnection:
    """JSON event framing over one Realtime websocket."""

    def __init__(self, ws):
        self._ws = ws
        self.closed = False

    @classmethod
    async def connect(cls, api_key: str, model: str) -> "RealtimeConnection":
        ws = await websockets.connect(
            f"{REALTIME_URL}?model={model}",
            additional_headers={
                "Authorization": f"Bearer {api_key}",
                "OpenAI-Beta": "realtime=v1",
            },
            max_size=None,
        )
        logger.info("Connected to Realtime API (model %s)", model)
        return cls(ws)

    async def send(self, event: dict) -> None:
        if self.closed:
            logger.debug("Dropping %s, realtime connection closed", event.get("type"))
            return
        await self._ws.send(json.dumps(event))

    async def events(self):
        """Yield decoded server events until the socket closes."""
        try:
            async for raw in self._ws:
                try:
                    yield json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Undecodable realtime message: %.200r", raw)
        except websockets.ConnectionClosed as e:
            logger.info("Realtime connection closed: %s", e)
        finally:
            self.closed = True

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._ws.close()
