import logging
import os

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import PlainTextResponse, Response
from pipecat.runner.utils import parse_telephony_websocket

from adasline import config
from adasline.dispatch import TechRouter
from adasline.orchestrator import CallOrchestrator
from adasline.session import CallSession
from adasline.states import AssistantKind
from adasline.store import RecordStoreClient
from adasline.telephony import TwilioClient, stream_twiml, transfer_twiml
from adasline.tools import ToolBridge

load_dotenv()
config.validate_config()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="ADASLine Voice Assistants")

# Shared so that round-robin rotation is fair across concurrent calls
ROUTER = TechRouter()


@app.get("/health")
async def health():
    return PlainTextResponse("ok")


@app.api_route("/voice-ops", methods=["GET", "POST"])
async def voice_ops(request: Request):
    """TwiML for the shop-facing ops line."""
    return Response(content=stream_twiml(config.public_host(), "media-ops"), media_type="application/xml")


@app.api_route("/voice-tech", methods=["GET", "POST"])
async def voice_tech(request: Request):
    """TwiML for the technician support line."""
    return Response(content=stream_twiml(config.public_host(), "media-tech"), media_type="application/xml")


@app.api_route("/transfer-randy", methods=["GET", "POST"])
async def transfer_randy(request: Request):
    logger.info("Serving transfer TwiML to %s", config.randy_phone())
    return Response(content=transfer_twiml(config.randy_phone()), media_type="application/xml")


@app.websocket("/media-ops")
async def media_ops(websocket: WebSocket):
    await websocket.accept()
    await run_call(websocket, AssistantKind.OPS)


@app.websocket("/media-tech")
async def media_tech(websocket: WebSocket):
    await websocket.accept()
    await run_call(websocket, AssistantKind.TECH)


async def run_call(websocket: WebSocket, kind: AssistantKind) -> None:
    _, call_data = await parse_telephony_websocket(websocket)
    session = CallSession(
        kind=kind,
        call_sid=call_data.get("call_id") or "",
        stream_sid=call_data.get("stream_id") or "",
    )
    logger.info("[%s] Incoming call %s", kind.value, session.call_sid)

    store = RecordStoreClient(os.getenv("GAS_WEBHOOK_URL", ""), token=os.getenv("GAS_TOKEN", ""))
    twilio = TwilioClient()
    orchestrator = CallOrchestrator(
        session,
        telephony=websocket,
        bridge=ToolBridge(store, ROUTER),
        store=store,
        twilio=twilio,
    )
    try:
        await orchestrator.run()
    finally:
        await store.close()
        await twilio.close()


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8765"))
    uvicorn.run("adasline.bot:app", host="0.0.0.0", port=port, reload=True)
