"""Twilio side of a call: TwiML, Media Stream messages, and the REST redirect."""

import logging
import os
from xml.sax.saxutils import escape, quoteattr

import httpx

from adasline.circuit_breaker import CircuitBreaker
from adasline.prompts import TRANSFER_TWIML_LINE

logger = logging.getLogger(__name__)

TWILIO_API = "https://api.twilio.com/2010-04-01"


def stream_twiml(host: str, path: str) -> str:
    """TwiML that tells Twilio to open a Media Stream to wss://host/path."""
    url = quoteattr(f"wss://{host}/{path.lstrip('/')}")
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        "<Response>"
        "<Connect>"
        f"<Stream url={url} />"
        "</Connect>"
        "</Response>"
    )


def transfer_twiml(phone: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        "<Response>"
        f'<Say voice="Polly.Matthew">{escape(TRANSFER_TWIML_LINE)}</Say>'
        f"<Dial>{escape(phone)}</Dial>"
        "</Response>"
    )


def media_message(stream_sid: str, payload: str) -> dict:
    return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload}}


def clear_message(stream_sid: str) -> dict:
    return {"event": "clear", "streamSid": stream_sid}


def stop_message(stream_sid: str) -> dict:
    return {"event": "stop", "streamSid": stream_sid}


class TwilioClient:
    """Minimal Twilio REST client: only live-call redirects are needed."""

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.account_sid = account_sid if account_sid is not None else os.getenv("TWILIO_ACCOUNT_SID", "")
        self.auth_token = auth_token if auth_token is not None else os.getenv("TWILIO_AUTH_TOKEN", "")
        self._circuit = CircuitBreaker(failure_threshold=3, cooldown_seconds=60.0, label="Twilio")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token)

    async def close(self):
        await self._client.aclose()

    async def redirect_call(self, call_sid: str, url: str) -> bool:
        """Point a live call at new TwiML.  Returns False if the redirect failed."""
        if not self.configured:
            logger.warning("Twilio credentials not set, cannot redirect call %s", call_sid)
            return False
        if not call_sid:
            logger.warning("No call SID, cannot redirect to %s", url)
            return False
        if not self._circuit.should_try():
            logger.warning("Twilio circuit breaker open, skipping redirect for %s", call_sid)
            return False

        try:
            resp = await self._client.post(
                f"{TWILIO_API}/Accounts/{self.account_sid}/Calls/{call_sid}.json",
                data={"Url": url, "Method": "POST"},
                auth=(self.account_sid, self.auth_token),
            )
            resp.raise_for_status()
            self._circuit.record_success()
            logger.info("Call %s redirected to %s", call_sid, url)
            return True
        except Exception as e:
            self._circuit.record_failure()
            logger.error("Redirect of call %s failed: %s", call_sid, e)
            return False
