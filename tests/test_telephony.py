import httpx
import pytest
import respx
from adasline.telephony import (
    TwilioClient,
    clear_message,
    media_message,
    stop_message,
    stream_twiml,
    transfer_twiml,
)

CALL_URL = "https://api.twilio.com/2010-04-01/Accounts/AC123/Calls/CA789.json"
TRANSFER_URL = "https://calls.example.com/transfer-randy"


class TestTwiml:
    def test_stream(self):
        twiml = stream_twiml("calls.example.com", "/media-ops")
        assert twiml.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        assert '<Connect><Stream url="wss://calls.example.com/media-ops" /></Connect>' in twiml

    def test_transfer(self):
        twiml = transfer_twiml("+17865551234")
        assert '<Say voice="Polly.Matthew">Transferring you to Randy now.</Say>' in twiml
        assert "<Dial>+17865551234</Dial>" in twiml


class TestMessages:
    def test_media(self):
        assert media_message("MZ1", "AAAA") == {"event": "media", "streamSid": "MZ1", "media": {"payload": "AAAA"}}

    def test_clear_and_stop(self):
        assert clear_message("MZ1") == {"event": "clear", "streamSid": "MZ1"}
        assert stop_message("MZ1") == {"event": "stop", "streamSid": "MZ1"}


class TestRedirectCall:
    @pytest.mark.asyncio
    async def test_redirect(self):
        with respx.mock:
            route = respx.post(CALL_URL).mock(return_value=httpx.Response(200, json={"sid": "CA789"}))
            client = TwilioClient("AC123", "token")
            assert await client.redirect_call("CA789", TRANSFER_URL) is True
            request = route.calls[0].request
            assert request.headers["authorization"].startswith("Basic ")
            body = request.content.decode()
            assert "Method=POST" in body
            assert "Url=https%3A%2F%2Fcalls.example.com%2Ftransfer-randy" in body
            await client.close()

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        client = TwilioClient("", "")
        assert client.configured is False
        assert await client.redirect_call("CA789", TRANSFER_URL) is False

    @pytest.mark.asyncio
    async def test_missing_call_sid(self):
        client = TwilioClient("AC123", "token")
        assert await client.redirect_call("", TRANSFER_URL) is False

    @pytest.mark.asyncio
    async def test_http_error(self):
        with respx.mock:
            respx.post(CALL_URL).mock(return_value=httpx.Response(404))
            client = TwilioClient("AC123", "token")
            assert await client.redirect_call("CA789", TRANSFER_URL) is False

    @pytest.mark.asyncio
    async def test_credentials_from_env(self, monkeypatch):
        monkeypatch.setenv("TWILIO_ACCOUNT_SID", "AC123")
        monkeypatch.setenv("TWILIO_AUTH_TOKEN", "token")
        assert TwilioClient().configured is True
