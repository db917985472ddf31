from unittest.mock import patch

from fastapi.testclient import TestClient

# bot.py calls validate_config() at import time, which sys.exit(1) if env vars missing.
# Patch it so the import succeeds in test environment.
with patch("adasline.config.validate_config"):
    from adasline.bot import app

client = TestClient(app)


class TestRoutes:
    def test_health(self):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.text == "ok"

    def test_voice_ops_streams_to_ops_socket(self, monkeypatch):
        monkeypatch.setenv("BASE_URL", "https://calls.example.com")
        resp = client.post("/voice-ops")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/xml")
        assert '<Stream url="wss://calls.example.com/media-ops" />' in resp.text

    def test_voice_tech_streams_to_tech_socket(self, monkeypatch):
        monkeypatch.setenv("BASE_URL", "calls.example.com")
        resp = client.get("/voice-tech")
        assert '<Stream url="wss://calls.example.com/media-tech" />' in resp.text

    def test_transfer_dials_dispatch(self, monkeypatch):
        monkeypatch.setenv("RANDY_PHONE", "+13055550100")
        resp = client.post("/transfer-randy")
        assert "<Dial>+13055550100</Dial>" in resp.text
        assert "Transferring you to Randy now." in resp.text
