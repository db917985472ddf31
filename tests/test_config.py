import pytest
from adasline import config


class TestValidateConfig:
    def test_missing_required_exits(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.setenv("GAS_WEBHOOK_URL", "https://script.example.com/exec")
        with pytest.raises(SystemExit) as exc:
            config.validate_config()
        assert exc.value.code == 1

    def test_required_present(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("GAS_WEBHOOK_URL", "https://script.example.com/exec")
        config.validate_config()


class TestAccessors:
    def test_public_host_strips_scheme(self, monkeypatch):
        monkeypatch.setenv("BASE_URL", "https://calls.example.com/")
        assert config.public_host() == "calls.example.com"

    def test_public_host_default(self, monkeypatch):
        monkeypatch.delenv("BASE_URL", raising=False)
        monkeypatch.delenv("NGROK_URL", raising=False)
        assert config.public_host() == "localhost:8765"

    def test_dispatch_phone_default(self, monkeypatch):
        monkeypatch.delenv("RANDY_PHONE", raising=False)
        assert config.randy_phone() == config.DEFAULT_RANDY_PHONE

    def test_model_override(self, monkeypatch):
        monkeypatch.setenv("OPENAI_MODEL", "gpt-realtime")
        assert config.openai_model() == "gpt-realtime"
