import json

import httpx
import pytest

from saaslens import config
from saaslens.services import llm_service
from saaslens.services.retry import ProviderError, ProviderNotConfiguredError, RetryConfig
from saaslens.services.subscription_extraction import ExtractionParseError


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def keys(monkeypatch):
    monkeypatch.setattr(config, "GEMINI_API_KEY", "g-key")
    monkeypatch.setattr(config, "OPENAI_API_KEY", "o-key")
    monkeypatch.setattr(config, "LLM_PROVIDER", "gemini")


class TestComplete:
    def test_gemini(self, keys):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "hello"}]}}]})

        text = llm_service.complete("prompt", provider="gemini", model="gemini-test", client=_client(handler))
        assert text == "hello"
        assert "models/gemini-test:generateContent" in seen["url"]
        assert "key=g-key" in seen["url"]
        assert seen["body"]["contents"][0]["parts"][0]["text"] == "prompt"

    def test_openai(self, keys):
        def handler(request):
            assert request.headers["Authorization"] == "Bearer o-key"
            body = json.loads(request.content)
            assert body["model"] == "gpt-test"
            return httpx.Response(200, json={"choices": [{"message": {"content": "hi"}}]})

        assert llm_service.complete("p", provider="openai", model="gpt-test", client=_client(handler)) == "hi"

    def test_ollama(self, keys):
        def handler(request):
            assert request.url.path == "/api/chat"
            assert json.loads(request.content)["stream"] is False
            return httpx.Response(200, json={"message": {"content": "local"}})

        assert llm_service.complete("p", provider="ollama", client=_client(handler)) == "local"

    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(config, "OPENAI_API_KEY", None)
        with pytest.raises(ProviderNotConfiguredError):
            llm_service.complete("p", provider="openai", client=_client(lambda r: httpx.Response(200)))

    def test_http_error_status(self, keys):
        client = _client(lambda r: httpx.Response(401, text="bad key"))
        with pytest.raises(ProviderError) as info:
            llm_service.complete("p", provider="gemini", client=client)
        assert info.value.status_code == 401

    def test_transport_error_wrapped(self, keys, monkeypatch):
        monkeypatch.setattr(llm_service, "LLM_RETRY", RetryConfig(max_attempts=1))

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProviderError):
            llm_service.complete("p", provider="ollama", client=_client(handler))

    def test_unknown_provider(self, keys):
        with pytest.raises(ProviderNotConfiguredError):
            llm_service.complete("p", provider="mystery")


class TestExtractor:
    def test_parses_json(self, keys):
        payload = '```json\n{"vendor_name": "Slack", "amount": 80, "renewal_date": "2024-05-01"}\n```'
        client = _client(lambda r: httpx.Response(200, json={"message": {"content": payload}}))
        extract = llm_service.make_extractor("ollama", "m", client)
        result = extract("Slack invoice", "Amount: $80", "billing@slack.com")
        assert result.vendor_name == "Slack"
        assert result.renewal_date == "2024-05-01"

    def test_garbage_raises_parse_error(self, keys):
        client = _client(lambda r: httpx.Response(200, json={"message": {"content": "Sure! Here you go"}}))
        with pytest.raises(ExtractionParseError):
            llm_service.make_extractor("ollama", "m", client)("s", "b", "a@b.com")


class TestSettings:
    def test_defaults(self, db, keys):
        assert llm_service.get_llm_settings(db) == {"provider": "gemini", "model": config.GEMINI_MODEL}

    def test_stored_values_win(self, db, keys):
        llm_service.set_setting(db, "llm_provider", "openai")
        llm_service.set_setting(db, "llm_model", "gpt-custom")
        assert llm_service.get_llm_settings(db) == {"provider": "openai", "model": "gpt-custom"}

    def test_invalid_provider_falls_back(self, db, keys):
        llm_service.set_setting(db, "llm_provider", "mystery")
        assert llm_service.get_llm_settings(db)["provider"] == "gemini"

    def test_set_setting_updates(self, db):
        llm_service.set_setting(db, "k", "a")
        llm_service.set_setting(db, "k", "b")
        assert llm_service.get_setting(db, "k") == "b"
