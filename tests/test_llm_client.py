import httpx
import pytest
from openai import APIConnectionError, RateLimitError

from errors import AIRequestError
from llm_client import chat_completion, is_ai_configured, normalize_base_url

AI_CONFIG = {"apiUrl": "https://ai.example.com/v1", "apiKey": "sk-test", "model": "test-model"}
REQUEST = httpx.Request("POST", "https://ai.example.com/v1/chat/completions")


class FakeMessage:
    def __init__(self, content):
        self.content = content


class FakeChoice:
    def __init__(self, content):
        self.message = FakeMessage(content)


class FakeResp:
    def __init__(self, choices):
        self.choices = choices


class FakeClient:
    def __init__(self, response=None, error=None):
        self.requests = []
        outer = self

        class _Completions:
            async def create(self, **kwargs):
                outer.requests.append(kwargs)
                if error is not None:
                    raise error
                return response

        class _Chat:
            completions = _Completions()

        self.chat = _Chat()


def test_normalize_base_url():
    assert normalize_base_url("https://api.openai.com/v1/") == "https://api.openai.com/v1"
    assert normalize_base_url("https://api.openai.com/v1/chat/completions") == "https://api.openai.com/v1"
    assert normalize_base_url(" http://localhost:11434/v1/chat/completions/ ") == "http://localhost:11434/v1"


def test_is_ai_configured():
    assert is_ai_configured(AI_CONFIG)
    assert is_ai_configured({"apiUrl": "http://localhost:11434/v1", "provider": "ollama"})
    assert not is_ai_configured({"apiUrl": "https://ai.example.com/v1"})
    assert not is_ai_configured({"apiKey": "sk-test"})
    assert not is_ai_configured(None)


@pytest.mark.asyncio
async def test_chat_completion_returns_text_and_sends_user_settings():
    client = FakeClient(FakeResp([FakeChoice("Bonjour")]))
    result = await chat_completion("Translate: Hello", {**AI_CONFIG, "temperature": 0.2}, client_override=client)
    assert result == "Bonjour"
    request = client.requests[0]
    assert request["model"] == "test-model"
    assert request["temperature"] == 0.2
    assert request["messages"] == [{"role": "user", "content": "Translate: Hello"}]


@pytest.mark.asyncio
async def test_chat_completion_defaults():
    client = FakeClient(FakeResp([FakeChoice(None)]))
    config_without_model = {"apiUrl": AI_CONFIG["apiUrl"], "apiKey": "sk-test"}
    assert await chat_completion("hi", config_without_model, client_override=client) == ""
    assert client.requests[0]["temperature"] == 1
    assert client.requests[0]["model"]


@pytest.mark.asyncio
async def test_rate_limit_maps_to_429_error():
    response = httpx.Response(429, request=REQUEST)
    error = RateLimitError("Too many requests", response=response, body={"error": {"message": "Slow down"}})
    with pytest.raises(AIRequestError) as excinfo:
        await chat_completion("hi", AI_CONFIG, client_override=FakeClient(error=error))
    assert excinfo.value.status_code == 429
    assert excinfo.value.rate_limited
    assert "Slow down" in str(excinfo.value)


@pytest.mark.asyncio
async def test_connection_error_has_no_status():
    error = APIConnectionError(request=REQUEST)
    with pytest.raises(AIRequestError) as excinfo:
        await chat_completion("hi", AI_CONFIG, client_override=FakeClient(error=error))
    assert excinfo.value.status_code is None
    assert not excinfo.value.rate_limited


@pytest.mark.asyncio
async def test_unconfigured_ai_raises():
    with pytest.raises(AIRequestError):
        await chat_completion("hi", {"apiUrl": ""})
