from __future__ import annotations

import io
import json
from urllib.error import HTTPError, URLError

import pytest

from libs.core import llm_provider as llm_provider_module
from libs.core.errors import ProviderError
from libs.core.llm_provider import GeminiProvider, MockLLMProvider, OpenAIProvider, resolve_provider
from libs.core.models import GenerationOptions


class _FakeHTTPResponse:
    def __init__(self, payload: object) -> None:
        self._raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._raw

    def __enter__(self) -> "_FakeHTTPResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False


def _openai_payload(text: str = '{"ok":true}') -> dict:
    return {
        "output": [
            {
                "type": "message",
                "content": [{"type": "output_text", "text": text}],
            }
        ]
    }


def _gemini_payload(text: str = '{"ok":true}') -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def _http_error(code: int, body: bytes = b"{}") -> HTTPError:
    return HTTPError(
        url="https://example.invalid",
        code=code,
        msg="error",
        hdrs=None,
        fp=io.BytesIO(body),
    )


def test_gemini_provider_sends_persona_schema_and_options(monkeypatch) -> None:
    captured: list[dict] = []

    def _fake_urlopen(request, timeout=0):  # type: ignore[no-untyped-def]
        captured.append(
            {
                "url": request.full_url,
                "body": json.loads(request.data.decode("utf-8")),
                "key": request.get_header("X-goog-api-key"),
                "timeout": timeout,
            }
        )
        return _FakeHTTPResponse(_gemini_payload())

    monkeypatch.setattr(llm_provider_module, "urlopen", _fake_urlopen)

    provider = GeminiProvider(api_key="g-key", model="gemini-2.0-flash", timeout_s=12)
    schema = {"type": "object", "properties": {"ok": {"type": "string"}}}
    response = provider.generate(
        "You are a tester.",
        "Feature: Login",
        schema,
        GenerationOptions(temperature=0.3, max_output_tokens=1200),
    )

    assert response.content == '{"ok":true}'
    call = captured[0]
    assert call["url"].endswith("/v1beta/models/gemini-2.0-flash:generateContent")
    assert call["key"] == "g-key"
    assert call["timeout"] == 12
    body = call["body"]
    assert body["systemInstruction"]["parts"][0]["text"] == "You are a tester."
    assert body["contents"][0]["parts"][0]["text"] == "Feature: Login"
    config = body["generationConfig"]
    assert config["temperature"] == 0.3
    assert config["maxOutputTokens"] == 1200
    assert config["responseMimeType"] == "application/json"
    assert config["responseSchema"] == schema


def test_gemini_provider_raises_on_empty_candidates(monkeypatch) -> None:
    monkeypatch.setattr(
        llm_provider_module, "urlopen", lambda request, timeout=0: _FakeHTTPResponse({"candidates": []})
    )
    provider = GeminiProvider(api_key="g-key")
    with pytest.raises(ProviderError):
        provider.generate("persona", "prompt")


def test_gemini_provider_reports_blocked_prompt(monkeypatch) -> None:
    monkeypatch.setattr(
        llm_provider_module,
        "urlopen",
        lambda request, timeout=0: _FakeHTTPResponse({"promptFeedback": {"blockReason": "SAFETY"}}),
    )
    provider = GeminiProvider(api_key="g-key")
    with pytest.raises(ProviderError) as excinfo:
        provider.generate("persona", "prompt")
    assert "SAFETY" in excinfo.value.detail


def test_provider_wraps_auth_error(monkeypatch) -> None:
    def _fake_urlopen(request, timeout=0):  # type: ignore[no-untyped-def]
        raise _http_error(401, b'{"error":"bad key"}')

    monkeypatch.setattr(llm_provider_module, "urlopen", _fake_urlopen)
    provider = GeminiProvider(api_key="bad")
    with pytest.raises(ProviderError) as excinfo:
        provider.generate("persona", "prompt")
    assert "401" in excinfo.value.detail
    assert isinstance(excinfo.value.cause, HTTPError)


def test_provider_wraps_malformed_envelope(monkeypatch) -> None:
    monkeypatch.setattr(
        llm_provider_module, "urlopen", lambda request, timeout=0: _FakeHTTPResponse(b"<html>oops")
    )
    provider = GeminiProvider(api_key="g-key")
    with pytest.raises(ProviderError) as excinfo:
        provider.generate("persona", "prompt")
    assert "malformed envelope" in excinfo.value.detail


def test_provider_retries_rate_limit_when_enabled(monkeypatch) -> None:
    state = {"count": 0}

    def _fake_urlopen(request, timeout=0):  # type: ignore[no-untyped-def]
        state["count"] += 1
        if state["count"] == 1:
            raise _http_error(429)
        return _FakeHTTPResponse(_gemini_payload('{"retried":true}'))

    monkeypatch.setattr(llm_provider_module, "urlopen", _fake_urlopen)
    monkeypatch.setattr(llm_provider_module.time, "sleep", lambda _s: None)

    provider = GeminiProvider(api_key="g-key", max_retries=1)
    assert provider.generate("persona", "prompt").content == '{"retried":true}'
    assert state["count"] == 2


def test_provider_does_not_retry_by_default(monkeypatch) -> None:
    state = {"count": 0}

    def _fake_urlopen(request, timeout=0):  # type: ignore[no-untyped-def]
        state["count"] += 1
        raise URLError("connection refused")

    monkeypatch.setattr(llm_provider_module, "urlopen", _fake_urlopen)
    provider = GeminiProvider(api_key="g-key")
    with pytest.raises(ProviderError):
        provider.generate("persona", "prompt")
    assert state["count"] == 1


def test_openai_provider_omits_temperature_for_gpt5(monkeypatch) -> None:
    captured_payloads: list[dict] = []

    def _fake_urlopen(request, timeout=0):  # type: ignore[no-untyped-def]
        captured_payloads.append(json.loads(request.data.decode("utf-8")))
        return _FakeHTTPResponse(_openai_payload())

    monkeypatch.setattr(llm_provider_module, "urlopen", _fake_urlopen)

    provider = OpenAIProvider(api_key="test-key", model="gpt-5-mini")
    response = provider.generate("persona", "hello", {"type": "object"}, GenerationOptions(temperature=0.7))
    assert response.content == '{"ok":true}'
    assert len(captured_payloads) == 1
    assert "temperature" not in captured_payloads[0]
    assert captured_payloads[0]["instructions"] == "persona"
    assert captured_payloads[0]["text"]["format"]["type"] == "json_schema"


def test_openai_provider_retries_without_temperature_on_unsupported_error(monkeypatch) -> None:
    captured_payloads: list[dict] = []
    state = {"count": 0}

    def _fake_urlopen(request, timeout=0):  # type: ignore[no-untyped-def]
        captured_payloads.append(json.loads(request.data.decode("utf-8")))
        if state["count"] == 0:
            state["count"] += 1
            raise _http_error(
                400,
                b'{"error":{"message":"Unsupported parameter: \'temperature\' is not supported with this model."}}',
            )
        return _FakeHTTPResponse(_openai_payload())

    monkeypatch.setattr(llm_provider_module, "urlopen", _fake_urlopen)

    provider = OpenAIProvider(api_key="test-key", model="gpt-4.1-mini")
    response = provider.generate("persona", "hello", None, GenerationOptions(temperature=0.2))
    assert response.content == '{"ok":true}'
    assert len(captured_payloads) == 2
    assert captured_payloads[0]["temperature"] == 0.2
    assert "temperature" not in captured_payloads[1]


def test_resolve_provider_defaults_to_mock() -> None:
    provider = resolve_provider("")
    assert isinstance(provider, MockLLMProvider)
    assert provider.generate("persona", "prompt").content == "{}"


def test_resolve_provider_requires_gemini_key() -> None:
    with pytest.raises(ValueError):
        resolve_provider("gemini", api_key="")


def test_resolve_provider_builds_gemini_with_default_model() -> None:
    provider = resolve_provider("Gemini", api_key="k")
    assert isinstance(provider, GeminiProvider)
    assert provider.model == "gemini-2.0-flash"


class _RecordingLogger:
    def __init__(self) -> None:
        self.warnings = []

    def warning(self, event, **fields):
        self.warnings.append((event, fields))


def test_resolve_provider_warns_on_unrecognized_name(monkeypatch) -> None:
    recorder = _RecordingLogger()
    monkeypatch.setattr(llm_provider_module, "LOGGER", recorder)
    provider = resolve_provider("gemni")
    assert isinstance(provider, MockLLMProvider)
    assert recorder.warnings == [
        ("llm_provider_unrecognized", {"requested": "gemni", "using": "mock"})
    ]


@pytest.mark.parametrize("name", ["mock", "MOCK", ""])
def test_resolve_provider_explicit_mock_is_silent(monkeypatch, name) -> None:
    recorder = _RecordingLogger()
    monkeypatch.setattr(llm_provider_module, "LOGGER", recorder)
    assert isinstance(resolve_provider(name), MockLLMProvider)
    assert recorder.warnings == []
