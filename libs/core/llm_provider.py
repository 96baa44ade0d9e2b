from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from . import logging as core_logging
from .errors import ProviderError
from .models import GenerationOptions

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com"

LOGGER = core_logging.get_logger("agents")


@dataclass
class LLMResponse:
    content: str


class LLMProvider:
    name = "base"
    model = ""

    def generate(
        self,
        system_prompt: str,
        prompt: str,
        schema: Optional[Dict[str, Any]] = None,
        options: Optional[GenerationOptions] = None,
    ) -> LLMResponse:  # pragma: no cover - interface
        raise NotImplementedError


class MockLLMProvider(LLMProvider):
    name = "mock"
    model = "mock"

    def __init__(self, content: str = "{}") -> None:
        self.content = content

    def generate(
        self,
        system_prompt: str,
        prompt: str,
        schema: Optional[Dict[str, Any]] = None,
        options: Optional[GenerationOptions] = None,
    ) -> LLMResponse:
        return LLMResponse(content=self.content)


class _HTTPProvider(LLMProvider):
    def __init__(self, api_key: str, model: str, base_url: str, timeout_s: float, max_retries: int) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max_retries

    def _post_json(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        attempts = self.max_retries + 1
        attempt = 0
        while attempt < attempts:
            request = Request(
                url,
                data=json.dumps(payload).encode("utf-8"),
                headers={"Content-Type": "application/json", **headers},
                method="POST",
            )
            try:
                with urlopen(request, timeout=self.timeout_s) as response:
                    body = response.read().decode("utf-8")
            except HTTPError as exc:
                detail = exc.read().decode("utf-8") if exc.fp else str(exc)
                if exc.code in _RETRYABLE_STATUS and attempt < attempts - 1:
                    time.sleep(min(2**attempt, 8))
                    attempt += 1
                    continue
                raise ProviderError(f"{self.name} API error {exc.code}: {detail}", cause=exc) from exc
            except (URLError, TimeoutError) as exc:
                if attempt < attempts - 1:
                    time.sleep(min(2**attempt, 8))
                    attempt += 1
                    continue
                raise ProviderError(f"{self.name} API connection error: {exc}", cause=exc) from exc
            try:
                data = json.loads(body)
            except json.JSONDecodeError as exc:
                raise ProviderError(f"{self.name} API returned a malformed envelope", cause=exc) from exc
            if not isinstance(data, dict):
                raise ProviderError(f"{self.name} API returned a malformed envelope")
            return data
        raise ProviderError(f"{self.name} API request failed after retries")


class GeminiProvider(_HTTPProvider):
    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_GEMINI_MODEL,
        base_url: str = DEFAULT_GEMINI_BASE_URL,
        timeout_s: float = 30.0,
        max_retries: int = 0,
    ) -> None:
        super().__init__(api_key, model, base_url, timeout_s, max_retries)

    def generate(
        self,
        system_prompt: str,
        prompt: str,
        schema: Optional[Dict[str, Any]] = None,
        options: Optional[GenerationOptions] = None,
    ) -> LLMResponse:
        options = options or GenerationOptions()
        generation_config: Dict[str, Any] = {
            "temperature": options.temperature,
            "maxOutputTokens": options.max_output_tokens,
            "responseMimeType": "application/json",
        }
        if schema:
            generation_config["responseSchema"] = _strip_definitions(schema)
        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        url = f"{self.base_url}/v1beta/models/{quote(self.model, safe='')}:generateContent"
        data = self._post_json(url, payload, {"x-goog-api-key": self.api_key})
        text = _extract_gemini_text(data)
        if not text:
            raise ProviderError("Model did not return a valid response")
        return LLMResponse(content=text)


class OpenAIProvider(_HTTPProvider):
    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = DEFAULT_OPENAI_BASE_URL,
        timeout_s: float = 30.0,
        max_retries: int = 0,
    ) -> None:
        super().__init__(api_key, model, base_url, timeout_s, max_retries)

    def generate(
        self,
        system_prompt: str,
        prompt: str,
        schema: Optional[Dict[str, Any]] = None,
        options: Optional[GenerationOptions] = None,
    ) -> LLMResponse:
        options = options or GenerationOptions()
        payload: Dict[str, Any] = {
            "model": self.model,
            "input": prompt,
            "max_output_tokens": options.max_output_tokens,
        }
        if system_prompt:
            payload["instructions"] = system_prompt
        if _model_supports_temperature(self.model):
            payload["temperature"] = options.temperature
        if schema:
            payload["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": "tool_output",
                    "schema": _strip_definitions(schema),
                    "strict": False,
                }
            }
        else:
            payload["text"] = {"format": {"type": "json_object"}}
        url = f"{self.base_url}/v1/responses"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            data = self._post_json(url, payload, headers)
        except ProviderError as exc:
            if "temperature" not in payload or not _is_unsupported_temperature_error(exc.detail):
                raise
            payload.pop("temperature", None)
            data = self._post_json(url, payload, headers)
        text = _extract_output_text(data)
        if not text:
            raise ProviderError("OpenAI API returned empty output")
        return LLMResponse(content=text)


def resolve_provider(
    provider_name: str,
    *,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout_s: Optional[float] = None,
    max_retries: Optional[int] = None,
) -> LLMProvider:
    name = (provider_name or "mock").lower()
    if name == "gemini":
        if not api_key:
            raise ValueError("GEMINI_API_KEY is required when LLM_PROVIDER=gemini")
        return GeminiProvider(
            api_key=api_key,
            model=model or DEFAULT_GEMINI_MODEL,
            base_url=base_url or DEFAULT_GEMINI_BASE_URL,
            timeout_s=timeout_s or 30.0,
            max_retries=max_retries or 0,
        )
    if name == "openai":
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required when LLM_PROVIDER=openai")
        if not model:
            raise ValueError("OPENAI_MODEL is required when LLM_PROVIDER=openai")
        return OpenAIProvider(
            api_key=api_key,
            model=model,
            base_url=base_url or DEFAULT_OPENAI_BASE_URL,
            timeout_s=timeout_s or 30.0,
            max_retries=max_retries or 0,
        )
    if name != "mock":
        LOGGER.warning("llm_provider_unrecognized", requested=provider_name, using="mock")
    return MockLLMProvider()


def _extract_gemini_text(response: Dict[str, Any]) -> str:
    candidates = response.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        feedback = response.get("promptFeedback") or {}
        reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        if reason:
            raise ProviderError(f"Gemini blocked the prompt: {reason}")
        return ""
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    if not isinstance(content, dict):
        return ""
    parts: List[str] = []
    for part in content.get("parts", []):
        if isinstance(part, dict) and isinstance(part.get("text"), str):
            parts.append(part["text"])
    return "".join(parts).strip()


def _extract_output_text(response: Dict[str, Any]) -> str:
    parts: list[str] = []
    for item in response.get("output", []):
        if item.get("type") != "message":
            continue
        for content in item.get("content", []):
            if content.get("type") == "output_text":
                parts.append(content.get("text", ""))
    return "".join(parts).strip()


def _strip_definitions(schema: Dict[str, Any]) -> Dict[str, Any]:
    # Vendors reject the catalog's inline definitions block once it has been resolved.
    return {key: value for key, value in schema.items() if key != "definitions"}


def _model_supports_temperature(model: str) -> bool:
    normalized = (model or "").strip().lower()
    # GPT-5 responses currently reject temperature.
    return not normalized.startswith("gpt-5")


def _is_unsupported_temperature_error(detail: str) -> bool:
    lowered = (detail or "").lower()
    return "unsupported parameter" in lowered and "temperature" in lowered
