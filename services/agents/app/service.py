from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Dict, Mapping

from libs.core import llm_provider, logging as core_logging
from libs.core.agent_registry import default_agent_registry
from libs.core.dispatcher import AgentDispatcher
from libs.core.history import (
    DEFAULT_HISTORY_MAX_ENTRIES,
    DEFAULT_HISTORY_TTL_S,
    HistoryStoreError,
    RedisAgentHistory,
)
from libs.core.models import AgentRequest, GenerationOptions, HistoryEntry
from libs.core.schema_catalog import default_schema_catalog

_DEFAULT_TEMPERATURE = 0.3
_DEFAULT_MAX_OUTPUT_TOKENS = 1200
_DEFAULT_LLM_TIMEOUT_S = 30.0
LOGGER = core_logging.get_logger("agents")


def _parse_optional_float(value: str | None) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_optional_int(value: str | None) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def create_provider_from_env() -> llm_provider.LLMProvider:
    name = os.getenv("LLM_PROVIDER", "mock").strip().lower()
    timeout_s = _parse_optional_float(os.getenv("AGENT_LLM_TIMEOUT_S")) or _DEFAULT_LLM_TIMEOUT_S
    max_retries = _parse_optional_int(os.getenv("AGENT_LLM_MAX_RETRIES")) or 0
    if name == "gemini":
        return llm_provider.resolve_provider(
            name,
            api_key=os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY", ""),
            model=os.getenv("GEMINI_MODEL", llm_provider.DEFAULT_GEMINI_MODEL),
            base_url=os.getenv("GEMINI_BASE_URL", llm_provider.DEFAULT_GEMINI_BASE_URL),
            timeout_s=timeout_s,
            max_retries=max_retries,
        )
    return llm_provider.resolve_provider(
        name,
        api_key=os.getenv("OPENAI_API_KEY", ""),
        model=os.getenv("OPENAI_MODEL", ""),
        base_url=os.getenv("OPENAI_BASE_URL", llm_provider.DEFAULT_OPENAI_BASE_URL),
        timeout_s=timeout_s,
        max_retries=max_retries,
    )


def generation_options_from_env() -> GenerationOptions:
    temperature = _parse_optional_float(os.getenv("AGENT_TEMPERATURE"))
    max_tokens = _parse_optional_int(os.getenv("AGENT_MAX_OUTPUT_TOKENS"))
    return GenerationOptions(
        temperature=_DEFAULT_TEMPERATURE if temperature is None else temperature,
        max_output_tokens=max_tokens or _DEFAULT_MAX_OUTPUT_TOKENS,
    )


def create_dispatcher_from_env(provider: llm_provider.LLMProvider | None = None) -> AgentDispatcher:
    catalog = default_schema_catalog()
    # Dangling schema references fail here, at startup.
    registry = default_agent_registry(catalog)
    return AgentDispatcher(
        registry=registry,
        catalog=catalog,
        provider=provider or create_provider_from_env(),
        options=generation_options_from_env(),
        validate_output=_parse_bool(os.getenv("AGENT_VALIDATE_OUTPUT")),
    )


def create_history_from_env() -> RedisAgentHistory:
    ttl_s = _parse_optional_int(os.getenv("AGENT_HISTORY_TTL_S")) or DEFAULT_HISTORY_TTL_S
    max_entries = _parse_optional_int(os.getenv("AGENT_HISTORY_MAX_ENTRIES"))
    return RedisAgentHistory.from_url(
        os.getenv("REDIS_URL", "redis://redis:6379/0"),
        ttl_seconds=ttl_s,
        max_entries=max_entries if max_entries is not None else DEFAULT_HISTORY_MAX_ENTRIES,
    )


def run_agent_tool(
    dispatcher: AgentDispatcher,
    history: RedisAgentHistory,
    *,
    username: str,
    agent_key: str,
    tool_key: str,
    tool_input: Mapping[str, Any] | None,
) -> Any:
    request = AgentRequest(agent_key=agent_key, tool_key=tool_key, input=dict(tool_input or {}))
    result = dispatcher.run(request)
    entry = HistoryEntry(
        agent=request.agent_key,
        tool=request.tool_key,
        prompt=request.input,
        result=result,
        timestamp=datetime.now(timezone.utc),
    )
    try:
        history.record(username, entry)
    except HistoryStoreError as exc:
        # The tool already ran; a history outage does not fail the request.
        LOGGER.error("agent_history_write_failed", user=username, error=str(exc))
    return result


def describe_provider(provider: llm_provider.LLMProvider) -> Dict[str, str]:
    return {"llm_provider": provider.name, "model": provider.model}
