from __future__ import annotations

from time import perf_counter
from typing import Any, Mapping, Optional

from . import logging as core_logging
from .agent_registry import AgentRegistry, AgentTool
from .errors import AgentError, ParseError, ProviderError
from .llm_provider import LLMProvider
from .models import AgentRequest, GenerationOptions
from .prompts import build_prompt
from .result_parser import parse_result
from .schema_catalog import SchemaCatalog

LOGGER = core_logging.get_logger("agents")


class AgentDispatcher:
    """Runs one (agent, tool) request: lookup, prompt, model call, parse.

    Holds only read-only collaborators, so a single instance serves any number
    of concurrent requests. Failures propagate as ``AgentError`` subclasses;
    nothing is retried here.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        catalog: SchemaCatalog,
        provider: LLMProvider,
        options: Optional[GenerationOptions] = None,
        validate_output: bool = False,
    ) -> None:
        self.registry = registry
        self.catalog = catalog
        self.provider = provider
        self.options = options or GenerationOptions()
        self.validate_output = validate_output

    def dispatch(self, agent_key: str, tool_key: str, tool_input: Mapping[str, Any] | None) -> Any:
        started = perf_counter()
        log = LOGGER.bind(agent=agent_key, tool=tool_key)
        log.info("agent_dispatch_started", provider=self.provider.name)
        try:
            tool = self.registry.resolve(agent_key, tool_key)
            schema = self.catalog.get(tool.schema_name)
            prompt = build_prompt(tool, tool_input)
            raw_text = self._invoke(tool, prompt, schema)
            log.debug("agent_raw_output", raw_text=core_logging.truncate(raw_text))
            result = parse_result(raw_text)
            self._check_schema(tool, result, raw_text, log)
        except AgentError as exc:
            log.warning(
                "agent_dispatch_failed",
                error_code=exc.error_code,
                error=exc.detail,
                latency_ms=int((perf_counter() - started) * 1000),
            )
            raise
        core_logging.log_event(
            log,
            "agent_dispatch_completed",
            {"latency_ms": int((perf_counter() - started) * 1000)},
        )
        return result

    def run(self, request: AgentRequest) -> Any:
        return self.dispatch(request.agent_key, request.tool_key, request.input)

    def _invoke(self, tool: AgentTool, prompt: str, schema: dict) -> str:
        try:
            response = self.provider.generate(tool.persona, prompt, schema, self.options)
        except ProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ProviderError(f"provider_failure:{exc}", cause=exc) from exc
        content = getattr(response, "content", None)
        if not isinstance(content, str):
            raise ProviderError("Model did not return a valid response")
        return content.strip()

    def _check_schema(self, tool: AgentTool, result: Any, raw_text: str, log: Any) -> None:
        errors = self.catalog.validate(tool.schema_name, result)
        if not errors:
            return
        if self.validate_output:
            raise ParseError(
                "schema",
                raw_text,
                detail=f"output schema validation failed: {'; '.join(errors[:5])}",
            )
        log.warning("agent_output_schema_mismatch", errors=errors[:5])
