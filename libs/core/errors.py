from __future__ import annotations

from typing import Optional


class AgentError(Exception):
    status_code = 500
    error_code = "runtime.agent_error"

    def __init__(self, detail: str, status_code: Optional[int] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class UnknownAgentError(AgentError):
    status_code = 404
    error_code = "contract.agent_not_found"

    def __init__(self, agent_key: str) -> None:
        super().__init__(f"unknown_agent:{agent_key}")
        self.agent_key = agent_key


class UnknownToolError(AgentError):
    status_code = 404
    error_code = "contract.tool_not_found"

    def __init__(self, agent_key: str, tool_key: str) -> None:
        super().__init__(f"unknown_tool:{agent_key}/{tool_key}")
        self.agent_key = agent_key
        self.tool_key = tool_key


class UnknownSchemaError(AgentError):
    # Raised while wiring the registry at startup, not per request.
    error_code = "contract.schema_not_found"

    def __init__(self, name: str) -> None:
        super().__init__(f"schema_not_found:{name}")
        self.name = name


class ProviderError(AgentError):
    status_code = 502
    error_code = "runtime.provider_error"

    def __init__(self, detail: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(detail)
        self.cause = cause


class ParseError(AgentError):
    error_code = "contract.output_invalid"

    def __init__(self, stage: str, raw_text: str = "", detail: Optional[str] = None) -> None:
        super().__init__(detail or f"invalid_json:{stage}")
        self.stage = stage
        self.raw_text = raw_text
