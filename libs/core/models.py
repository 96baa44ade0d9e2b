from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, Field


class ResponseFormat(str, Enum):
    json = "json"


class GenerationOptions(BaseModel):
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    max_output_tokens: int = Field(default=1200, gt=0)
    response_format: ResponseFormat = ResponseFormat.json


class AgentRequest(BaseModel):
    agent_key: str = Field(min_length=1)
    tool_key: str = Field(min_length=1)
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolRunRequest(BaseModel):
    input: Dict[str, Any] | None = None


class HistoryEntry(BaseModel):
    agent: str
    tool: str
    prompt: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ToolSummary(BaseModel):
    tool: str
    description: str
    input_hints: List[str] = Field(default_factory=list)


class AgentSummary(BaseModel):
    agent: str
    tools: List[ToolSummary] = Field(default_factory=list)


class ApiEnvelope(BaseModel):
    success: bool = True
    message: str = ""
    data: Any = None
