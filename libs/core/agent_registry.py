from __future__ import annotations

from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Callable, Dict, Iterable, List, Mapping, Tuple

from . import logging as core_logging, prompts
from .errors import UnknownAgentError, UnknownToolError
from .models import AgentSummary, ToolSummary
from .schema_catalog import SchemaCatalog

PromptBuilder = Callable[[Mapping[str, Any]], str]

LOGGER = core_logging.get_logger("agents")


@dataclass(frozen=True)
class AgentTool:
    agent_key: str
    tool_key: str
    description: str
    persona: str
    schema_name: str
    prompt: PromptBuilder
    input_hints: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.agent_key or not isinstance(self.agent_key, str):
            raise ValueError("AgentTool agent_key must be a non-empty string")
        if not self.tool_key or not isinstance(self.tool_key, str):
            raise ValueError("AgentTool tool_key must be a non-empty string")
        if not self.schema_name:
            raise ValueError(f"AgentTool {self.key} must reference a schema")
        if not callable(self.prompt):
            raise TypeError(f"AgentTool {self.key} prompt must be callable")

    @property
    def key(self) -> str:
        return f"{self.agent_key}/{self.tool_key}"

    def summary(self) -> ToolSummary:
        return ToolSummary(
            tool=self.tool_key,
            description=self.description,
            input_hints=list(self.input_hints),
        )


@dataclass(frozen=True)
class AgentFamily:
    key: str
    persona: str


class AgentRegistry:
    def __init__(self) -> None:
        self._agents: Dict[str, AgentFamily] = {}
        self._tools: Dict[str, Dict[str, AgentTool]] = {}
        self._lock = RLock()

    def register_agent(self, key: str, persona: str) -> AgentFamily:
        name = (key or "").strip()
        if not name:
            raise ValueError("Agent key must be non-empty")
        with self._lock:
            if name in self._agents:
                raise ValueError(f"Agent already registered: {name}")
            family = AgentFamily(key=name, persona=persona)
            self._agents[name] = family
            self._tools[name] = {}
        return family

    def register_tool(
        self,
        agent_key: str,
        tool_key: str,
        *,
        description: str,
        schema_name: str,
        prompt: PromptBuilder,
        input_hints: Iterable[str] = (),
    ) -> AgentTool:
        with self._lock:
            family = self._agents.get(agent_key)
            if family is None:
                raise UnknownAgentError(agent_key)
            if tool_key in self._tools[agent_key]:
                raise ValueError(f"Tool already registered: {agent_key}/{tool_key}")
            tool = AgentTool(
                agent_key=agent_key,
                tool_key=tool_key,
                description=description,
                persona=family.persona,
                schema_name=schema_name,
                prompt=prompt,
                input_hints=tuple(input_hints),
            )
            self._tools[agent_key][tool_key] = tool
        return tool

    def resolve(self, agent_key: str, tool_key: str) -> AgentTool:
        tools = self._tools.get(agent_key)
        if tools is None:
            LOGGER.warning("agent_lookup_failed", agent=agent_key, available=self.agent_keys())
            raise UnknownAgentError(agent_key)
        tool = tools.get(tool_key)
        if tool is None:
            LOGGER.warning(
                "tool_lookup_failed", agent=agent_key, tool=tool_key, available=sorted(tools)
            )
            raise UnknownToolError(agent_key, tool_key)
        return tool

    def agent_keys(self) -> List[str]:
        return list(self._agents.keys())

    def list_tools(self) -> List[AgentTool]:
        return [tool for tools in self._tools.values() for tool in tools.values()]

    def describe(self) -> List[AgentSummary]:
        return [
            AgentSummary(agent=agent_key, tools=[tool.summary() for tool in tools.values()])
            for agent_key, tools in self._tools.items()
        ]

    def validate_schemas(self, catalog: SchemaCatalog) -> None:
        for tool in self.list_tools():
            catalog.get(tool.schema_name)


def _tester_tools(registry: AgentRegistry) -> None:
    registry.register_tool(
        "tester",
        "test_case_generator",
        description="Generate a test suite (happy + edge + negative) for a feature.",
        input_hints=["feature", "requirements[]", "platform", "data_samples[]"],
        schema_name="TestSuite",
        prompt=prompts.case_generator_prompt,
    )
    registry.register_tool(
        "tester",
        "test_script_generator",
        description="Produce ready-to-run automation test scripts (Playwright, Cypress, PyTest, etc.)",
        input_hints=["framework", "language", "cases[]", "base_url"],
        schema_name="TestScript",
        prompt=prompts.script_generator_prompt,
    )
    registry.register_tool(
        "tester",
        "bug_reproduction_agent",
        description="Turn fuzzy bug reports into precise, minimal repro steps and env matrix.",
        input_hints=["bug_report_text", "logs(optional)", "env"],
        schema_name="BugRepro",
        prompt=prompts.bug_reproduction_prompt,
    )
    registry.register_tool(
        "tester",
        "log_analyzer_agent",
        description="Summarize errors from text logs and suggest next steps and metrics.",
        input_hints=["logs_text", "service_name", "time_window"],
        schema_name="LogAnalysis",
        prompt=prompts.log_analyzer_prompt,
    )
    registry.register_tool(
        "tester",
        "api_testing_agent",
        description="Generate API test plan with positive/negative cases and runner snippet.",
        input_hints=["base_url", "openapi(optional)", "endpoints[]"],
        schema_name="APITestPlan",
        prompt=prompts.api_testing_prompt,
    )
    registry.register_tool(
        "tester",
        "test_optimizer",
        description="De-duplicate tests, fill risk gaps, and suggest execution order & CI hints.",
        input_hints=["existing_cases[]", "failure_history[]", "flaky[]"],
        schema_name="TestOptimization",
        prompt=prompts.suite_optimizer_prompt,
    )


def _developer_tools(registry: AgentRegistry) -> None:
    registry.register_tool(
        "developer",
        "code_review_agent",
        description=(
            "Static review for style, correctness, security, and performance. "
            "Emit suggestions and patch."
        ),
        input_hints=["diff|files[]", "language", "framework"],
        schema_name="CodeReview",
        prompt=prompts.code_review_prompt,
    )
    registry.register_tool(
        "developer",
        "unit_test_generator_agent",
        description="Create unit tests aiming for critical-path coverage with clear arrangement/act/assert.",
        input_hints=["source_code", "language", "framework"],
        schema_name="UnitTests",
        prompt=prompts.unit_test_generator_prompt,
    )
    registry.register_tool(
        "developer",
        "bug_fix_agent",
        description="Diagnose and propose a safe fix with a patch and regression tests.",
        input_hints=["bug_context", "code_fragment"],
        schema_name="BugFix",
        prompt=prompts.bug_fix_prompt,
    )
    registry.register_tool(
        "developer",
        "refactoring_agent",
        description="Refactor for readability, maintainability, and performance, with rationale.",
        input_hints=["code_fragment", "goals[]"],
        schema_name="RefactorPlan",
        prompt=prompts.refactoring_prompt,
    )
    registry.register_tool(
        "developer",
        "design_agent",
        description="High-level design doc with architecture, API specs, and risks.",
        input_hints=["problem", "constraints[]", "scale"],
        schema_name="DesignDoc",
        prompt=prompts.design_prompt,
    )
    registry.register_tool(
        "developer",
        "stack_agent",
        description="Recommend a pragmatic stack with rationale and migration notes.",
        input_hints=["use_case", "team_skill", "constraints"],
        schema_name="StackAdvice",
        prompt=prompts.stack_prompt,
    )
    registry.register_tool(
        "developer",
        "documentation_agent",
        description="Produce developer-facing documentation in Markdown sections with a ToC.",
        input_hints=["topic", "audience", "code_samples[]"],
        schema_name="Docs",
        prompt=prompts.documentation_prompt,
    )


def default_agent_registry(catalog: SchemaCatalog | None = None) -> AgentRegistry:
    registry = AgentRegistry()
    registry.register_agent("tester", prompts.TESTER_PERSONA)
    registry.register_agent("developer", prompts.DEVELOPER_PERSONA)
    _tester_tools(registry)
    _developer_tools(registry)
    if catalog is not None:
        registry.validate_schemas(catalog)
    LOGGER.info("agent_registry_ready", tools=len(registry.list_tools()))
    return registry
