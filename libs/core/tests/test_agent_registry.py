import pytest

from libs.core import prompts
from libs.core.agent_registry import AgentRegistry, AgentTool, default_agent_registry
from libs.core.errors import UnknownAgentError, UnknownSchemaError, UnknownToolError
from libs.core.schema_catalog import SchemaCatalog, default_schema_catalog

TESTER_TOOLS = [
    "test_case_generator",
    "test_script_generator",
    "bug_reproduction_agent",
    "log_analyzer_agent",
    "api_testing_agent",
    "test_optimizer",
]
DEVELOPER_TOOLS = [
    "code_review_agent",
    "unit_test_generator_agent",
    "bug_fix_agent",
    "refactoring_agent",
    "design_agent",
    "stack_agent",
    "documentation_agent",
]


def test_every_registered_tool_has_a_resolvable_schema() -> None:
    catalog = default_schema_catalog()
    registry = default_agent_registry(catalog)
    for tool in registry.list_tools():
        resolved = registry.resolve(tool.agent_key, tool.tool_key)
        schema = catalog.get(resolved.schema_name)
        assert schema["type"] == "object"


def test_default_registry_lists_both_families() -> None:
    registry = default_agent_registry()
    summaries = {summary.agent: summary for summary in registry.describe()}
    assert list(summaries) == ["tester", "developer"]
    assert [tool.tool for tool in summaries["tester"].tools] == TESTER_TOOLS
    assert [tool.tool for tool in summaries["developer"].tools] == DEVELOPER_TOOLS
    generator = summaries["tester"].tools[0]
    assert generator.input_hints == ["feature", "requirements[]", "platform", "data_samples[]"]
    assert "test suite" in generator.description


def test_tools_inherit_family_persona() -> None:
    registry = default_agent_registry()
    assert registry.resolve("tester", "test_optimizer").persona == prompts.TESTER_PERSONA
    assert registry.resolve("developer", "design_agent").persona == prompts.DEVELOPER_PERSONA


def test_resolve_unknown_agent_fails_closed() -> None:
    registry = default_agent_registry()
    with pytest.raises(UnknownAgentError) as excinfo:
        registry.resolve("nonexistent_agent", "x")
    assert excinfo.value.status_code == 404
    assert excinfo.value.error_code == "contract.agent_not_found"


def test_resolve_unknown_tool_fails_closed() -> None:
    registry = default_agent_registry()
    with pytest.raises(UnknownToolError) as excinfo:
        registry.resolve("tester", "nonexistent_tool")
    assert excinfo.value.tool_key == "nonexistent_tool"


def test_tool_under_other_family_is_unknown() -> None:
    registry = default_agent_registry()
    with pytest.raises(UnknownToolError):
        registry.resolve("developer", "test_case_generator")


def test_register_duplicate_tool_raises() -> None:
    registry = AgentRegistry()
    registry.register_agent("qa", "persona")
    registry.register_tool("qa", "t", description="d", schema_name="Docs", prompt=lambda _i: "p")
    with pytest.raises(ValueError, match="already registered"):
        registry.register_tool("qa", "t", description="d", schema_name="Docs", prompt=lambda _i: "p")


def test_register_tool_for_unknown_agent_raises() -> None:
    registry = AgentRegistry()
    with pytest.raises(UnknownAgentError):
        registry.register_tool("ghost", "t", description="d", schema_name="Docs", prompt=lambda _i: "")


def test_register_duplicate_agent_raises() -> None:
    registry = AgentRegistry()
    registry.register_agent("qa", "persona")
    with pytest.raises(ValueError):
        registry.register_agent(" qa ", "persona")


def test_validate_schemas_reports_dangling_reference() -> None:
    registry = AgentRegistry()
    registry.register_agent("qa", "persona")
    registry.register_tool("qa", "t", description="d", schema_name="Missing", prompt=lambda _i: "")
    with pytest.raises(UnknownSchemaError):
        registry.validate_schemas(SchemaCatalog())


def test_agent_tool_is_immutable() -> None:
    tool = default_agent_registry().resolve("tester", "test_case_generator")
    with pytest.raises(Exception):
        tool.persona = "changed"  # type: ignore[misc]


def test_agent_tool_rejects_empty_keys() -> None:
    with pytest.raises(ValueError):
        AgentTool(
            agent_key="",
            tool_key="t",
            description="d",
            persona="p",
            schema_name="Docs",
            prompt=lambda _i: "",
        )
