from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, List, Mapping

if TYPE_CHECKING:
    from .agent_registry import AgentTool

ToolInput = Mapping[str, Any]

TESTER_PERSONA = (
    "You are a senior software test engineer. You think in terms of risk, coverage, edge cases, "
    "automation strategy, and reproducibility. You write crisp, unambiguous steps, include clear "
    "pass/fail criteria, and annotate with priorities and tags. Prefer table or JSON outputs that "
    "tools can consume. Keep answers actionable and concise."
)

DEVELOPER_PERSONA = (
    "You are a senior software engineer. You reason about readability, correctness, performance, "
    "security, DX, scalability, and maintainability. You provide diffs or patches when possible, "
    "point out smells, and suggest pragmatic improvements with rationale. Prefer JSON structures "
    "that tools can consume."
)

PERSONAS = {
    "tester": TESTER_PERSONA,
    "developer": DEVELOPER_PERSONA,
}


def build_prompt(tool: "AgentTool", tool_input: ToolInput | None) -> str:
    # Lenient by contract: missing or malformed input never fails here.
    return tool.prompt(_as_mapping(tool_input))


def _as_mapping(tool_input: Any) -> ToolInput:
    if isinstance(tool_input, Mapping):
        return tool_input
    return {}


def _text(tool_input: ToolInput, key: str, default: str = "") -> str:
    value = tool_input.get(key)
    if value is None:
        return default
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return _compact_json(value)


def _text_or(tool_input: ToolInput, key: str, fallback: str) -> str:
    # Empty strings fall back too, not only missing keys.
    return _text(tool_input, key) or fallback


def _items(tool_input: ToolInput, key: str) -> List[Any]:
    value = tool_input.get(key)
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _joined(tool_input: ToolInput, key: str, separator: str) -> str:
    return separator.join(
        item if isinstance(item, str) else _compact_json(item) for item in _items(tool_input, key)
    )


def _json_items(tool_input: ToolInput, key: str) -> str:
    return _compact_json(_items(tool_input, key))


def _compact_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def case_generator_prompt(tool_input: ToolInput) -> str:
    return (
        f"Feature: {_text(tool_input, 'feature')}\n"
        f"Platform: {_text_or(tool_input, 'platform', 'unspecified')}\n"
        f"Requirements: {_joined(tool_input, 'requirements', '; ')}\n"
        f"Sample Data: {_joined(tool_input, 'data_samples', '; ')}\n\n"
        "Generate a comprehensive test suite with priorities (P0-P3), tags, clear steps, and "
        "acceptance criteria. Include negative cases and boundary values. Output JSON only."
    )


def script_generator_prompt(tool_input: ToolInput) -> str:
    return (
        f"Framework: {_text(tool_input, 'framework', 'Playwright')}\n"
        f"Language: {_text(tool_input, 'language', 'TypeScript')}\n"
        f"Base URL: {_text(tool_input, 'base_url')}\n"
        f"Test Cases: {_json_items(tool_input, 'cases')}\n"
        "Create page objects if helpful. Provide runnable files, minimal setup steps, and a single "
        "command to run. Output JSON only with files[].content containing code."
    )


def bug_reproduction_prompt(tool_input: ToolInput) -> str:
    return (
        f"Bug Report:\n{_text(tool_input, 'bug_report_text')}\n"
        f"Env:\n{_text(tool_input, 'env')}\n"
        f"Logs:\n{_text(tool_input, 'logs')}\n\n"
        "Produce a minimal reproducible example with exact steps, observed vs expected, suspected "
        "causes, and additional logs to capture. Output JSON only."
    )


def log_analyzer_prompt(tool_input: ToolInput) -> str:
    service_name = _text(tool_input, "service_name", "service")
    time_window = _text(tool_input, "time_window")
    return (
        f"Analyze logs for {service_name} {time_window}. Cluster similar errors, infer root causes, "
        "and propose next debugging steps and useful metrics. Logs:\n\n"
        f"{_text(tool_input, 'logs_text')}\n\n"
        "Output JSON only."
    )


def api_testing_prompt(tool_input: ToolInput) -> str:
    return (
        f"Base URL: {_text(tool_input, 'base_url')}\n"
        f"OpenAPI (optional): {_text(tool_input, 'openapi')}\n"
        f"Endpoints (optional): {_json_items(tool_input, 'endpoints')}\n"
        "Create an API test plan with schema/perf assertions and a runner snippet (for "
        "Postman/Newman or k6). Output JSON only."
    )


def suite_optimizer_prompt(tool_input: ToolInput) -> str:
    return (
        "Optimize the following test list. Mark duplicates, identify risk gaps, highlight "
        "high-value tests, suggest an execution order balancing risk and time, and give CI "
        "caching hints.\n"
        f"Existing: {_json_items(tool_input, 'existing_cases')}\n"
        f"Failures: {_json_items(tool_input, 'failure_history')}\n"
        f"Flaky: {_json_items(tool_input, 'flaky')}\n"
        "Output JSON only."
    )


def code_review_prompt(tool_input: ToolInput) -> str:
    return (
        f"Language: {_text(tool_input, 'language')}\n"
        f"Framework: {_text(tool_input, 'framework')}\n"
        f"Diff: {_text(tool_input, 'diff')}\n"
        f"Files: {_json_items(tool_input, 'files')}\n"
        "Perform a senior-level review. Return a concise summary, categorized findings, and "
        "unified diff patch if relevant. Output JSON only."
    )


def unit_test_generator_prompt(tool_input: ToolInput) -> str:
    return (
        "Generate unit tests for the following code. Cover edge cases and error paths. Return "
        "runnable files and a single test command.\n"
        f"Language: {_text(tool_input, 'language', 'TypeScript')}\n"
        f"Framework: {_text(tool_input, 'framework', 'Jest')}\n\n"
        f"CODE:\n{_text(tool_input, 'source_code')}\n\n"
        "Output JSON only."
    )


def bug_fix_prompt(tool_input: ToolInput) -> str:
    return (
        f"Context: {_text(tool_input, 'bug_context')}\n"
        f"Code:\n{_text(tool_input, 'code_fragment')}\n\n"
        "Provide diagnosis, a safe minimal patch, and list regression tests. Output JSON only."
    )


def refactoring_prompt(tool_input: ToolInput) -> str:
    return (
        f"Goals: {_joined(tool_input, 'goals', ', ')}\n"
        "Refactor the following code. Provide steps, a patch, and tradeoffs. Output JSON only.\n\n"
        f"CODE:\n{_text(tool_input, 'code_fragment')}"
    )


def design_prompt(tool_input: ToolInput) -> str:
    return (
        f"Problem: {_text(tool_input, 'problem')}\n"
        f"Constraints: {_joined(tool_input, 'constraints', ', ')}\n"
        f"Scale: {_text(tool_input, 'scale')}\n"
        "Produce a design one-pager with architecture, APIs, risks, and alternatives. "
        "Output JSON only."
    )


def stack_prompt(tool_input: ToolInput) -> str:
    return (
        f"Use-case: {_text(tool_input, 'use_case')}\n"
        f"Team skill: {_text(tool_input, 'team_skill')}\n"
        f"Constraints: {_text(tool_input, 'constraints')}\n"
        "Recommend a stack with rationale and migration notes. Output JSON only."
    )


def documentation_prompt(tool_input: ToolInput) -> str:
    return (
        f"Topic: {_text(tool_input, 'topic')}\n"
        f"Audience: {_text(tool_input, 'audience', 'Developers')}\n"
        f"Code Samples: {_json_items(tool_input, 'code_samples')}\n"
        "Generate structured docs with sections (title + body_md) and a ToC. Output JSON only."
    )
