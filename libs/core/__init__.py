__all__ = [
    "models",
    "errors",
    "schema_catalog",
    "agent_registry",
    "prompts",
    "llm_provider",
    "result_parser",
    "dispatcher",
    "history",
    "logging",
]
