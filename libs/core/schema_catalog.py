from __future__ import annotations

from copy import deepcopy
from threading import RLock
from typing import Any, Dict, Iterable, List, Tuple

from jsonschema import Draft202012Validator

from .errors import UnknownSchemaError

SchemaNode = Dict[str, Any]

_REF_KEY = "$ref"
_ALLOWED_TYPES = {"object", "array", "string"}


def schema_ref(name: str) -> SchemaNode:
    """Placeholder node substituted by the named catalog entry on lookup."""
    return {_REF_KEY: name}


def string_schema() -> SchemaNode:
    return {"type": "string"}


def enum_schema(values: Iterable[str]) -> SchemaNode:
    return {"type": "string", "enum": list(values)}


def array_schema(items: SchemaNode) -> SchemaNode:
    return {"type": "array", "items": items}


def string_list() -> SchemaNode:
    return array_schema(string_schema())


def object_schema(properties: Dict[str, SchemaNode], required: Iterable[str] = ()) -> SchemaNode:
    node: SchemaNode = {"type": "object", "properties": dict(properties)}
    required_list = list(required)
    if required_list:
        node["required"] = required_list
    return node


class SchemaCatalog:
    def __init__(self) -> None:
        self._schemas: Dict[str, SchemaNode] = {}
        self._resolved: Dict[str, SchemaNode] = {}
        self._validators: Dict[str, Draft202012Validator] = {}
        self._lock = RLock()

    def register(self, name: str, schema: SchemaNode) -> None:
        key = (name or "").strip()
        if not key:
            raise ValueError("Schema name must be non-empty")
        _check_node(schema, key)
        with self._lock:
            if key in self._schemas:
                raise ValueError(f"Schema already registered: {key}")
            self._schemas[key] = deepcopy(schema)
            self._resolved.clear()
            self._validators.clear()

    def has(self, name: str) -> bool:
        return name in self._schemas

    def names(self) -> List[str]:
        return list(self._schemas.keys())

    def get(self, name: str) -> SchemaNode:
        return deepcopy(self._resolved_schema(name))

    def validator(self, name: str) -> Draft202012Validator:
        cached = self._validators.get(name)
        if cached is not None:
            return cached
        with self._lock:
            if name not in self._validators:
                self._validators[name] = Draft202012Validator(self._resolved_schema(name))
            return self._validators[name]

    def _resolved_schema(self, name: str) -> SchemaNode:
        # Resolved once per name; callers outside the catalog only ever see copies.
        cached = self._resolved.get(name)
        if cached is not None:
            return cached
        with self._lock:
            if name not in self._schemas:
                raise UnknownSchemaError(name)
            if name not in self._resolved:
                self._resolved[name] = self.resolve(self._schemas[name], _stack=(name,))
            return self._resolved[name]

    def resolve(self, schema: SchemaNode, _stack: Tuple[str, ...] = ()) -> SchemaNode:
        # Returns a fresh copy; registered nodes are never handed out directly.
        return self._substitute(schema, _stack)

    def validate(self, name: str, value: Any) -> List[str]:
        errors = sorted(
            self.validator(name).iter_errors(value),
            key=lambda err: [str(part) for part in err.path],
        )
        return [f"{'/'.join(map(str, err.path)) or '<root>'}: {err.message}" for err in errors]

    def _substitute(self, node: Any, stack: Tuple[str, ...]) -> Any:
        if isinstance(node, list):
            return [self._substitute(item, stack) for item in node]
        if not isinstance(node, dict):
            return node
        if _REF_KEY in node and isinstance(node[_REF_KEY], str):
            ref_name = node[_REF_KEY]
            if ref_name in stack:
                raise UnknownSchemaError(f"cyclic:{'->'.join(stack + (ref_name,))}")
            if ref_name not in self._schemas:
                raise UnknownSchemaError(ref_name)
            return self._substitute(self._schemas[ref_name], stack + (ref_name,))
        resolved: Dict[str, Any] = {}
        for key, value in node.items():
            if key == "definitions" and isinstance(value, dict):
                resolved[key] = self._fill_definitions(value, stack)
            else:
                resolved[key] = self._substitute(value, stack)
        return resolved

    def _fill_definitions(self, definitions: Dict[str, Any], stack: Tuple[str, ...]) -> Dict[str, Any]:
        filled: Dict[str, Any] = {}
        for def_name, value in definitions.items():
            if value is None:
                if def_name not in self._schemas:
                    raise UnknownSchemaError(def_name)
                filled[def_name] = self._substitute(self._schemas[def_name], stack + (def_name,))
            else:
                filled[def_name] = self._substitute(value, stack)
        return filled


def _check_node(node: Any, path: str) -> None:
    if not isinstance(node, dict):
        raise ValueError(f"{path}: schema node must be an object")
    if _REF_KEY in node:
        return
    node_type = node.get("type")
    if node_type not in _ALLOWED_TYPES:
        raise ValueError(f"{path}: unsupported schema type {node_type!r}")
    if node_type == "string" and "enum" in node:
        values = node["enum"]
        if not isinstance(values, list) or not values or not all(isinstance(v, str) for v in values):
            raise ValueError(f"{path}: enum must be a non-empty list of strings")
    elif node_type == "array":
        _check_node(node.get("items"), f"{path}[]")
    elif node_type == "object":
        properties = node.get("properties", {})
        if not isinstance(properties, dict):
            raise ValueError(f"{path}: properties must be an object")
        missing = [field for field in node.get("required", []) if field not in properties]
        if missing:
            raise ValueError(f"{path}: required fields not declared: {','.join(missing)}")
        for field_name, child in properties.items():
            _check_node(child, f"{path}.{field_name}")
        definitions = node.get("definitions")
        if isinstance(definitions, dict):
            for def_name, child in definitions.items():
                if child is not None:
                    _check_node(child, f"{path}#{def_name}")


_PRIORITIES = ("P0", "P1", "P2", "P3")

DEFAULT_SCHEMAS: Dict[str, SchemaNode] = {
    "TestCase": object_schema(
        {
            "id": string_schema(),
            "title": string_schema(),
            "priority": enum_schema(_PRIORITIES),
            "tags": string_list(),
            "steps": string_list(),
            "expected": string_schema(),
        },
        required=["id", "title", "priority", "steps", "expected"],
    ),
    "TestSuite": object_schema(
        {
            "feature": string_schema(),
            "scope": string_schema(),
            "risk_notes": string_schema(),
            "cases": array_schema(schema_ref("TestCase")),
        },
        required=["feature", "cases"],
    ),
    "TestScript": object_schema(
        {
            "title": string_schema(),
            "setup": string_schema(),
            "actions": string_list(),
            "expected": string_schema(),
        },
        required=["title", "actions", "expected"],
    ),
    "BugRepro": object_schema(
        {
            "bug": string_schema(),
            "environment": string_schema(),
            "repro_steps": string_list(),
            "expected": string_schema(),
            "actual": string_schema(),
            "notes": string_schema(),
        },
        required=["bug", "repro_steps", "expected", "actual"],
    ),
    "LogAnalysis": object_schema(
        {
            "issue": string_schema(),
            "suspected_causes": string_list(),
            "anomalies": string_list(),
            "recommended_fixes": string_list(),
        },
        required=["issue", "suspected_causes"],
    ),
    "APITestPlan": object_schema(
        {
            "endpoint": string_schema(),
            "methods": string_list(),
            "positive": string_list(),
            "negative": string_list(),
            "edge": string_list(),
        },
        required=["endpoint", "methods"],
    ),
    "TestOptimization": object_schema(
        {
            "redundant": string_list(),
            "missing": string_list(),
            "risky_areas": string_list(),
            "recommended_additions": string_list(),
        }
    ),
    "CodeReview": object_schema(
        {
            "summary": string_schema(),
            "positives": string_list(),
            "issues": string_list(),
            "suggestions": string_list(),
            "security_notes": string_list(),
        }
    ),
    "UnitTests": object_schema(
        {
            "function": string_schema(),
            "language": string_schema(),
            "framework": string_schema(),
            "tests": string_list(),
        },
        required=["function", "language", "tests"],
    ),
    "BugFix": object_schema(
        {
            "bug": string_schema(),
            "root_cause": string_schema(),
            "patch": string_schema(),
            "test_cases": string_list(),
        },
        required=["bug", "root_cause", "patch"],
    ),
    "RefactorPlan": object_schema(
        {
            "scope": string_schema(),
            "motivations": string_list(),
            "steps": string_list(),
            "risks": string_list(),
        },
        required=["scope", "steps"],
    ),
    "DesignDoc": object_schema(
        {
            "title": string_schema(),
            "problem": string_schema(),
            "goals": string_list(),
            "non_goals": string_list(),
            "approach": string_schema(),
            "tradeoffs": string_schema(),
            "diagrams": string_list(),
        },
        required=["title", "problem", "approach"],
    ),
    "StackAdvice": object_schema(
        {
            "current_stack": string_list(),
            "requirements": string_list(),
            "pain_points": string_list(),
            "recommendations": string_list(),
        }
    ),
    "Docs": object_schema(
        {
            "component": string_schema(),
            "usage": string_schema(),
            "examples": string_list(),
            "faq": string_list(),
            "references": string_list(),
        },
        required=["component", "usage"],
    ),
}


def default_schema_catalog(extra: Dict[str, SchemaNode] | None = None) -> SchemaCatalog:
    catalog = SchemaCatalog()
    for name, schema in DEFAULT_SCHEMAS.items():
        catalog.register(name, schema)
    if extra:
        for name, schema in extra.items():
            catalog.register(name, schema)
    return catalog
