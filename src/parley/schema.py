"""Tool schema normalization and per-backend conversion.

Tools arrive in whatever shape the tool layer declares them: a mapping with
``input_schema`` (canonical) or the legacy ``parameters`` key, an object with
those attributes, or a pydantic model class standing in for the schema. They
leave as one of three wire shapes:

* OpenAI: ``{"type": "function", "function": {name, description, parameters}}``
* Anthropic: ``{name, description, input_schema}``
* Gemini: ``{name, description, parameters}`` with upper-cased ``type`` tokens
  and no ``additionalProperties`` anywhere in the tree.

Every converter is pure and preserves the order of tools and properties.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel

from parley.errors import SchemaError
from parley.providers.models import ToolSchema

__all__ = [
    "SchemaAdapter",
    "convert_to_anthropic",
    "convert_to_gemini",
    "convert_to_openai",
    "normalize",
    "normalize_all",
    "to_anthropic",
    "to_gemini",
    "to_openai",
]


def _get(tool: Any, key: str) -> Any:
    if isinstance(tool, Mapping):
        return tool.get(key)
    return getattr(tool, key, None)


def _coerce_schema(name: str, schema: Any) -> dict[str, Any]:
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        schema = schema.model_json_schema()
    if not isinstance(schema, Mapping) or not schema:
        raise SchemaError(
            f"Tool {name!r} has an empty or invalid schema",
            hint="Provide a JSON object schema with 'type': 'object'.",
        )
    schema_type = schema.get("type", "object")
    if schema_type != "object":
        raise SchemaError(
            f"Tool {name!r} schema must describe an object, got type={schema_type!r}",
            hint="Wrap the arguments in an object schema with 'properties'.",
        )
    normalized = dict(schema)
    normalized.setdefault("type", "object")
    normalized.setdefault("properties", {})
    return normalized


def normalize(tool: Any) -> ToolSchema:
    """Return the canonical form of *tool*, accepting either schema key."""
    if isinstance(tool, ToolSchema):
        return tool

    name = _get(tool, "name")
    if not isinstance(name, str) or not name.strip():
        raise SchemaError(
            "Tool definition is missing a name",
            hint="Every tool needs a non-empty 'name'.",
        )

    schema = _get(tool, "input_schema")
    if schema is None:
        schema = _get(tool, "parameters")
    if schema is None:
        raise SchemaError(
            f"Tool {name!r} has neither input_schema nor parameters",
            hint="Declare the tool arguments under 'input_schema'.",
        )

    description = _get(tool, "description")
    return ToolSchema(
        name=name,
        description=description if isinstance(description, str) else "",
        input_schema=_coerce_schema(name, schema),
    )


def normalize_all(tools: Iterable[Any]) -> list[ToolSchema]:
    """Normalize a batch of tools, rejecting duplicate names."""
    normalized: list[ToolSchema] = []
    seen: set[str] = set()
    for tool in tools:
        schema = normalize(tool)
        if schema.name in seen:
            raise SchemaError(
                f"Duplicate tool name: {schema.name!r}",
                hint="Tool names must be unique within one request.",
            )
        seen.add(schema.name)
        normalized.append(schema)
    return normalized


def to_openai(tool: Any) -> dict[str, Any]:
    schema = normalize(tool)
    return {
        "type": "function",
        "function": {
            "name": schema.name,
            "description": schema.description,
            "parameters": schema.input_schema,
        },
    }


def to_anthropic(tool: Any) -> dict[str, Any]:
    schema = normalize(tool)
    wire: dict[str, Any] = {
        "name": schema.name,
        "description": schema.description,
        "input_schema": schema.input_schema,
    }
    if schema.cache_control is not None:
        wire["cache_control"] = schema.cache_control.to_wire()
    return wire


_DEFS_KEYS = ("$defs", "definitions")


def _inline_refs(node: Any, defs: Mapping[str, Any], resolving: tuple[str, ...] = ()) -> Any:
    """Replace local ``$ref`` pointers with the definitions they name.

    Pydantic emits ``$defs``/``$ref`` for nested models and Gemini function
    declarations accept neither. A recursive reference is cut to a bare
    object schema.
    """
    if isinstance(node, list):
        return [_inline_refs(item, defs, resolving) for item in node]
    if not isinstance(node, Mapping):
        return node

    ref = node.get("$ref")
    if isinstance(ref, str):
        name = ref.rsplit("/", 1)[-1]
        if name in resolving or name not in defs:
            return {"type": "object"}
        resolved = dict(_inline_refs(defs[name], defs, (*resolving, name)))
        for key, value in node.items():
            if key != "$ref":
                resolved[key] = _inline_refs(value, defs, resolving)
        return resolved
    return {key: _inline_refs(value, defs, resolving) for key, value in node.items()}


def _self_contained(schema: Mapping[str, Any]) -> dict[str, Any]:
    defs: dict[str, Any] = {}
    for key in _DEFS_KEYS:
        if isinstance(schema.get(key), Mapping):
            defs.update(schema[key])
    body = {k: v for k, v in schema.items() if k not in _DEFS_KEYS}
    return _inline_refs(body, defs) if defs else body


def _gemini_schema(node: Any) -> Any:
    """Upper-case ``type`` tokens and drop ``additionalProperties`` recursively."""
    if isinstance(node, list):
        return [_gemini_schema(item) for item in node]
    if not isinstance(node, Mapping):
        return node

    converted: dict[str, Any] = {}
    for key, value in node.items():
        if key == "additionalProperties":
            continue
        if key == "type":
            if isinstance(value, str):
                converted[key] = value.upper()
            elif isinstance(value, list):
                converted[key] = [
                    v.upper() if isinstance(v, str) else v for v in value
                ]
            else:
                converted[key] = value
        elif key == "properties" and isinstance(value, Mapping):
            # Property names are user data; only their schemas are rewritten.
            converted[key] = {
                prop: _gemini_schema(prop_schema) for prop, prop_schema in value.items()
            }
        else:
            converted[key] = _gemini_schema(value)
    return converted


def to_gemini(tool: Any) -> dict[str, Any]:
    schema = normalize(tool)
    return {
        "name": schema.name,
        "description": schema.description,
        "parameters": _gemini_schema(_self_contained(schema.input_schema)),
    }


def convert_to_openai(tools: Iterable[Any]) -> list[dict[str, Any]]:
    return [to_openai(t) for t in normalize_all(tools)]


def convert_to_anthropic(tools: Iterable[Any]) -> list[dict[str, Any]]:
    return [to_anthropic(t) for t in normalize_all(tools)]


def convert_to_gemini(tools: Iterable[Any]) -> list[dict[str, Any]]:
    return [to_gemini(t) for t in normalize_all(tools)]


class SchemaAdapter:
    """Namespace bundling the schema converters for adapters and tests."""

    normalize = staticmethod(normalize)
    normalize_all = staticmethod(normalize_all)
    to_openai = staticmethod(to_openai)
    to_anthropic = staticmethod(to_anthropic)
    to_gemini = staticmethod(to_gemini)
    convert_to_openai = staticmethod(convert_to_openai)
    convert_to_anthropic = staticmethod(convert_to_anthropic)
    convert_to_gemini = staticmethod(convert_to_gemini)
