"""Tool registry seam between the conversation loop and concrete tools."""

from __future__ import annotations

from dataclasses import dataclass
import inspect
import json
import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, ValidationError

from parley.errors import SchemaError
from parley.schema import normalize

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from parley.providers.models import ToolSchema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool execution."""

    success: bool
    output: Any = None
    error: str | None = None

    def to_content(self) -> str:
        """Render the result as the text of a tool-role message."""
        if not self.success:
            return json.dumps({"success": False, "error": self.error or "Tool failed"})
        if isinstance(self.output, str):
            return self.output
        if isinstance(self.output, BaseModel):
            return self.output.model_dump_json()
        try:
            return json.dumps(self.output)
        except TypeError:
            return str(self.output)


@runtime_checkable
class ToolRegistry(Protocol):
    """Lists tool declarations and executes tools by name."""

    def list(self) -> Sequence[Any]:
        """Return tool declarations (mappings, objects or ToolSchema)."""
        ...

    async def execute(self, name: str, args: Mapping[str, Any]) -> ToolResult:
        """Run tool *name* with *args*; failures come back as results."""
        ...


@dataclass(frozen=True)
class _Registered:
    schema: ToolSchema
    func: Callable[..., Any]
    model: type[BaseModel] | None


class FunctionToolRegistry:
    """In-memory registry wrapping plain or async callables.

    Example:
        registry = FunctionToolRegistry()

        @registry.tool(description="Read a file", input_schema=ReadFileArgs)
        async def read_file(path: str) -> str: ...
    """

    def __init__(self) -> None:
        self._tools: dict[str, _Registered] = {}

    def register(
        self,
        func: Callable[..., Any],
        *,
        name: str | None = None,
        description: str | None = None,
        input_schema: dict[str, Any] | type[BaseModel] | None = None,
    ) -> None:
        tool_name = name or func.__name__
        if tool_name in self._tools:
            raise SchemaError(f"Tool {tool_name!r} is already registered")
        schema = normalize(
            {
                "name": tool_name,
                "description": description or inspect.getdoc(func) or "",
                "input_schema": (
                    input_schema
                    if input_schema is not None
                    else {"type": "object", "properties": {}}
                ),
            }
        )
        model = (
            input_schema
            if isinstance(input_schema, type) and issubclass(input_schema, BaseModel)
            else None
        )
        self._tools[tool_name] = _Registered(schema=schema, func=func, model=model)

    def tool(
        self,
        *,
        name: str | None = None,
        description: str | None = None,
        input_schema: dict[str, Any] | type[BaseModel] | None = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of ``register``."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register(
                func, name=name, description=description, input_schema=input_schema
            )
            return func

        return decorator

    def list(self) -> list[ToolSchema]:
        return [entry.schema for entry in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def execute(self, name: str, args: Mapping[str, Any]) -> ToolResult:
        entry = self._tools.get(name)
        if entry is None:
            return ToolResult(success=False, error=f"Unknown tool: {name}")

        kwargs = dict(args)
        if entry.model is not None:
            try:
                kwargs = entry.model.model_validate(kwargs).model_dump()
            except ValidationError as e:
                return ToolResult(
                    success=False,
                    error=f"Invalid arguments for {name}: {e.error_count()} error(s)\n{e}",
                )

        try:
            output = entry.func(**kwargs)
            if inspect.isawaitable(output):
                output = await output
        except TypeError as e:
            return ToolResult(success=False, error=f"Invalid arguments for {name}: {e}")
        except Exception as e:
            logger.warning("Tool %s raised %s: %s", name, type(e).__name__, e)
            return ToolResult(success=False, error=f"{type(e).__name__}: {e}")
        if isinstance(output, ToolResult):
            return output
        return ToolResult(success=True, output=output)
