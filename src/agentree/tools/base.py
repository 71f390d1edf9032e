"""Base types for the tool system."""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union, get_type_hints

from pydantic import BaseModel, Field, ValidationError, create_model

from agentree.errors import ConfigurationError
from agentree.llm.client import ToolResultBlock, ToolUseBlock

if TYPE_CHECKING:
    from agentree.execution.abort import AbortSignal
    from agentree.execution.engine import AgentResult
    from agentree.llm.client import LLMProvider
    from agentree.tree.nodes import Node

logger = logging.getLogger(__name__)

# Tool handler signature: (validated input, context) -> result string
ToolHandler = Callable[[dict[str, Any], "ToolContext"], Union[str, Awaitable[str]]]


@dataclass
class ToolContext:
    """Execution context handed to every tool handler."""

    provider: LLMProvider
    signal: AbortSignal
    agent_name: str
    model: str | None = None
    run_agent: Callable[..., Awaitable[AgentResult]] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Tool:
    """A tool the model can call.

    ``handler`` and ``input_model`` are excluded from equality: a component
    that rebuilds the same tool on every render produces fresh callables and,
    for decorated tools, a fresh pydantic class each time.
    """

    name: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler = field(compare=False, repr=False)
    input_model: type[BaseModel] | None = field(default=None, compare=False, repr=False)

    def validate(self, raw_input: Any) -> dict[str, Any]:
        """Validate provider-supplied input.

        Args:
            raw_input: Input object from a tool-use block

        Returns:
            Validated input with defaults applied

        Raises:
            ValidationError: If the input does not match ``input_model``
            ValueError: If there is no model and required keys are missing
        """
        if self.input_model is not None:
            return self.input_model.model_validate(raw_input or {}).model_dump()

        data = dict(raw_input or {})
        missing = [key for key in self.input_schema.get("required", []) if key not in data]
        if missing:
            raise ValueError(", ".join(f"{key}: Field required" for key in missing))
        return data

    def to_api_format(self) -> dict[str, Any]:
        """Convert to the provider's custom-tool format."""
        return {
            "type": "custom",
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass
class NativeTool:
    """A provider-side tool, sent verbatim and never executed locally."""

    name: str
    spec: dict[str, Any] = field(default_factory=dict)

    def to_api_format(self) -> dict[str, Any]:
        return {**self.spec, "name": self.name}


def _check_schema(name: str, schema: dict[str, Any]) -> None:
    if not isinstance(schema, dict) or schema.get("type") != "object":
        raise ConfigurationError(f"Tool '{name}' input schema must be a JSON object schema")
    properties = schema.get("properties", {})
    if not isinstance(properties, dict):
        raise ConfigurationError(f"Tool '{name}' input schema 'properties' must be a mapping")
    for key in schema.get("required", []):
        if key not in properties:
            raise ConfigurationError(f"Tool '{name}' requires undeclared property '{key}'")


def define_tool(
    name: str,
    description: str,
    handler: ToolHandler,
    input_model: type[BaseModel] | None = None,
    input_schema: dict[str, Any] | None = None,
) -> Tool:
    """Create a tool from a pydantic input model or a raw JSON schema.

    Args:
        name: Unique tool name
        description: Human-readable description shown to the model
        handler: Called with the validated input and a ToolContext
        input_model: Pydantic model used to validate input
        input_schema: JSON schema, used when no model is given

    Returns:
        The tool

    Raises:
        ConfigurationError: If the name is empty or the schema is malformed

    Example:
        class SearchInput(BaseModel):
            query: str
            max_results: int = 10

        search = define_tool(
            "search_docs", "Search documentation", handler=search_docs,
            input_model=SearchInput,
        )
    """
    if not name:
        raise ConfigurationError("Tool name must not be empty")
    if input_model is not None:
        schema = input_model.model_json_schema()
    elif input_schema is not None:
        schema = input_schema
    else:
        schema = {"type": "object", "properties": {}}
    _check_schema(name, schema)

    return Tool(
        name=name,
        description=description,
        input_schema=schema,
        handler=handler,
        input_model=input_model,
    )


def _parameter_descriptions(fn: Callable[..., Any]) -> dict[str, str]:
    descriptions: dict[str, str] = {}
    for line in (fn.__doc__ or "").split("\n"):
        line = line.strip()
        name, sep, text = line.partition(":")
        if sep and name.isidentifier() and text.strip():
            descriptions.setdefault(name, text.strip())
    return descriptions


def tool(
    description: str,
    name: str | None = None,
) -> Callable[[Callable[..., Any]], Tool]:
    """Decorator that turns a function into a Tool.

    Introspects the function signature and docstring to build a pydantic
    input model. A parameter named ``ctx`` receives the ToolContext and is
    not exposed to the model.

    Args:
        description: Human-readable description of what the tool does
        name: Tool name, defaults to the function name

    Returns:
        Decorator producing a Tool

    Example:
        @tool(description="Look up the weather for a city")
        async def weather(city: str, units: str = "metric") -> str:
            '''Get the weather.

            Args:
                city: City name
                units: metric or imperial
            '''
            ...
    """

    def decorator(fn: Callable[..., Any]) -> Tool:
        hints = get_type_hints(fn)
        sig = inspect.signature(fn)
        descriptions = _parameter_descriptions(fn)

        model_fields: dict[str, Any] = {}
        wants_context = False
        for param_name, param in sig.parameters.items():
            if param_name == "ctx":
                wants_context = True
                continue
            annotation = hints.get(param_name, str)
            default = ... if param.default is inspect.Parameter.empty else param.default
            model_fields[param_name] = (
                annotation,
                Field(default=default, description=descriptions.get(param_name)),
            )

        tool_name = name or fn.__name__
        input_model = create_model(f"{tool_name}_input", **model_fields)

        def handler(input: dict[str, Any], ctx: ToolContext) -> Any:
            if wants_context:
                return fn(**input, ctx=ctx)
            return fn(**input)

        return define_tool(tool_name, description, handler=handler, input_model=input_model)

    return decorator


def _format_validation_error(error: ValidationError) -> str:
    return ", ".join(
        f"{'.'.join(str(part) for part in issue['loc'])}: {issue['msg']}"
        for issue in error.errors()
    )


def _stringify(result: Any) -> str:
    if isinstance(result, str):
        return result
    if result is None:
        return ""
    if isinstance(result, (dict, list)):
        return json.dumps(result, default=str)
    return str(result)


async def execute_tool(tool: Tool, tool_use: ToolUseBlock, ctx: ToolContext) -> ToolResultBlock:
    """Validate input and run a tool handler.

    Validation failures and handler exceptions become error results; they
    never propagate. Cancellation does propagate.

    Args:
        tool: Tool to run
        tool_use: The model's tool-use block
        ctx: Execution context

    Returns:
        Tool result block for the tool-use id
    """
    try:
        data = tool.validate(tool_use.input)
    except ValidationError as e:
        return ToolResultBlock(
            tool_use_id=tool_use.id,
            content=f"Validation error: {_format_validation_error(e)}",
            is_error=True,
        )
    except ValueError as e:
        return ToolResultBlock(
            tool_use_id=tool_use.id, content=f"Validation error: {e}", is_error=True
        )

    try:
        result = tool.handler(data, ctx)
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        logger.debug("Tool %s raised %r", tool.name, e)
        return ToolResultBlock(tool_use_id=tool_use.id, content=f"Error: {e}", is_error=True)

    return ToolResultBlock(tool_use_id=tool_use.id, content=_stringify(result))


def define_agent_tool(
    name: str,
    description: str,
    agent: Callable[[dict[str, Any]], Node],
    input_model: type[BaseModel] | None = None,
    input_schema: dict[str, Any] | None = None,
) -> Tool:
    """Create a tool whose invocation spawns an agent built from its input.

    Args:
        name: Unique tool name
        description: Description shown to the model
        agent: Builds an agent node from the validated input
        input_model: Pydantic model used to validate input
        input_schema: JSON schema, used when no model is given

    Returns:
        A tool returning the spawned agent's final text
    """

    async def handler(input: dict[str, Any], ctx: ToolContext) -> str:
        if ctx.run_agent is None:
            raise RuntimeError("Agent tools require a context with run_agent")
        result = await ctx.run_agent(agent(input))
        return result.content

    return define_tool(
        name, description, handler=handler, input_model=input_model, input_schema=input_schema
    )
