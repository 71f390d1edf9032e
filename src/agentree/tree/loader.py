"""YAML agent files.

An agent file describes one agent tree::

    name: researcher
    model: claude-sonnet-4-5
    system:
      - You are a research assistant.
    context:
      - content: Answer in English.
        priority: 100
    tools:
      - myproject.tools:search
    agents:
      - name: writer
        description: Writes the final summary
        system:
          - You write concise summaries.
"""

from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agentree.config.loader import ConfigError
from agentree.errors import ConfigurationError
from agentree.tools.base import NativeTool, Tool
from agentree.tree.nodes import Node, agent, context, mcp, message, native_tool, system, tools

logger = logging.getLogger(__name__)


class FragmentEntry(BaseModel):
    content: str
    priority: int | None = None


class MessageEntry(BaseModel):
    content: str
    role: Literal["user", "assistant"] = "user"


class NativeToolEntry(BaseModel):
    """Provider-side tool; every extra key is sent to the provider as is."""

    model_config = ConfigDict(extra="allow")

    name: str


class McpEntry(BaseModel):
    name: str
    url: str
    authorization_token: str | None = None
    allowed_tools: list[str] | None = None


class AgentFile(BaseModel):
    """Validated contents of an agent file."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    model: str | None = None
    description: str | None = None
    max_tokens: int | None = Field(default=None, ge=1)
    max_iterations: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None, ge=0.0, le=1.0)
    thinking_budget: int | None = Field(default=None, ge=1)
    stop_sequences: list[str] | None = None
    stream: bool | None = None
    system: list[str | FragmentEntry] = Field(default_factory=list)
    context: list[str | FragmentEntry] = Field(default_factory=list)
    messages: list[str | MessageEntry] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list, description="Import paths, module:attribute")
    native_tools: list[NativeToolEntry] = Field(default_factory=list)
    mcp: list[McpEntry] = Field(default_factory=list)
    agents: list[AgentFile] = Field(default_factory=list)


def import_tools(path: str) -> list[Tool | NativeTool]:
    """Import the tool (or list of tools) at ``package.module:attr``.

    A dotted ``package.module.attr`` path is accepted as well.

    Raises:
        ConfigurationError: If the path cannot be imported or holds no tools
    """
    module_name, sep, attr = path.partition(":")
    if not sep:
        module_name, _, attr = path.rpartition(".")
    if not module_name or not attr:
        raise ConfigurationError(f"Invalid tool path '{path}', expected 'module:attribute'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import tool module '{module_name}': {e}") from e

    try:
        value = getattr(module, attr)
    except AttributeError as e:
        raise ConfigurationError(f"Module '{module_name}' has no attribute '{attr}'") from e

    found = list(value) if isinstance(value, (list, tuple)) else [value]
    for item in found:
        if not isinstance(item, (Tool, NativeTool)):
            raise ConfigurationError(f"'{path}' is not a tool: {item!r}")
    return found


def _fragment(entry: str | FragmentEntry, build: Any) -> Node:
    if isinstance(entry, str):
        return build(entry)
    if entry.priority is None:
        return build(entry.content)
    return build(entry.content, priority=entry.priority)


def build_tree(doc: AgentFile) -> Node:
    """Turn a validated agent file into a node tree."""
    children: list[Any] = []
    children.extend(_fragment(entry, system) for entry in doc.system)
    children.extend(_fragment(entry, context) for entry in doc.context)
    for entry in doc.messages:
        if isinstance(entry, str):
            children.append(message(entry))
        else:
            children.append(message(entry.content, role=entry.role))

    tool_children: list[Any] = []
    for path in doc.tools:
        tool_children.extend(import_tools(path))
    for entry in doc.native_tools:
        extra = entry.model_extra or {}
        tool_children.append(native_tool(entry.name, extra))
    tool_children.extend(build_tree(sub) for sub in doc.agents)
    if tool_children:
        children.append(tools(*tool_children))

    children.extend(
        mcp(
            entry.name,
            entry.url,
            authorization_token=entry.authorization_token,
            allowed_tools=entry.allowed_tools,
        )
        for entry in doc.mcp
    )

    settings = doc.model_dump(
        include={
            "max_tokens",
            "max_iterations",
            "temperature",
            "thinking_budget",
            "stop_sequences",
            "stream",
        },
        exclude_none=True,
    )
    return agent(
        *children,
        name=doc.name,
        model=doc.model,
        description=doc.description,
        **settings,
    )


def parse_agent_file(data: Any, source: str = "<agent file>") -> AgentFile:
    if not isinstance(data, dict):
        raise ConfigError(f"Agent file {source} must be a mapping")
    try:
        return AgentFile.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Agent file validation failed for {source}: {e}") from e


def load_agent_file(path: str | Path) -> Node:
    """Load an agent file into a node tree.

    Args:
        path: Path to the YAML agent file

    Returns:
        The root agent node

    Raises:
        ConfigError: If the file is missing, not valid YAML, or fails validation
        ConfigurationError: If a tool path cannot be resolved
    """
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to load agent file {path}: {e}") from e

    doc = parse_agent_file(data, str(path))
    logger.debug("Loaded agent file %s (agent %s)", path, doc.name or "unnamed")
    return build_tree(doc)
