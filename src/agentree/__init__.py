"""agentree - Declarative agent trees for tool-using language models.

An agent is described as a tree of nodes (system prompts, context, messages,
tools, nested sub-agents, conditions). A reconciler turns the tree into a
runtime instance and keeps it in sync as the tree changes; an execution
engine runs the instance against a model provider.

Usage::

    from agentree import agent, message, run, system

    result = await run(
        agent(
            system("You are a concise assistant."),
            message("What is a fiber?"),
            model="claude-sonnet-4-5",
        )
    )
    print(result.content)

Key modules:

- :mod:`agentree.tree` - Node builders and YAML agent files
- :mod:`agentree.reconciler` - Fiber reconciler, renderer and conditions
- :mod:`agentree.instances` - Runtime instances and pending updates
- :mod:`agentree.execution` - Turn loop, events, abort and compaction
- :mod:`agentree.handles` - Agent handles and sub-agent execution
- :mod:`agentree.llm` - Provider protocol and the Anthropic provider
"""

__version__ = "0.1.0"

from agentree.errors import (  # noqa: E402
    AgentBusyError,
    AgentreeError,
    ConfigurationError,
    ExecutionAborted,
    ProviderError,
    ReentrantRenderError,
)
from agentree.execution.engine import AgentResult  # noqa: E402
from agentree.handles.agent import AgentHandle  # noqa: E402
from agentree.run import create_agent, run  # noqa: E402
from agentree.tools.base import (  # noqa: E402
    NativeTool,
    Tool,
    ToolContext,
    define_agent_tool,
    define_tool,
    tool,
)
from agentree.tree.nodes import (  # noqa: E402
    agent,
    component,
    condition,
    context,
    group,
    mcp,
    message,
    native_tool,
    route,
    router,
    system,
    tools,
)

__all__ = [
    "AgentBusyError",
    "AgentHandle",
    "AgentResult",
    "AgentreeError",
    "ConfigurationError",
    "ExecutionAborted",
    "NativeTool",
    "ProviderError",
    "ReentrantRenderError",
    "Tool",
    "ToolContext",
    "agent",
    "component",
    "condition",
    "context",
    "create_agent",
    "define_agent_tool",
    "define_tool",
    "group",
    "mcp",
    "message",
    "native_tool",
    "route",
    "router",
    "run",
    "system",
    "tool",
    "tools",
]
