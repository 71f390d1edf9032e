"""Synthetic tools exposing nested agents to their parent."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from agentree.tools.base import Tool, ToolContext, define_tool

if TYPE_CHECKING:
    from agentree.instances.types import SubagentInstance


class SubagentInput(BaseModel):
    """Input accepted by every sub-agent tool."""

    task: str = Field(description="Task for the subagent to perform")
    context: str | None = Field(default=None, description="Additional context")


def task_message(task: str, context: str | None = None) -> str:
    """Text of the user message pushed into the sub-agent's history."""
    return f"{context}\n\n{task}" if context else task


def build_subagent_tool(subagent: SubagentInstance) -> Tool:
    """Create the tool through which the parent delegates to ``subagent``.

    Invoking it realizes the sub-agent on first use, appends the task to
    the sub-agent's own history and runs it to completion. The sub-agent's
    final text is the tool result.
    """

    async def handler(input: dict[str, Any], ctx: ToolContext) -> str:
        from agentree.handles.subagent import run_subagent

        text = task_message(input["task"], input.get("context"))
        result = await run_subagent(subagent, text, ctx)
        return result.content

    return define_tool(
        subagent.name,
        subagent.description or f"Delegate task to {subagent.name} agent",
        handler=handler,
        input_model=SubagentInput,
    )
