"""Realization and execution of nested agents."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from agentree.errors import AgentBusyError, ConfigurationError
from agentree.execution.engine import DEFAULT_MAX_TOKENS, AgentResult
from agentree.handles.agent import AgentHandle
from agentree.instances.types import AgentInstance, AgentSettings
from agentree.tree.nodes import NodeKind

if TYPE_CHECKING:
    from agentree.execution.abort import AbortSignal
    from agentree.instances.types import SubagentInstance
    from agentree.llm.client import LLMProvider
    from agentree.reconciler.conditions import PredicateResolver
    from agentree.tools.base import ToolContext
    from agentree.tree.nodes import Node

logger = logging.getLogger(__name__)

SUBAGENT_MAX_TOKENS = DEFAULT_MAX_TOKENS // 2
SUBAGENT_MAX_ITERATIONS = 5


def effective_settings(instance: AgentInstance) -> AgentSettings:
    """Settings of ``instance`` with its engine's defaults filled in."""
    defaults = instance.engine.defaults if instance.engine is not None else None
    return instance.settings.with_fallback(defaults)


def inherit_settings(parent: AgentSettings) -> AgentSettings:
    """Defaults a nested agent takes from its parent.

    Model, stop sequences, temperature and thinking budget carry over;
    token and iteration budgets are halved; streaming is off; callbacks
    never carry over.
    """
    return AgentSettings(
        model=parent.model,
        stop_sequences=parent.stop_sequences,
        temperature=parent.temperature,
        thinking_budget=parent.thinking_budget,
        max_tokens=parent.max_tokens // 2 if parent.max_tokens else SUBAGENT_MAX_TOKENS,
        max_iterations=(
            max(1, parent.max_iterations // 2) if parent.max_iterations else SUBAGENT_MAX_ITERATIONS
        ),
        stream=False,
    )


def check_delegation(parent: AgentInstance, name: str | None) -> None:
    """Reject a sub-agent whose name already appears in its own ancestry.

    Raises:
        ConfigurationError: If ``name`` is in the delegation chain
    """
    chain = parent.delegation_chain()
    if name and name in chain:
        raise ConfigurationError(f"Cycle detected: '{name}' already in chain {chain}")


class SubagentHandle(AgentHandle):
    """Handle for an agent nested under another instance.

    Its history belongs to it alone; the parent only sees the final text,
    returned as a tool result.
    """

    def __init__(
        self,
        tree: Node,
        parent: AgentInstance,
        provider: LLMProvider,
        predicate_resolver: PredicateResolver | None = None,
        context: Mapping[str, Any] | None = None,
    ):
        check_delegation(parent, tree.props.get("name") if tree.kind is NodeKind.AGENT else None)
        super().__init__(
            tree,
            provider,
            predicate_resolver=predicate_resolver,
            defaults=inherit_settings(effective_settings(parent)),
            context={**(context or {}), "parent": parent.name},
            parent=parent,
        )

    def before_run(self) -> None:
        self.engine.defaults = inherit_settings(effective_settings(self.instance.parent))
        if not self.instance.messages:
            raise ConfigurationError(
                f"Sub-agent '{self.instance.name}' has no messages. "
                "Sub-agents need at least one message to run."
            )


def _parent_resolver(parent: AgentInstance) -> PredicateResolver | None:
    return parent.engine.predicate_resolver if parent.engine is not None else None


async def run_subagent(subagent: SubagentInstance, text: str, ctx: ToolContext) -> AgentResult:
    """Invoke a mounted sub-agent with a task.

    The sub-agent is realized on first use and reused afterwards, so it
    remembers earlier tasks.

    Args:
        subagent: The mounted sub-agent
        text: Task text appended to its history as a user message
        ctx: Context of the parent's tool call

    Returns:
        The sub-agent's result

    Raises:
        AgentBusyError: If the sub-agent is already running
        ConfigurationError: If the sub-agent's tree is malformed or circular
    """
    handle = subagent.handle
    if handle is None:
        handle = SubagentHandle(
            subagent.node,
            parent=subagent.parent,
            provider=ctx.provider,
            predicate_resolver=_parent_resolver(subagent.parent),
            context={**subagent.context, "task": text},
        )
        subagent.handle = handle
        logger.debug("Realized sub-agent %s", subagent.name)
    elif handle.is_running:
        raise AgentBusyError(f"Sub-agent '{subagent.name}' is already running")
    else:
        handle.renderer.context["task"] = text
        handle.renderer.render()

    return await handle.run(text, signal=ctx.signal)


async def spawn_agent(
    node: Node,
    parent: AgentInstance,
    provider: LLMProvider,
    signal: AbortSignal | None = None,
    context: Mapping[str, Any] | None = None,
    **overrides: Any,
) -> AgentResult:
    """Run an ad-hoc agent to completion, then close it.

    ``overrides`` (``model``, ``max_tokens``, ``temperature``...) take
    precedence over the node's own settings.
    """
    if overrides:
        if node.kind is not NodeKind.AGENT:
            raise ConfigurationError("Setting overrides require an agent node")
        node = replace(node, props={**node.props, **overrides})

    handle = SubagentHandle(
        node,
        parent=parent,
        provider=provider,
        predicate_resolver=_parent_resolver(parent),
        context=context,
    )
    try:
        return await handle.run(signal=signal)
    finally:
        handle.close()
