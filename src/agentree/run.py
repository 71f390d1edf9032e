"""Module-level entry points for running agent trees."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal, overload

from agentree.config.schema import AgentreeConfig
from agentree.handles.agent import AgentHandle
from agentree.instances.types import AgentSettings
from agentree.llm.factory import create_provider
from agentree.reconciler.conditions import ModelPredicateResolver, StaticPredicateResolver

if TYPE_CHECKING:
    from agentree.execution.engine import AgentResult
    from agentree.llm.client import LLMProvider
    from agentree.reconciler.conditions import PredicateResolver
    from agentree.tree.nodes import Node

logger = logging.getLogger(__name__)


def defaults_from_config(config: AgentreeConfig) -> AgentSettings:
    """Agent settings implied by the ``defaults`` section."""
    return AgentSettings(
        model=config.defaults.model,
        max_tokens=config.defaults.max_tokens,
        max_iterations=config.defaults.max_iterations,
        stream=config.defaults.stream,
    )


def resolver_from_config(config: AgentreeConfig, provider: LLMProvider) -> PredicateResolver:
    if config.conditions.resolver == "none":
        return StaticPredicateResolver()
    return ModelPredicateResolver(
        provider,
        model=config.conditions.model,
        max_tokens=config.conditions.max_tokens,
    )


def create_agent(
    tree: Node,
    provider: LLMProvider | None = None,
    config: AgentreeConfig | None = None,
    predicate_resolver: PredicateResolver | None = None,
) -> AgentHandle:
    """Render a tree into an agent handle without running it.

    Args:
        tree: Agent node, or a component rendering one
        provider: Model provider; built from ``config`` when omitted
        config: Configuration supplying defaults and the provider
        predicate_resolver: Resolver for natural-language conditions

    Returns:
        A handle ready for ``run``, ``send_message`` or ``stream``

    Raises:
        ConfigurationError: If the tree is malformed or no provider can be built
    """
    config = config or AgentreeConfig()
    if provider is None:
        provider = create_provider(config)
    return AgentHandle(
        tree,
        provider,
        predicate_resolver=predicate_resolver or resolver_from_config(config, provider),
        defaults=defaults_from_config(config),
    )


@overload
async def run(
    tree: Node,
    provider: LLMProvider | None = ...,
    mode: Literal["batch"] = ...,
    config: AgentreeConfig | None = ...,
    predicate_resolver: PredicateResolver | None = ...,
) -> AgentResult: ...


@overload
async def run(
    tree: Node,
    provider: LLMProvider | None = ...,
    mode: Literal["interactive"] = ...,
    config: AgentreeConfig | None = ...,
    predicate_resolver: PredicateResolver | None = ...,
) -> AgentHandle: ...


async def run(
    tree: Node,
    provider: LLMProvider | None = None,
    mode: Literal["batch", "interactive"] = "batch",
    config: AgentreeConfig | None = None,
    predicate_resolver: PredicateResolver | None = None,
) -> AgentResult | AgentHandle:
    """Run a tree.

    In ``batch`` mode the agent runs to completion and is closed. In
    ``interactive`` mode the open handle is returned without running.
    """
    handle = create_agent(tree, provider, config=config, predicate_resolver=predicate_resolver)
    if mode == "interactive":
        return handle

    try:
        return await handle.run()
    finally:
        handle.close()
