"""Tests for natural-language condition resolution."""

import pytest
from mocks import MockProvider, text_response, tool_response

from agentree.config.schema import AgentreeConfig
from agentree.handles.agent import AgentHandle
from agentree.llm.client import Message, TextBlock, ToolUseBlock
from agentree.reconciler.conditions import (
    EVALUATE_TOOL_NAME,
    ModelPredicateResolver,
    StaticPredicateResolver,
    summarize_messages,
)
from agentree.run import resolver_from_config
from agentree.tools.base import define_tool
from agentree.tree.nodes import agent, condition, message, system, tools

BILLING = "the user is asking about billing"
REFUND = "the user wants a refund"


def billing_tree():
    invoices = define_tool("invoices", "List invoices", handler=lambda data, ctx: "[]")
    refund = define_tool("refund", "Issue a refund", handler=lambda data, ctx: "ok")
    return agent(
        message("Why was I charged twice?"),
        condition(BILLING, system("You handle billing."), tools(invoices)),
        condition(REFUND, tools(refund)),
        model="m",
    )


@pytest.mark.asyncio
async def test_static_resolver_mapping_and_callable():
    mapping = StaticPredicateResolver({BILLING: True})
    function = StaticPredicateResolver(lambda text: "refund" in text)

    assert await mapping.resolve([BILLING, REFUND], [], "m") == [True, False]
    assert await function.resolve([BILLING, REFUND], [], "m") == [False, True]


def test_evaluation_request_forces_the_tool():
    resolver = ModelPredicateResolver(MockProvider(), max_tokens=100)

    request = resolver.build_request([BILLING, REFUND], [Message(role="user", content="hi")], "m")

    assert request.tool_choice == {"type": "tool", "name": EVALUATE_TOOL_NAME}
    assert request.max_tokens == 100
    schema = request.tools[0]["input_schema"]
    assert schema["properties"]["true_condition_indices"]["items"]["enum"] == [0, 1]
    assert "0. " + BILLING in request.system
    assert "user: hi" in request.messages[0].content


@pytest.mark.asyncio
async def test_model_resolver_parses_indices():
    provider = MockProvider(
        [tool_response(("e", EVALUATE_TOOL_NAME, {"true_condition_indices": [1]}))]
    )
    resolver = ModelPredicateResolver(provider, model="judge")

    results = await resolver.resolve([BILLING, REFUND], [], "agent-model")

    assert results == [False, True]
    assert provider.requests[0].model == "judge"


@pytest.mark.asyncio
async def test_model_resolver_without_tool_call_is_all_false():
    resolver = ModelPredicateResolver(MockProvider([text_response("I refuse")]))

    assert await resolver.resolve([BILLING], [], "m") == [False]


@pytest.mark.asyncio
async def test_model_resolver_without_model_skips_the_call():
    provider = MockProvider()
    resolver = ModelPredicateResolver(provider)

    assert await resolver.resolve([BILLING, REFUND], [], None) == [False, False]
    assert provider.call_count == 0


def test_summary_keeps_recent_messages_and_truncates():
    messages = [Message(role="user", content=f"m{i}") for i in range(12)]
    messages.append(
        Message(
            role="assistant",
            content=[TextBlock(text="x" * 600), ToolUseBlock(id="t", name="search")],
        )
    )

    summary = summarize_messages(messages).split("\n")

    assert len(summary) == 10
    assert summary[0] == "user: m3"
    assert summary[-1] == "assistant: " + "x" * 500


@pytest.mark.asyncio
async def test_engine_resolves_conditions_before_each_turn():
    provider = MockProvider([text_response("Let me check your invoices.")])
    handle = AgentHandle(
        billing_tree(), provider, predicate_resolver=StaticPredicateResolver({BILLING: True})
    )

    await handle.run()

    request = provider.requests[0]
    assert request.system == "You handle billing."
    assert [tool["name"] for tool in request.tools] == ["invoices"]


@pytest.mark.asyncio
async def test_engine_with_model_resolver():
    provider = MockProvider(
        [
            tool_response(("e", EVALUATE_TOOL_NAME, {"true_condition_indices": [0, 1]})),
            text_response("Refund issued."),
        ]
    )
    handle = AgentHandle(
        billing_tree(), provider, predicate_resolver=ModelPredicateResolver(provider)
    )

    result = await handle.run()

    assert result.content == "Refund issued."
    assert provider.requests[0].tool_choice is not None
    assert [tool["name"] for tool in provider.requests[1].tools] == ["invoices", "refund"]


@pytest.mark.asyncio
async def test_conditions_stay_inactive_without_resolver():
    provider = MockProvider([text_response("generic")])
    handle = AgentHandle(billing_tree(), provider)

    await handle.run()

    assert provider.requests[0].tools == []
    assert provider.requests[0].system is None


def test_resolver_and_config_share_the_evaluation_budget():
    config_budget = AgentreeConfig().conditions.max_tokens
    standalone = ModelPredicateResolver(MockProvider())
    configured = resolver_from_config(AgentreeConfig(), MockProvider())

    assert standalone.max_tokens == config_budget
    assert configured.max_tokens == config_budget
    request = standalone.build_request([BILLING], [Message(role="user", content="hi")], "m")
    assert request.max_tokens == config_budget
