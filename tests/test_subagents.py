"""Tests for nested agents and ad-hoc spawned agents."""

import asyncio

import pytest
from mocks import MockProvider, text_response, tool_response

from agentree.errors import ConfigurationError, ExecutionAborted
from agentree.execution.state import ExecutionStatus
from agentree.handles.agent import AgentHandle
from agentree.handles.subagent import inherit_settings, spawn_agent
from agentree.instances.types import AgentInstance, AgentSettings
from agentree.tools.base import define_agent_tool, define_tool
from agentree.tree.nodes import agent, component, message, system, tools


def researcher(**props):
    return agent(system("You research."), name="researcher", description="Finds facts", **props)


@pytest.mark.asyncio
async def test_sub_agent_runs_with_isolated_history():
    provider = MockProvider(
        [
            tool_response(("d1", "researcher", {"task": "find x"})),
            text_response("x is 1"),
            text_response("The answer is 1."),
        ]
    )
    handle = AgentHandle(
        agent(message("What is x?"), tools(researcher()), model="parent-model", name="lead"),
        provider,
    )

    result = await handle.run()

    assert result.content == "The answer is 1."
    assert handle.messages[2].content[0].content == "x is 1"

    sub_request = provider.requests[1]
    assert sub_request.model == "parent-model"
    assert sub_request.system == "You research."
    assert [m.content for m in sub_request.messages] == ["find x"]
    assert sub_request.max_tokens == 2048

    sub = handle.instance.children["researcher"]
    assert sub.realized
    assert sub.handle.status == ExecutionStatus.COMPLETED
    assert len(handle.messages) == 4


@pytest.mark.asyncio
async def test_context_is_prepended_to_the_task():
    provider = MockProvider(
        [
            tool_response(("d1", "researcher", {"task": "summarize", "context": "Doc: hello"})),
            text_response("summary"),
            text_response("done"),
        ]
    )
    handle = AgentHandle(agent(message("go"), tools(researcher()), model="m"), provider)

    await handle.run()

    assert provider.requests[1].messages[0].content == "Doc: hello\n\nsummarize"


@pytest.mark.asyncio
async def test_sub_agent_is_reused_across_invocations():
    provider = MockProvider(
        [
            tool_response(("d1", "researcher", {"task": "first"})),
            text_response("first answer"),
            tool_response(("d2", "researcher", {"task": "second"})),
            text_response("second answer"),
            text_response("done"),
        ]
    )
    handle = AgentHandle(agent(message("go"), tools(researcher()), model="m"), provider)

    await handle.run()

    second_sub_request = provider.requests[3]
    assert [m.content for m in second_sub_request.messages][0] == "first"
    assert len(second_sub_request.messages) == 3
    assert second_sub_request.messages[-1].content == "second"


@pytest.mark.asyncio
async def test_circular_delegation_is_reported_as_tool_error():
    provider = MockProvider(
        [tool_response(("d1", "lead", {"task": "loop"})), text_response("gave up")]
    )
    handle = AgentHandle(
        agent(message("go"), tools(agent(system("Me again."), name="lead")), model="m", name="lead"),
        provider,
    )

    result = await handle.run()

    assert result.content == "gave up"
    block = handle.messages[2].content[0]
    assert block.is_error
    assert "Cycle detected" in block.content
    assert provider.call_count == 2


@pytest.mark.asyncio
async def test_removed_sub_agent_is_disposed():
    provider = MockProvider(
        [
            tool_response(("d1", "researcher", {"task": "t"})),
            text_response("sub answer"),
            text_response("done"),
            tool_response(("d2", "researcher", {"task": "again"})),
            text_response("done again"),
        ]
    )
    handle = AgentHandle(agent(message("go"), tools(researcher()), model="m"), provider)
    await handle.run()
    sub = handle.instance.children["researcher"]
    sub_handle = sub.handle

    handle.update(agent(message("go"), model="m"))

    assert "researcher" not in handle.instance.tools
    assert "researcher" not in handle.instance.children
    assert sub_handle.closed

    await handle.send_message("try again")
    assert handle.messages[-2].content[0].content == "Error: Tool 'researcher' not found"


@pytest.mark.asyncio
async def test_parent_abort_reaches_running_sub_agent():
    provider = MockProvider(
        [tool_response(("d1", "researcher", {"task": "slow"})), text_response("late")],
        delays=[0, 5],
    )
    handle = AgentHandle(agent(message("go"), tools(researcher()), model="m"), provider)

    task = asyncio.create_task(handle.run())
    await asyncio.sleep(0.05)
    sub_handle = handle.instance.children["researcher"].handle
    assert sub_handle.is_running

    handle.abort()

    with pytest.raises(ExecutionAborted):
        await task
    assert sub_handle.status == ExecutionStatus.ABORTED


@pytest.mark.asyncio
async def test_component_sub_agent_reads_task_from_context():
    def worker(scope):
        return system(f"Parent is {scope.context['parent']}. Task: {scope.context['task']}")

    provider = MockProvider(
        [
            tool_response(("d1", "worker", {"task": "do it"})),
            text_response("did it"),
            text_response("done"),
        ]
    )
    handle = AgentHandle(
        agent(message("go"), tools(agent(component(worker), name="worker")), model="m", name="boss"),
        provider,
    )

    await handle.run()

    assert provider.requests[1].system == "Parent is boss. Task: do it"


def test_inherit_settings_halves_budgets():
    inherited = inherit_settings(
        AgentSettings(
            model="m",
            max_tokens=1000,
            max_iterations=10,
            temperature=0.2,
            stream=True,
            on_complete=print,
        )
    )

    assert inherited.model == "m"
    assert inherited.max_tokens == 500
    assert inherited.max_iterations == 5
    assert inherited.temperature == 0.2
    assert inherited.stream is False
    assert inherited.on_complete is None


def test_inherit_settings_defaults():
    inherited = inherit_settings(AgentSettings(max_iterations=1))

    assert inherited.max_tokens == 2048
    assert inherited.max_iterations == 1


@pytest.mark.asyncio
async def test_sub_agent_without_messages_cannot_spawn():
    parent = AgentInstance(AgentSettings(model="m"))

    with pytest.raises(ConfigurationError, match="no messages"):
        await spawn_agent(agent(system("idle"), name="idle"), parent, MockProvider())


@pytest.mark.asyncio
async def test_agent_tool_spawns_ad_hoc_agent():
    translate = define_agent_tool(
        "translate",
        "Translate text to French",
        agent=lambda data: agent(
            system("Translate to French."), message(data["text"]), name="translator"
        ),
        input_schema={"type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]},
    )
    provider = MockProvider(
        [
            tool_response(("t1", "translate", {"text": "hello"})),
            text_response("bonjour"),
            text_response("It is bonjour."),
        ]
    )
    handle = AgentHandle(
        agent(message("Translate hello"), tools(translate), model="m", max_tokens=600), provider
    )

    result = await handle.run()

    assert result.content == "It is bonjour."
    assert handle.messages[2].content[0].content == "bonjour"
    spawned = provider.requests[1]
    assert spawned.system == "Translate to French."
    assert spawned.max_tokens == 300
    assert [m.content for m in spawned.messages] == ["hello"]


@pytest.mark.asyncio
async def test_run_agent_overrides_take_precedence():
    async def consult(data, ctx):
        result = await ctx.run_agent(
            agent(message("second opinion?"), name="consultant", model="node-model"),
            model="override-model",
        )
        return result.content

    provider = MockProvider(
        [
            tool_response(("c1", "consult", {})),
            text_response("agreed"),
            text_response("done"),
        ]
    )
    handle = AgentHandle(
        agent(message("go"), tools(define_tool("consult", "Consult", handler=consult)), model="m"),
        provider,
    )

    await handle.run()

    assert provider.requests[1].model == "override-model"
