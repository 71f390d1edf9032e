"""Tests for the pending-update queue and how instances apply updates."""

from types import SimpleNamespace

from agentree.execution.state import ExecutionStatus
from agentree.instances.fragments import Fragment
from agentree.instances.pending import (
    FragmentsReplaced,
    MessageAdded,
    MessageRemoved,
    MessageReplaced,
    PendingUpdatesQueue,
    ToolAdded,
    ToolRemoved,
)
from agentree.instances.types import AgentInstance
from agentree.llm.client import Message
from agentree.tools.base import define_tool


def echo_tool(description: str = "Echo"):
    return define_tool("echo", description, handler=lambda data, ctx: data)


def running_instance() -> AgentInstance:
    instance = AgentInstance()
    instance.engine = SimpleNamespace(status=ExecutionStatus.RUNNING)
    return instance


def test_queue_is_fifo_across_slots():
    queue = PendingUpdatesQueue()
    first = ToolRemoved("a")
    second = ToolRemoved("b")
    third = FragmentsReplaced((), ())

    for update in (first, second, third):
        queue.push(update)

    assert queue.drain() == [first, second, third]
    assert not queue


def test_later_update_to_same_slot_replaces_and_moves_to_end():
    queue = PendingUpdatesQueue()
    queue.push(ToolAdded(echo_tool()))
    queue.push(ToolRemoved("other"))
    queue.push(ToolRemoved("echo"))

    assert queue.drain() == [ToolRemoved("other"), ToolRemoved("echo")]


def test_removing_a_queued_message_cancels_both():
    queue = PendingUpdatesQueue()
    message = Message(role="user", content="hi")

    queue.push(MessageAdded(message))
    queue.push(MessageRemoved(message))

    assert len(queue) == 0


def test_submit_applies_immediately_when_idle():
    instance = AgentInstance()

    instance.submit(ToolAdded(echo_tool()))

    assert "echo" in instance.tools
    assert not instance.pending_updates


def test_submit_queues_while_running_and_drain_applies_in_order():
    instance = running_instance()
    instance.submit(ToolAdded(echo_tool()))
    instance.submit(FragmentsReplaced((Fragment("sys"),), ()))

    assert "echo" not in instance.tools
    assert instance.system_prompt() is None
    assert len(instance.pending_updates) == 2

    applied = instance.drain_pending_updates()

    assert [type(update) for update in applied] == [ToolAdded, FragmentsReplaced]
    assert "echo" in instance.tools
    assert instance.system_prompt() == "sys"
    assert not instance.pending_updates


def test_add_then_remove_while_running_nets_to_removal():
    instance = running_instance()
    instance.tools.put(echo_tool("old"))

    instance.submit(ToolAdded(echo_tool("new")))
    instance.submit(ToolRemoved("echo"))
    instance.drain_pending_updates()

    assert "echo" not in instance.tools


def test_message_replacement_keeps_position():
    instance = AgentInstance()
    first = Message(role="user", content="one")
    second = Message(role="assistant", content="two")
    instance.messages.extend([first, second])

    replacement = Message(role="user", content="uno")
    instance.apply(MessageReplaced(first, replacement))

    assert [m.content for m in instance.messages] == ["uno", "two"]


def test_message_removal_matches_by_identity():
    instance = AgentInstance()
    first = Message(role="user", content="same")
    twin = Message(role="user", content="same")
    instance.messages.extend([first, twin])

    instance.apply(MessageRemoved(first))

    assert instance.messages == [twin]
    assert instance.messages[0] is twin
