"""Runtime instances and the updates that mutate them."""

from agentree.instances.fragments import Fragment
from agentree.instances.pending import PendingUpdate, PendingUpdatesQueue
from agentree.instances.types import AgentInstance, AgentSettings, McpServer, SubagentInstance

__all__ = [
    "AgentInstance",
    "AgentSettings",
    "Fragment",
    "McpServer",
    "PendingUpdate",
    "PendingUpdatesQueue",
    "SubagentInstance",
]
