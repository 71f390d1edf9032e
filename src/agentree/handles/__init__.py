"""Handles for running agents."""

from agentree.handles.agent import AgentHandle, AgentStream
from agentree.handles.subagent import SubagentHandle, spawn_agent

__all__ = ["AgentHandle", "AgentStream", "SubagentHandle", "spawn_agent"]
