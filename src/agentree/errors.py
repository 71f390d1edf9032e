"""Exception hierarchy shared across agentree."""


class AgentreeError(Exception):
    """Base class for all agentree errors."""


class ConfigurationError(AgentreeError):
    """The agent tree or one of its tools is malformed.

    Raised synchronously, before any provider call is made.
    """


class ReentrantRenderError(AgentreeError):
    """A render pass was started while another pass was mutating the tree."""


class AgentBusyError(AgentreeError):
    """``run()`` was called on an agent that is already running."""


class ExecutionAborted(AgentreeError):
    """The run was cancelled through its abort signal."""


class ProviderError(AgentreeError):
    """The model provider failed to produce a message."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
