"""Exception hierarchy for toolchat-server.

The hierarchy is:

    ToolchatError
    ├── CompletionError(status_code)
    ├── TransportError(transport)
    ├── ToolExecutionError
    └── InvalidTransitionError

Tool invocation failures are never raised; they are reported as
ToolCallResult values instead.
"""


class ToolchatError(Exception):
    """Base exception for all toolchat-server errors."""


class CompletionError(ToolchatError):
    """A request to the completion endpoint failed.

    Raised for non-success HTTP statuses, transport exceptions while issuing
    the request, and responses with an unexpected shape. Terminal for the
    current exchange.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TransportError(ToolchatError):
    """A tool server session could not be established over a transport."""

    def __init__(self, transport: str, message: str) -> None:
        self.transport = transport
        super().__init__(message)


class ToolExecutionError(ToolchatError):
    """A tool server reported that a tool call failed."""


class InvalidTransitionError(ToolchatError):
    """A state machine was asked to make a transition it does not allow."""
