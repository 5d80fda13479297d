"""toolchat-server: Streaming chat completions with MCP tool orchestration.

This package provides a REST API, SSE streaming and a WebSocket channel for
chatting with OpenAI-compatible models that can call tools on remote MCP
servers.
"""

__version__ = "0.1.0"

from toolchat_server.app import create_app  # noqa: E402

__all__ = ["create_app", "__version__"]
