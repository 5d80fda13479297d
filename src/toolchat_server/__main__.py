"""CLI entry point for toolchat-server.

It can be invoked as `toolchat-server` (via the script entry point) or
`python -m toolchat_server`. Command-line options override the TOOLCHAT_
environment variables.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import uvicorn
from pydantic import TypeAdapter, ValidationError

from toolchat_server import __version__, create_app
from toolchat_server.config import ToolchatSettings
from toolchat_server.mcp import ToolServerConfig

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="toolchat-server",
        description="Streaming chat completions with MCP tool orchestration",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"toolchat-server {__version__}",
    )

    server = parser.add_argument_group("server")
    server.add_argument("--host", help="Host to bind to (TOOLCHAT_HOST, default: 127.0.0.1)")
    server.add_argument("--port", type=int, help="Port to bind to (TOOLCHAT_PORT, default: 8000)")
    server.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (TOOLCHAT_LOG_LEVEL, default: INFO)",
    )

    completion = parser.add_argument_group("completion endpoint")
    completion.add_argument(
        "--api-endpoint",
        help="Chat completion endpoint URL (TOOLCHAT_API_ENDPOINT)",
    )
    completion.add_argument("--model", help="Default model (TOOLCHAT_MODEL, default: gpt-4o)")

    tools = parser.add_argument_group("tools")
    tools.add_argument(
        "--tool-calling-mode",
        choices=["native", "prompt"],
        help="How tools are offered to the model (TOOLCHAT_TOOL_CALLING_MODE, default: prompt)",
    )
    tools.add_argument(
        "--max-tool-rounds",
        type=int,
        help="Rounds of tool execution before a final answer is forced "
        "(TOOLCHAT_MAX_TOOL_ROUNDS, default: 5)",
    )
    tools.add_argument(
        "--tool-servers",
        type=Path,
        metavar="FILE",
        help="JSON file with a list of tool server configurations (TOOLCHAT_TOOL_SERVERS)",
    )
    return parser


def _load_tool_servers(path: Path) -> list[ToolServerConfig]:
    """Read tool server configurations from a JSON file.

    Raises:
        SystemExit: If the file cannot be read or is not a valid list of configs
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return TypeAdapter(list[ToolServerConfig]).validate_python(data)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise SystemExit(f"Invalid tool server file {path}: {e}") from e


def main() -> None:
    """Main entry point for the toolchat-server CLI.

    Parses command-line arguments and starts the uvicorn server with the
    FastAPI application.
    """
    args = _build_parser().parse_args()

    # CLI args override environment variables
    overrides = {
        name: getattr(args, name)
        for name in (
            "host",
            "port",
            "log_level",
            "api_endpoint",
            "model",
            "tool_calling_mode",
            "max_tool_rounds",
        )
        if getattr(args, name) is not None
    }
    if args.tool_servers is not None:
        overrides["tool_servers"] = _load_tool_servers(args.tool_servers)

    settings = ToolchatSettings(**overrides)

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(
        f"Starting toolchat-server {__version__} with {len(settings.tool_servers)} "
        f"configured tool server(s)"
    )

    app = create_app(settings=settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    sys.exit(main())
