"""Configuration module for toolchat-server using pydantic-settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from toolchat_server.llm.types import CompletionSettings, LLMProvider, ToolCallingMode
from toolchat_server.mcp.types import ToolServerConfig


class ToolchatSettings(BaseSettings):
    """Main configuration settings for toolchat-server.

    All settings can be overridden via environment variables with the TOOLCHAT_
    prefix. For example, TOOLCHAT_MODEL will override the model setting, and
    TOOLCHAT_TOOL_SERVERS takes a JSON list of tool server configurations.
    """

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Completion endpoint defaults, overridable per exchange
    provider: LLMProvider = LLMProvider.OPENAI_COMPATIBLE
    api_endpoint: str = "https://api.openai.com/v1/chat/completions"
    api_key: str = ""
    model: str = "gpt-4o"
    system_prompt: str | None = None
    request_timeout: float = 120.0

    # Tool orchestration
    tool_calling_mode: ToolCallingMode = ToolCallingMode.PROMPT
    max_tool_rounds: int = Field(default=5, ge=0)

    # Tool servers connected at startup
    tool_servers: list[ToolServerConfig] = Field(default_factory=list)
    connect_timeout: float = 10.0

    # CORS
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="TOOLCHAT_")

    def completion_defaults(self) -> CompletionSettings:
        """Build the completion settings used when a request overrides nothing."""
        return CompletionSettings(
            api_endpoint=self.api_endpoint,
            model=self.model,
            api_key=self.api_key,
            provider=self.provider,
            system_prompt=self.system_prompt,
            tool_calling_mode=self.tool_calling_mode,
            max_tool_rounds=self.max_tool_rounds,
        )
