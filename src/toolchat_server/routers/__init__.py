"""FastAPI routers for API endpoints.

This package contains all route handlers organized by resource type.
Each router module defines endpoints for a specific domain (health, models, servers, chat).
"""

from toolchat_server.routers import chat, health, models, servers

__all__ = [
    "chat",
    "health",
    "models",
    "servers",
]
