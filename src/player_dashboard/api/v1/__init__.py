"""Version 1 API endpoints."""

from .endpoints import (
    auth_router,
    commands_router,
    players_router,
    system_router,
)

__all__ = [
    "auth_router",
    "commands_router",
    "players_router",
    "system_router",
]
