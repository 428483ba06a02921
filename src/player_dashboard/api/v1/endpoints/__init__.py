"""API endpoint modules for version 1."""

from .auth import router as auth_router
from .commands import router as commands_router
from .players import router as players_router
from .system import router as system_router

__all__ = [
    "auth_router",
    "commands_router",
    "players_router",
    "system_router",
]
