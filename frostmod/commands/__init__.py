"""Command registration for FrostMod."""

from .handlers import COMMANDS, CommandContext, CommandDispatcher, CommandResult, CommandServices
from .slash import register_slash_commands

__all__ = [
    "COMMANDS",
    "CommandContext",
    "CommandDispatcher",
    "CommandResult",
    "CommandServices",
    "register_slash_commands",
]
