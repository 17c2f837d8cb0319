"""FrostMod: a Discord moderation bot with word filtering, warnings and timed mutes."""

from .bot import create_bot

__all__ = ["create_bot"]
