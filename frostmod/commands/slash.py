"""Slash command definitions for FrostMod.

Every command funnels into :class:`CommandDispatcher`, which owns the cooldown
and permission checks, so nothing here uses ``app_commands.checks``.
"""

from __future__ import annotations

import logging
from typing import Any

import discord
from discord import app_commands

from .handlers import CommandContext, CommandDispatcher, CommandResult, UserOption

logger = logging.getLogger(__name__)

MAX_MUTE_MINUTES = 40320  # 28 days


def build_context(interaction: discord.Interaction, name: str, **options: Any) -> CommandContext:
    permissions = interaction.permissions
    return CommandContext(
        name=name,
        user_id=interaction.user.id,
        user_name=str(interaction.user),
        guild_id=interaction.guild_id,
        channel_id=interaction.channel_id,
        can_manage_guild=bool(interaction.guild_id and permissions.manage_guild),
        can_moderate=bool(interaction.guild_id and permissions.moderate_members),
        options=options,
    )


async def _reply(interaction: discord.Interaction, result: CommandResult) -> None:
    kwargs: dict[str, Any] = {"ephemeral": result.ephemeral}
    if result.content:
        kwargs["content"] = result.content
    if result.entry is not None:
        kwargs["embed"] = result.entry.to_embed()
    if interaction.response.is_done():
        await interaction.followup.send(**kwargs)
    else:
        await interaction.response.send_message(**kwargs)


def register_slash_commands(tree: app_commands.CommandTree, dispatcher: CommandDispatcher) -> None:
    """Register all slash commands to the command tree."""

    async def run(interaction: discord.Interaction, name: str, **options: Any) -> None:
        registered = dispatcher.lookup(name)
        if registered is not None and registered.deferred:
            # Model and search calls can outlive the 3 s interaction window.
            await interaction.response.defer(thinking=True)
        result = await dispatcher.dispatch(build_context(interaction, name, **options))
        try:
            await _reply(interaction, result)
        except discord.HTTPException:
            logger.exception("Failed to reply to /%s", name)

    @tree.command(name="welcome", description="Set the welcome channel where new members will be greeted")
    @app_commands.describe(channel="Channel for welcome messages")
    async def welcome(interaction: discord.Interaction, channel: discord.TextChannel) -> None:
        await run(interaction, "welcome", channel=channel.id)

    @tree.command(name="wmessage", description="Set the welcome message for new members")
    @app_commands.describe(message="Use {user} for the member's name and {memberCount} for the member count")
    async def wmessage(interaction: discord.Interaction, message: str) -> None:
        await run(interaction, "wmessage", message=message)

    @tree.command(name="joinrole", description="Set the auto-role that new members receive")
    @app_commands.describe(role="Role to assign on join")
    async def joinrole(interaction: discord.Interaction, role: discord.Role) -> None:
        await run(interaction, "joinrole", role=role.id)

    @tree.command(name="ignorelinks", description="Set a channel that the message filter ignores")
    @app_commands.describe(channel="Channel to exclude from filtering")
    async def ignorelinks(interaction: discord.Interaction, channel: discord.TextChannel) -> None:
        await run(interaction, "ignorelinks", channel=channel.id)

    @tree.command(name="filter", description="Set the curse word filter level")
    @app_commands.describe(level="How aggressively messages are filtered")
    @app_commands.choices(
        level=[
            app_commands.Choice(name="Light", value="light"),
            app_commands.Choice(name="Moderate", value="moderate"),
            app_commands.Choice(name="Strict", value="strict"),
        ]
    )
    async def filter_level(interaction: discord.Interaction, level: app_commands.Choice[str]) -> None:
        await run(interaction, "filter", level=level.value)

    @tree.command(name="logs", description="Set the channel for moderation logs")
    @app_commands.describe(channel="Channel that receives moderation logs")
    async def logs(interaction: discord.Interaction, channel: discord.TextChannel) -> None:
        await run(interaction, "logs", channel=channel.id)

    @tree.command(name="mutedrole", description="Set the role used to mute members")
    @app_commands.describe(role="Role that prevents members from speaking")
    async def mutedrole(interaction: discord.Interaction, role: discord.Role) -> None:
        await run(interaction, "mutedrole", role=role.id)

    @tree.command(name="warn", description="Warn a user")
    @app_commands.describe(user="The user to warn", reason="Reason for the warning")
    async def warn(interaction: discord.Interaction, user: discord.User, reason: str) -> None:
        await run(interaction, "warn", user=UserOption(user.id, str(user)), reason=reason)

    @tree.command(name="mute", description="Mute a user with the configured muted role")
    @app_commands.describe(
        user="The member to mute",
        duration="Minutes until the mute is lifted (0 for permanent)",
        reason="Reason for the mute",
    )
    async def mute(
        interaction: discord.Interaction,
        user: discord.Member,
        duration: app_commands.Range[int, 0, MAX_MUTE_MINUTES] = 0,
        reason: str = "No reason provided",
    ) -> None:
        await run(
            interaction,
            "mute",
            user=UserOption(user.id, str(user)),
            duration_minutes=duration,
            reason=reason,
        )

    @tree.command(name="analyze", description="Analyze the tone of a piece of text")
    @app_commands.describe(text="Text to analyze")
    async def analyze(interaction: discord.Interaction, text: str) -> None:
        await run(interaction, "analyze", text=text)

    @tree.command(name="ask", description="Ask the AI a question")
    @app_commands.describe(question="Your question")
    async def ask(interaction: discord.Interaction, question: str) -> None:
        await run(interaction, "ask", question=question)

    @tree.command(name="search", description="Search the web for answers")
    @app_commands.describe(query="What to search for")
    async def search(interaction: discord.Interaction, query: str) -> None:
        await run(interaction, "search", query=query)

    @tree.command(name="status", description="Shows the bot's current status, ping, and uptime")
    async def status(interaction: discord.Interaction) -> None:
        await run(interaction, "status")

    @tree.command(name="help", description="Displays the help menu with available commands")
    async def help_command(interaction: discord.Interaction) -> None:
        await run(interaction, "help")
