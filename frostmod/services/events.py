"""Member and channel lifecycle events: onboarding and audit logging."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ..gateway import COLOR_DANGER, COLOR_INFO, COLOR_SUCCESS, Gateway, LogEntry
from ..utils.discord import render_welcome
from .moderation import ModerationEngine
from .settings import SettingsStore

logger = logging.getLogger(__name__)


class MemberLogStore(Protocol):
    async def record_member_join(
        self, guild_id: int, user_id: int, username: str, server_name: Optional[str]
    ) -> None: ...

    async def record_member_leave(self, guild_id: int, user_id: int, username: str) -> None: ...


@dataclass(frozen=True)
class MemberEvent:
    guild_id: int
    guild_name: str
    member_count: int
    user_id: int
    username: str


@dataclass(frozen=True)
class ChannelEvent:
    guild_id: int
    channel_id: int
    channel_name: str
    channel_type: str


class GuildEvents:
    """Handles gateway events that are not messages.

    Each step runs on its own: a missing welcome channel doesn't stop the
    auto-role, and a failed database insert doesn't stop the log entry.
    """

    def __init__(
        self,
        gateway: Gateway,
        settings: SettingsStore,
        store: MemberLogStore,
        engine: ModerationEngine,
    ):
        self._gateway = gateway
        self._settings = settings
        self._store = store
        self._engine = engine

    async def on_member_join(self, event: MemberEvent) -> None:
        policy = await self._settings.get(event.guild_id)

        if policy and policy.welcome_channel_id and policy.welcome_message:
            entry = LogEntry(
                title="🎉 Welcome!",
                description=render_welcome(policy.welcome_message, event.username, event.member_count),
                color=COLOR_INFO,
                footer=f"Member #{event.member_count}",
            )
            try:
                await self._gateway.send_entry(policy.welcome_channel_id, entry)
            except Exception:
                logger.exception("Failed to send welcome message in guild %s", event.guild_id)

        if policy and policy.auto_role_id:
            try:
                await self._gateway.add_role(
                    event.guild_id, event.user_id, policy.auto_role_id, reason="Auto-role on join"
                )
            except Exception:
                logger.exception("Failed to assign auto-role in guild %s", event.guild_id)

        try:
            await self._store.record_member_join(
                event.guild_id, event.user_id, event.username, event.guild_name
            )
        except Exception:
            logger.exception("Failed to record member join in guild %s", event.guild_id)

        await self._engine.send_log(
            policy,
            LogEntry(
                title="User Joined",
                description=f"{event.username} has joined the server.",
                color=COLOR_SUCCESS,
            ),
        )

    async def on_member_remove(self, event: MemberEvent) -> None:
        try:
            await self._store.record_member_leave(event.guild_id, event.user_id, event.username)
        except Exception:
            logger.exception("Failed to record member leave in guild %s", event.guild_id)

        policy = await self._settings.get(event.guild_id)
        await self._engine.send_log(
            policy,
            LogEntry(
                title="User Left",
                description=f"{event.username} has left the server.",
                color=COLOR_DANGER,
            ),
        )

    async def on_channel_create(self, event: ChannelEvent) -> None:
        policy = await self._settings.get(event.guild_id)
        await self._engine.send_log(
            policy,
            LogEntry(
                title="Channel Created",
                description=f"<#{event.channel_id}> (`{event.channel_name}`, {event.channel_type})",
                color=COLOR_SUCCESS,
            ),
        )

    async def on_channel_delete(self, event: ChannelEvent) -> None:
        policy = await self._settings.get(event.guild_id)
        if policy and event.channel_id == policy.logs_channel_id:
            logger.warning("Logs channel for guild %s was deleted", event.guild_id)
            return
        await self._engine.send_log(
            policy,
            LogEntry(
                title="Channel Deleted",
                description=f"`#{event.channel_name}` ({event.channel_type})",
                color=COLOR_DANGER,
            ),
        )
