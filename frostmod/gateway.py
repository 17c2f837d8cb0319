"""Narrow view of the Discord client used by the moderation core."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Protocol, Tuple

import discord

from .errors import OperationFailed, TargetNotFound

logger = logging.getLogger(__name__)

COLOR_INFO = 0x3498DB
COLOR_SUCCESS = 0x00FF00
COLOR_WARNING = 0xFF9900
COLOR_DANGER = 0xFF0000


@dataclass(frozen=True)
class MemberRef:
    guild_id: int
    user_id: int
    display_name: str
    role_ids: FrozenSet[int] = frozenset()

    @property
    def mention(self) -> str:
        return f"<@{self.user_id}>"

    def has_role(self, role_id: int) -> bool:
        return role_id in self.role_ids


@dataclass
class LogEntry:
    """Structured message rendered as an embed by the Discord gateway."""

    title: str
    description: Optional[str] = None
    fields: List[Tuple[str, str]] = field(default_factory=list)
    color: int = COLOR_INFO
    footer: Optional[str] = None

    def add_field(self, name: str, value: str) -> "LogEntry":
        self.fields.append((name, value))
        return self

    def to_embed(self) -> discord.Embed:
        embed = discord.Embed(
            title=self.title,
            description=self.description,
            color=self.color,
            timestamp=discord.utils.utcnow(),
        )
        for name, value in self.fields:
            embed.add_field(name=name, value=value or "\u200b", inline=False)
        if self.footer:
            embed.set_footer(text=self.footer)
        return embed


class Gateway(Protocol):
    async def send_message(
        self, channel_id: int, content: str, *, delete_after: Optional[float] = None
    ) -> None: ...

    async def send_entry(self, channel_id: int, entry: LogEntry) -> None: ...

    async def delete_message(self, channel_id: int, message_id: int) -> None: ...

    async def channel_exists(self, channel_id: int) -> bool: ...

    async def role_exists(self, guild_id: int, role_id: int) -> bool: ...

    async def fetch_member(self, guild_id: int, user_id: int) -> Optional[MemberRef]: ...

    async def add_role(
        self, guild_id: int, user_id: int, role_id: int, *, reason: Optional[str] = None
    ) -> None: ...

    async def remove_role(
        self, guild_id: int, user_id: int, role_id: int, *, reason: Optional[str] = None
    ) -> None: ...


def member_ref(member: discord.Member) -> MemberRef:
    return MemberRef(
        guild_id=member.guild.id,
        user_id=member.id,
        display_name=str(member),
        role_ids=frozenset(role.id for role in member.roles),
    )


class DiscordGateway:
    """Gateway implementation backed by a connected discord.py client.

    discord.py exceptions are translated into the moderation error taxonomy:
    ``NotFound`` becomes :class:`TargetNotFound`, ``Forbidden`` and other HTTP
    failures become :class:`OperationFailed`.
    """

    def __init__(self, client: discord.Client):
        self._client = client

    async def _resolve_channel(self, channel_id: int) -> discord.abc.Messageable:
        channel = self._client.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self._client.fetch_channel(channel_id)
            except discord.NotFound as exc:
                raise TargetNotFound(f"Channel {channel_id} no longer exists.") from exc
            except discord.HTTPException as exc:
                raise OperationFailed(f"Could not access channel {channel_id}.") from exc
        if not isinstance(channel, discord.abc.Messageable):
            raise TargetNotFound(f"Channel {channel_id} cannot receive messages.")
        return channel

    async def send_message(
        self, channel_id: int, content: str, *, delete_after: Optional[float] = None
    ) -> None:
        channel = await self._resolve_channel(channel_id)
        try:
            await channel.send(
                content,
                delete_after=delete_after,
                allowed_mentions=discord.AllowedMentions(users=True, roles=False, everyone=False),
            )
        except discord.HTTPException as exc:
            raise OperationFailed(f"Could not send a message to channel {channel_id}.") from exc

    async def send_entry(self, channel_id: int, entry: LogEntry) -> None:
        channel = await self._resolve_channel(channel_id)
        try:
            await channel.send(embed=entry.to_embed())
        except discord.HTTPException as exc:
            raise OperationFailed(f"Could not send a log entry to channel {channel_id}.") from exc

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        channel = await self._resolve_channel(channel_id)
        try:
            await channel.get_partial_message(message_id).delete()
        except discord.NotFound as exc:
            raise TargetNotFound(f"Message {message_id} was already deleted.") from exc
        except discord.HTTPException as exc:
            raise OperationFailed(f"Could not delete message {message_id}.") from exc

    async def channel_exists(self, channel_id: int) -> bool:
        try:
            await self._resolve_channel(channel_id)
        except (TargetNotFound, OperationFailed):
            return False
        return True

    async def role_exists(self, guild_id: int, role_id: int) -> bool:
        guild = self._client.get_guild(guild_id)
        return guild is not None and guild.get_role(role_id) is not None

    async def _fetch_discord_member(self, guild_id: int, user_id: int) -> Optional[discord.Member]:
        guild = self._client.get_guild(guild_id)
        if guild is None:
            return None
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id)
        except discord.NotFound:
            return None
        except discord.HTTPException as exc:
            raise OperationFailed(f"Could not fetch member {user_id}.") from exc

    async def fetch_member(self, guild_id: int, user_id: int) -> Optional[MemberRef]:
        member = await self._fetch_discord_member(guild_id, user_id)
        return member_ref(member) if member else None

    async def _role_target(
        self, guild_id: int, user_id: int, role_id: int
    ) -> Tuple[discord.Member, discord.Role]:
        member = await self._fetch_discord_member(guild_id, user_id)
        if member is None:
            raise TargetNotFound(f"User {user_id} is not a member of this server.")
        role = member.guild.get_role(role_id)
        if role is None:
            raise TargetNotFound(f"Role {role_id} no longer exists.")
        return member, role

    async def add_role(
        self, guild_id: int, user_id: int, role_id: int, *, reason: Optional[str] = None
    ) -> None:
        member, role = await self._role_target(guild_id, user_id, role_id)
        try:
            await member.add_roles(role, reason=reason)
        except discord.HTTPException as exc:
            raise OperationFailed(
                f"I couldn't assign {role.name}. Make sure my role is above it."
            ) from exc

    async def remove_role(
        self, guild_id: int, user_id: int, role_id: int, *, reason: Optional[str] = None
    ) -> None:
        member, role = await self._role_target(guild_id, user_id, role_id)
        try:
            await member.remove_roles(role, reason=reason)
        except discord.HTTPException as exc:
            raise OperationFailed(
                f"I couldn't remove {role.name}. Make sure my role is above it."
            ) from exc
