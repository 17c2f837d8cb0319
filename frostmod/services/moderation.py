"""Moderation decisions for incoming messages and moderator mute actions."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from ..db import MuteRecord, WarnRecord, utcnow
from ..errors import (
    AlreadyMuted,
    ConfigMissing,
    OperationFailed,
    PermissionDenied,
    TargetNotFound,
)
from ..gateway import COLOR_DANGER, COLOR_WARNING, Gateway, LogEntry
from ..models.config import MESSAGE_ANALYSIS_SCOPE
from .classifier import ContentClassifier, ModerationVerdict, Severity
from .cooldown import CooldownGate
from .settings import FilterLevel, GuildPolicy

logger = logging.getLogger(__name__)

NOTICE_DELETE_AFTER = 5.0
AUTO_WARN_SCORE = 0.9
SYSTEM_ACTOR = "system"

# Lowest severity that gets a message deleted at each filter level.
DELETE_THRESHOLDS: Dict[FilterLevel, Severity] = {
    FilterLevel.STRICT: Severity.LOW,
    FilterLevel.MODERATE: Severity.MEDIUM,
    FilterLevel.LIGHT: Severity.HIGH,
}


class ModerationStore(Protocol):
    async def insert_warn(self, record: WarnRecord) -> None: ...

    async def insert_mute(self, record: MuteRecord) -> None: ...

    async def is_mute_superseded(self, record: MuteRecord) -> bool: ...

    async def mark_mute_expired(self, record: MuteRecord, unmuted_at: datetime) -> bool: ...

    async def fetch_pending_mutes(self) -> List[MuteRecord]: ...


@dataclass(frozen=True)
class IncomingMessage:
    message_id: int
    guild_id: int
    channel_id: int
    author_id: int
    author_name: str
    text: str
    author_is_bot: bool = False

    @property
    def author_mention(self) -> str:
        return f"<@{self.author_id}>"


@dataclass(frozen=True)
class ModerationAction:
    deleted: bool = False
    warned: bool = False
    logged: bool = False

    @property
    def taken(self) -> bool:
        return self.deleted or self.warned


NO_ACTION = ModerationAction()


@dataclass(frozen=True)
class MuteRequest:
    guild_id: int
    target_user_id: int
    moderator_name: str
    reason: str = "No reason provided"
    duration_minutes: int = 0
    moderator_can_mute: bool = False


def should_delete(verdict: ModerationVerdict, level: FilterLevel) -> bool:
    if verdict.unknown:
        return False
    return verdict.severity >= DELETE_THRESHOLDS[level]


def should_auto_warn(verdict: ModerationVerdict) -> bool:
    return verdict.score is not None and verdict.score > AUTO_WARN_SCORE


class UnmuteScheduler:
    """One-shot timers that lift timed mutes.

    Each member has at most one pending timer; scheduling again or cancelling
    replaces it. A timer belongs to one MuteRecord: when it fires it does
    nothing if a newer mute has superseded that record, and otherwise removes
    the muted role only if it is still held, so manual unmutes are left alone.
    """

    def __init__(
        self,
        gateway: Gateway,
        store: ModerationStore,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = utcnow,
    ):
        self._gateway = gateway
        self._store = store
        self._sleep = sleep
        self._now = now
        self._tasks: Dict[Tuple[int, int], asyncio.Task] = {}

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def cancel(self, guild_id: int, user_id: int) -> bool:
        task = self._tasks.pop((guild_id, user_id), None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info("Cancelled pending unmute for user %s in guild %s", user_id, guild_id)
        return True

    def schedule(self, record: MuteRecord, role_id: int) -> Optional[asyncio.Task]:
        if record.expires_at is None:
            return None
        self.cancel(record.guild_id, record.user_id)
        delay = max((record.expires_at - self._now()).total_seconds(), 0.0)
        task = asyncio.create_task(self._run(record, delay, role_id))
        self._tasks[(record.guild_id, record.user_id)] = task
        logger.info(
            "Scheduled unmute for user %s in guild %s in %.0fs",
            record.user_id,
            record.guild_id,
            delay,
        )
        return task

    async def restore(self, role_for_guild: Callable[[int], Awaitable[Optional[int]]]) -> int:
        """Re-arm timers for timed mutes persisted before a restart.

        Only the newest pending record of each member is re-armed.
        """

        latest: Dict[Tuple[int, int], MuteRecord] = {}
        for record in await self._store.fetch_pending_mutes():
            key = (record.guild_id, record.user_id)
            if key not in latest or record.muted_at > latest[key].muted_at:
                latest[key] = record

        restored = 0
        for record in latest.values():
            role_id = await role_for_guild(record.guild_id)
            if role_id is None:
                logger.warning(
                    "Guild %s has a pending mute but no muted role configured", record.guild_id
                )
                continue
            if self.schedule(record, role_id) is not None:
                restored += 1
        return restored

    async def _run(self, record: MuteRecord, delay: float, role_id: int) -> None:
        key = (record.guild_id, record.user_id)
        try:
            await self._sleep(delay)
            await self.expire(record, role_id)
        finally:
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]

    async def expire(self, record: MuteRecord, role_id: int) -> bool:
        """Lift ``record``'s mute now. Returns True if the role was removed."""

        guild_id, user_id = record.guild_id, record.user_id
        try:
            if await self._store.is_mute_superseded(record):
                logger.info(
                    "Skipping expired timer for user %s in guild %s; a newer mute replaced it",
                    user_id,
                    guild_id,
                )
                return False
        except Exception:
            logger.exception("Could not check mute history for %s in guild %s", user_id, guild_id)

        removed = False
        try:
            member = await self._gateway.fetch_member(guild_id, user_id)
            if member is not None and member.has_role(role_id):
                await self._gateway.remove_role(
                    guild_id, user_id, role_id, reason="Mute duration expired"
                )
                removed = True
        except (TargetNotFound, OperationFailed):
            logger.exception("Failed to remove muted role from %s in guild %s", user_id, guild_id)
        try:
            await self._store.mark_mute_expired(record, self._now())
        except Exception:
            logger.exception("Failed to mark mute expired for %s in guild %s", user_id, guild_id)
        logger.info("Mute expired for user %s in guild %s", user_id, guild_id)
        return removed

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class ModerationEngine:
    """Applies guild policy to classifier verdicts and carries out the result."""

    def __init__(
        self,
        gateway: Gateway,
        store: ModerationStore,
        classifier: ContentClassifier,
        cooldowns: CooldownGate,
        *,
        bot_user_id: Optional[int] = None,
        scheduler: Optional[UnmuteScheduler] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self._gateway = gateway
        self._store = store
        self._classifier = classifier
        self._cooldowns = cooldowns
        self.bot_user_id = bot_user_id
        self._now = now
        self.scheduler = scheduler or UnmuteScheduler(gateway, store, now=now)

    @property
    def classifier(self) -> ContentClassifier:
        return self._classifier

    async def handle_message(
        self, message: IncomingMessage, policy: Optional[GuildPolicy]
    ) -> ModerationAction:
        if message is None:
            raise ValueError("handle_message requires a message")
        if not message.guild_id:
            raise ValueError("handle_message requires a guild message")

        if policy is None or policy.filter_level is None:
            return NO_ACTION
        if policy.ignored_channel_id is not None and message.channel_id == policy.ignored_channel_id:
            return NO_ACTION
        if message.author_is_bot or (
            self.bot_user_id is not None and message.author_id == self.bot_user_id
        ):
            return NO_ACTION

        if self._classifier.rate_limited:
            gate = self._cooldowns.try_acquire(MESSAGE_ANALYSIS_SCOPE, message.author_id)
            if not gate.allowed:
                logger.debug(
                    "Skipping analysis for %s; rate limited for %.1fs",
                    message.author_id,
                    gate.retry_after,
                )
                return NO_ACTION

        verdict = await self._classifier.evaluate(message.text, policy)
        if verdict.unknown:
            return NO_ACTION

        delete = should_delete(verdict, policy.filter_level)
        warn = should_auto_warn(verdict)
        if not (delete or warn):
            return NO_ACTION

        deleted = warned = logged = False
        if delete:
            deleted = await self._delete(message)
            await self._send_notice(message)
        if warn:
            warned = await self._auto_warn(message, verdict)
        logged = await self._log_message_action(message, verdict, policy, delete, warn)

        logger.info(
            "Moderated message %s from %s in guild %s: severity=%s deleted=%s warned=%s",
            message.message_id,
            message.author_id,
            message.guild_id,
            verdict.severity.name,
            deleted,
            warned,
        )
        return ModerationAction(deleted=deleted, warned=warned, logged=logged)

    async def _delete(self, message: IncomingMessage) -> bool:
        try:
            await self._gateway.delete_message(message.channel_id, message.message_id)
        except TargetNotFound:
            logger.debug("Message %s already deleted", message.message_id)
        except Exception:
            logger.exception("Failed to delete message %s", message.message_id)
            return False
        return True

    async def _send_notice(self, message: IncomingMessage) -> None:
        try:
            await self._gateway.send_message(
                message.channel_id,
                f"{message.author_mention}, your message was removed for containing "
                "inappropriate content.",
                delete_after=NOTICE_DELETE_AFTER,
            )
        except Exception:
            logger.warning("Failed to send removal notice in channel %s", message.channel_id)

    async def _auto_warn(self, message: IncomingMessage, verdict: ModerationVerdict) -> bool:
        record = WarnRecord(
            guild_id=message.guild_id,
            user_id=message.author_id,
            username=message.author_name,
            reason=f"Automatic warning: {verdict.reason}",
            warned_by=SYSTEM_ACTOR,
            timestamp=self._now(),
        )
        try:
            await self._store.insert_warn(record)
        except Exception:
            logger.exception("Failed to persist automatic warning for %s", message.author_id)
            return False
        return True

    async def _log_message_action(
        self,
        message: IncomingMessage,
        verdict: ModerationVerdict,
        policy: GuildPolicy,
        deleted: bool,
        warned: bool,
    ) -> bool:
        actions = [name for name, done in (("deleted", deleted), ("warned", warned)) if done]
        entry = LogEntry(title="Message Filtered", color=COLOR_WARNING)
        entry.add_field("User", f"{message.author_name} ({message.author_id})")
        entry.add_field("Channel", f"<#{message.channel_id}>")
        entry.add_field("Filter Level", policy.filter_level.value)
        entry.add_field("Severity", verdict.severity.name)
        entry.add_field("Reason", verdict.reason or "n/a")
        entry.add_field("Action", ", ".join(actions))
        return await self.send_log(policy, entry)

    async def send_log(self, policy: Optional[GuildPolicy], entry: LogEntry) -> bool:
        """Post ``entry`` to the guild's logs channel if one is configured and reachable."""

        if policy is None or policy.logs_channel_id is None:
            return False
        channel_id = policy.logs_channel_id
        try:
            if not await self._gateway.channel_exists(channel_id):
                logger.warning("Logs channel %s for guild %s not found", channel_id, policy.guild_id)
                return False
            await self._gateway.send_entry(channel_id, entry)
        except Exception:
            logger.exception("Failed to send log entry to channel %s", channel_id)
            return False
        return True

    async def mute(self, request: MuteRequest, policy: Optional[GuildPolicy]) -> MuteRecord:
        if not request.moderator_can_mute:
            raise PermissionDenied("You need the Moderate Members permission to mute users.")
        if policy is None or policy.muted_role_id is None:
            raise ConfigMissing("No muted role set. Configure one with `/mutedrole` first.")
        if request.duration_minutes < 0:
            raise ValueError("duration_minutes must not be negative")

        role_id = policy.muted_role_id
        if not await self._gateway.role_exists(request.guild_id, role_id):
            raise TargetNotFound("The configured muted role no longer exists.")
        member = await self._gateway.fetch_member(request.guild_id, request.target_user_id)
        if member is None:
            raise TargetNotFound("That user is not a member of this server.")
        if member.has_role(role_id):
            raise AlreadyMuted(f"{member.display_name} is already muted.")

        await self._gateway.add_role(
            request.guild_id, request.target_user_id, role_id, reason=request.reason
        )

        record = MuteRecord.create(
            guild_id=request.guild_id,
            user_id=request.target_user_id,
            username=member.display_name,
            muted_by=request.moderator_name,
            reason=request.reason,
            duration_minutes=request.duration_minutes,
            muted_at=self._now(),
        )
        try:
            await self._store.insert_mute(record)
        except Exception:
            logger.exception("Failed to persist mute for %s", request.target_user_id)
        # A re-mute replaces any pending timer, including with a permanent mute.
        self.scheduler.cancel(request.guild_id, request.target_user_id)
        if record.expires_at is not None:
            self.scheduler.schedule(record, role_id)

        duration = (
            f"{record.duration_minutes} minute(s)" if record.duration_minutes else "Permanent"
        )
        entry = LogEntry(
            title="User Muted",
            description=f"{member.display_name} was muted.",
            color=COLOR_DANGER,
        )
        entry.add_field("Reason", record.reason)
        entry.add_field("Duration", duration)
        entry.add_field("Muted by", record.muted_by)
        await self.send_log(policy, entry)
        logger.info(
            "Muted %s in guild %s for %s (by %s)",
            request.target_user_id,
            request.guild_id,
            duration,
            request.moderator_name,
        )
        return record
