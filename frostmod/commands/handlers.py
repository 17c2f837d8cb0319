"""Command table and dispatcher shared by every slash command.

Each command is a coroutine ``(CommandContext, CommandServices) -> CommandResult``
registered with :func:`command`. :class:`CommandDispatcher` applies the
guild-only, permission and cooldown checks uniformly before calling it, and
turns :class:`~frostmod.errors.ModerationError` into a user-facing rejection.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from ..db import WarnRecord, utcnow
from ..errors import ConfigMissing, ModerationError
from ..gateway import COLOR_DANGER, COLOR_INFO, COLOR_SUCCESS, LogEntry
from ..services.cooldown import CooldownGate
from ..services.inference import InferenceClient
from ..services.moderation import ModerationEngine, ModerationStore, MuteRequest
from ..services.search import SearchClient, summarize_result
from ..services.settings import FilterLevel, SettingsStore
from ..utils.discord import format_uptime, truncate

logger = logging.getLogger(__name__)

GENERIC_ERROR = "An error occurred while executing this command. Please try again later."


class Permission(str, Enum):
    MANAGE_GUILD = "manage_guild"
    MODERATE_MEMBERS = "moderate_members"


@dataclass(frozen=True)
class UserOption:
    user_id: int
    username: str

    @property
    def mention(self) -> str:
        return f"<@{self.user_id}>"


@dataclass
class CommandContext:
    name: str
    user_id: int
    user_name: str
    guild_id: Optional[int] = None
    channel_id: Optional[int] = None
    can_manage_guild: bool = False
    can_moderate: bool = False
    options: Dict[str, Any] = field(default_factory=dict)

    def has(self, permission: Permission) -> bool:
        if permission is Permission.MANAGE_GUILD:
            return self.can_manage_guild
        return self.can_moderate


@dataclass
class CommandResult:
    content: Optional[str] = None
    entry: Optional[LogEntry] = None
    ephemeral: bool = False
    success: bool = True

    @classmethod
    def reject(cls, message: str) -> "CommandResult":
        return cls(content=f"⚠️ {message}", ephemeral=True, success=False)


@dataclass
class CommandServices:
    settings: SettingsStore
    engine: ModerationEngine
    cooldowns: CooldownGate
    store: ModerationStore
    inference: InferenceClient
    search: SearchClient
    started_at: float = field(default_factory=time.monotonic)
    latency: Callable[[], float] = lambda: 0.0
    clock: Callable[[], float] = time.monotonic


Handler = Callable[[CommandContext, CommandServices], Awaitable[CommandResult]]


@dataclass(frozen=True)
class RegisteredCommand:
    name: str
    description: str
    handler: Handler
    permission: Optional[Permission] = None
    guild_only: bool = True
    deferred: bool = False


COMMANDS: Dict[str, RegisteredCommand] = {}


def command(
    name: str,
    description: str,
    *,
    permission: Optional[Permission] = None,
    guild_only: bool = True,
    deferred: bool = False,
) -> Callable[[Handler], Handler]:
    def decorator(func: Handler) -> Handler:
        COMMANDS[name] = RegisteredCommand(
            name=name,
            description=description,
            handler=func,
            permission=permission,
            guild_only=guild_only,
            deferred=deferred,
        )
        return func

    return decorator


class CommandDispatcher:
    def __init__(self, services: CommandServices, table: Optional[Dict[str, RegisteredCommand]] = None):
        self.services = services
        self._table = dict(table if table is not None else COMMANDS)

    def lookup(self, name: str) -> Optional[RegisteredCommand]:
        return self._table.get(name)

    async def dispatch(self, ctx: CommandContext) -> CommandResult:
        registered = self._table.get(ctx.name)
        if registered is None:
            return CommandResult.reject(f"Unknown command `/{ctx.name}`.")
        if registered.guild_only and ctx.guild_id is None:
            return CommandResult.reject("This command can only be used inside a server.")

        if registered.permission is not None and not ctx.has(registered.permission):
            logger.info(
                "/%s refused for %s: missing %s", ctx.name, ctx.user_id, registered.permission.value
            )
            return CommandResult.reject(_permission_message(registered.permission))

        gate = self.services.cooldowns.try_acquire(ctx.name, ctx.user_id)
        if not gate.allowed:
            return CommandResult(content=gate.message(), ephemeral=True, success=False)

        try:
            return await registered.handler(ctx, self.services)
        except ModerationError as exc:
            logger.info("/%s rejected for %s: %s", ctx.name, ctx.user_id, exc)
            return CommandResult.reject(exc.user_message)
        except Exception:
            logger.exception("Error executing command %s", ctx.name)
            return CommandResult(content=GENERIC_ERROR, ephemeral=True, success=False)


def _permission_message(permission: Permission) -> str:
    if permission is Permission.MANAGE_GUILD:
        return "You need the Manage Server permission to use this command."
    return "You need the Moderate Members permission to use this command."


async def _update_setting(ctx: CommandContext, services: CommandServices, **fields: Any) -> None:
    await services.settings.upsert(ctx.guild_id, **fields)
    services.settings.invalidate(ctx.guild_id)


@command("welcome", "Set the welcome channel where new members will be greeted.", permission=Permission.MANAGE_GUILD)
async def set_welcome_channel(ctx: CommandContext, services: CommandServices) -> CommandResult:
    channel_id = ctx.options["channel"]
    await _update_setting(ctx, services, welcome_channel_id=channel_id)
    return CommandResult(content=f"✅ Welcome channel set to <#{channel_id}>.")


@command("wmessage", "Set the welcome message for new members.", permission=Permission.MANAGE_GUILD)
async def set_welcome_message(ctx: CommandContext, services: CommandServices) -> CommandResult:
    message = ctx.options["message"].strip()
    if not message:
        return CommandResult.reject("Please provide a welcome message.")
    await _update_setting(ctx, services, welcome_message=message)
    return CommandResult(content=f'✅ Welcome message set: "{message}"')


@command("joinrole", "Set the auto-role that new members receive.", permission=Permission.MANAGE_GUILD)
async def set_join_role(ctx: CommandContext, services: CommandServices) -> CommandResult:
    role_id = ctx.options["role"]
    await _update_setting(ctx, services, auto_role_id=role_id)
    return CommandResult(content=f"✅ New members will be assigned <@&{role_id}>.")


@command("ignorelinks", "Set a channel that the message filter ignores.", permission=Permission.MANAGE_GUILD)
async def set_ignored_channel(ctx: CommandContext, services: CommandServices) -> CommandResult:
    channel_id = ctx.options["channel"]
    await _update_setting(ctx, services, ignored_channel_id=channel_id)
    return CommandResult(content=f"✅ The filter will ignore <#{channel_id}>.")


@command("filter", "Set the curse word filter level.", permission=Permission.MANAGE_GUILD)
async def set_filter_level(ctx: CommandContext, services: CommandServices) -> CommandResult:
    try:
        level = FilterLevel(str(ctx.options["level"]).lower())
    except ValueError:
        return CommandResult.reject("Filter level must be light, moderate or strict.")
    await _update_setting(ctx, services, filter_level=level)
    return CommandResult(content=f"✅ Filter level set to {level.value}.")


@command("logs", "Set the channel for moderation logs.", permission=Permission.MANAGE_GUILD)
async def set_logs_channel(ctx: CommandContext, services: CommandServices) -> CommandResult:
    channel_id = ctx.options["channel"]
    await _update_setting(ctx, services, logs_channel_id=channel_id)
    return CommandResult(content=f"✅ Logs channel set to <#{channel_id}>.")


@command("mutedrole", "Set the role used to mute members.", permission=Permission.MANAGE_GUILD)
async def set_muted_role(ctx: CommandContext, services: CommandServices) -> CommandResult:
    role_id = ctx.options["role"]
    await _update_setting(ctx, services, muted_role_id=role_id)
    return CommandResult(content=f"✅ Muted role set to <@&{role_id}>.")


@command("warn", "Warn a user.", permission=Permission.MANAGE_GUILD)
async def warn_user(ctx: CommandContext, services: CommandServices) -> CommandResult:
    target: UserOption = ctx.options["user"]
    reason = ctx.options["reason"].strip() or "No reason provided"
    policy = await services.settings.get(ctx.guild_id)
    if policy is None or policy.logs_channel_id is None:
        raise ConfigMissing("No logs channel set. Please set a logs channel using `/logs`.")

    entry = LogEntry(
        title="User Warned",
        description=f"{target.username} was warned.",
        color=COLOR_DANGER,
    )
    entry.add_field("Reason", reason)
    entry.add_field("Warned by", ctx.user_name)
    if not await services.engine.send_log(policy, entry):
        raise ConfigMissing("The logs channel could not be reached. Set it again with `/logs`.")

    await services.store.insert_warn(
        WarnRecord(
            guild_id=ctx.guild_id,
            user_id=target.user_id,
            username=target.username,
            reason=reason,
            warned_by=ctx.user_name,
            timestamp=utcnow(),
        )
    )
    logger.info("%s warned %s in guild %s", ctx.user_name, target.user_id, ctx.guild_id)
    return CommandResult(content=f"✅ {target.username} has been warned for: {reason}")


@command("mute", "Mute a user with the configured muted role.", permission=Permission.MODERATE_MEMBERS)
async def mute_user(ctx: CommandContext, services: CommandServices) -> CommandResult:
    target: UserOption = ctx.options["user"]
    reason = (ctx.options.get("reason") or "").strip() or "No reason provided"
    duration = int(ctx.options.get("duration_minutes") or 0)
    if duration < 0:
        return CommandResult.reject("Duration must be zero (permanent) or a positive number of minutes.")
    policy = await services.settings.get(ctx.guild_id)
    record = await services.engine.mute(
        MuteRequest(
            guild_id=ctx.guild_id,
            target_user_id=target.user_id,
            moderator_name=ctx.user_name,
            reason=reason,
            duration_minutes=duration,
            moderator_can_mute=ctx.can_moderate,
        ),
        policy,
    )
    length = f"for {record.duration_minutes} minute(s)" if record.duration_minutes else "indefinitely"
    return CommandResult(content=f"🔇 {record.username} has been muted {length}. Reason: {reason}")


@command("analyze", "Analyze the tone of a piece of text.", deferred=True)
async def analyze_text(ctx: CommandContext, services: CommandServices) -> CommandResult:
    text = ctx.options["text"][:500]
    sentiment = await services.inference.classify_sentiment(text)
    toxicity = await services.inference.classify_toxicity(text)
    entry = LogEntry(title="🧪 Message Analysis", color=COLOR_INFO)
    entry.add_field("Text", truncate(text))
    entry.add_field("Sentiment", f"{sentiment.label} ({sentiment.score:.0%})")
    entry.add_field("Toxicity", f"{toxicity.label} ({toxicity.score:.0%})")
    return CommandResult(entry=entry)


@command("ask", "Ask the AI a question.", guild_only=False, deferred=True)
async def ask_question(ctx: CommandContext, services: CommandServices) -> CommandResult:
    question = ctx.options["question"].strip()
    result = await services.inference.answer_question(question)
    entry = LogEntry(title="AI Response", color=COLOR_INFO, footer="Powered by HuggingFace AI")
    entry.add_field("❓ Question", truncate(question))
    entry.add_field("💡 Answer", truncate(result.answer) or "I cannot answer that question.")
    return CommandResult(entry=entry)


@command("search", "Search the web for answers.", guild_only=False, deferred=True)
async def search_web(ctx: CommandContext, services: CommandServices) -> CommandResult:
    query = ctx.options["query"].strip()
    results = await services.search.search(query)
    if not results:
        return CommandResult(
            entry=LogEntry(
                title="🔎 No Results Found",
                description="Sorry, I couldn't find any results for your query.",
                color=COLOR_DANGER,
            )
        )
    summary = summarize_result(query, results[0])
    entry = LogEntry(title="🔎 Search Results", color=COLOR_INFO, footer="Powered by Google Search")
    entry.add_field("❓ Query", truncate(query))
    entry.add_field("💡 Answer", truncate(summary.answer) or "No direct answer found.")
    if summary.additional_info:
        entry.add_field("📝 Additional Information", truncate(summary.additional_info))
    if summary.source:
        entry.add_field("🔗 Source", summary.source)
    return CommandResult(entry=entry)


@command("status", "Shows the bot's current status, ping, and uptime.", guild_only=False)
async def bot_status(ctx: CommandContext, services: CommandServices) -> CommandResult:
    latency_ms = round(services.latency() * 1000)
    uptime = format_uptime(services.clock() - services.started_at)
    entry = LogEntry(title="🤖 Bot Status", color=COLOR_SUCCESS)
    entry.add_field("📡 Ping", f"{latency_ms}ms")
    entry.add_field("⏰ Uptime", uptime)
    entry.add_field("🛡️ Classifier", services.engine.classifier.name)
    return CommandResult(entry=entry)


@command("help", "Displays the help menu with available commands.", guild_only=False)
async def show_help(ctx: CommandContext, services: CommandServices) -> CommandResult:
    entry = LogEntry(
        title="FrostMod Commands",
        description="A moderation bot with message filtering, warnings, mutes and welcome messages.",
        color=0x5865F2,
    )
    for registered in COMMANDS.values():
        entry.add_field(f"`/{registered.name}`", registered.description)
    return CommandResult(entry=entry)
