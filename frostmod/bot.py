"""Discord bot wiring for FrostMod."""

from __future__ import annotations

import logging
from typing import Optional

import discord
from discord.ext import commands

from .commands.handlers import CommandDispatcher, CommandServices
from .commands.slash import register_slash_commands
from .db import Database
from .gateway import DiscordGateway
from .models.config import BotSettings, ClassifierStrategy, ScorerProvider
from .services.classifier import ContentClassifier, KeywordClassifier, ScoredClassifier
from .services.cooldown import CooldownGate
from .services.events import ChannelEvent, GuildEvents, MemberEvent
from .services.inference import InferenceClient, OpenAIModerationScorer
from .services.moderation import IncomingMessage, ModerationEngine
from .services.search import SearchClient
from .services.settings import SettingsStore

logger = logging.getLogger(__name__)


def build_classifier(settings: BotSettings, inference: InferenceClient) -> ContentClassifier:
    """Pick the message classifier from configuration.

    A scored strategy without credentials for its provider falls back to the
    keyword filter rather than letting every message through.
    """
    if settings.classifier_strategy is ClassifierStrategy.KEYWORD:
        return KeywordClassifier()

    if settings.scorer_provider is ScorerProvider.OPENAI:
        scorer = OpenAIModerationScorer(settings.openai_api_key)
    else:
        scorer = inference
    if not scorer.is_configured():
        logger.warning(
            "CLASSIFIER_STRATEGY=scored but %s is not configured; using the keyword filter",
            settings.scorer_provider.value,
        )
        return KeywordClassifier()
    return ScoredClassifier(scorer)


def _member_event(member: discord.Member) -> MemberEvent:
    return MemberEvent(
        guild_id=member.guild.id,
        guild_name=member.guild.name,
        member_count=member.guild.member_count or 0,
        user_id=member.id,
        username=str(member),
    )


def _channel_event(channel: discord.abc.GuildChannel) -> ChannelEvent:
    return ChannelEvent(
        guild_id=channel.guild.id,
        channel_id=channel.id,
        channel_name=channel.name,
        channel_type=str(channel.type),
    )


def create_bot(
    settings: BotSettings,
    database: Database,
    inference: InferenceClient,
    search: SearchClient,
    cooldowns: Optional[CooldownGate] = None,
) -> commands.Bot:
    intents = discord.Intents.default()
    intents.members = True
    intents.message_content = True

    # Slash commands only; the prefix is required by discord.py but unused.
    bot = commands.Bot(command_prefix="!", intents=intents, help_command=None)

    cooldowns = cooldowns or CooldownGate(settings.cooldowns)
    settings_store = SettingsStore(database, ttl=settings.settings_cache_ttl)
    gateway = DiscordGateway(bot)
    engine = ModerationEngine(gateway, database, build_classifier(settings, inference), cooldowns)
    events = GuildEvents(gateway, settings_store, database, engine)
    dispatcher = CommandDispatcher(
        CommandServices(
            settings=settings_store,
            engine=engine,
            cooldowns=cooldowns,
            store=database,
            inference=inference,
            search=search,
            latency=lambda: bot.latency,
        )
    )

    bot.database = database  # type: ignore[attr-defined]
    bot.engine = engine  # type: ignore[attr-defined]
    bot.settings_store = settings_store  # type: ignore[attr-defined]
    bot.cooldowns = cooldowns  # type: ignore[attr-defined]

    register_slash_commands(bot.tree, dispatcher)

    async def muted_role_for(guild_id: int) -> Optional[int]:
        policy = await settings_store.get(guild_id)
        return policy.muted_role_id if policy else None

    @bot.event
    async def setup_hook() -> None:  # type: ignore[override]
        storage = "database" if database.is_connected else "no persistence"
        logger.info("Using %s classifier with %s", engine.classifier.name, storage)
        try:
            logger.info("Syncing commands to Discord...")
            synced = await bot.tree.sync()
            logger.info("✅ Synced %d slash commands to Discord", len(synced))
        except Exception:
            logger.exception("Failed to sync commands to Discord")

    @bot.event
    async def on_ready() -> None:
        logger.info("Logged in as %s", bot.user)
        engine.bot_user_id = bot.user.id if bot.user else None
        await bot.change_presence(activity=discord.Game(name="/help"))
        try:
            restored = await engine.scheduler.restore(muted_role_for)
            if restored:
                logger.info("Restored %d pending unmute timer(s)", restored)
        except Exception:
            logger.exception("Failed to restore pending mutes")

    @bot.event
    async def on_message(message: discord.Message) -> None:
        if message.guild is None or message.author.bot:
            return
        incoming = IncomingMessage(
            message_id=message.id,
            guild_id=message.guild.id,
            channel_id=message.channel.id,
            author_id=message.author.id,
            author_name=str(message.author),
            text=message.content,
            author_is_bot=message.author.bot,
        )
        try:
            policy = await settings_store.get(message.guild.id)
            await engine.handle_message(incoming, policy)
        except Exception:
            logger.exception("Error moderating message %s", message.id)

    @bot.event
    async def on_member_join(member: discord.Member) -> None:
        await events.on_member_join(_member_event(member))

    @bot.event
    async def on_member_remove(member: discord.Member) -> None:
        await events.on_member_remove(_member_event(member))

    @bot.event
    async def on_guild_channel_create(channel: discord.abc.GuildChannel) -> None:
        await events.on_channel_create(_channel_event(channel))

    @bot.event
    async def on_guild_channel_delete(channel: discord.abc.GuildChannel) -> None:
        await events.on_channel_delete(_channel_event(channel))

    return bot
