"""Entry-point for running the FrostMod Discord bot."""

from __future__ import annotations

import asyncio
import logging

from frostmod import create_bot
from frostmod.db import Database
from frostmod.health import start_health_server
from frostmod.models.config import load_settings
from frostmod.services.cooldown import CooldownGate
from frostmod.services.inference import InferenceClient
from frostmod.services.search import SearchClient


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    # discord.py logs every gateway event at DEBUG.
    logging.getLogger("discord").setLevel(max(logging.INFO, logging.getLogger().level))


async def async_main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    database = Database(settings.database_url)
    await database.connect()
    if not database.is_enabled:
        logger.warning("No DATABASE_URL set - guild settings and moderation records are disabled")

    inference = InferenceClient(
        settings.hugging_face_token,
        toxicity_model=settings.toxicity_model,
        sentiment_model=settings.sentiment_model,
        qa_model=settings.qa_model,
        base_url=settings.inference_base_url,
        timeout=settings.inference_timeout,
    )
    search = SearchClient(
        settings.google_api_key, settings.google_cse_id, timeout=settings.inference_timeout
    )
    cooldowns = CooldownGate(settings.cooldowns)

    bot = create_bot(settings, database, inference, search, cooldowns)
    health_server = await start_health_server(
        settings.health_host,
        settings.health_port,
        database,
        bot.engine,
        bot.settings_store,
        settings.version,
    )
    try:
        await bot.start(settings.discord_token)
    finally:
        health_server.close()
        await health_server.wait_closed()
        await bot.engine.scheduler.close()
        cooldowns.close()
        await inference.close()
        await search.close()
        if not bot.is_closed():
            await bot.close()
        await database.close()


def main() -> None:
    try:
        asyncio.run(async_main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
