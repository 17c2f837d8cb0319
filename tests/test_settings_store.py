"""Tests for the cached guild settings store."""

import pytest

from conftest import GUILD_ID, LOGS_CHANNEL
from frostmod.services.settings import FilterLevel


class TestSettingsStore:
    @pytest.mark.asyncio
    async def test_unconfigured_guild_is_none_and_not_cached(self, settings_store, database):
        assert await settings_store.get(GUILD_ID) is None
        assert await settings_store.get(GUILD_ID) is None
        assert database.settings_reads == 2
        assert settings_store.cached_guilds == 0

    @pytest.mark.asyncio
    async def test_merges_server_and_filter_settings(self, settings_store, database):
        database.configure(filter_level="strict", logs_channel_id=LOGS_CHANNEL)
        policy = await settings_store.get(GUILD_ID)
        assert policy.filter_level is FilterLevel.STRICT
        assert policy.logs_channel_id == LOGS_CHANNEL
        assert policy.muted_role_id is None

    @pytest.mark.asyncio
    async def test_reads_within_ttl_hit_the_cache(self, settings_store, database, clock):
        database.configure(filter_level="light")
        first = await settings_store.get(GUILD_ID)
        clock.advance(299)
        assert await settings_store.get(GUILD_ID) is first
        assert database.settings_reads == 1

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(self, settings_store, database, clock):
        database.configure(filter_level="light")
        await settings_store.get(GUILD_ID)
        clock.advance(300)
        await settings_store.get(GUILD_ID)
        assert database.settings_reads == 2

    @pytest.mark.asyncio
    async def test_upsert_leaves_cache_stale_until_invalidated(self, settings_store):
        await settings_store.upsert(GUILD_ID, filter_level=FilterLevel.LIGHT)
        assert (await settings_store.get(GUILD_ID)).filter_level is FilterLevel.LIGHT

        await settings_store.upsert(GUILD_ID, filter_level="strict")
        assert (await settings_store.get(GUILD_ID)).filter_level is FilterLevel.LIGHT

        settings_store.invalidate(GUILD_ID)
        assert (await settings_store.get(GUILD_ID)).filter_level is FilterLevel.STRICT

    @pytest.mark.asyncio
    async def test_upsert_routes_fields_to_their_tables(self, settings_store, database):
        await settings_store.upsert(
            GUILD_ID, filter_level="moderate", logs_channel_id=LOGS_CHANNEL
        )
        assert database.filter_levels[GUILD_ID] == "moderate"
        assert database.server_settings[GUILD_ID] == {"logs_channel_id": LOGS_CHANNEL}

    @pytest.mark.asyncio
    async def test_unknown_field_is_rejected(self, settings_store, database):
        with pytest.raises(ValueError):
            await settings_store.upsert(GUILD_ID, nickname="frosty")
        assert database.server_settings == {}

    @pytest.mark.asyncio
    async def test_invalid_filter_level_is_rejected(self, settings_store):
        with pytest.raises(ValueError):
            await settings_store.upsert(GUILD_ID, filter_level="extreme")
