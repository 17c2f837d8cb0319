"""Tests for member and channel lifecycle handling."""

import pytest

from conftest import AUTO_ROLE, GUILD_ID, LOGS_CHANNEL, USER_ID, WELCOME_CHANNEL
from frostmod.services.events import ChannelEvent, GuildEvents, MemberEvent


@pytest.fixture
def events(gateway, settings_store, database, engine):
    return GuildEvents(gateway, settings_store, database, engine)


def member_event():
    return MemberEvent(
        guild_id=GUILD_ID,
        guild_name="Frostline",
        member_count=42,
        user_id=USER_ID,
        username="frosty",
    )


class TestMemberJoin:
    @pytest.mark.asyncio
    async def test_welcome_role_record_and_log(self, events, gateway, database):
        database.configure(
            welcome_channel_id=WELCOME_CHANNEL,
            welcome_message="Welcome {user}, member #{memberCount}!",
            auto_role_id=AUTO_ROLE,
            logs_channel_id=LOGS_CHANNEL,
        )
        await events.on_member_join(member_event())

        channel_id, welcome = gateway.entries[0]
        assert channel_id == WELCOME_CHANNEL
        assert welcome.description == "Welcome frosty, member #42!"
        assert AUTO_ROLE in gateway.members[(GUILD_ID, USER_ID)]
        assert database.joins == [(GUILD_ID, USER_ID, "frosty", "Frostline")]
        assert len(gateway.entries_titled("User Joined")) == 1

    @pytest.mark.asyncio
    async def test_role_failure_does_not_block_other_steps(self, events, gateway, database):
        database.configure(auto_role_id=AUTO_ROLE, logs_channel_id=LOGS_CHANNEL)
        gateway.fail_role_changes = True
        await events.on_member_join(member_event())
        assert database.joins
        assert gateway.entries_titled("User Joined")

    @pytest.mark.asyncio
    async def test_unconfigured_guild_only_records_join(self, events, gateway, database):
        await events.on_member_join(member_event())
        assert gateway.entries == []
        assert len(database.joins) == 1


class TestMemberLeave:
    @pytest.mark.asyncio
    async def test_leave_is_recorded_and_logged(self, events, gateway, database):
        database.configure(logs_channel_id=LOGS_CHANNEL)
        await events.on_member_remove(member_event())
        assert database.leaves == [(GUILD_ID, USER_ID, "frosty")]
        assert gateway.entries_titled("User Left")


class TestChannelEvents:
    @pytest.mark.asyncio
    async def test_created_channel_is_logged(self, events, gateway, database):
        database.configure(logs_channel_id=LOGS_CHANNEL)
        await events.on_channel_create(ChannelEvent(GUILD_ID, 555, "memes", "text"))
        [entry] = gateway.entries_titled("Channel Created")
        assert "memes" in entry.description

    @pytest.mark.asyncio
    async def test_deleting_the_logs_channel_is_not_logged(self, events, gateway, database):
        database.configure(logs_channel_id=LOGS_CHANNEL)
        await events.on_channel_delete(ChannelEvent(GUILD_ID, LOGS_CHANNEL, "logs", "text"))
        assert gateway.entries == []
