"""Tests for message moderation decisions."""

import pytest

from conftest import (
    BOT_ID,
    FIXED_NOW,
    GENERAL_CHANNEL,
    GUILD_ID,
    IGNORED_CHANNEL,
    LOGS_CHANNEL,
    USER_ID,
    FakeScorer,
)
from frostmod.services.classifier import ModerationVerdict, ScoredClassifier, Severity
from frostmod.services.moderation import (
    NOTICE_DELETE_AFTER,
    NO_ACTION,
    IncomingMessage,
    ModerationEngine,
    should_auto_warn,
    should_delete,
)
from frostmod.services.settings import FilterLevel, GuildPolicy


def make_message(text, *, channel_id=GENERAL_CHANNEL, author_id=USER_ID, author_is_bot=False, message_id=1):
    return IncomingMessage(
        message_id=message_id,
        guild_id=GUILD_ID,
        channel_id=channel_id,
        author_id=author_id,
        author_name=f"user{author_id}",
        text=text,
        author_is_bot=author_is_bot,
    )


def make_policy(level, **fields):
    fields.setdefault("logs_channel_id", LOGS_CHANNEL)
    return GuildPolicy(guild_id=GUILD_ID, filter_level=level, **fields)


@pytest.fixture
def scorer():
    return FakeScorer()


@pytest.fixture
def scored_engine(gateway, database, cooldowns, scheduler, scorer):
    return ModerationEngine(
        gateway,
        database,
        ScoredClassifier(scorer),
        cooldowns,
        bot_user_id=BOT_ID,
        scheduler=scheduler,
        now=lambda: FIXED_NOW,
    )


class TestDecisionRules:
    @pytest.mark.parametrize(
        "severity,level,expected",
        [
            (Severity.LOW, FilterLevel.STRICT, True),
            (Severity.LOW, FilterLevel.MODERATE, False),
            (Severity.MEDIUM, FilterLevel.MODERATE, True),
            (Severity.MEDIUM, FilterLevel.LIGHT, False),
            (Severity.HIGH, FilterLevel.LIGHT, True),
            (Severity.NONE, FilterLevel.STRICT, False),
        ],
    )
    def test_delete_thresholds(self, severity, level, expected):
        assert should_delete(ModerationVerdict(severity=severity), level) is expected

    def test_unknown_verdict_is_never_deleted(self):
        assert not should_delete(ModerationVerdict.unavailable("down"), FilterLevel.STRICT)

    def test_auto_warn_needs_score_above_point_nine(self):
        assert should_auto_warn(ModerationVerdict(severity=Severity.HIGH, score=0.91))
        assert not should_auto_warn(ModerationVerdict(severity=Severity.HIGH, score=0.9))
        assert not should_auto_warn(ModerationVerdict(severity=Severity.HIGH))


class TestKeywordModeration:
    """End-to-end message handling with the word-list classifier."""

    @pytest.mark.asyncio
    async def test_strict_profanity_is_deleted_noticed_and_logged(self, engine, gateway, database):
        action = await engine.handle_message(
            make_message("you fucking idiot"), make_policy(FilterLevel.STRICT)
        )

        assert action.deleted and action.logged
        assert not action.warned
        assert gateway.deleted == [(GENERAL_CHANNEL, 1)]
        channel_id, notice, delete_after = gateway.messages[0]
        assert channel_id == GENERAL_CHANNEL
        assert notice.startswith(f"<@{USER_ID}>")
        assert delete_after == NOTICE_DELETE_AFTER
        [entry] = gateway.entries_titled("Message Filtered")
        assert dict(entry.fields)["Filter Level"] == "strict"
        assert database.warns == []

    @pytest.mark.asyncio
    async def test_moderate_lets_profanity_through(self, engine, gateway):
        action = await engine.handle_message(
            make_message("you fucking idiot"), make_policy(FilterLevel.MODERATE)
        )
        assert action == NO_ACTION
        assert gateway.deleted == []

    @pytest.mark.asyncio
    async def test_light_never_deletes_keyword_matches(self, engine, gateway):
        action = await engine.handle_message(make_message("shit"), make_policy(FilterLevel.LIGHT))
        assert action == NO_ACTION

    @pytest.mark.asyncio
    async def test_ignored_channel_is_skipped(self, engine, gateway):
        policy = make_policy(FilterLevel.STRICT, ignored_channel_id=IGNORED_CHANNEL)
        action = await engine.handle_message(
            make_message("shit", channel_id=IGNORED_CHANNEL), policy
        )
        assert action == NO_ACTION

    @pytest.mark.asyncio
    async def test_bots_and_self_are_skipped(self, engine, gateway):
        policy = make_policy(FilterLevel.STRICT)
        assert await engine.handle_message(make_message("shit", author_is_bot=True), policy) == NO_ACTION
        assert await engine.handle_message(make_message("shit", author_id=BOT_ID), policy) == NO_ACTION
        assert gateway.deleted == []

    @pytest.mark.asyncio
    async def test_no_policy_or_level_means_no_filtering(self, engine):
        assert await engine.handle_message(make_message("shit"), None) == NO_ACTION
        assert await engine.handle_message(make_message("shit"), make_policy(None)) == NO_ACTION

    @pytest.mark.asyncio
    async def test_missing_logs_channel_still_deletes(self, engine, gateway):
        gateway.channels.discard(LOGS_CHANNEL)
        action = await engine.handle_message(make_message("shit"), make_policy(FilterLevel.STRICT))
        assert action.deleted
        assert not action.logged
        assert gateway.entries == []

    @pytest.mark.asyncio
    async def test_non_guild_message_is_rejected(self, engine):
        with pytest.raises(ValueError):
            await engine.handle_message(None, make_policy(FilterLevel.STRICT))
        dm = IncomingMessage(1, 0, GENERAL_CHANNEL, USER_ID, "user", "shit")
        with pytest.raises(ValueError):
            await engine.handle_message(dm, make_policy(FilterLevel.STRICT))


class TestScoredModeration:
    """Message handling with a toxicity scorer behind the classifier."""

    @pytest.mark.asyncio
    async def test_very_toxic_message_is_deleted_and_warned(self, scored_engine, scorer, database):
        scorer.score = 0.95
        action = await scored_engine.handle_message(
            make_message("anything"), make_policy(FilterLevel.LIGHT)
        )
        assert action.deleted and action.warned
        [warn] = database.warns
        assert warn.warned_by == "system"
        assert warn.user_id == USER_ID
        assert warn.timestamp == FIXED_NOW

    @pytest.mark.asyncio
    async def test_low_score_only_deleted_under_strict(self, scored_engine, scorer):
        scorer.score = 0.5
        moderate = await scored_engine.handle_message(
            make_message("a", message_id=1), make_policy(FilterLevel.MODERATE)
        )
        strict = await scored_engine.handle_message(
            make_message("b", message_id=2), make_policy(FilterLevel.STRICT)
        )
        assert moderate == NO_ACTION
        assert strict.deleted and not strict.warned

    @pytest.mark.asyncio
    async def test_scorer_outage_fails_open(self, scored_engine, scorer, gateway):
        scorer.error = True
        action = await scored_engine.handle_message(
            make_message("anything"), make_policy(FilterLevel.STRICT)
        )
        assert action == NO_ACTION
        assert gateway.deleted == [] and gateway.entries == []

    @pytest.mark.asyncio
    async def test_analysis_is_rate_limited_per_user(self, scored_engine, scorer):
        scorer.score = 0.1
        policy = make_policy(FilterLevel.STRICT)
        for index in range(6):
            await scored_engine.handle_message(make_message("hi", message_id=index), policy)
        assert len(scorer.calls) == 5

        await scored_engine.handle_message(make_message("hi", author_id=USER_ID + 1), policy)
        assert len(scorer.calls) == 6

    @pytest.mark.asyncio
    async def test_warn_persistence_failure_does_not_block_delete(self, scored_engine, scorer, database):
        scorer.score = 0.99
        database.fail_writes = True
        action = await scored_engine.handle_message(
            make_message("anything"), make_policy(FilterLevel.STRICT)
        )
        assert action.deleted
        assert not action.warned
