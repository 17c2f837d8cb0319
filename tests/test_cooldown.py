"""Tests for per-user cooldown tracking."""

import asyncio

import pytest

from conftest import USER_ID
from frostmod.models.config import MESSAGE_ANALYSIS_SCOPE, CooldownRule
from frostmod.services.cooldown import CooldownGate


class TestSingleSlot:
    """One use per window."""

    def test_first_use_is_allowed(self, cooldowns):
        assert cooldowns.try_acquire("ask", USER_ID).allowed

    def test_retry_after_counts_down(self, cooldowns, clock):
        cooldowns.try_acquire("ask", USER_ID)
        clock.advance(5)
        result = cooldowns.try_acquire("ask", USER_ID)
        assert not result.allowed
        assert result.retry_after == 25.0
        assert result.message() == (
            "Please wait 25.0 more seconds before using this command again."
        )

    def test_allowed_again_after_window(self, cooldowns, clock):
        cooldowns.try_acquire("warn", USER_ID)
        clock.advance(5)
        assert cooldowns.try_acquire("warn", USER_ID).allowed

    def test_scopes_and_users_are_independent(self, cooldowns):
        cooldowns.try_acquire("ask", USER_ID)
        assert cooldowns.try_acquire("search", USER_ID).allowed
        assert cooldowns.try_acquire("ask", USER_ID + 1).allowed

    def test_unknown_scope_uses_default_window(self, cooldowns, clock):
        cooldowns.try_acquire("status", USER_ID)
        clock.advance(1)
        assert cooldowns.try_acquire("status", USER_ID).retry_after == 2.0

    def test_explicit_window_overrides_rule(self, cooldowns, clock):
        cooldowns.try_acquire("custom", USER_ID, window_seconds=10)
        clock.advance(4)
        assert cooldowns.try_acquire("custom", USER_ID, window_seconds=10).retry_after == 6.0

    def test_reset_clears_entry(self, cooldowns):
        cooldowns.try_acquire("ask", USER_ID)
        cooldowns.reset("ask", USER_ID)
        assert cooldowns.try_acquire("ask", USER_ID).allowed


class TestCounting:
    """Up to N uses per sliding window."""

    def test_sixth_message_in_a_minute_is_limited(self, cooldowns, clock):
        for _ in range(5):
            assert cooldowns.try_acquire(MESSAGE_ANALYSIS_SCOPE, USER_ID).allowed
            clock.advance(1)
        result = cooldowns.try_acquire(MESSAGE_ANALYSIS_SCOPE, USER_ID)
        assert not result.allowed
        assert result.retry_after == 55.0

    def test_oldest_use_expires_first(self, cooldowns, clock):
        for _ in range(5):
            cooldowns.try_acquire(MESSAGE_ANALYSIS_SCOPE, USER_ID)
            clock.advance(10)
        clock.advance(10)
        assert cooldowns.try_acquire(MESSAGE_ANALYSIS_SCOPE, USER_ID).allowed
        assert not cooldowns.try_acquire(MESSAGE_ANALYSIS_SCOPE, USER_ID).allowed


class TestCleanup:
    def test_no_timers_without_event_loop(self, cooldowns):
        cooldowns.try_acquire("ask", USER_ID)
        assert len(cooldowns) == 1

    @pytest.mark.asyncio
    async def test_expired_entries_are_removed(self):
        gate = CooldownGate({"quick": CooldownRule(window_seconds=0.01)})
        gate.try_acquire("quick", USER_ID)
        assert len(gate) == 1
        await asyncio.sleep(0.05)
        assert len(gate) == 0
        gate.close()
