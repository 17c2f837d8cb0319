"""Shared fakes for the moderation core tests."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from frostmod.db import MuteRecord, WarnRecord
from frostmod.errors import CollaboratorUnavailable, OperationFailed, TargetNotFound
from frostmod.gateway import LogEntry, MemberRef
from frostmod.services.classifier import KeywordClassifier, ToxicityResult
from frostmod.services.cooldown import CooldownGate
from frostmod.services.moderation import ModerationEngine, UnmuteScheduler
from frostmod.services.settings import SettingsStore

GUILD_ID = 1000
LOGS_CHANNEL = 2000
GENERAL_CHANNEL = 2001
IGNORED_CHANNEL = 2002
WELCOME_CHANNEL = 2003
MUTED_ROLE = 3000
AUTO_ROLE = 3001
USER_ID = 4000
MODERATOR_ID = 4001
BOT_ID = 4999

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class ManualClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDatabase:
    """In-memory stand-in for :class:`frostmod.db.Database`."""

    def __init__(self):
        self.server_settings: Dict[int, Dict[str, Any]] = {}
        self.filter_levels: Dict[int, Optional[str]] = {}
        self.warns: List[WarnRecord] = []
        self.mutes: List[MuteRecord] = []
        self.joins: List[Tuple[int, int, str, Optional[str]]] = []
        self.leaves: List[Tuple[int, int, str]] = []
        self.settings_reads = 0
        self.fail_writes = False
        self.is_connected = True

    def configure(self, guild_id: int = GUILD_ID, filter_level: Optional[str] = None, **fields):
        if filter_level is not None:
            self.filter_levels[guild_id] = filter_level
        if fields:
            self.server_settings.setdefault(guild_id, {}).update(fields)

    async def fetch_guild_settings(self, guild_id: int) -> Optional[Dict[str, Any]]:
        self.settings_reads += 1
        if guild_id not in self.server_settings and guild_id not in self.filter_levels:
            return None
        row = dict(self.server_settings.get(guild_id, {}))
        row["guild_id"] = guild_id
        row["filter_level"] = self.filter_levels.get(guild_id)
        return row

    async def upsert_server_settings(self, guild_id: int, fields: Dict[str, Any]) -> None:
        self.server_settings.setdefault(guild_id, {}).update(fields)

    async def upsert_filter_level(self, guild_id: int, filter_level: Optional[str]) -> None:
        self.filter_levels[guild_id] = filter_level

    async def insert_warn(self, record: WarnRecord) -> None:
        if self.fail_writes:
            raise CollaboratorUnavailable("The database rejected the write.")
        self.warns.append(record)

    async def insert_mute(self, record: MuteRecord) -> None:
        if self.fail_writes:
            raise CollaboratorUnavailable("The database rejected the write.")
        self.mutes.append(record)

    async def is_mute_superseded(self, record: MuteRecord) -> bool:
        return any(
            m.guild_id == record.guild_id
            and m.user_id == record.user_id
            and m.muted_at > record.muted_at
            for m in self.mutes
        )

    async def mark_mute_expired(self, record: MuteRecord, unmuted_at: datetime) -> bool:
        for stored in self.mutes:
            if (
                stored.guild_id == record.guild_id
                and stored.user_id == record.user_id
                and stored.muted_at == record.muted_at
                and not stored.expired
            ):
                stored.expired = True
                stored.unmuted_at = unmuted_at
                return True
        return False

    async def fetch_pending_mutes(self) -> List[MuteRecord]:
        return [
            m
            for m in self.mutes
            if not m.expired
            and m.expires_at is not None
            and not await self.is_mute_superseded(m)
        ]

    async def record_member_join(self, guild_id, user_id, username, server_name) -> None:
        self.joins.append((guild_id, user_id, username, server_name))

    async def record_member_leave(self, guild_id, user_id, username) -> None:
        self.leaves.append((guild_id, user_id, username))


class FakeGateway:
    """Records every outbound Discord call made through the gateway."""

    def __init__(self):
        self.channels: Set[int] = {LOGS_CHANNEL, GENERAL_CHANNEL, IGNORED_CHANNEL, WELCOME_CHANNEL}
        self.roles: Dict[int, Set[int]] = {GUILD_ID: {MUTED_ROLE, AUTO_ROLE}}
        self.members: Dict[Tuple[int, int], Set[int]] = {
            (GUILD_ID, USER_ID): set(),
            (GUILD_ID, MODERATOR_ID): set(),
        }
        self.messages: List[Tuple[int, str, Optional[float]]] = []
        self.entries: List[Tuple[int, LogEntry]] = []
        self.deleted: List[Tuple[int, int]] = []
        self.role_changes: List[Tuple[str, int, int, int]] = []
        self.fail_role_changes = False

    async def send_message(self, channel_id, content, *, delete_after=None) -> None:
        self.messages.append((channel_id, content, delete_after))

    async def send_entry(self, channel_id, entry) -> None:
        if channel_id not in self.channels:
            raise TargetNotFound(f"Channel {channel_id} no longer exists.")
        self.entries.append((channel_id, entry))

    async def delete_message(self, channel_id, message_id) -> None:
        self.deleted.append((channel_id, message_id))

    async def channel_exists(self, channel_id) -> bool:
        return channel_id in self.channels

    async def role_exists(self, guild_id, role_id) -> bool:
        return role_id in self.roles.get(guild_id, set())

    async def fetch_member(self, guild_id, user_id) -> Optional[MemberRef]:
        roles = self.members.get((guild_id, user_id))
        if roles is None:
            return None
        return MemberRef(guild_id, user_id, f"user{user_id}", frozenset(roles))

    async def add_role(self, guild_id, user_id, role_id, *, reason=None) -> None:
        if self.fail_role_changes:
            raise OperationFailed("I couldn't assign that role.")
        self.members[(guild_id, user_id)].add(role_id)
        self.role_changes.append(("add", guild_id, user_id, role_id))

    async def remove_role(self, guild_id, user_id, role_id, *, reason=None) -> None:
        if self.fail_role_changes:
            raise OperationFailed("I couldn't remove that role.")
        self.members[(guild_id, user_id)].discard(role_id)
        self.role_changes.append(("remove", guild_id, user_id, role_id))

    def entries_titled(self, title: str) -> List[LogEntry]:
        return [entry for _, entry in self.entries if entry.title == title]


class FakeScorer:
    def __init__(self, score: float = 0.0, label: str = "toxic", error: bool = False):
        self.score = score
        self.label = label
        self.error = error
        self.calls: List[str] = []

    async def classify_toxicity(self, text: str) -> ToxicityResult:
        self.calls.append(text)
        if self.error:
            raise CollaboratorUnavailable("The toxicity model is unavailable right now.")
        return ToxicityResult(label=self.label, score=self.score)


class RecordingSleep:
    """Drop-in for ``asyncio.sleep`` that returns immediately."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def database() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def cooldowns(clock) -> CooldownGate:
    gate = CooldownGate(clock=clock)
    yield gate
    gate.close()


@pytest.fixture
def settings_store(database, clock) -> SettingsStore:
    return SettingsStore(database, ttl=300, clock=clock)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def scheduler(gateway, database, sleep) -> UnmuteScheduler:
    return UnmuteScheduler(gateway, database, sleep=sleep, now=lambda: FIXED_NOW)


@pytest.fixture
def engine(gateway, database, cooldowns, scheduler) -> ModerationEngine:
    return ModerationEngine(
        gateway,
        database,
        KeywordClassifier(),
        cooldowns,
        bot_user_id=BOT_ID,
        scheduler=scheduler,
        now=lambda: FIXED_NOW,
    )
