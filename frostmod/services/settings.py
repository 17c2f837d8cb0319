"""Per-guild configuration with a short-lived read cache."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from pydantic import BaseModel

logger = logging.getLogger(__name__)

SETTINGS_CACHE_TTL = 300.0


class FilterLevel(str, Enum):
    LIGHT = "light"
    MODERATE = "moderate"
    STRICT = "strict"


class GuildPolicy(BaseModel):
    """Moderation and onboarding configuration for one guild."""

    guild_id: int
    filter_level: Optional[FilterLevel] = None
    ignored_channel_id: Optional[int] = None
    logs_channel_id: Optional[int] = None
    muted_role_id: Optional[int] = None
    welcome_channel_id: Optional[int] = None
    welcome_message: Optional[str] = None
    auto_role_id: Optional[int] = None


class SettingsBackend(Protocol):
    async def fetch_guild_settings(self, guild_id: int) -> Optional[Dict[str, Any]]: ...

    async def upsert_server_settings(self, guild_id: int, fields: Dict[str, Any]) -> None: ...

    async def upsert_filter_level(self, guild_id: int, filter_level: Optional[str]) -> None: ...


class SettingsStore:
    """Reads guild policies through a TTL cache and writes them straight through.

    Writes never refresh the cache, so a ``get`` inside the TTL after an
    ``upsert`` can return the previous policy. Callers that need the new value
    immediately call :meth:`invalidate` after writing.
    """

    def __init__(
        self,
        backend: SettingsBackend,
        ttl: float = SETTINGS_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._backend = backend
        self._ttl = ttl
        self._clock = clock
        self._cache: Dict[int, Tuple[GuildPolicy, float]] = {}

    @property
    def cached_guilds(self) -> int:
        return len(self._cache)

    async def get(self, guild_id: int) -> Optional[GuildPolicy]:
        now = self._clock()
        cached = self._cache.get(guild_id)
        if cached and now - cached[1] < self._ttl:
            return cached[0]

        row = await self._backend.fetch_guild_settings(guild_id)
        if not row:
            # Misses are not cached; unconfigured guilds re-query every time.
            self._cache.pop(guild_id, None)
            return None
        policy = GuildPolicy.model_validate({**row, "guild_id": guild_id})
        self._cache[guild_id] = (policy, now)
        return policy

    async def upsert(self, guild_id: int, **fields: Any) -> None:
        if not fields:
            return
        unknown = set(fields) - set(GuildPolicy.model_fields) - {"guild_id"}
        if unknown:
            raise ValueError(f"Unknown guild setting(s): {', '.join(sorted(unknown))}")
        fields.pop("guild_id", None)
        if "filter_level" in fields:
            level = fields.pop("filter_level")
            if level is not None:
                level = FilterLevel(level).value
            await self._backend.upsert_filter_level(guild_id, level)
        if fields:
            await self._backend.upsert_server_settings(guild_id, fields)
        logger.info("Updated settings for guild %s", guild_id)

    def invalidate(self, guild_id: int) -> None:
        self._cache.pop(guild_id, None)

    def clear(self) -> None:
        self._cache.clear()
