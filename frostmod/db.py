"""Database integration for guild settings and moderation records."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import certifi
import psycopg2
from psycopg2.extensions import connection as PsycopgConnection
from psycopg2.extras import RealDictCursor

from .errors import CollaboratorUnavailable

logger = logging.getLogger(__name__)

SERVER_SETTINGS_COLUMNS = (
    "welcome_channel_id",
    "welcome_message",
    "auto_role_id",
    "ignored_channel_id",
    "logs_channel_id",
    "muted_role_id",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WarnRecord:
    """A warning issued to a member. Never mutated once written."""

    guild_id: int
    user_id: int
    username: str
    reason: str
    warned_by: str
    timestamp: datetime


@dataclass
class MuteRecord:
    """A mute applied through the muted role."""

    guild_id: int
    user_id: int
    username: str
    muted_by: str
    reason: str
    duration_minutes: int
    muted_at: datetime
    expires_at: Optional[datetime] = None
    unmuted_at: Optional[datetime] = None
    expired: bool = False

    @classmethod
    def create(
        cls,
        guild_id: int,
        user_id: int,
        username: str,
        muted_by: str,
        reason: str,
        duration_minutes: int,
        muted_at: Optional[datetime] = None,
    ) -> "MuteRecord":
        muted_at = muted_at or utcnow()
        expires_at = None
        if duration_minutes > 0:
            expires_at = muted_at + timedelta(minutes=duration_minutes)
        return cls(
            guild_id=guild_id,
            user_id=user_id,
            username=username,
            muted_by=muted_by,
            reason=reason,
            duration_minutes=duration_minutes,
            muted_at=muted_at,
            expires_at=expires_at,
        )


class Database:
    """Thread-safe psycopg2 wrapper that initialises tables and executes queries via asyncio."""

    def __init__(self, database_url: Optional[str]):
        self._url = database_url
        self._conn: Optional[PsycopgConnection] = None
        self._lock = asyncio.Lock()

    @property
    def is_enabled(self) -> bool:
        return bool(self._url)

    async def connect(self) -> None:
        if not self._url:
            logger.info("Database URL not configured; guild settings will not persist.")
            return
        async with self._lock:
            if self._conn and not self._conn.closed:
                return
            try:
                ssl_args = {}
                if "supabase.co" in self._url:
                    ssl_args = {"sslmode": "verify-full", "sslrootcert": certifi.where()}
                self._conn = await asyncio.to_thread(
                    lambda: psycopg2.connect(dsn=self._url, **ssl_args)
                )
                await asyncio.to_thread(self._run_initial_schema_statements, self._conn)
            except psycopg2.Error:
                logger.exception("Failed to initialise database connection; persistence disabled.")
                if self._conn and not self._conn.closed:
                    self._conn.close()
                self._conn = None

    async def close(self) -> None:
        async with self._lock:
            if self._conn and not self._conn.closed:
                await asyncio.to_thread(self._conn.close)
            self._conn = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None and not self._conn.closed

    async def _ensure_connection(self) -> Optional[PsycopgConnection]:
        if not self._url:
            return None
        if not self.is_connected:
            await self.connect()
        return self._conn

    def _run_initial_schema_statements(self, conn: PsycopgConnection) -> None:
        with conn, conn.cursor() as cur:
            cur.execute(
                """
                create table if not exists server_settings (
                    guild_id bigint primary key,
                    welcome_channel_id bigint,
                    welcome_message text,
                    auto_role_id bigint,
                    ignored_channel_id bigint,
                    logs_channel_id bigint,
                    muted_role_id bigint
                );
                """
            )
            # Older deployments predate the muted role column.
            cur.execute(
                """
                alter table server_settings
                add column if not exists muted_role_id bigint;
                """
            )
            cur.execute(
                """
                create table if not exists filtering_settings (
                    guild_id bigint primary key,
                    filter_level text
                );
                """
            )
            cur.execute(
                """
                create table if not exists user_warns (
                    id bigserial primary key,
                    guild_id bigint not null,
                    user_id bigint not null,
                    username text not null,
                    reason text not null,
                    warned_by text not null,
                    timestamp timestamptz not null default now()
                );
                """
            )
            cur.execute(
                """
                create table if not exists muted_roles (
                    id bigserial primary key,
                    guild_id bigint not null,
                    user_id bigint not null,
                    username text not null,
                    muted_by text not null,
                    reason text not null,
                    duration_minutes integer not null default 0,
                    muted_at timestamptz not null default now(),
                    expires_at timestamptz,
                    unmuted_at timestamptz,
                    expired boolean not null default false
                );
                """
            )
            cur.execute(
                """
                create index if not exists idx_muted_roles_pending
                on muted_roles(expires_at) where expired = false and expires_at is not null;
                """
            )
            cur.execute(
                """
                create table if not exists member_joins (
                    id bigserial primary key,
                    guild_id bigint not null,
                    user_id bigint not null,
                    username text not null,
                    server_name text,
                    joined_at timestamptz not null default now()
                );
                """
            )
            cur.execute(
                """
                create table if not exists member_leaves (
                    id bigserial primary key,
                    guild_id bigint not null,
                    user_id bigint not null,
                    username text not null,
                    left_at timestamptz not null default now()
                );
                """
            )

    async def fetch_guild_settings(self, guild_id: int) -> Optional[Dict[str, Any]]:
        """Return the merged settings row for a guild, or ``None`` when it has none."""

        return await self._fetchone(
            """
            select g.guild_id,
                   s.welcome_channel_id,
                   s.welcome_message,
                   s.auto_role_id,
                   s.ignored_channel_id,
                   s.logs_channel_id,
                   s.muted_role_id,
                   f.filter_level
            from (select %s::bigint as guild_id) g
            left join server_settings s on s.guild_id = g.guild_id
            left join filtering_settings f on f.guild_id = g.guild_id
            where s.guild_id is not null or f.guild_id is not null;
            """,
            (guild_id,),
        )

    async def upsert_server_settings(self, guild_id: int, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - set(SERVER_SETTINGS_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown server setting(s): {', '.join(sorted(unknown))}")
        if not fields:
            return
        columns = list(fields)
        placeholders = ", ".join(["%s"] * (len(columns) + 1))
        updates = ", ".join(f"{column} = excluded.{column}" for column in columns)
        await self._execute_async(
            f"""
            insert into server_settings (guild_id, {", ".join(columns)})
            values ({placeholders})
            on conflict (guild_id)
            do update set {updates};
            """,
            (guild_id, *[fields[column] for column in columns]),
        )

    async def upsert_filter_level(self, guild_id: int, filter_level: Optional[str]) -> None:
        await self._execute_async(
            """
            insert into filtering_settings (guild_id, filter_level)
            values (%s, %s)
            on conflict (guild_id)
            do update set filter_level = excluded.filter_level;
            """,
            (guild_id, filter_level),
        )

    async def insert_warn(self, record: WarnRecord) -> None:
        await self._execute_async(
            """
            insert into user_warns (guild_id, user_id, username, reason, warned_by, timestamp)
            values (%s, %s, %s, %s, %s, %s);
            """,
            (
                record.guild_id,
                record.user_id,
                record.username,
                record.reason,
                record.warned_by,
                record.timestamp,
            ),
        )

    async def count_warns(self, guild_id: int, user_id: int) -> int:
        row = await self._fetchone(
            "select count(*) as total from user_warns where guild_id = %s and user_id = %s;",
            (guild_id, user_id),
        )
        return int(row["total"]) if row else 0

    async def insert_mute(self, record: MuteRecord) -> None:
        await self._execute_async(
            """
            insert into muted_roles (
                guild_id,
                user_id,
                username,
                muted_by,
                reason,
                duration_minutes,
                muted_at,
                expires_at,
                unmuted_at,
                expired
            )
            values (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s);
            """,
            (
                record.guild_id,
                record.user_id,
                record.username,
                record.muted_by,
                record.reason,
                record.duration_minutes,
                record.muted_at,
                record.expires_at,
                record.unmuted_at,
                record.expired,
            ),
        )

    async def is_mute_superseded(self, record: MuteRecord) -> bool:
        """Whether the member was muted again after ``record``."""

        row = await self._fetchone(
            """
            select 1 as newer from muted_roles
            where guild_id = %s and user_id = %s and muted_at > %s
            limit 1;
            """,
            (record.guild_id, record.user_id, record.muted_at),
        )
        return row is not None

    async def mark_mute_expired(self, record: MuteRecord, unmuted_at: datetime) -> bool:
        row = await self._fetchone(
            """
            update muted_roles
            set expired = true, unmuted_at = %s
            where guild_id = %s and user_id = %s and muted_at = %s and expired = false
            returning id;
            """,
            (unmuted_at, record.guild_id, record.user_id, record.muted_at),
        )
        return row is not None

    async def fetch_pending_mutes(self) -> List[MuteRecord]:
        """Timed mutes that were neither lifted nor replaced, oldest expiry first."""

        rows = await self._fetchall(
            """
            select m.guild_id, m.user_id, m.username, m.muted_by, m.reason,
                   m.duration_minutes, m.muted_at, m.expires_at, m.unmuted_at, m.expired
            from muted_roles m
            where m.expired = false and m.expires_at is not null
              and not exists (
                  select 1 from muted_roles newer
                  where newer.guild_id = m.guild_id
                    and newer.user_id = m.user_id
                    and newer.muted_at > m.muted_at
              )
            order by m.expires_at asc;
            """,
            (),
        )
        return [MuteRecord(**row) for row in rows]

    async def record_member_join(
        self, guild_id: int, user_id: int, username: str, server_name: Optional[str]
    ) -> None:
        await self._execute_async(
            """
            insert into member_joins (guild_id, user_id, username, server_name)
            values (%s, %s, %s, %s);
            """,
            (guild_id, user_id, username, server_name),
        )

    async def record_member_leave(self, guild_id: int, user_id: int, username: str) -> None:
        await self._execute_async(
            """
            insert into member_leaves (guild_id, user_id, username)
            values (%s, %s, %s);
            """,
            (guild_id, user_id, username),
        )

    async def _execute_async(self, query: str, params: tuple[Any, ...] | tuple[()]) -> None:
        conn = await self._ensure_connection()
        if conn is None:
            return
        async with self._lock:
            try:
                await asyncio.to_thread(self._execute, conn, query, params)
            except psycopg2.Error as exc:
                raise CollaboratorUnavailable("The database rejected the write.") from exc

    def _execute(
        self, conn: PsycopgConnection, query: str, params: tuple[Any, ...] | tuple[()]
    ) -> None:
        with conn, conn.cursor() as cur:
            cur.execute(query, params)

    async def _fetchall(
        self, query: str, params: tuple[Any, ...] | tuple[()]
    ) -> list[dict[str, Any]]:
        conn = await self._ensure_connection()
        if conn is None:
            return []
        async with self._lock:
            try:
                return await asyncio.to_thread(self._fetchall_sync, conn, query, params)
            except psycopg2.Error as exc:
                raise CollaboratorUnavailable("The database could not be read.") from exc

    def _fetchall_sync(
        self, conn: PsycopgConnection, query: str, params: tuple[Any, ...] | tuple[()]
    ) -> list[dict[str, Any]]:
        with conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [dict(row) for row in rows]

    async def _fetchone(
        self, query: str, params: tuple[Any, ...] | tuple[()]
    ) -> Optional[dict[str, Any]]:
        conn = await self._ensure_connection()
        if conn is None:
            return None
        async with self._lock:
            try:
                return await asyncio.to_thread(self._fetchone_sync, conn, query, params)
            except psycopg2.Error as exc:
                raise CollaboratorUnavailable("The database could not be read.") from exc

    def _fetchone_sync(
        self, conn: PsycopgConnection, query: str, params: tuple[Any, ...] | tuple[()]
    ) -> Optional[dict[str, Any]]:
        with conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(query, params)
            row = cur.fetchone()
        return dict(row) if row else None
