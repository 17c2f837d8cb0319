"""Lightweight HTTP health endpoint for deployment platforms."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Optional

from .db import Database
from .services.moderation import ModerationEngine
from .services.settings import SettingsStore


def health_payload(
    database: Optional[Database],
    engine: ModerationEngine,
    settings_store: SettingsStore,
    version: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "status": "ok",
        "version": version,
        "database_connected": database.is_connected if database else False,
        "classifier": engine.classifier.name,
        "cached_guilds": settings_store.cached_guilds,
        "pending_unmutes": engine.scheduler.pending,
    }


async def _handle_client(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    database: Database,
    engine: ModerationEngine,
    settings_store: SettingsStore,
    version: Optional[str],
) -> None:
    try:
        data = await reader.readuntil(b"\r\n\r\n")
    except (asyncio.IncompleteReadError, asyncio.LimitOverrunError):
        writer.close()
        await writer.wait_closed()
        return

    request_line = data.decode(errors="ignore").split("\r\n", 1)[0]
    method, path, *_ = request_line.split(" ") + [""]
    if method.upper() != "GET" or path not in {"/", "/health", "/healthz"}:
        response = b"HTTP/1.1 404 Not Found\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"
        writer.write(response)
    else:
        body = json.dumps(health_payload(database, engine, settings_store, version)).encode()
        writer.write(
            (
                "HTTP/1.1 200 OK\r\n"
                "Content-Type: application/json\r\n"
                f"Content-Length: {len(body)}\r\n"
                "Connection: close\r\n"
                "\r\n"
            ).encode()
            + body
        )
    await writer.drain()
    writer.close()
    await writer.wait_closed()


async def start_health_server(
    host: str,
    port: int,
    database: Database,
    engine: ModerationEngine,
    settings_store: SettingsStore,
    version: Optional[str] = None,
) -> asyncio.AbstractServer:
    return await asyncio.start_server(
        lambda r, w: _handle_client(r, w, database, engine, settings_store, version),
        host,
        port,
    )
