"""Utility helpers for the Availarr service."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, TypeVar

from .config import DVRServerSettings

ServerT = TypeVar("ServerT", bound=DVRServerSettings)


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime, as stored in SQLite."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 timestamps emitted by the *arr APIs into naive UTC."""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def serialize_cache_key(
    endpoint: str,
    params: Mapping[str, Any] | None = None,
    body: Any = None,
) -> str:
    """Build a deterministic cache key for an endpoint and its arguments."""

    key = endpoint
    if params:
        key += json.dumps(dict(params), sort_keys=True, separators=(",", ":"), default=str)
    if body is not None:
        key += json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
    return key


def same_instance(first: DVRServerSettings, second: DVRServerSettings) -> bool:
    """Return whether two server entries point at the same DVR instance."""

    return first.instance_key() == second.instance_key()


def unique_servers(servers: Iterable[ServerT]) -> list[ServerT]:
    """Collapse entries sharing host, port and base path, keeping the first."""

    seen: set[tuple[str, int, str]] = set()
    unique: list[ServerT] = []
    for server in servers:
        key = server.instance_key()
        if key in seen:
            continue
        seen.add(key)
        unique.append(server)
    return unique


def matching_servers(
    server: ServerT, servers: Iterable[ServerT]
) -> list[ServerT]:
    """Return the other configured entries that mirror ``server``."""

    return [
        candidate
        for candidate in servers
        if candidate.id != server.id and same_instance(candidate, server)
    ]
