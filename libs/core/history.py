from __future__ import annotations

import json
from typing import Any, List, Optional

import redis
from pydantic import ValidationError

from . import logging as core_logging
from .models import HistoryEntry

AGENT_HISTORY_KEY_PREFIX = "agent_history:"
DEFAULT_HISTORY_TTL_S = 24 * 60 * 60
DEFAULT_HISTORY_MAX_ENTRIES = 50

LOGGER = core_logging.get_logger("agents")


class HistoryStoreError(Exception):
    pass


def history_key(username: str, prefix: str = AGENT_HISTORY_KEY_PREFIX) -> str:
    return f"{prefix}{username}"


class RedisAgentHistory:
    def __init__(
        self,
        client: Any,
        ttl_seconds: int = DEFAULT_HISTORY_TTL_S,
        max_entries: Optional[int] = DEFAULT_HISTORY_MAX_ENTRIES,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("history ttl_seconds must be positive")
        if max_entries is not None and max_entries <= 0:
            raise ValueError("history max_entries must be positive when provided")
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisAgentHistory":
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    def append(self, key: str, entry: HistoryEntry) -> None:
        try:
            self.client.rpush(key, entry.model_dump_json())
        except redis.RedisError as exc:
            raise HistoryStoreError(f"history_append_failed:{exc}") from exc

    def set_expiry(self, key: str, ttl_seconds: int) -> None:
        try:
            self.client.expire(key, ttl_seconds)
        except redis.RedisError as exc:
            raise HistoryStoreError(f"history_expire_failed:{exc}") from exc

    def list_all(self, key: str) -> List[HistoryEntry]:
        try:
            raw_entries = self.client.lrange(key, 0, -1)
        except redis.RedisError as exc:
            raise HistoryStoreError(f"history_read_failed:{exc}") from exc
        entries: List[HistoryEntry] = []
        for raw in raw_entries or []:
            try:
                entries.append(HistoryEntry.model_validate(json.loads(raw)))
            except (json.JSONDecodeError, ValidationError, TypeError):
                LOGGER.warning("history_entry_skipped", key=key, raw=core_logging.truncate(raw, 200))
        return entries

    def record(self, username: str, entry: HistoryEntry) -> None:
        key = history_key(username)
        try:
            pipe = self.client.pipeline()
            pipe.rpush(key, entry.model_dump_json())
            if self.max_entries:
                pipe.ltrim(key, -self.max_entries, -1)
            pipe.expire(key, self.ttl_seconds)
            pipe.execute()
        except redis.RedisError as exc:
            raise HistoryStoreError(f"history_append_failed:{exc}") from exc

    def for_user(self, username: str) -> List[HistoryEntry]:
        return self.list_all(history_key(username))

    def clear(self, username: str) -> None:
        try:
            self.client.delete(history_key(username))
        except redis.RedisError as exc:
            raise HistoryStoreError(f"history_clear_failed:{exc}") from exc
