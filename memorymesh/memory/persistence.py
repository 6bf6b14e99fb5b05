"""
Record Stores: Key-Addressed Persistence for Memory Entries

The memory store needs only get / put / delete / scan / clear over
serialized entries. Two backends implement that contract:

    InMemoryRecordStore  → process-local dict, always available
    RedisRecordStore     → redis.asyncio, survives restarts

Redis Layout:
    {prefix}:entry:{id}   → JSON document
    {prefix}:kind:{kind}  → SET of entry ids
    {prefix}:ts           → ZSET of entry ids scored by timestamp (ms)

All operations return Result; the memory store turns Err into StorageError.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Optional, Protocol, runtime_checkable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from memorymesh.core import constants as C
from memorymesh.core.types import Result, Ok, Err

logger = logging.getLogger(__name__)

Record = dict[str, Any]


@runtime_checkable
class RecordStore(Protocol):
    """Persistence contract consumed by MemoryStore."""

    @property
    def name(self) -> str:
        ...

    async def connect(self) -> Result[None, str]:
        ...

    async def close(self) -> None:
        ...

    async def get(self, record_id: str) -> Result[Optional[Record], str]:
        ...

    async def put(self, record: Record) -> Result[None, str]:
        ...

    async def delete(self, record_id: str) -> Result[bool, str]:
        ...

    async def scan(
        self,
        kind: Optional[str] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> Result[list[Record], str]:
        ...

    async def clear(self) -> Result[int, str]:
        ...


def _in_range(record: Record, start: Optional[int], end: Optional[int]) -> bool:
    ts = record["timestamp"]
    return (start is None or ts >= start) and (end is None or ts <= end)


# =============================================================================
# IN-MEMORY
# =============================================================================
class InMemoryRecordStore:
    """
    Dict-backed record store.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the table.
    """

    __slots__ = ("_records",)

    def __init__(self) -> None:
        self._records: dict[str, Record] = {}

    @property
    def name(self) -> str:
        return "memory"

    async def connect(self) -> Result[None, str]:
        return Ok(None)

    async def close(self) -> None:
        pass

    async def get(self, record_id: str) -> Result[Optional[Record], str]:
        record = self._records.get(record_id)
        return Ok(copy.deepcopy(record) if record is not None else None)

    async def put(self, record: Record) -> Result[None, str]:
        self._records[record["id"]] = copy.deepcopy(record)
        return Ok(None)

    async def delete(self, record_id: str) -> Result[bool, str]:
        return Ok(self._records.pop(record_id, None) is not None)

    async def scan(
        self,
        kind: Optional[str] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> Result[list[Record], str]:
        return Ok([
            copy.deepcopy(record) for record in self._records.values()
            if (kind is None or record["kind"] == kind) and _in_range(record, start, end)
        ])

    async def clear(self) -> Result[int, str]:
        count = len(self._records)
        self._records.clear()
        return Ok(count)

    def __len__(self) -> int:
        return len(self._records)


# =============================================================================
# REDIS
# =============================================================================
class RedisRecordStore:
    """
    Redis-backed record store with kind and timestamp indexes.

    Example:
        store = RedisRecordStore("redis://localhost:6379/0")
        result = await store.connect()
        if result.is_err():
            ...
    """

    __slots__ = ("_url", "_prefix", "_client")

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = C.REDIS_KEY_PREFIX,
        client: Optional[aioredis.Redis] = None,
    ) -> None:
        self._url = url
        self._prefix = prefix
        self._client = client

    @property
    def name(self) -> str:
        return "redis"

    # Keys
    def _entry_key(self, record_id: str) -> str:
        return f"{self._prefix}:entry:{record_id}"

    def _kind_key(self, kind: str) -> str:
        return f"{self._prefix}:kind:{kind}"

    @property
    def _ts_key(self) -> str:
        return f"{self._prefix}:ts"

    async def connect(self) -> Result[None, str]:
        """Create the client if needed and verify with PING."""
        try:
            if self._client is None:
                self._client = aioredis.from_url(self._url, decode_responses=True)
            await self._client.ping()
            return Ok(None)
        except (RedisError, OSError) as e:
            return Err(f"Redis connection failed: {e}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get(self, record_id: str) -> Result[Optional[Record], str]:
        try:
            raw = await self._require().get(self._entry_key(record_id))
        except RedisError as e:
            return Err(f"Redis GET failed: {e}")
        return self._decode(raw)

    async def put(self, record: Record) -> Result[None, str]:
        client = self._require()
        record_id = record["id"]
        try:
            previous = await client.get(self._entry_key(record_id))
            async with client.pipeline(transaction=True) as pipe:
                if previous is not None:
                    old_kind = json.loads(previous).get("kind")
                    if old_kind and old_kind != record["kind"]:
                        pipe.srem(self._kind_key(old_kind), record_id)
                pipe.set(self._entry_key(record_id), json.dumps(record))
                pipe.sadd(self._kind_key(record["kind"]), record_id)
                pipe.zadd(self._ts_key, {record_id: record["timestamp"]})
                await pipe.execute()
            return Ok(None)
        except (RedisError, TypeError, ValueError) as e:
            return Err(f"Redis PUT failed: {e}")

    async def delete(self, record_id: str) -> Result[bool, str]:
        client = self._require()
        try:
            raw = await client.get(self._entry_key(record_id))
            if raw is None:
                return Ok(False)
            kind = json.loads(raw).get("kind")
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(self._entry_key(record_id))
                if kind:
                    pipe.srem(self._kind_key(kind), record_id)
                pipe.zrem(self._ts_key, record_id)
                await pipe.execute()
            return Ok(True)
        except (RedisError, ValueError) as e:
            return Err(f"Redis DELETE failed: {e}")

    async def scan(
        self,
        kind: Optional[str] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> Result[list[Record], str]:
        client = self._require()
        try:
            ids: list[str] = await client.zrangebyscore(
                self._ts_key,
                "-inf" if start is None else start,
                "+inf" if end is None else end,
            )
            if kind is not None:
                members = await client.smembers(self._kind_key(kind))
                ids = [i for i in ids if i in members]
            if not ids:
                return Ok([])
            raws = await client.mget([self._entry_key(i) for i in ids])
        except RedisError as e:
            return Err(f"Redis SCAN failed: {e}")

        records: list[Record] = []
        for raw in raws:
            decoded = self._decode(raw)
            if decoded.is_err():
                return decoded
            if decoded.value is not None:
                records.append(decoded.value)
        return Ok(records)

    async def clear(self) -> Result[int, str]:
        client = self._require()
        try:
            ids = await client.zrange(self._ts_key, 0, -1)
            kind_keys = [key async for key in client.scan_iter(match=f"{self._prefix}:kind:*")]
            keys = [self._entry_key(i) for i in ids] + kind_keys + [self._ts_key]
            await client.delete(*keys)
            return Ok(len(ids))
        except RedisError as e:
            return Err(f"Redis CLEAR failed: {e}")

    def _require(self) -> aioredis.Redis:
        if self._client is None:
            raise RuntimeError("RedisRecordStore used before connect()")
        return self._client

    @staticmethod
    def _decode(raw: Optional[str]) -> Result[Optional[Record], str]:
        if raw is None:
            return Ok(None)
        try:
            return Ok(json.loads(raw))
        except ValueError as e:
            return Err(f"Corrupt record: {e}")
