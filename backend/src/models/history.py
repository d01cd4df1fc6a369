"""Bounded per-channel picture history.

Every channel key (a city, or the UNIVERSE key) keeps its most recent
``size`` pictures. Reads come back oldest first so a freshly joined viewer
sees history in the order it happened. Each retained picture carries the
sequence number it was given on push; ``range`` reports the newest one as
``last_seq`` so joins can tell replayed pictures from live ones.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Tuple

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from utilities import HISTORY_SIZE, TransportError

logger = structlog.get_logger()


@dataclass(frozen=True)
class HistorySnapshot:
    items: List[str] = field(default_factory=list)
    last_seq: int = 0


class HistoryStore(ABC):
    def __init__(self, size: int = HISTORY_SIZE):
        self.size = size

    @abstractmethod
    async def push(self, key: str, pic_ref: str) -> int:
        """Append ``pic_ref`` as the newest entry for ``key`` and trim to size.

        Returns the sequence number assigned to the entry.
        """

    @abstractmethod
    async def range(self, key: str) -> HistorySnapshot:
        """Up to ``size`` entries for ``key``, oldest first. Unknown keys are empty."""

    @abstractmethod
    async def lengths(self) -> Dict[str, int]:
        ...


class InMemoryHistoryStore(HistoryStore):
    def __init__(self, size: int = HISTORY_SIZE):
        super().__init__(size)
        self._lists: Dict[str, Deque[Tuple[int, str]]] = {}
        self._seqs: Dict[str, int] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def push(self, key: str, pic_ref: str) -> int:
        async with self._lock(key):
            history = self._lists.get(key)
            if history is None:
                # deque drops the oldest entry itself once maxlen is reached
                history = self._lists[key] = deque(maxlen=self.size)
            seq = self._seqs.get(key, 0) + 1
            self._seqs[key] = seq
            history.append((seq, pic_ref))
            return seq

    async def range(self, key: str) -> HistorySnapshot:
        history = self._lists.get(key)
        if not history:
            return HistorySnapshot()
        async with self._lock(key):
            entries = list(history)
        return HistorySnapshot(
            items=[pic_ref for _, pic_ref in entries],
            last_seq=entries[-1][0],
        )

    async def lengths(self) -> Dict[str, int]:
        return {key: len(history) for key, history in list(self._lists.items())}


class RedisHistoryStore(HistoryStore):
    """History kept in redis lists so several relay processes share it.

    Lists are stored newest first (LPUSH + LTRIM) and reversed on read. Each
    entry is a small JSON document holding the sequence number from the
    key's INCR counter. Keys are ``{prefix}list:{city}`` and ``{prefix}seq:{city}``.
    """

    def __init__(self, redis: aioredis.Redis, size: int = HISTORY_SIZE, key_prefix: str = ""):
        super().__init__(size)
        self.redis = redis
        self.key_prefix = key_prefix
        self._locks: Dict[str, asyncio.Lock] = {}

    # lists and counters live in separate namespaces so no city name can
    # collide with a counter key
    def _list_key(self, key: str) -> str:
        return f"{self.key_prefix}list:{key}"

    def _seq_key(self, key: str) -> str:
        return f"{self.key_prefix}seq:{key}"

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def push(self, key: str, pic_ref: str) -> int:
        # the lock keeps list order equal to seq order within this process
        async with self._lock(key):
            try:
                seq = int(await self.redis.incr(self._seq_key(key)))
                entry = json.dumps({"seq": seq, "picRef": pic_ref})
                async with self.redis.pipeline(transaction=True) as pipe:
                    pipe.lpush(self._list_key(key), entry)
                    pipe.ltrim(self._list_key(key), 0, self.size - 1)
                    await pipe.execute()
            except RedisError as e:
                raise TransportError("history.push", e) from e
        return seq

    async def range(self, key: str) -> HistorySnapshot:
        try:
            raw = await self.redis.lrange(self._list_key(key), 0, self.size - 1)
        except RedisError as e:
            raise TransportError("history.range", e) from e

        items: List[str] = []
        last_seq = 0
        for value in reversed(raw):
            try:
                entry = json.loads(value)
                items.append(entry["picRef"])
                last_seq = max(last_seq, int(entry["seq"]))
            except (ValueError, KeyError, TypeError):
                logger.warning("history.bad_entry", key=key, value=str(value)[:80])
        return HistorySnapshot(items=items, last_seq=last_seq)

    async def lengths(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        list_prefix = self._list_key("")
        try:
            async for list_key in self.redis.scan_iter(match=f"{list_prefix}*"):
                if isinstance(list_key, bytes):
                    list_key = list_key.decode()
                out[list_key[len(list_prefix):]] = int(await self.redis.llen(list_key))
        except RedisError as e:
            raise TransportError("history.lengths", e) from e
        return out
