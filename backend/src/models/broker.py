"""Live event broker: publish once, hand the event to every listener.

The relay publishes exactly one event per picture, on the city topic. There
is no separate universe topic: listeners (the connection registry) receive
every event and decide which rooms it belongs to.

Publishing never waits on a listener. A listener that falls behind loses
events rather than slowing the publisher down.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import redis.asyncio as aioredis
import structlog
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from utilities import BROKER_QUEUE_SIZE, REDIS_CHANNEL, REDIS_RETRY_SECONDS, TransportError

logger = structlog.get_logger()


@dataclass(frozen=True)
class LiveEvent:
    city: str
    pic_ref: str
    seq: int = 0         # position in the city history
    global_seq: int = 0  # position in the universe history

    def to_json(self) -> str:
        return json.dumps({
            "city": self.city,
            "picRef": self.pic_ref,
            "seq": self.seq,
            "globalSeq": self.global_seq,
        })

    @classmethod
    def from_json(cls, raw) -> "LiveEvent":
        if isinstance(raw, bytes):
            raw = raw.decode()
        data = json.loads(raw)
        return cls(
            city=data["city"],
            pic_ref=data["picRef"],
            seq=int(data.get("seq", 0)),
            global_seq=int(data.get("globalSeq", 0)),
        )


Handler = Callable[[str, LiveEvent], None]


def _dispatch(handler: Handler, topic: str, event: LiveEvent) -> None:
    try:
        handler(topic, event)
    except Exception:
        logger.exception("broker.handler_error", topic=topic, pic_ref=event.pic_ref)


class Broker(ABC):
    @abstractmethod
    async def publish(self, topic: str, event: LiveEvent) -> None:
        ...

    @abstractmethod
    def listen(self, handler: Handler) -> None:
        """Attach ``handler``; it is called with every event published afterwards."""

    @abstractmethod
    async def close(self) -> None:
        ...


class InMemoryBroker(Broker):
    """Single-process broker.

    Each listener has its own bounded queue drained by a background task, so
    ``publish`` only does ``put_nowait`` calls and queue order keeps per-topic
    publish order.
    """

    def __init__(self, queue_size: int = BROKER_QUEUE_SIZE):
        self.queue_size = queue_size
        self._listeners: List[Tuple[asyncio.Queue, asyncio.Task]] = []
        self.events_dropped = 0

    async def publish(self, topic: str, event: LiveEvent) -> None:
        for queue, _ in list(self._listeners):
            try:
                queue.put_nowait((topic, event))
            except asyncio.QueueFull:
                self.events_dropped += 1
                logger.warning("broker.listener_overflow", topic=topic, pic_ref=event.pic_ref)

    def listen(self, handler: Handler) -> None:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        task = asyncio.create_task(self._drain(queue, handler))
        self._listeners.append((queue, task))

    async def _drain(self, queue: asyncio.Queue, handler: Handler) -> None:
        while True:
            topic, event = await queue.get()
            _dispatch(handler, topic, event)

    async def close(self) -> None:
        listeners, self._listeners = self._listeners, []
        for _, task in listeners:
            task.cancel()
        for _, task in listeners:
            try:
                await task
            except asyncio.CancelledError:
                pass


class RedisBroker(Broker):
    """Broker backed by one redis pub/sub channel.

    Every relay process publishes to and listens on the same channel, so a
    picture submitted to any process reaches viewers connected to all of them.
    Redis pub/sub is fire-and-forget: events published while a listener is
    reconnecting are lost for that listener.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        channel: str = REDIS_CHANNEL,
        retry_seconds: float = REDIS_RETRY_SECONDS,
    ):
        self.redis = redis
        self.channel = channel
        self.retry_seconds = retry_seconds
        self._tasks: List[asyncio.Task] = []
        self._closed = False

    async def publish(self, topic: str, event: LiveEvent) -> None:
        try:
            await self.redis.publish(self.channel, event.to_json())
        except RedisError as e:
            raise TransportError("broker.publish", e) from e

    def listen(self, handler: Handler) -> None:
        self._tasks.append(asyncio.create_task(self._listen_loop(handler)))

    async def _listen_loop(self, handler: Handler) -> None:
        while not self._closed:
            pubsub: Optional[PubSub] = None
            try:
                pubsub = self.redis.pubsub()
                await pubsub.subscribe(self.channel)
                logger.info("broker.subscribed", channel=self.channel)
                async for message in pubsub.listen():
                    if message["type"] != "message":
                        continue
                    try:
                        event = LiveEvent.from_json(message["data"])
                    except (ValueError, KeyError, TypeError):
                        logger.warning("broker.bad_message", data=str(message["data"])[:80])
                        continue
                    _dispatch(handler, event.city, event)
            except RedisError as e:
                logger.error("broker.transport_error", channel=self.channel, error=str(e))
            finally:
                if pubsub is not None:
                    try:
                        await pubsub.aclose()
                    except RedisError:
                        pass
            if not self._closed:
                await asyncio.sleep(self.retry_seconds)

    async def close(self) -> None:
        self._closed = True
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
